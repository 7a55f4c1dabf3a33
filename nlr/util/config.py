#===- nlr/util/config.py - Reasoner Configuration -----------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   ReasonerConfig dataclass plus YAML/JSON loading and validation.
#
#===---------------------------------------------------------------------===#

"""
Configuration for the network-level reasoner and reducer.

A configuration file is a flat mapping whose keys are ReasonerConfig field
names, for example::

    passes: [interval, symbolic, lp]
    max_iterations: 5
    lp_solver: scipy
    lp_timeout: 2.0
"""

import json
import logging
import yaml
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from nlr.errors import ConfigError

logger = logging.getLogger(__name__)

# Increasing cost; iterative propagation always runs passes in this order
PASS_ORDER = ("interval", "symbolic", "lp", "milp")
LP_SOLVERS = ("scipy", "gurobi")


@dataclass
class ReasonerConfig:
    passes: List[str] = field(default_factory=lambda: ["interval", "symbolic"])
    max_iterations: int = 10
    tolerance: float = 1e-6
    lp_solver: str = "scipy"
    lp_timeout: Optional[float] = None
    milp_timeout: Optional[float] = None
    milp_layers: List[int] = field(default_factory=list)
    auxiliary_variables: bool = True
    produce_proofs: bool = False
    reduction_rate: float = 0.0
    bucket_tolerance: float = 0.0

    def __post_init__(self):
        self.validate()

    def ordered_passes(self) -> List[str]:
        return [p for p in PASS_ORDER if p in self.passes]

    def validate(self) -> None:
        """Raise ConfigError naming the first invalid field."""
        if not isinstance(self.passes, (list, tuple)) or not self.passes:
            raise ConfigError("passes", "Must be a non-empty list")
        for p in self.passes:
            if p not in PASS_ORDER:
                raise ConfigError("passes", f"Unknown pass '{p}'. Valid options: {list(PASS_ORDER)}")
        if not isinstance(self.max_iterations, int) or self.max_iterations < 1:
            raise ConfigError("max_iterations", "Must be a positive integer")
        if not isinstance(self.tolerance, (int, float)) or self.tolerance < 0:
            raise ConfigError("tolerance", "Must be a non-negative number")
        if self.lp_solver not in LP_SOLVERS:
            raise ConfigError("lp_solver", f"Unknown solver '{self.lp_solver}'. Valid options: {list(LP_SOLVERS)}")
        for name in ("lp_timeout", "milp_timeout"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                raise ConfigError(name, "Must be a positive number or null")
        if not all(isinstance(lid, int) for lid in self.milp_layers):
            raise ConfigError("milp_layers", "Must be a list of layer ids")
        if not 0.0 <= float(self.reduction_rate) <= 1.0:
            raise ConfigError("reduction_rate", "Must be within [0, 1]")
        if float(self.bucket_tolerance) < 0:
            raise ConfigError("bucket_tolerance", "Must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReasonerConfig":
        if not isinstance(data, dict):
            raise ConfigError("root", "Configuration must be a dictionary")
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                raise ConfigError(key, f"Unknown configuration key. Valid keys: {sorted(known)}")
        return cls(**data)


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError("yaml_format", f"Invalid YAML format: {e}")


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError("json_format", f"Invalid JSON format: {e}")


def load_config(path: Union[str, Path]) -> ReasonerConfig:
    """
    Load a ReasonerConfig from a YAML or JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the content is malformed or a value is out of range
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    data = _load_json(path) if path.suffix.lower() == '.json' else _load_yaml(path)
    config = ReasonerConfig.from_dict(data)
    logger.info(f"Loaded configuration: {path}")
    return config


def save_config(config: ReasonerConfig, path: Union[str, Path]) -> None:
    path = Path(path)
    with open(path, 'w', encoding='utf-8') as f:
        if path.suffix.lower() == '.json':
            json.dump(config.to_dict(), f, indent=2)
        else:
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    logger.info(f"Saved configuration: {path}")
