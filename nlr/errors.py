#===- nlr/errors.py - NLR Error Hierarchy -------------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#

from __future__ import annotations
from typing import Optional


class NLRError(Exception):
    """Base class for every error raised by the reasoner."""


class TopologyError(NLRError):
    """Malformed construction call: unknown layer, wrong op for layer type, cycle."""


class InfeasibleBoundsError(NLRError):
    """A derived bound pair with lb > ub, i.e. a proof of local infeasibility."""

    def __init__(self, message: str, variable: Optional[int] = None,
                 lb: Optional[float] = None, ub: Optional[float] = None):
        super().__init__(message)
        self.variable = variable
        self.lb = lb
        self.ub = ub


class OracleUnavailableError(NLRError):
    """The LP/MILP backend could not be created or called."""


class UnsupportedActivationError(NLRError):
    """Requested functionality is not available for an activation kind."""


class ConfigError(NLRError):
    """Configuration validation error."""

    def __init__(self, field: str, message: str):
        super().__init__(f"Configuration error in '{field}': {message}")
        self.field = field
        self.message = message
