#===- nlr/bound_store.py - External Bound Store Interfaces --------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Interfaces of the two external collaborators the reasoner talks to while
#   propagating: the store that owns variable bounds during search, and the
#   proof layer that records why a bound holds.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import math
from typing import Dict, List, Optional

from nlr.core import BoundType, LinearExpression, Tightening


class BoundStore:
    """Read access to the current (lb, ub) of solver variables."""

    def get_lower_bound(self, variable: int) -> float:  # pragma: no cover - abstract
        raise NotImplementedError

    def get_upper_bound(self, variable: int) -> float:  # pragma: no cover - abstract
        raise NotImplementedError


class DictBoundStore(BoundStore):
    """In-memory bound store; missing entries are unbounded."""

    def __init__(self, lower: Optional[Dict[int, float]] = None, upper: Optional[Dict[int, float]] = None):
        self.lower: Dict[int, float] = dict(lower or {})
        self.upper: Dict[int, float] = dict(upper or {})

    def get_lower_bound(self, variable: int) -> float:
        return self.lower.get(variable, -math.inf)

    def get_upper_bound(self, variable: int) -> float:
        return self.upper.get(variable, math.inf)

    def set_lower_bound(self, variable: int, value: float) -> None:
        self.lower[variable] = float(value)

    def set_upper_bound(self, variable: int, value: float) -> None:
        self.upper[variable] = float(value)

    def apply_tightenings(self, tightenings: List[Tightening]) -> int:
        """Write drained tightenings back; returns how many actually tightened."""
        applied = 0
        for t in tightenings:
            if t.type == BoundType.LOWER and t.value > self.get_lower_bound(t.variable):
                self.lower[t.variable] = t.value; applied += 1
            elif t.type == BoundType.UPPER and t.value < self.get_upper_bound(t.variable):
                self.upper[t.variable] = t.value; applied += 1
        return applied


class BoundExplainer:
    """Hooks of the proof-production layer.

    ``explanation`` is the affine expression over input variables that
    certifies the new bound, or None when the bound came from a pass with no
    such certificate (interval images, LP optima).
    """

    def update_lb_explanation_for_variable(self, variable: int,
                                           explanation: Optional[LinearExpression]) -> None:  # pragma: no cover - abstract
        ...

    def update_ub_explanation_for_variable(self, variable: int,
                                           explanation: Optional[LinearExpression]) -> None:  # pragma: no cover - abstract
        ...
