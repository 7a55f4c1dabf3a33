#===- nlr/query.py - Flat Constraint System -----------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Flat constraint system handed to the downstream solver: variable count,
#   bound maps, linear equations and piecewise-linear / nonlinear constraint
#   records coupling pre- and post-activation variables.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class EquationType(str, Enum):
    EQ = "EQ"
    GE = "GE"
    LE = "LE"


@dataclass
class Equation:
    """sum(coefficient * variable) <type> scalar"""
    addends: List[Tuple[float, int]] = field(default_factory=list)
    scalar: float = 0.0
    type: EquationType = EquationType.EQ
    auxiliary_variable: Optional[int] = None

    def add_addend(self, coefficient: float, variable: int) -> None:
        self.addends.append((float(coefficient), variable))

    def set_scalar(self, scalar: float) -> None:
        self.scalar = float(scalar)

    def mark_auxiliary_variable(self, variable: int) -> None:
        self.auxiliary_variable = variable

    def variables(self) -> List[int]:
        return [v for _, v in self.addends]

    def coefficient(self, variable: int) -> float:
        return sum(c for c, v in self.addends if v == variable)

    def substitute(self, variable: int, value: float) -> bool:
        hits = [c for c, v in self.addends if v == variable]
        if not hits:
            return False
        self.addends = [(c, v) for c, v in self.addends if v != variable]
        self.scalar -= sum(hits) * value
        if self.auxiliary_variable == variable:
            self.auxiliary_variable = None
        return True

    def holds(self, assignment: Dict[int, float], tol: float = 1e-6) -> bool:
        lhs = sum(c * assignment[v] for c, v in self.addends)
        if self.type == EquationType.EQ:
            return abs(lhs - self.scalar) <= tol
        if self.type == EquationType.GE:
            return lhs >= self.scalar - tol
        return lhs <= self.scalar + tol


# -------- Activation constraint records --------
@dataclass(eq=False)
class ReluConstraint:
    b: int
    f: int

    def participating_variables(self) -> List[int]:
        return [self.b, self.f]


@dataclass(eq=False)
class AbsoluteValueConstraint:
    b: int
    f: int

    def participating_variables(self) -> List[int]:
        return [self.b, self.f]


@dataclass(eq=False)
class SignConstraint:
    b: int
    f: int

    def participating_variables(self) -> List[int]:
        return [self.b, self.f]


@dataclass(eq=False)
class MaxConstraint:
    f: int
    elements: List[int] = field(default_factory=list)

    def participating_variables(self) -> List[int]:
        return list(self.elements) + [self.f]


@dataclass(eq=False)
class SigmoidConstraint:
    b: int
    f: int

    def participating_variables(self) -> List[int]:
        return [self.b, self.f]


class Query:
    """Variables, bounds, equations and activation constraints.

    Missing bound entries mean unbounded. A Query also satisfies the
    BoundStore interface so a reasoner can read bounds straight from it.
    """

    def __init__(self, number_of_variables: int = 0):
        self.number_of_variables = number_of_variables
        self.lower_bounds: Dict[int, float] = {}
        self.upper_bounds: Dict[int, float] = {}
        self.equations: List[Equation] = []
        self.pl_constraints: list = []
        self.nonlinear_constraints: list = []

    def set_number_of_variables(self, n: int) -> None:
        self.number_of_variables = n

    def get_number_of_variables(self) -> int:
        return self.number_of_variables

    def new_variable(self) -> int:
        v = self.number_of_variables
        self.number_of_variables += 1
        return v

    # -------- Bounds --------
    def set_lower_bound(self, variable: int, value: float) -> None:
        self.lower_bounds[variable] = float(value)

    def set_upper_bound(self, variable: int, value: float) -> None:
        self.upper_bounds[variable] = float(value)

    def get_lower_bound(self, variable: int) -> float:
        return self.lower_bounds.get(variable, -math.inf)

    def get_upper_bound(self, variable: int) -> float:
        return self.upper_bounds.get(variable, math.inf)

    def tighten_lower_bound(self, variable: int, value: float) -> None:
        if value > self.get_lower_bound(variable):
            self.lower_bounds[variable] = float(value)

    def tighten_upper_bound(self, variable: int, value: float) -> None:
        if value < self.get_upper_bound(variable):
            self.upper_bounds[variable] = float(value)

    # -------- Constraints --------
    def add_equation(self, equation: Equation) -> None:
        self.equations.append(equation)

    def add_piecewise_linear_constraint(self, constraint) -> None:
        self.pl_constraints.append(constraint)

    def remove_piecewise_linear_constraint(self, constraint) -> None:
        self.pl_constraints = [c for c in self.pl_constraints if c is not constraint]

    def add_nonlinear_constraint(self, constraint) -> None:
        self.nonlinear_constraints.append(constraint)

    def find_relu(self, b: Optional[int] = None, f: Optional[int] = None) -> Optional[ReluConstraint]:
        for c in self.pl_constraints:
            if isinstance(c, ReluConstraint) and (b is None or c.b == b) and (f is None or c.f == f):
                return c
        return None

    def substitute_variable(self, variable: int, value: float) -> None:
        """Fix a variable to a value and fold it out of every equation."""
        self.lower_bounds[variable] = float(value)
        self.upper_bounds[variable] = float(value)
        for eq in self.equations:
            eq.substitute(variable, value)
        # An emptied equation with a nonzero scalar is a contradiction; keep it
        self.equations = [eq for eq in self.equations if eq.addends or abs(eq.scalar) > 1e-9]

    def copy(self) -> "Query":
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return (f"Query(vars={self.number_of_variables}, eqs={len(self.equations)}, "
                f"pl={len(self.pl_constraints)}, nonlinear={len(self.nonlinear_constraints)})")
