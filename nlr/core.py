#===- nlr/core.py - NLR Core Value Types --------------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Small immutable value types shared by every part of the reasoner:
#   neuron addresses, bound facts, layer kinds and linear expressions.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class LayerType(str, Enum):
    INPUT = "INPUT"
    WEIGHTED_SUM = "WEIGHTED_SUM"
    RELU = "RELU"
    SIGMOID = "SIGMOID"
    SIGN = "SIGN"
    ABSOLUTE_VALUE = "ABSOLUTE_VALUE"
    MAX = "MAX"

    @property
    def is_activation(self) -> bool:
        return self not in (LayerType.INPUT, LayerType.WEIGHTED_SUM)

    @property
    def is_piecewise_linear(self) -> bool:
        return self in (LayerType.RELU, LayerType.SIGN, LayerType.ABSOLUTE_VALUE, LayerType.MAX)


class BoundType(str, Enum):
    LOWER = "LOWER"
    UPPER = "UPPER"


class PhaseStatus(str, Enum):
    ACTIVE = "ACTIVE"          # stable-true: output equals input
    INACTIVE = "INACTIVE"      # stable-false: output fixed to 0


@dataclass(frozen=True, order=True)
class NeuronIndex:
    layer: int
    neuron: int

    def __repr__(self) -> str:
        return f"NeuronIndex({self.layer}, {self.neuron})"


@dataclass(frozen=True)
class Tightening:
    variable: int
    value: float
    type: BoundType

    def __repr__(self) -> str:
        sym = ">=" if self.type == BoundType.LOWER else "<="
        return f"Tightening(x{self.variable} {sym} {self.value:.6g})"


@dataclass(frozen=True)
class NeuronBound:
    """A bound discovered by a propagation pass, addressed by neuron.

    The reasoner translates these into variable-level Tightenings once the
    neuron's variable binding is known. ``explanation`` is the affine input
    expression that certifies the bound, when the pass has one.
    """
    index: NeuronIndex
    value: float
    type: BoundType
    explanation: Optional["LinearExpression"] = None


@dataclass
class LinearExpression:
    """sum(coefficient * variable) + constant"""
    addends: Dict[int, float] = field(default_factory=dict)
    constant: float = 0.0

    def evaluate(self, assignment: Dict[int, float]) -> float:
        return self.constant + sum(c * assignment[v] for v, c in self.addends.items())

    def copy(self) -> "LinearExpression":
        return LinearExpression(dict(self.addends), self.constant)
