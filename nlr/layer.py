#===- nlr/layer.py - NLR Layer ------------------------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Per-neuron state of one network layer: kind, size, affine parameters
#   (weighted-sum layers), activation-source links (activation layers),
#   concrete and symbolic bounds, elimination flags and variable bindings.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import logging
import torch
from typing import Dict, List, Optional

from nlr.core import LayerType, NeuronIndex, PhaseStatus
from nlr.errors import TopologyError

logger = logging.getLogger(__name__)

DTYPE = torch.float64


class Layer:
    """One layer of the network, addressed by a dense integer id."""

    def __init__(self, layer_id: int, kind: LayerType, size: int):
        if size <= 0:
            raise TopologyError(f"Layer {layer_id}: size must be positive, got {size}")
        self.id = layer_id
        self.kind = LayerType(kind)
        self.size = size

        # Dependency edges, maintained by the owning Topology
        self.predecessors: List[int] = []
        self.successors: List[int] = []

        # Affine parameters, keyed by predecessor id; W[target, source]
        self.weights: Dict[int, torch.Tensor] = {}
        self.bias = torch.zeros(size, dtype=DTYPE)

        # Activation sources, one list per neuron
        self.activation_sources: List[List[NeuronIndex]] = [[] for _ in range(size)]

        self.lb = torch.full((size,), -float("inf"), dtype=DTYPE)
        self.ub = torch.full((size,), float("inf"), dtype=DTYPE)

        # Symbolic bounds over the input layer: y >= A_lb x + b_lb, y <= A_ub x + b_ub
        self.symbolic_lb: Optional[torch.Tensor] = None
        self.symbolic_lower_bias: Optional[torch.Tensor] = None
        self.symbolic_ub: Optional[torch.Tensor] = None
        self.symbolic_upper_bias: Optional[torch.Tensor] = None

        self.eliminated: Dict[int, float] = {}
        self.phase: Dict[int, PhaseStatus] = {}

        self._neuron_to_variable: Dict[int, int] = {}
        self._variable_to_neuron: Dict[int, int] = {}

    def __repr__(self) -> str:
        return f"Layer(id={self.id}, kind={self.kind.value}, size={self.size})"

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    def _check_neuron(self, neuron: int) -> None:
        if not 0 <= neuron < self.size:
            raise TopologyError(f"Layer {self.id}: neuron {neuron} out of range [0, {self.size})")

    def _require_kind(self, ok: bool, op: str) -> None:
        if not ok:
            raise TopologyError(f"{op} is not valid on {self.kind.value} layer {self.id}")

    # ------------------------------------------------------------------
    # Affine parameters
    # ------------------------------------------------------------------
    def add_predecessor(self, source_id: int, source_size: int) -> None:
        if source_id in self.predecessors:
            return
        self.predecessors.append(source_id)
        if self.kind == LayerType.WEIGHTED_SUM:
            self.weights[source_id] = torch.zeros((self.size, source_size), dtype=DTYPE)

    def remove_predecessor(self, source_id: int) -> None:
        if source_id in self.predecessors:
            self.predecessors.remove(source_id)
        self.weights.pop(source_id, None)

    def set_weight(self, source_layer: int, source_neuron: int, neuron: int, weight: float) -> None:
        self._require_kind(self.kind == LayerType.WEIGHTED_SUM, "setWeight")
        self._check_neuron(neuron)
        if source_layer not in self.weights:
            raise TopologyError(f"Layer {source_layer} is not a predecessor of layer {self.id}")
        W = self.weights[source_layer]
        if not 0 <= source_neuron < W.shape[1]:
            raise TopologyError(f"Layer {source_layer}: neuron {source_neuron} out of range")
        W[neuron, source_neuron] = float(weight)

    def get_weight(self, source_layer: int, source_neuron: int, neuron: int) -> float:
        return float(self.weights[source_layer][neuron, source_neuron])

    def set_weights(self, source_layer: int, W: torch.Tensor) -> None:
        self._require_kind(self.kind == LayerType.WEIGHTED_SUM, "setWeights")
        if source_layer not in self.weights:
            raise TopologyError(f"Layer {source_layer} is not a predecessor of layer {self.id}")
        if tuple(W.shape) != tuple(self.weights[source_layer].shape):
            raise TopologyError(f"Layer {self.id}: weight shape {tuple(W.shape)} != "
                                f"{tuple(self.weights[source_layer].shape)}")
        self.weights[source_layer] = W.to(DTYPE).clone()

    def set_bias(self, neuron: int, bias: float) -> None:
        self._require_kind(self.kind == LayerType.WEIGHTED_SUM, "setBias")
        self._check_neuron(neuron)
        self.bias[neuron] = float(bias)

    def get_bias(self, neuron: int) -> float:
        return float(self.bias[neuron])

    # ------------------------------------------------------------------
    # Activation sources
    # ------------------------------------------------------------------
    def add_activation_source(self, source: NeuronIndex, neuron: int) -> None:
        self._require_kind(self.kind.is_activation, "addActivationSource")
        self._check_neuron(neuron)
        if source.layer not in self.predecessors:
            raise TopologyError(f"Layer {source.layer} is not a predecessor of layer {self.id}")
        sources = self.activation_sources[neuron]
        if self.kind != LayerType.MAX and sources and source not in sources:
            raise TopologyError(f"{self.kind.value} neuron {self.id}:{neuron} takes a single source")
        if source not in sources:
            sources.append(source)

    def get_activation_sources(self, neuron: int) -> List[NeuronIndex]:
        return self.activation_sources[neuron]

    # ------------------------------------------------------------------
    # Variable bindings
    # ------------------------------------------------------------------
    def set_neuron_variable(self, neuron: int, variable: int) -> None:
        self._check_neuron(neuron)
        old = self._neuron_to_variable.get(neuron)
        if old is not None and self._variable_to_neuron.get(old) == neuron:
            del self._variable_to_neuron[old]
            # A merged variable may still be held by another neuron of this layer
            for other, var in self._neuron_to_variable.items():
                if var == old and other != neuron:
                    self._variable_to_neuron[old] = other
                    break
        self._neuron_to_variable[neuron] = variable
        self._variable_to_neuron[variable] = neuron

    def clear_neuron_variables(self) -> None:
        self._neuron_to_variable.clear()
        self._variable_to_neuron.clear()

    def neuron_has_variable(self, neuron: int) -> bool:
        return neuron in self._neuron_to_variable

    def neuron_to_variable(self, neuron: int) -> int:
        return self._neuron_to_variable[neuron]

    def variable_to_neuron(self, variable: int) -> int:
        return self._variable_to_neuron[variable]

    def has_variable(self, variable: int) -> bool:
        return variable in self._variable_to_neuron

    def variables(self) -> Dict[int, int]:
        return dict(self._neuron_to_variable)

    # ------------------------------------------------------------------
    # Concrete bounds
    # ------------------------------------------------------------------
    def get_lb(self, neuron: int) -> float:
        return float(self.lb[neuron])

    def get_ub(self, neuron: int) -> float:
        return float(self.ub[neuron])

    def set_lb(self, neuron: int, value: float) -> None:
        self.lb[neuron] = float(value)

    def set_ub(self, neuron: int, value: float) -> None:
        self.ub[neuron] = float(value)

    # ------------------------------------------------------------------
    # Elimination & phase fixing
    # ------------------------------------------------------------------
    def eliminate_neuron(self, neuron: int, value: float) -> None:
        self._check_neuron(neuron)
        self.eliminated[neuron] = float(value)
        self.lb[neuron] = float(value)
        self.ub[neuron] = float(value)

    def neuron_eliminated(self, neuron: int) -> bool:
        return neuron in self.eliminated

    def fix_phase(self, neuron: int, phase: PhaseStatus) -> None:
        self._require_kind(self.kind == LayerType.RELU, "fixPhase")
        self._check_neuron(neuron)
        self.phase[neuron] = phase

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------
    def clone(self) -> "Layer":
        other = Layer(self.id, self.kind, self.size)
        other.predecessors = list(self.predecessors)
        other.successors = list(self.successors)
        other.weights = {k: W.clone() for k, W in self.weights.items()}
        other.bias = self.bias.clone()
        other.activation_sources = [list(s) for s in self.activation_sources]
        other.lb = self.lb.clone()
        other.ub = self.ub.clone()
        for name in ("symbolic_lb", "symbolic_lower_bias", "symbolic_ub", "symbolic_upper_bias"):
            t = getattr(self, name)
            setattr(other, name, None if t is None else t.clone())
        other.eliminated = dict(self.eliminated)
        other.phase = dict(self.phase)
        other._neuron_to_variable = dict(self._neuron_to_variable)
        other._variable_to_neuron = dict(self._variable_to_neuron)
        return other

    def describe(self, details: bool = True) -> List[str]:
        lines = [f"Layer {self.id}: {self.kind.value}, size {self.size}, "
                 f"preds {self.predecessors}, succs {self.successors}"]
        if not details:
            return lines
        for i in range(self.size):
            var = self._neuron_to_variable.get(i)
            tag = f"x{var}" if var is not None else "-"
            line = f"  [{i}] {tag} in [{self.get_lb(i):.6g}, {self.get_ub(i):.6g}]"
            if i in self.eliminated:
                line += f" (eliminated = {self.eliminated[i]:.6g})"
            if i in self.phase:
                line += f" (phase {self.phase[i].value})"
            if self.kind == LayerType.WEIGHTED_SUM:
                line += f" bias {self.get_bias(i):.6g}"
            elif self.kind.is_activation:
                line += " <- " + ", ".join(f"{s.layer}:{s.neuron}" for s in self.activation_sources[i])
            lines.append(line)
        return lines
