#===- nlr/topology.py - Network Topology Graph --------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Arena of layers indexed by id plus the predecessor/successor adjacency.
#   All cross references are layer ids or NeuronIndex values, so a clone
#   shares no mutable state with its source.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
from collections import deque
from typing import Dict, Iterator, List, Optional

from nlr.core import LayerType, NeuronIndex
from nlr.errors import TopologyError
from nlr.layer import Layer


class Topology:

    def __init__(self):
        self.by_id: Dict[int, Layer] = {}
        self._order: Optional[List[int]] = None

    def __len__(self) -> int:
        return len(self.by_id)

    def __contains__(self, layer_id: int) -> bool:
        return layer_id in self.by_id

    def __iter__(self) -> Iterator[Layer]:
        for lid in self.topological_order():
            yield self.by_id[lid]

    @property
    def succs(self) -> Dict[int, List[int]]:
        return {lid: list(L.successors) for lid, L in self.by_id.items()}

    def layer(self, layer_id: int) -> Layer:
        try:
            return self.by_id[layer_id]
        except KeyError:
            raise TopologyError(f"Unknown layer id {layer_id}") from None

    def neuron_layer(self, index: NeuronIndex) -> Layer:
        L = self.layer(index.layer)
        if not 0 <= index.neuron < L.size:
            raise TopologyError(f"{index} out of range for layer of size {L.size}")
        return L

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def add_layer(self, layer_id: int, kind: LayerType, size: int) -> Layer:
        if layer_id in self.by_id:
            raise TopologyError(f"Layer id {layer_id} already exists")
        try:
            kind = LayerType(kind)
        except ValueError:
            raise TopologyError(f"Unknown layer type {kind!r}") from None
        L = Layer(layer_id, kind, size)
        self.by_id[layer_id] = L
        self._order = None
        return L

    def add_layer_dependency(self, source: int, target: int) -> None:
        S, T = self.layer(source), self.layer(target)
        if T.kind == LayerType.INPUT:
            raise TopologyError(f"INPUT layer {target} cannot have predecessors")
        if source == target or self._reaches(target, source):
            raise TopologyError(f"Dependency {source} -> {target} would create a cycle")
        T.add_predecessor(source, S.size)
        if target not in S.successors:
            S.successors.append(target)
        self._order = None

    def _reaches(self, start: int, goal: int) -> bool:
        seen, work = set(), [start]
        while work:
            lid = work.pop()
            if lid == goal:
                return True
            if lid in seen:
                continue
            seen.add(lid)
            work.extend(self.by_id[lid].successors)
        return False

    def compute_successor_layers(self) -> None:
        for L in self.by_id.values():
            L.successors = []
        for lid in sorted(self.by_id):
            for pid in self.by_id[lid].predecessors:
                self.by_id[pid].successors.append(lid)
        self._order = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def topological_order(self) -> List[int]:
        """Kahn's algorithm; ties broken by ascending layer id."""
        if self._order is not None:
            return self._order
        indeg = {lid: len(L.predecessors) for lid, L in self.by_id.items()}
        ready = deque(sorted(lid for lid, d in indeg.items() if d == 0))
        order: List[int] = []
        while ready:
            lid = ready.popleft()
            order.append(lid)
            newly = []
            for sid in self.by_id[lid].successors:
                indeg[sid] -= 1
                if indeg[sid] == 0:
                    newly.append(sid)
            ready = deque(sorted(list(ready) + newly))
        if len(order) != len(self.by_id):
            raise TopologyError("Layer dependencies do not form a DAG "
                                "(did you call compute_successor_layers?)")
        self._order = order
        return order

    def input_layer(self) -> Layer:
        inputs = [L for L in self.by_id.values() if L.kind == LayerType.INPUT]
        if len(inputs) != 1:
            raise TopologyError(f"Expected exactly one INPUT layer, found {len(inputs)}")
        return inputs[0]

    def output_layer(self) -> Layer:
        sinks = [lid for lid, L in self.by_id.items() if not L.successors]
        if len(sinks) != 1:
            raise TopologyError(f"Expected exactly one sink layer, found {sorted(sinks)}")
        return self.by_id[sinks[0]]

    def max_layer_size(self) -> int:
        return max((L.size for L in self.by_id.values()), default=0)

    def find_variable(self, variable: int) -> Optional[NeuronIndex]:
        for L in self.by_id.values():
            if L.has_variable(variable):
                return NeuronIndex(L.id, L.variable_to_neuron(variable))
        return None

    def validate(self) -> None:
        """Check the structural invariants before a propagation pass."""
        for lid, L in self.by_id.items():
            if L.kind != LayerType.INPUT and not L.predecessors:
                raise TopologyError(f"{L.kind.value} layer {lid} has no predecessor")
            for pid in L.predecessors:
                if lid not in self.by_id[pid].successors:
                    raise TopologyError(f"Successor links of layer {pid} are stale; "
                                        f"call compute_successor_layers()")
            if L.kind.is_activation:
                for i, sources in enumerate(L.activation_sources):
                    if not sources and i not in L.eliminated:
                        raise TopologyError(f"Neuron {lid}:{i} has no activation source")
        self.topological_order()

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------
    def remove_layer(self, layer_id: int) -> None:
        L = self.layer(layer_id)
        for pid in L.predecessors:
            P = self.by_id[pid]
            if layer_id in P.successors:
                P.successors.remove(layer_id)
        for sid in L.successors:
            self.by_id[sid].remove_predecessor(layer_id)
        del self.by_id[layer_id]
        self._order = None

    def reduce_layer_index(self, start: int) -> None:
        """Shift every layer id >= start down by one, keeping ids dense."""
        remap = {lid: (lid - 1 if lid >= start else lid) for lid in self.by_id}
        new_by_id: Dict[int, Layer] = {}
        for lid, L in self.by_id.items():
            L.id = remap[lid]
            L.predecessors = [remap[p] for p in L.predecessors]
            L.successors = [remap[s] for s in L.successors]
            L.weights = {remap[p]: W for p, W in L.weights.items()}
            L.activation_sources = [[NeuronIndex(remap[s.layer], s.neuron) for s in srcs]
                                    for srcs in L.activation_sources]
            new_by_id[L.id] = L
        self.by_id = new_by_id
        self._order = None

    def clone(self) -> "Topology":
        other = Topology()
        other.by_id = {lid: L.clone() for lid, L in self.by_id.items()}
        return other
