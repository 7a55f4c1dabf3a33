#===- nlr/propagation/interval.py - Interval Arithmetic Pass ------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Layer-by-layer interval bound propagation. Weighted sums use the
#   positive/negative weight split; activations use the INTERVAL table.
#   The pass yields one list of NeuronBounds per layer and expects the
#   caller to apply it before the generator resumes.
#
#===---------------------------------------------------------------------===#

import torch
from typing import Iterator, List, Tuple

from nlr.core import LayerType, NeuronBound
from nlr.layer import Layer
from nlr.topology import Topology
from nlr.propagation.activations import INTERVAL, lookup
from nlr.propagation.utils import affine_bounds, collect_tighter, gather_source_bounds

Tensor = torch.Tensor


def interval_weighted_sum(topology: Topology, L: Layer) -> Tuple[Tensor, Tensor]:
    lb = L.bias.clone(); ub = L.bias.clone()
    for pid in L.predecessors:
        P = topology.by_id[pid]
        plb, pub = affine_bounds(L.weights[pid], P.lb, P.ub)
        lb = lb + plb; ub = ub + pub
    return lb, ub


def interval_activation(topology: Topology, L: Layer) -> Tuple[Tensor, Tensor]:
    src_lb, src_ub = gather_source_bounds(topology, L)
    return lookup(INTERVAL, L.kind, "interval image")(src_lb, src_ub)


@torch.no_grad()
def interval_layer(topology: Topology, L: Layer) -> Tuple[Tensor, Tensor]:
    if L.kind == LayerType.WEIGHTED_SUM:
        return interval_weighted_sum(topology, L)
    return interval_activation(topology, L)


def interval_arithmetic(topology: Topology, tolerance: float = 0.0) -> Iterator[List[NeuronBound]]:
    for L in topology:
        if L.kind == LayerType.INPUT:
            continue
        lb, ub = interval_layer(topology, L)
        yield collect_tighter(L, lb, ub, tolerance)
