#===- nlr/propagation/utils.py - Shared Propagation Helpers -------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#

import torch
from typing import List, Tuple

from nlr.core import BoundType, NeuronBound, NeuronIndex
from nlr.layer import Layer
from nlr.topology import Topology

Tensor = torch.Tensor


def scale(s: Tensor, v: Tensor) -> Tensor:
    """s * v with 0 * inf = 0."""
    return torch.where(s == 0, torch.zeros_like(v), s * v)


def matvec(W: Tensor, v: Tensor) -> Tensor:
    """W @ v with zero weights contributing 0 even where v is infinite."""
    prod = torch.where(W == 0, torch.zeros_like(W), W * v.unsqueeze(0))
    return prod.sum(dim=1)


def affine_bounds(W: Tensor, lb: Tensor, ub: Tensor) -> Tuple[Tensor, Tensor]:
    """Interval image of x -> W x over the box [lb, ub] (bias excluded)."""
    W_pos = torch.clamp(W, min=0); W_neg = torch.clamp(W, max=0)
    return matvec(W_pos, lb) + matvec(W_neg, ub), matvec(W_pos, ub) + matvec(W_neg, lb)


def gather_source_bounds(topology: Topology, L: Layer) -> Tuple[Tensor, Tensor]:
    """(n, k) tensors of activation-source bounds; short rows padded with -inf."""
    k = max((len(s) for s in L.activation_sources), default=1) or 1
    lb = torch.full((L.size, k), -float("inf"), dtype=L.lb.dtype)
    ub = torch.full((L.size, k), -float("inf"), dtype=L.ub.dtype)
    for i, sources in enumerate(L.activation_sources):
        for j, src in enumerate(sources):
            S = topology.by_id[src.layer]
            lb[i, j] = S.lb[src.neuron]
            ub[i, j] = S.ub[src.neuron]
    return lb, ub


def collect_tighter(L: Layer, new_lb: Tensor, new_ub: Tensor, tolerance: float,
                    explanations=None) -> List[NeuronBound]:
    """NeuronBounds for every non-eliminated neuron whose bound improves by > tolerance."""
    out: List[NeuronBound] = []
    for i in range(L.size):
        if i in L.eliminated:
            continue
        lo, hi = float(new_lb[i]), float(new_ub[i])
        exp_lo, exp_hi = (explanations[i] if explanations is not None else (None, None))
        if lo > L.get_lb(i) + tolerance:
            out.append(NeuronBound(NeuronIndex(L.id, i), lo, BoundType.LOWER, exp_lo))
        if hi < L.get_ub(i) - tolerance:
            out.append(NeuronBound(NeuronIndex(L.id, i), hi, BoundType.UPPER, exp_hi))
    return out
