#===- nlr/propagation/symbolic.py - Symbolic Bound Propagation ----------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Affine-relaxation propagation. Every neuron carries two affine forms
#   over the input layer, A_lb x + b_lb <= y <= A_ub x + b_ub, pushed
#   through weighted sums exactly and through activations via the
#   RELAXATION table. Each layer's forms are then concretised over the
#   input box and any tighter concrete bound is yielded.
#
#===---------------------------------------------------------------------===#

import torch
from typing import Dict, Iterator, List, Optional, Tuple

from nlr.core import LayerType, LinearExpression, NeuronBound
from nlr.layer import Layer
from nlr.topology import Topology
from nlr.propagation.activations import RELAXATION, lookup
from nlr.propagation.utils import collect_tighter, gather_source_bounds, matvec, scale

Tensor = torch.Tensor


def _symbolic_input(L: Layer) -> None:
    n = L.size
    L.symbolic_lb = torch.eye(n, dtype=L.lb.dtype); L.symbolic_ub = torch.eye(n, dtype=L.lb.dtype)
    L.symbolic_lower_bias = torch.zeros(n, dtype=L.lb.dtype)
    L.symbolic_upper_bias = torch.zeros(n, dtype=L.lb.dtype)


def _symbolic_weighted_sum(topology: Topology, L: Layer, n_in: int) -> None:
    A_lb = torch.zeros((L.size, n_in), dtype=L.lb.dtype); A_ub = torch.zeros_like(A_lb)
    b_lb = L.bias.clone(); b_ub = L.bias.clone()
    for pid in L.predecessors:
        P = topology.by_id[pid]
        W = L.weights[pid]
        W_pos = torch.clamp(W, min=0); W_neg = torch.clamp(W, max=0)
        A_lb += W_pos @ P.symbolic_lb + W_neg @ P.symbolic_ub
        A_ub += W_pos @ P.symbolic_ub + W_neg @ P.symbolic_lb
        b_lb = b_lb + matvec(W_pos, P.symbolic_lower_bias) + matvec(W_neg, P.symbolic_upper_bias)
        b_ub = b_ub + matvec(W_pos, P.symbolic_upper_bias) + matvec(W_neg, P.symbolic_lower_bias)
    L.symbolic_lb, L.symbolic_ub = A_lb, A_ub
    L.symbolic_lower_bias, L.symbolic_upper_bias = b_lb, b_ub


def _source_forms(topology: Topology, L: Layer, n_in: int) -> Tuple[Tensor, Tensor, Tensor, Tensor]:
    """Symbolic forms of each neuron's (first) activation source."""
    dtype = L.lb.dtype
    S_lb = torch.zeros((L.size, n_in), dtype=dtype); S_ub = torch.zeros_like(S_lb)
    s_lb = torch.zeros(L.size, dtype=dtype); s_ub = torch.zeros(L.size, dtype=dtype)
    for i, sources in enumerate(L.activation_sources):
        if not sources:
            continue
        src = sources[0]; P = topology.by_id[src.layer]
        S_lb[i] = P.symbolic_lb[src.neuron]; S_ub[i] = P.symbolic_ub[src.neuron]
        s_lb[i] = P.symbolic_lower_bias[src.neuron]; s_ub[i] = P.symbolic_upper_bias[src.neuron]
    return S_lb, s_lb, S_ub, s_ub


def _symbolic_activation(topology: Topology, L: Layer, n_in: int) -> None:
    src_l, src_u = gather_source_bounds(topology, L)
    lo_s, lo_t, up_s, up_t = lookup(RELAXATION, L.kind, "linear relaxation")(src_l, src_u)
    S_lb, s_lb, S_ub, s_ub = _source_forms(topology, L, n_in)

    # A negative slope flips which source form bounds the line from the right side
    lo_pos = (lo_s >= 0).unsqueeze(1); up_pos = (up_s >= 0).unsqueeze(1)
    L.symbolic_lb = lo_s.unsqueeze(1) * torch.where(lo_pos, S_lb, S_ub)
    L.symbolic_ub = up_s.unsqueeze(1) * torch.where(up_pos, S_ub, S_lb)
    L.symbolic_lower_bias = scale(lo_s, torch.where(lo_s >= 0, s_lb, s_ub)) + lo_t
    L.symbolic_upper_bias = scale(up_s, torch.where(up_s >= 0, s_ub, s_lb)) + up_t


def _symbolic_max(topology: Topology, L: Layer, n_in: int) -> None:
    dtype = L.lb.dtype
    A_lb = torch.zeros((L.size, n_in), dtype=dtype); A_ub = torch.zeros_like(A_lb)
    b_lb = torch.zeros(L.size, dtype=dtype); b_ub = torch.zeros(L.size, dtype=dtype)
    for i, sources in enumerate(L.activation_sources):
        if not sources:
            continue
        lbs = [topology.by_id[s.layer].get_lb(s.neuron) for s in sources]
        ubs = [topology.by_id[s.layer].get_ub(s.neuron) for s in sources]
        best = max(range(len(sources)), key=lambda j: lbs[j])
        best_src = sources[best]; P = topology.by_id[best_src.layer]
        A_lb[i] = P.symbolic_lb[best_src.neuron]; b_lb[i] = P.symbolic_lower_bias[best_src.neuron]
        others = [ubs[j] for j in range(len(sources)) if j != best]
        if not others or lbs[best] >= max(others):
            A_ub[i] = P.symbolic_ub[best_src.neuron]; b_ub[i] = P.symbolic_upper_bias[best_src.neuron]
        else:
            b_ub[i] = max(ubs)
    L.symbolic_lb, L.symbolic_ub = A_lb, A_ub
    L.symbolic_lower_bias, L.symbolic_upper_bias = b_lb, b_ub


def _pin_fixed(L: Layer) -> None:
    # Eliminated neurons and neurons with a point domain are both constants
    fixed = torch.isfinite(L.lb) & (L.lb == L.ub)
    for i in fixed.nonzero().flatten().tolist():
        L.symbolic_lb[i] = 0.0; L.symbolic_ub[i] = 0.0
        L.symbolic_lower_bias[i] = L.lb[i]; L.symbolic_upper_bias[i] = L.lb[i]


def concretize(A: Tensor, b: Tensor, in_lb: Tensor, in_ub: Tensor) -> Tuple[Tensor, Tensor]:
    """Min and max of A x + b over the input box."""
    A_pos = torch.clamp(A, min=0); A_neg = torch.clamp(A, max=0)
    lo = matvec(A_pos, in_lb) + matvec(A_neg, in_ub) + b
    hi = matvec(A_pos, in_ub) + matvec(A_neg, in_lb) + b
    return lo, hi


def _explanations(L: Layer, inputs: Layer) -> Optional[List[Tuple[LinearExpression, LinearExpression]]]:
    variables: Dict[int, int] = inputs.variables()
    if len(variables) != inputs.size:
        return None

    def form(row: Tensor, bias: Tensor) -> LinearExpression:
        addends = {variables[j]: float(c) for j, c in enumerate(row.tolist()) if c != 0.0}
        return LinearExpression(addends, float(bias))

    return [(form(L.symbolic_lb[i], L.symbolic_lower_bias[i]),
             form(L.symbolic_ub[i], L.symbolic_upper_bias[i])) for i in range(L.size)]


@torch.no_grad()
def symbolic_layer(topology: Topology, L: Layer, n_in: int) -> None:
    if L.kind == LayerType.INPUT:
        _symbolic_input(L)
    elif L.kind == LayerType.WEIGHTED_SUM:
        _symbolic_weighted_sum(topology, L, n_in)
    elif L.kind == LayerType.MAX:
        _symbolic_max(topology, L, n_in)
    else:
        _symbolic_activation(topology, L, n_in)
    _pin_fixed(L)


@torch.no_grad()
def symbolic_propagation(topology: Topology, tolerance: float = 0.0,
                         with_explanations: bool = False) -> Iterator[List[NeuronBound]]:
    inputs = topology.input_layer()
    n_in = inputs.size
    for L in topology:
        symbolic_layer(topology, L, n_in)
        if L.kind == LayerType.INPUT:
            continue
        lo_lb, _ = concretize(L.symbolic_lb, L.symbolic_lower_bias, inputs.lb, inputs.ub)
        _, hi_ub = concretize(L.symbolic_ub, L.symbolic_upper_bias, inputs.lb, inputs.ub)
        explanations = _explanations(L, inputs) if with_explanations else None
        yield collect_tighter(L, lo_lb, hi_ub, tolerance, explanations)
