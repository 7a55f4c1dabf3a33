#===- nlr/propagation/activations.py - Activation Dispatch Tables -------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Per-activation pure functions, keyed by LayerType:
#     EVALUATE    concrete value of the activation
#     INTERVAL    pointwise image of a source interval
#     RELAXATION  sound linear lower/upper lines over a source interval
#   Source bounds arrive as (n, k) tensors, k = number of sources per neuron;
#   MAX rows are padded with -inf.
#
#===---------------------------------------------------------------------===#

import torch
from typing import Callable, Dict, Tuple

from nlr.core import LayerType
from nlr.errors import UnsupportedActivationError

Tensor = torch.Tensor
Relaxation = Tuple[Tensor, Tensor, Tensor, Tensor]   # lower slope, lower shift, upper slope, upper shift


def _sigmoid(x: Tensor) -> Tensor:
    return torch.sigmoid(x)

def _sigmoid_prime(x: Tensor) -> Tensor:
    s = torch.sigmoid(x); return s * (1 - s)

def _sign(x: Tensor) -> Tensor:
    return torch.where(x >= 0, torch.ones_like(x), -torch.ones_like(x))


# -------- Concrete evaluation --------
def eval_relu(x: Tensor) -> Tensor:    return torch.clamp(x[..., 0], min=0.0)
def eval_sigmoid(x: Tensor) -> Tensor: return _sigmoid(x[..., 0])
def eval_sign(x: Tensor) -> Tensor:    return _sign(x[..., 0])
def eval_abs(x: Tensor) -> Tensor:     return torch.abs(x[..., 0])
def eval_max(x: Tensor) -> Tensor:     return torch.max(x, dim=-1).values


# -------- Interval images --------
def interval_relu(l: Tensor, u: Tensor) -> Tuple[Tensor, Tensor]:
    l, u = l[:, 0], u[:, 0]
    return torch.clamp(l, min=0.0), torch.clamp(u, min=0.0)

def interval_sigmoid(l: Tensor, u: Tensor) -> Tuple[Tensor, Tensor]:
    return _sigmoid(l[:, 0]), _sigmoid(u[:, 0])

def interval_sign(l: Tensor, u: Tensor) -> Tuple[Tensor, Tensor]:
    l, u = l[:, 0], u[:, 0]
    one = torch.ones_like(l)
    lb = torch.where(l >= 0, one, -one)
    ub = torch.where(u < 0, -one, one)
    return lb, ub

def interval_abs(l: Tensor, u: Tensor) -> Tuple[Tensor, Tensor]:
    l, u = l[:, 0], u[:, 0]
    al, au = torch.abs(l), torch.abs(u)
    straddle = (l < 0) & (u > 0)
    lb = torch.where(straddle, torch.zeros_like(l), torch.minimum(al, au))
    return lb, torch.maximum(al, au)

def interval_max(l: Tensor, u: Tensor) -> Tuple[Tensor, Tensor]:
    return torch.max(l, dim=1).values, torch.max(u, dim=1).values


# -------- Linear relaxations --------
def relax_relu(l: Tensor, u: Tensor) -> Relaxation:
    l, u = l[:, 0], u[:, 0]
    zero, one = torch.zeros_like(l), torch.ones_like(l)
    on, off = l >= 0, u <= 0
    amb = ~(on | off)
    finite = torch.isfinite(l) & torch.isfinite(u)
    width = torch.clamp(u - l, min=1e-12)
    chord = torch.where(amb & finite, u / width, zero)
    chord_shift = torch.where(amb & finite, -l * u / width, u)

    lo_s = torch.where(on, one, zero); lo_t = zero.clone()
    up_s = torch.where(on, one, torch.where(off, zero, chord))
    up_t = torch.where(on | off, zero, chord_shift)
    return lo_s, lo_t, up_s, up_t

def relax_abs(l: Tensor, u: Tensor) -> Relaxation:
    l, u = l[:, 0], u[:, 0]
    zero, one = torch.zeros_like(l), torch.ones_like(l)
    pos, neg = l >= 0, u <= 0
    amb = ~(pos | neg)
    finite = torch.isfinite(l) & torch.isfinite(u)
    width = torch.clamp(u - l, min=1e-12)
    s = torch.where(amb & finite, (u + l) / width, zero)
    t = torch.where(amb & finite, -l - s * l, torch.maximum(torch.abs(l), torch.abs(u)))

    lo_s = torch.where(pos, one, torch.where(neg, -one, zero)); lo_t = zero.clone()
    up_s = torch.where(pos, one, torch.where(neg, -one, s))
    up_t = torch.where(pos | neg, zero, t)
    return lo_s, lo_t, up_s, up_t

def relax_sign(l: Tensor, u: Tensor) -> Relaxation:
    l, u = l[:, 0], u[:, 0]
    zero, one = torch.zeros_like(l), torch.ones_like(l)
    pos, neg = l >= 0, u < 0
    amb = ~(pos | neg)
    # Through (0,-1)..(u,1) below, through (l,-1)..(0,1) above
    lo_s = torch.where(amb & (u > 0) & torch.isfinite(u), 2.0 / torch.where(u > 0, u, one), zero)
    up_s = torch.where(amb & torch.isfinite(l), -2.0 / torch.where(l < 0, l, -one), zero)
    lo_t = torch.where(pos, one, -one)
    up_t = torch.where(neg, -one, one)
    return lo_s, lo_t, up_s, up_t

def relax_sigmoid(l: Tensor, u: Tensor) -> Relaxation:
    l, u = l[:, 0], u[:, 0]
    zero = torch.zeros_like(l)
    sl, su = _sigmoid(l), _sigmoid(u)
    finite = torch.isfinite(l) & torch.isfinite(u)
    degenerate = (u - l).abs() < 1e-12
    safe_l = torch.where(finite, l, zero); safe_u = torch.where(finite, u, zero)
    chord = (su - sl) / torch.clamp(safe_u - safe_l, min=1e-12)
    tangent = torch.minimum(_sigmoid_prime(safe_l), _sigmoid_prime(safe_u))

    lo_s = torch.where(l > 0, chord, tangent)
    up_s = torch.where(u <= 0, chord, tangent)
    lo_t = sl - lo_s * safe_l
    up_t = su - up_s * safe_u

    box = ~finite | degenerate
    lo_s = torch.where(box, zero, lo_s); lo_t = torch.where(box, sl, lo_t)
    up_s = torch.where(box, zero, up_s); up_t = torch.where(box, su, up_t)
    return lo_s, lo_t, up_s, up_t


EVALUATE: Dict[LayerType, Callable[[Tensor], Tensor]] = {
    LayerType.RELU: eval_relu,
    LayerType.SIGMOID: eval_sigmoid,
    LayerType.SIGN: eval_sign,
    LayerType.ABSOLUTE_VALUE: eval_abs,
    LayerType.MAX: eval_max,
}

INTERVAL: Dict[LayerType, Callable[[Tensor, Tensor], Tuple[Tensor, Tensor]]] = {
    LayerType.RELU: interval_relu,
    LayerType.SIGMOID: interval_sigmoid,
    LayerType.SIGN: interval_sign,
    LayerType.ABSOLUTE_VALUE: interval_abs,
    LayerType.MAX: interval_max,
}

# MAX has no single-line relaxation; symbolic and LP passes treat it directly.
RELAXATION: Dict[LayerType, Callable[[Tensor, Tensor], Relaxation]] = {
    LayerType.RELU: relax_relu,
    LayerType.SIGMOID: relax_sigmoid,
    LayerType.SIGN: relax_sign,
    LayerType.ABSOLUTE_VALUE: relax_abs,
}


def lookup(table: Dict[LayerType, Callable], kind: LayerType, what: str) -> Callable:
    try:
        return table[kind]
    except KeyError:
        raise UnsupportedActivationError(f"No {what} for layer type {kind.value}") from None
