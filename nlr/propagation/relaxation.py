#===- nlr/propagation/relaxation.py - LP / MILP Bound Tightening --------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Encodes the network up to a target layer as an LP (activations replaced
#   by their linear relaxation) or a MILP (unstable piecewise-linear neurons
#   encoded exactly with binary phase indicators), then minimizes and
#   maximizes every target neuron against the current bound box.
#
#   Oracle outcomes: OPTIMAL tightens, INFEASIBLE proves the box empty and
#   is raised, anything else yields nothing for that objective.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import logging
import math
import torch
from typing import Callable, Dict, Iterator, List, Optional, Set

from nlr.core import BoundType, LayerType, NeuronBound, NeuronIndex, PhaseStatus
from nlr.errors import InfeasibleBoundsError, OracleUnavailableError, UnsupportedActivationError
from nlr.layer import Layer
from nlr.topology import Topology
from nlr.propagation.activations import RELAXATION
from nlr.solver.solver_base import Solver, SolveStatus

logger = logging.getLogger(__name__)

SolverFactory = Callable[[], Solver]


def _finite(*xs: float) -> bool:
    return all(math.isfinite(x) for x in xs)


class RelaxationEncoder:
    """Builds one solver model over the ancestors of a target layer."""

    def __init__(self, topology: Topology, solver: Solver, exact: bool = False):
        self.topology = topology
        self.solver = solver
        self.exact = exact
        self.columns: Dict[NeuronIndex, int] = {}

    # -------- Model construction --------
    def ancestors(self, target: int) -> Set[int]:
        seen, work = set(), [target]
        while work:
            lid = work.pop()
            if lid in seen:
                continue
            seen.add(lid)
            work.extend(self.topology.by_id[lid].predecessors)
        return seen

    def encode(self, target: int) -> None:
        keep = self.ancestors(target)
        order = [lid for lid in self.topology.topological_order() if lid in keep]
        self.solver.begin(f"tighten_layer_{target}")
        for lid in order:
            L = self.topology.by_id[lid]
            base = self.solver.n
            self.solver.add_vars(L.size)
            for i in range(L.size):
                self.columns[NeuronIndex(lid, i)] = base + i
            self.solver.set_bounds(list(range(base, base + L.size)),
                                   L.lb.numpy().copy(), L.ub.numpy().copy())
        for lid in order:
            L = self.topology.by_id[lid]
            if L.kind == LayerType.INPUT:
                continue
            if L.kind == LayerType.WEIGHTED_SUM:
                self._encode_weighted_sum(L)
            else:
                self._encode_activation(L)

    def _col(self, layer: int, neuron: int) -> int:
        return self.columns[NeuronIndex(layer, neuron)]

    def _encode_weighted_sum(self, L: Layer) -> None:
        # y - sum W x = bias
        for i in range(L.size):
            if i in L.eliminated:
                continue
            vids, coeffs = [self._col(L.id, i)], [1.0]
            for pid, W in L.weights.items():
                for j, w in enumerate(W[i].tolist()):
                    if w != 0.0:
                        vids.append(self._col(pid, j)); coeffs.append(-w)
            self.solver.add_lin_eq(vids, coeffs, L.get_bias(i))

    def _encode_activation(self, L: Layer) -> None:
        if L.kind == LayerType.MAX:
            for i in range(L.size):
                if i not in L.eliminated:
                    self._encode_max(L, i)
            return
        encode_exact = _EXACT.get(L.kind)
        if self.exact and encode_exact is None:
            raise UnsupportedActivationError(f"No exact MILP encoding for {L.kind.value} layer {L.id}")
        for i in range(L.size):
            if i in L.eliminated:
                continue
            src = L.activation_sources[i][0]
            S = self.topology.by_id[src.layer]
            x, y = self._col(src.layer, src.neuron), self._col(L.id, i)
            l, u = S.get_lb(src.neuron), S.get_ub(src.neuron)
            if L.phase.get(i) == PhaseStatus.ACTIVE:
                self.solver.add_lin_eq([y, x], [1.0, -1.0], 0.0)
            elif self.exact and _finite(l, u) and l < 0 < u:
                encode_exact(self.solver, x, y, l, u)
            else:
                self._encode_relaxed(L.kind, x, y, l, u)

    def _encode_relaxed(self, kind: LayerType, x: int, y: int, l: float, u: float) -> None:
        lt = torch.tensor([[l]], dtype=torch.float64); ut = torch.tensor([[u]], dtype=torch.float64)
        lo_s, lo_t, up_s, up_t = (float(v[0]) for v in RELAXATION[kind](lt, ut))
        # y >= lo_s x + lo_t ; y <= up_s x + up_t
        if math.isfinite(lo_t):
            self.solver.add_lin_ge([y, x], [1.0, -lo_s], lo_t)
        if math.isfinite(up_t):
            self.solver.add_lin_le([y, x], [1.0, -up_s], up_t)
        # Convex-hull facets the single relaxation line leaves out
        if kind == LayerType.RELU and l < 0 < u:
            self.solver.add_lin_ge([y, x], [1.0, -1.0], 0.0)
        elif kind == LayerType.ABSOLUTE_VALUE and l < 0 < u:
            self.solver.add_lin_ge([y, x], [1.0, -1.0], 0.0)
            self.solver.add_lin_ge([y, x], [1.0, 1.0], 0.0)

    def _encode_max(self, L: Layer, i: int) -> None:
        y = self._col(L.id, i)
        sources = L.activation_sources[i]
        xs = [self._col(s.layer, s.neuron) for s in sources]
        lbs = [self.topology.by_id[s.layer].get_lb(s.neuron) for s in sources]
        ubs = [self.topology.by_id[s.layer].get_ub(s.neuron) for s in sources]
        for x in xs:
            self.solver.add_lin_ge([y, x], [1.0, -1.0], 0.0)
        best = max(range(len(xs)), key=lambda j: lbs[j])
        others = [ubs[j] for j in range(len(xs)) if j != best]
        if not others or lbs[best] >= max(others):
            self.solver.add_lin_eq([y, xs[best]], [1.0, -1.0], 0.0)
        elif self.exact and _finite(*lbs, *ubs):
            # y <= x_j + (U - l_j)(1 - a_j), sum a_j = 1
            top = max(ubs)
            a = self.solver.add_binary_vars(len(xs))
            self.solver.add_lin_eq(a, [1.0] * len(a), 1.0)
            for x, aj, lj in zip(xs, a, lbs):
                M = top - lj
                self.solver.add_lin_le([y, x, aj], [1.0, -1.0, M], M)
        elif math.isfinite(max(ubs)):
            self.solver.add_lin_le([y], [1.0], max(ubs))

    # -------- Optimization --------
    def optimize_neuron(self, index: NeuronIndex, sense: str, timelimit: Optional[float]) -> Optional[float]:
        st, value = self.solver.bound_variable(self.columns[index], sense, timelimit)
        if st == SolveStatus.INFEASIBLE:
            raise InfeasibleBoundsError(f"LP relaxation around {index} is infeasible")
        if value is None:
            logger.debug(f"{sense} {index}: oracle returned {st}, no tightening")
        return value


# -------- Exact encodings of one crossing neuron, finite l < 0 < u --------
def _exact_relu(solver: Solver, x: int, y: int, l: float, u: float) -> None:
    (a,) = solver.add_binary_vars(1)
    solver.add_lin_ge([y], [1.0], 0.0)
    solver.add_lin_ge([y, x], [1.0, -1.0], 0.0)
    solver.add_lin_le([y, x, a], [1.0, -1.0, -l], -l)     # y <= x - l (1 - a)
    solver.add_lin_le([y, a], [1.0, -u], 0.0)             # y <= u a

def _exact_abs(solver: Solver, x: int, y: int, l: float, u: float) -> None:
    (a,) = solver.add_binary_vars(1)
    solver.add_lin_ge([y, x], [1.0, -1.0], 0.0)
    solver.add_lin_ge([y, x], [1.0, 1.0], 0.0)
    solver.add_lin_le([y, x, a], [1.0, -1.0, -2.0 * l], -2.0 * l)   # a = 0: y <= x - 2l
    solver.add_lin_le([y, x, a], [1.0, 1.0, -2.0 * u], 0.0)         # a = 1: y <= -x + 2u
    solver.add_lin_ge([x, a], [1.0, l], l)                          # a = 1: x >= 0
    solver.add_lin_le([x, a], [1.0, -u], 0.0)                       # a = 0: x <= 0

def _exact_sign(solver: Solver, x: int, y: int, l: float, u: float) -> None:
    (a,) = solver.add_binary_vars(1)
    solver.add_lin_eq([y, a], [1.0, -2.0], -1.0)                    # y = 2a - 1
    solver.add_lin_ge([x, a], [1.0, l], l)
    solver.add_lin_le([x, a], [1.0, -u], 0.0)

_EXACT = {
    LayerType.RELU: _exact_relu,
    LayerType.ABSOLUTE_VALUE: _exact_abs,
    LayerType.SIGN: _exact_sign,
}


def tighten_layer(topology: Topology, target: int, solver_factory: SolverFactory,
                  exact: bool = False, timelimit: Optional[float] = None,
                  tolerance: float = 0.0, on_status: Optional[Callable[[str], None]] = None) -> List[NeuronBound]:
    """Min/max every non-eliminated neuron of ``target`` over one relaxation model."""
    L = topology.layer(target)
    solver = solver_factory()
    if exact and not solver.capabilities().supports_integers:
        raise OracleUnavailableError(f"{type(solver).__name__} cannot solve MILP models")
    encoder = RelaxationEncoder(topology, solver, exact=exact)
    encoder.encode(target)
    out: List[NeuronBound] = []
    for i in range(L.size):
        if i in L.eliminated:
            continue
        index = NeuronIndex(target, i)
        lo = encoder.optimize_neuron(index, "min", timelimit)
        if on_status: on_status(encoder.solver.status())
        if lo is not None and lo > L.get_lb(i) + tolerance:
            out.append(NeuronBound(index, lo, BoundType.LOWER))
        hi = encoder.optimize_neuron(index, "max", timelimit)
        if on_status: on_status(encoder.solver.status())
        if hi is not None and hi < L.get_ub(i) - tolerance:
            out.append(NeuronBound(index, hi, BoundType.UPPER))
    return out


def relaxation_propagation(topology: Topology, solver_factory: SolverFactory, exact: bool = False,
                           layers: Optional[List[int]] = None, timelimit: Optional[float] = None,
                           tolerance: float = 0.0,
                           on_status: Optional[Callable[[str], None]] = None) -> Iterator[List[NeuronBound]]:
    """Tighten every non-input layer (or the given subset) in topological order."""
    wanted = set(layers) if layers is not None else None
    for lid in topology.topological_order():
        if topology.by_id[lid].kind == LayerType.INPUT:
            continue
        if wanted is not None and lid not in wanted:
            continue
        yield tighten_layer(topology, lid, solver_factory, exact, timelimit, tolerance, on_status)
