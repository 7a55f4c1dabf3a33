#===- nlr/reasoner.py - Network-Level Reasoner --------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Orchestrator owning the layer topology. Binds neurons to solver
#   variables, pulls bounds from an external store, runs the propagation
#   passes (once or to a fixpoint), keeps the tightening log, and offers
#   the structural operations: variable elimination, merging of consecutive
#   weighted-sum layers, phase fixing and flat query generation.
#
# Flow:
#   builder -> add_layer / add_layer_dependency / set_weight / ...
#           -> obtain_current_bounds -> passes -> receive_tighter_bound
#           -> get_constraint_tightenings / clear_constraint_tightenings
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import copy
import logging
import math
import torch
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set

from nlr.bound_store import BoundExplainer, BoundStore
from nlr.core import (BoundType, LayerType, LinearExpression, NeuronBound, NeuronIndex,
                      PhaseStatus, Tightening)
from nlr.errors import (InfeasibleBoundsError, NLRError, OracleUnavailableError, TopologyError)
from nlr.layer import DTYPE, Layer
from nlr.query import (AbsoluteValueConstraint, Equation, EquationType, MaxConstraint, Query,
                       ReluConstraint, SigmoidConstraint, SignConstraint)
from nlr.topology import Topology
from nlr.propagation.activations import EVALUATE, lookup
from nlr.propagation.interval import interval_arithmetic
from nlr.propagation.relaxation import SolverFactory, relaxation_propagation
from nlr.propagation.symbolic import symbolic_propagation
from nlr.solver import make_solver
from nlr.util.config import ReasonerConfig
from nlr.util.stats import PropagationStats

logger = logging.getLogger(__name__)


class NetworkLevelReasoner:
    """Bound propagation and structural simplification over a layered network."""

    SUPPORTED_ACTIVATIONS = (LayerType.RELU, LayerType.SIGMOID, LayerType.SIGN,
                             LayerType.ABSOLUTE_VALUE, LayerType.MAX)

    def __init__(self, config: Optional[ReasonerConfig] = None):
        self.config = config or ReasonerConfig()
        self.topology = Topology()
        self.stats = PropagationStats()
        self._bound_store: Optional[BoundStore] = None
        self._explainer: Optional[BoundExplainer] = None
        self._solver_factory: Optional[SolverFactory] = None
        self._tightenings: List[Tightening] = []
        self._constraints_in_topological_order: list = []

    # ==================================================================
    # Construction API
    # ==================================================================
    def add_layer(self, layer_id: int, kind: LayerType, size: int) -> Layer:
        return self.topology.add_layer(layer_id, kind, size)

    def add_layer_dependency(self, source: int, target: int) -> None:
        self.topology.add_layer_dependency(source, target)

    def compute_successor_layers(self) -> None:
        self.topology.compute_successor_layers()

    def set_weight(self, source_layer: int, source_neuron: int,
                   target_layer: int, target_neuron: int, weight: float) -> None:
        self.topology.layer(target_layer).set_weight(source_layer, source_neuron, target_neuron, weight)

    def set_bias(self, layer: int, neuron: int, bias: float) -> None:
        self.topology.layer(layer).set_bias(neuron, bias)

    def add_activation_source(self, source_layer: int, source_neuron: int,
                              target_layer: int, target_neuron: int) -> None:
        self.topology.neuron_layer(NeuronIndex(source_layer, source_neuron))
        self.topology.layer(target_layer).add_activation_source(
            NeuronIndex(source_layer, source_neuron), target_neuron)

    def set_neuron_variable(self, index: NeuronIndex, variable: int) -> None:
        self.topology.neuron_layer(index).set_neuron_variable(index.neuron, variable)

    # ==================================================================
    # Accessors
    # ==================================================================
    def get_layer(self, layer_id: int) -> Layer:
        return self.topology.layer(layer_id)

    def get_number_of_layers(self) -> int:
        return len(self.topology)

    def get_layer_index_to_layer(self) -> Dict[int, Layer]:
        return dict(self.topology.by_id)

    def get_max_layer_size(self) -> int:
        return self.topology.max_layer_size()

    @classmethod
    def function_type_supported(cls, kind) -> bool:
        try:
            return LayerType(kind) in cls.SUPPORTED_ACTIVATIONS
        except ValueError:
            return False

    def set_bound_store(self, store: Optional[BoundStore]) -> None:
        self._bound_store = store

    def set_explainer(self, explainer: Optional[BoundExplainer]) -> None:
        self._explainer = explainer

    def set_solver_factory(self, factory: Optional[SolverFactory]) -> None:
        """Override the oracle backend chosen by ``config.lp_solver``."""
        self._solver_factory = factory

    # ==================================================================
    # Bounds
    # ==================================================================
    def obtain_current_bounds(self, query: Optional[BoundStore] = None) -> None:
        """Overwrite every non-eliminated neuron's bounds from the store (or ``query``).

        Neurons without a variable become unbounded.
        """
        store = query if query is not None else self._bound_store
        if store is None:
            raise NLRError("No bound store set; call set_bound_store() or pass a query")
        for L in self.topology.by_id.values():
            for i in range(L.size):
                if i in L.eliminated:
                    continue
                if not L.neuron_has_variable(i):
                    L.set_lb(i, -math.inf); L.set_ub(i, math.inf)
                    continue
                var = L.neuron_to_variable(i)
                lb, ub = store.get_lower_bound(var), store.get_upper_bound(var)
                if lb > ub + self.config.tolerance:
                    logger.warning(f"Bound store holds lb {lb} > ub {ub} for x{var}")
                    raise InfeasibleBoundsError(f"Inconsistent bounds for x{var}", var, lb, ub)
                L.set_lb(i, lb); L.set_ub(i, ub)

    def receive_tighter_bound(self, bound: NeuronBound) -> bool:
        """Apply one discovered bound; returns whether it tightened anything."""
        L = self.topology.neuron_layer(bound.index)
        i = bound.index.neuron
        if i in L.eliminated:
            return False
        tol = self.config.tolerance
        value = float(bound.value)
        var = L.neuron_to_variable(i) if L.neuron_has_variable(i) else None

        if bound.type == BoundType.LOWER:
            if value <= L.get_lb(i) + tol:
                return False
            if value > L.get_ub(i) + tol:
                logger.warning(f"{bound.index}: derived lb {value} exceeds ub {L.get_ub(i)}")
                raise InfeasibleBoundsError(f"Lower bound {value} > upper bound {L.get_ub(i)} at {bound.index}",
                                            var, value, L.get_ub(i))
            value = min(value, L.get_ub(i))
            L.set_lb(i, value)
        else:
            if value >= L.get_ub(i) - tol:
                return False
            if value < L.get_lb(i) - tol:
                logger.warning(f"{bound.index}: derived ub {value} below lb {L.get_lb(i)}")
                raise InfeasibleBoundsError(f"Upper bound {value} < lower bound {L.get_lb(i)} at {bound.index}",
                                            var, L.get_lb(i), value)
            value = max(value, L.get_lb(i))
            L.set_ub(i, value)

        logger.debug(f"{bound.index} {bound.type.value} -> {value:.6g}")
        if var is not None:
            self._tightenings.append(Tightening(var, value, bound.type))
            if self.config.produce_proofs and self._explainer is not None:
                if bound.type == BoundType.LOWER:
                    self._explainer.update_lb_explanation_for_variable(var, bound.explanation)
                else:
                    self._explainer.update_ub_explanation_for_variable(var, bound.explanation)
        return True

    def get_constraint_tightenings(self) -> List[Tightening]:
        return list(self._tightenings)

    def clear_constraint_tightenings(self) -> None:
        self._tightenings.clear()

    # ==================================================================
    # Propagation passes
    # ==================================================================
    def _run_pass(self, name: str, events: Iterator[List[NeuronBound]]) -> int:
        """Drain a pass; each per-layer batch is applied before the pass resumes."""
        with self.stats.timed(name):
            count = 0
            for bounds in events:
                for bound in bounds:
                    count += self.receive_tighter_bound(bound)
        self.stats.record_tightenings(name, count)
        logger.info(f"{name} propagation: {count} tightenings")
        return count

    def _make_solver_factory(self) -> SolverFactory:
        if self._solver_factory is not None:
            return self._solver_factory
        name = self.config.lp_solver
        return lambda: make_solver(name)

    def interval_arithmetic_bound_propagation(self) -> int:
        self.topology.validate()
        return self._run_pass("interval", interval_arithmetic(self.topology, self.config.tolerance))

    def symbolic_bound_propagation(self) -> int:
        self.topology.validate()
        explain = self.config.produce_proofs and self._explainer is not None
        return self._run_pass("symbolic", symbolic_propagation(self.topology, self.config.tolerance, explain))

    def lp_relaxation_propagation(self, layers: Optional[List[int]] = None) -> int:
        self.topology.validate()
        events = relaxation_propagation(self.topology, self._make_solver_factory(), exact=False,
                                        layers=layers, timelimit=self.config.lp_timeout,
                                        tolerance=self.config.tolerance, on_status=self.stats.record_oracle)
        return self._run_pass("lp", events)

    def milp_tightening_propagation(self, layers: Optional[List[int]] = None) -> int:
        self.topology.validate()
        if layers is None:
            layers = list(self.config.milp_layers) or None
        events = relaxation_propagation(self.topology, self._make_solver_factory(), exact=True,
                                        layers=layers, timelimit=self.config.milp_timeout,
                                        tolerance=self.config.tolerance, on_status=self.stats.record_oracle)
        return self._run_pass("milp", events)

    def lp_tightening_for_one_layer(self, layer_id: int) -> int:
        self.topology.layer(layer_id)
        return self.lp_relaxation_propagation([layer_id])

    def milp_tightening_for_one_layer(self, layer_id: int) -> int:
        self.topology.layer(layer_id)
        return self.milp_tightening_propagation([layer_id])

    def iterative_propagation(self) -> int:
        """Repeat the configured passes, cheapest first, until a fixpoint or the iteration budget."""
        passes: Dict[str, Callable[[], int]] = {
            "interval": self.interval_arithmetic_bound_propagation,
            "symbolic": self.symbolic_bound_propagation,
            "lp": self.lp_relaxation_propagation,
            "milp": self.milp_tightening_propagation,
        }
        disabled: Set[str] = set()
        total = 0
        for iteration in range(self.config.max_iterations):
            changed = 0
            for name in self.config.ordered_passes():
                if name in disabled:
                    continue
                try:
                    changed += passes[name]()
                except OracleUnavailableError as e:
                    logger.warning(f"{name} pass disabled, oracle unavailable: {e}")
                    disabled.add(name)
            total += changed
            logger.debug(f"iteration {iteration}: {changed} tightenings")
            if changed == 0:
                break
        return total

    # ==================================================================
    # Copying & variables
    # ==================================================================
    def store_into_other(self, other: "NetworkLevelReasoner") -> None:
        """Deep-copy the topology and bookkeeping into ``other``."""
        other.config = copy.deepcopy(self.config)
        other.topology = self.topology.clone()
        other._bound_store = self._bound_store
        other._explainer = self._explainer
        other._solver_factory = self._solver_factory
        other._tightenings = list(self._tightenings)
        other._constraints_in_topological_order = list(self._constraints_in_topological_order)

    def clone(self) -> "NetworkLevelReasoner":
        other = NetworkLevelReasoner()
        self.store_into_other(other)
        return other

    def eliminate_variable(self, variable: int, value: float, query: Optional[Query] = None) -> None:
        """Fix ``variable`` to ``value``; the neuron drops out of further propagation."""
        index = self.topology.find_variable(variable)
        if index is None:
            logger.debug(f"x{variable} is not bound to any neuron")
        else:
            self.topology.by_id[index.layer].eliminate_neuron(index.neuron, value)
        if query is not None:
            query.substitute_variable(variable, value)

    def update_variable_indices(self, old_to_new: Dict[int, int], merged: Dict[int, int]) -> None:
        for L in self.topology.by_id.values():
            bindings = L.variables()
            L.clear_neuron_variables()
            for neuron, var in bindings.items():
                seen = set()
                while var in merged and var not in seen:
                    seen.add(var)
                    var = merged[var]
                if var in old_to_new:
                    L.set_neuron_variable(neuron, old_to_new[var])

    def reindex_neurons(self) -> int:
        """Bind every neuron to consecutive variables in topological order."""
        var = 0
        for L in self.topology:
            L.clear_neuron_variables()
            for i in range(L.size):
                L.set_neuron_variable(i, var)
                var += 1
        return var

    # ==================================================================
    # Constraints in topological order
    # ==================================================================
    def add_constraint_in_topological_order(self, constraint) -> None:
        self._constraints_in_topological_order.append(constraint)

    def remove_constraint_from_topological_order(self, constraint) -> None:
        self._constraints_in_topological_order = [
            c for c in self._constraints_in_topological_order if c is not constraint]

    def get_constraints_in_topological_order(self) -> list:
        return list(self._constraints_in_topological_order)

    # ==================================================================
    # Query generation
    # ==================================================================
    def _source_variable(self, index: NeuronIndex) -> int:
        L = self.topology.by_id[index.layer]
        if not L.neuron_has_variable(index.neuron):
            raise TopologyError(f"{index} has no variable; cannot encode it")
        return L.neuron_to_variable(index.neuron)

    def _max_variable(self) -> int:
        return max((v for L in self.topology.by_id.values() for v in L.variables().values()), default=-1)

    def encode_affine_layers(self, query: Query) -> None:
        """One equation per weighted-sum neuron: sum w x - y (+ aux) = -bias."""
        query.set_number_of_variables(max(query.get_number_of_variables(), self._max_variable() + 1))
        for L in self.topology:
            if L.kind != LayerType.WEIGHTED_SUM:
                continue
            for i in range(L.size):
                if i in L.eliminated or not L.neuron_has_variable(i):
                    continue
                eq = Equation(type=EquationType.EQ)
                scalar = -L.get_bias(i)
                for pid in L.predecessors:
                    P = self.topology.by_id[pid]
                    for j, w in enumerate(L.weights[pid][i].tolist()):
                        if w == 0.0:
                            continue
                        if j in P.eliminated:
                            scalar -= w * P.eliminated[j]
                        else:
                            eq.add_addend(w, self._source_variable(NeuronIndex(pid, j)))
                eq.add_addend(-1.0, L.neuron_to_variable(i))
                if self.config.auxiliary_variables:
                    aux = query.new_variable()
                    query.set_lower_bound(aux, 0.0); query.set_upper_bound(aux, 0.0)
                    eq.add_addend(1.0, aux)
                    eq.mark_auxiliary_variable(aux)
                eq.set_scalar(scalar)
                query.add_equation(eq)

    def _encode_activation(self, query: Query, L: Layer, i: int) -> None:
        f = L.neuron_to_variable(i)
        if L.kind == LayerType.MAX:
            elements = [self._source_variable(s) for s in L.activation_sources[i]]
            constraint = MaxConstraint(f, elements)
            query.add_piecewise_linear_constraint(constraint)
            self.add_constraint_in_topological_order(constraint)
            return
        b = self._source_variable(L.activation_sources[i][0])
        if L.kind == LayerType.RELU and L.phase.get(i) == PhaseStatus.ACTIVE:
            query.add_equation(Equation([(1.0, b), (-1.0, f)], 0.0, EquationType.EQ))
            query.tighten_lower_bound(f, 0.0)
            return
        if L.kind == LayerType.SIGMOID:
            query.add_nonlinear_constraint(SigmoidConstraint(b, f))
            return
        constraint = {LayerType.RELU: ReluConstraint,
                      LayerType.ABSOLUTE_VALUE: AbsoluteValueConstraint,
                      LayerType.SIGN: SignConstraint}[L.kind](b, f)
        query.add_piecewise_linear_constraint(constraint)
        self.add_constraint_in_topological_order(constraint)

    def generate_query(self, query: Query) -> None:
        """Flatten the topology: bounds, affine equations and activation constraints."""
        self.topology.validate()
        self._constraints_in_topological_order = []
        query.set_number_of_variables(max(query.get_number_of_variables(), self._max_variable() + 1))
        for L in self.topology.by_id.values():
            for i, var in L.variables().items():
                if math.isfinite(L.get_lb(i)):
                    query.set_lower_bound(var, L.get_lb(i))
                if math.isfinite(L.get_ub(i)):
                    query.set_upper_bound(var, L.get_ub(i))
        self.encode_affine_layers(query)
        for L in self.topology:
            if not L.kind.is_activation:
                continue
            for i in range(L.size):
                if i in L.eliminated or not L.neuron_has_variable(i):
                    continue
                self._encode_activation(query, L, i)
        logger.info(f"Generated {query}")

    # ==================================================================
    # Structural simplification
    # ==================================================================
    def fix_neuron_phase(self, index: NeuronIndex, phase: PhaseStatus) -> None:
        L = self.topology.neuron_layer(index)
        L.fix_phase(index.neuron, phase)
        if phase == PhaseStatus.INACTIVE:
            L.eliminate_neuron(index.neuron, 0.0)
        elif L.get_lb(index.neuron) < 0:
            L.set_lb(index.neuron, 0.0)

    def _mergeable(self, first: Layer, second: Layer, lower_bounds: Dict[int, float],
                   upper_bounds: Dict[int, float], unhandled: Set[int]) -> bool:
        if first.kind != LayerType.WEIGHTED_SUM or second.kind != LayerType.WEIGHTED_SUM:
            return False
        if second.predecessors != [first.id] or first.successors != [second.id]:
            return False
        for var in first.variables().values():
            if var in unhandled:
                return False
            if math.isfinite(lower_bounds.get(var, -math.inf)) or math.isfinite(upper_bounds.get(var, math.inf)):
                return False
        return True

    def _merge(self, first: Layer, second: Layer, eliminated_neurons: Dict[int, LinearExpression]) -> None:
        # Eliminated neurons of the first layer act as constants
        W1_rows = {pid: W.clone() for pid, W in first.weights.items()}
        b1 = first.bias.clone()
        for i, value in first.eliminated.items():
            for W in W1_rows.values():
                W[i] = 0.0
            b1[i] = value

        for i, var in first.variables().items():
            addends: Dict[int, float] = {}
            for pid, W in W1_rows.items():
                P = self.topology.by_id[pid]
                for j, w in enumerate(W[i].tolist()):
                    if w != 0.0 and P.neuron_has_variable(j):
                        v = P.neuron_to_variable(j)
                        addends[v] = addends.get(v, 0.0) + w
            eliminated_neurons[var] = LinearExpression(addends, float(b1[i]))

        W2 = second.weights[first.id]
        second.bias = W2 @ b1 + second.bias
        second.weights = {pid: W2 @ W for pid, W in W1_rows.items()}
        second.predecessors = list(first.predecessors)
        for pid in first.predecessors:
            P = self.topology.by_id[pid]
            P.successors = [s for s in P.successors if s != first.id]
            if second.id not in P.successors:
                P.successors.append(second.id)
        del self.topology.by_id[first.id]
        self.topology.reduce_layer_index(first.id)

    def merge_consecutive_ws_layers(self, lower_bounds: Optional[Dict[int, float]] = None,
                                    upper_bounds: Optional[Dict[int, float]] = None,
                                    vars_in_unhandled_constraints: Optional[Iterable[int]] = None,
                                    eliminated_neurons: Optional[Dict[int, LinearExpression]] = None) -> int:
        """Compose chains of weighted-sum layers into one; returns the number of merges.

        Every variable of a removed layer is written to ``eliminated_neurons``
        as an affine expression over the variables of that layer's sources.
        """
        lower_bounds = lower_bounds or {}
        upper_bounds = upper_bounds or {}
        unhandled = set(vars_in_unhandled_constraints or ())
        if eliminated_neurons is None:
            eliminated_neurons = {}
        merged = 0
        progress = True
        while progress:
            progress = False
            for lid in self.topology.topological_order():
                second = self.topology.by_id[lid]
                if len(second.predecessors) != 1:
                    continue
                first = self.topology.by_id[second.predecessors[0]]
                if self._mergeable(first, second, lower_bounds, upper_bounds, unhandled):
                    logger.info(f"Merging weighted-sum layers {first.id} -> {second.id}")
                    self._merge(first, second, eliminated_neurons)
                    merged += 1
                    progress = True
                    break
        return merged

    # ==================================================================
    # Evaluation
    # ==================================================================
    @torch.no_grad()
    def _forward(self, X: torch.Tensor) -> Dict[int, torch.Tensor]:
        inputs = self.topology.input_layer()
        X = torch.as_tensor(X, dtype=DTYPE)
        if X.dim() != 2 or X.shape[1] != inputs.size:
            raise ValueError(f"Expected inputs of shape (batch, {inputs.size}), got {tuple(X.shape)}")
        values: Dict[int, torch.Tensor] = {}
        for L in self.topology:
            if L.kind == LayerType.INPUT:
                out = X.clone()
            elif L.kind == LayerType.WEIGHTED_SUM:
                out = L.bias.unsqueeze(0).expand(X.shape[0], -1).clone()
                for pid in L.predecessors:
                    out = out + values[pid] @ L.weights[pid].T
            else:
                k = max((len(s) for s in L.activation_sources), default=1) or 1
                src = torch.full((X.shape[0], L.size, k), -math.inf, dtype=DTYPE)
                for i, sources in enumerate(L.activation_sources):
                    for j, s in enumerate(sources):
                        src[:, i, j] = values[s.layer][:, s.neuron]
                out = lookup(EVALUATE, L.kind, "evaluation")(src)
                for i, phase in L.phase.items():
                    if phase == PhaseStatus.ACTIVE:
                        out[:, i] = src[:, i, 0]
            for i, value in L.eliminated.items():
                out[:, i] = value
            values[L.id] = out
        return values

    def evaluate(self, inputs) -> torch.Tensor:
        """Concrete forward pass of one input vector; returns the sink layer's values."""
        x = torch.as_tensor(inputs, dtype=DTYPE).reshape(1, -1)
        return self._forward(x)[self.topology.output_layer().id][0]

    def simulate(self, batch) -> torch.Tensor:
        return self._forward(batch)[self.topology.output_layer().id]

    def concretize_input_assignment(self, assignment: Dict[int, float]) -> Dict[int, float]:
        """Fill ``assignment`` with the value of every bound neuron, given the input variables."""
        inputs = self.topology.input_layer()
        x = torch.tensor([[assignment[inputs.neuron_to_variable(i)] for i in range(inputs.size)]], dtype=DTYPE)
        values = self._forward(x)
        for L in self.topology.by_id.values():
            for i, var in L.variables().items():
                assignment[var] = float(values[L.id][0, i])
        return assignment

    # ==================================================================
    # Debugging
    # ==================================================================
    def dump_topology(self, details: bool = True) -> None:
        logger.info(f"Topology: {len(self.topology)} layers")
        for L in self.topology:
            for line in L.describe(details):
                logger.info(line)

    def dump_bounds(self) -> None:
        for L in self.topology:
            for i in range(L.size):
                logger.info(f"  {L.id}:{i} [{L.get_lb(i):.6g}, {L.get_ub(i):.6g}]")
