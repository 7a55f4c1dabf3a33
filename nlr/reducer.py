#===- nlr/reducer.py - Network Reducer ----------------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Fixes the phase of the ReLU neurons whose pre-activation bounds sit
#   closest to zero, for a requested fraction of them. A selected neuron is
#   only fixed when its bounds certify the phase:
#     ub <= 0  -> stable-false, output eliminated to 0
#     lb >= 0  -> stable-true, ReLU replaced by b - f = 0
#   Straddling neurons are reported as skipped.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from nlr.core import LayerType, NeuronIndex, PhaseStatus
from nlr.errors import ConfigError
from nlr.query import Equation, EquationType, Query
from nlr.reasoner import NetworkLevelReasoner
from nlr.util.config import ReasonerConfig

logger = logging.getLogger(__name__)


@dataclass
class ReductionReport:
    threshold: float = -math.inf
    selected: List[NeuronIndex] = field(default_factory=list)
    stable_inactive: List[NeuronIndex] = field(default_factory=list)
    stable_active: List[NeuronIndex] = field(default_factory=list)
    skipped: List[NeuronIndex] = field(default_factory=list)

    @property
    def fixed(self) -> int:
        return len(self.stable_inactive) + len(self.stable_active)


class NetworkReducer:
    """Bucket-threshold phase fixing on top of a populated reasoner."""

    def __init__(self, reasoner: NetworkLevelReasoner, config: Optional[ReasonerConfig] = None):
        self.reasoner = reasoner
        self.config = config or reasoner.config
        self.last_report: Optional[ReductionReport] = None

    # ------------------------------------------------------------------
    # Scoring & selection
    # ------------------------------------------------------------------
    @staticmethod
    def _source_bounds(reasoner: NetworkLevelReasoner, index: NeuronIndex):
        L = reasoner.get_layer(index.layer)
        src = L.activation_sources[index.neuron][0]
        S = reasoner.get_layer(src.layer)
        return S.get_lb(src.neuron), S.get_ub(src.neuron)

    def compute_stability_scores(self, reasoner: Optional[NetworkLevelReasoner] = None) -> Dict[NeuronIndex, float]:
        """min(|lb|, |ub|) of the pre-activation of every unfixed ReLU neuron."""
        reasoner = reasoner or self.reasoner
        scores: Dict[NeuronIndex, float] = {}
        for L in reasoner.topology:
            if L.kind != LayerType.RELU:
                continue
            for i in range(L.size):
                if i in L.eliminated or i in L.phase:
                    continue
                index = NeuronIndex(L.id, i)
                lb, ub = self._source_bounds(reasoner, index)
                scores[index] = min(abs(lb), abs(ub))
        return scores

    def _bucket_key(self, score: float) -> float:
        tol = self.config.bucket_tolerance
        if tol > 0 and math.isfinite(score):
            return round(score / tol) * tol
        return score

    def build_buckets(self, scores: Dict[NeuronIndex, float]) -> Dict[float, List[NeuronIndex]]:
        buckets: Dict[float, List[NeuronIndex]] = defaultdict(list)
        for index, score in scores.items():
            buckets[self._bucket_key(score)].append(index)
        return {key: sorted(members) for key, members in buckets.items()}

    @staticmethod
    def _count(rate: float, total: int) -> int:
        if not 0.0 <= rate <= 1.0:
            raise ConfigError("reduction_rate", f"Must be within [0, 1], got {rate}")
        return int(math.floor(rate * total + 1e-9))

    def determine_bucket_tolerance(self, rate: float, buckets: Dict[float, List[NeuronIndex]], total: int) -> float:
        """Score threshold: the bucket holding the last selected neuron (-inf when none)."""
        count = self._count(rate, total)
        threshold, seen = -math.inf, 0
        for key in sorted(buckets):
            if seen >= count:
                break
            seen += len(buckets[key])
            threshold = key
        return threshold

    def select_neurons(self, scores: Dict[NeuronIndex, float], rate: float) -> List[NeuronIndex]:
        """The floor(rate * N) neurons in ascending (bucket score, NeuronIndex) order."""
        count = self._count(rate, len(scores))
        buckets = self.build_buckets(scores)
        ordered = [index for key in sorted(buckets) for index in buckets[key]]
        return ordered[:count]

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def _prepare(self, reasoner: NetworkLevelReasoner, query: Query) -> None:
        reasoner.obtain_current_bounds(query)
        reasoner.symbolic_bound_propagation()
        reasoner.interval_arithmetic_bound_propagation()

    def analyze(self, reasoner: NetworkLevelReasoner, rate: float) -> ReductionReport:
        scores = self.compute_stability_scores(reasoner)
        selected = self.select_neurons(scores, rate)
        report = ReductionReport(
            threshold=self.determine_bucket_tolerance(rate, self.build_buckets(scores), len(scores)),
            selected=selected)
        for index in selected:
            lb, ub = self._source_bounds(reasoner, index)
            if ub <= 0:
                report.stable_inactive.append(index)
            elif lb >= 0:
                report.stable_active.append(index)
            else:
                report.skipped.append(index)
        logger.info(f"Reduction at rate {rate}: {len(selected)}/{len(scores)} selected, "
                    f"{len(report.stable_inactive)} inactive, {len(report.stable_active)} active, "
                    f"{len(report.skipped)} skipped (threshold {report.threshold:.6g})")
        return report

    @staticmethod
    def _apply_fixes(reasoner: NetworkLevelReasoner, report: ReductionReport) -> None:
        for index in report.stable_inactive:
            reasoner.fix_neuron_phase(index, PhaseStatus.INACTIVE)
        for index in report.stable_active:
            reasoner.fix_neuron_phase(index, PhaseStatus.ACTIVE)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def reduce(self, query: Query, rate: Optional[float] = None) -> Query:
        """Return a reduced copy of ``query``; the reasoner and ``query`` are untouched."""
        rate = self.config.reduction_rate if rate is None else rate
        scratch = self.reasoner.clone()
        scratch.clear_constraint_tightenings()
        self._prepare(scratch, query)
        report = self.analyze(scratch, rate)
        self._apply_fixes(scratch, report)

        reduced = Query()
        scratch.generate_query(reduced)
        for L in scratch.topology.by_id.values():
            for var in L.variables().values():
                reduced.tighten_lower_bound(var, query.get_lower_bound(var))
                reduced.tighten_upper_bound(var, query.get_upper_bound(var))
        self.last_report = report
        return reduced

    def reduce_in_place(self, query: Query, rate: Optional[float] = None) -> ReductionReport:
        """Fix phases in the owning reasoner and rewrite ``query`` to match."""
        rate = self.config.reduction_rate if rate is None else rate
        reasoner = self.reasoner
        self._prepare(reasoner, query)
        report = self.analyze(reasoner, rate)
        self._apply_fixes(reasoner, report)

        for index in report.stable_inactive + report.stable_active:
            L = reasoner.get_layer(index.layer)
            if not L.neuron_has_variable(index.neuron):
                continue
            f = L.neuron_to_variable(index.neuron)
            src = L.activation_sources[index.neuron][0]
            S = reasoner.get_layer(src.layer)
            b = S.neuron_to_variable(src.neuron) if S.neuron_has_variable(src.neuron) else None
            relu = query.find_relu(b=b, f=f)
            if relu is not None:
                query.remove_piecewise_linear_constraint(relu)
                reasoner.remove_constraint_from_topological_order(relu)
            if index in report.stable_inactive:
                query.substitute_variable(f, 0.0)
            elif b is not None:
                query.add_equation(Equation([(1.0, b), (-1.0, f)], 0.0, EquationType.EQ))
                query.tighten_lower_bound(f, 0.0)
        self.last_report = report
        return report
