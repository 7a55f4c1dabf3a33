#===- nlr/util/stats.py - Propagation Statistics ------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass
class PassStats:
    calls: int = 0
    tightenings: int = 0
    seconds: float = 0.0


class PropagationStats:
    """Per-pass counters and oracle outcomes for one reasoner."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.passes: Dict[str, PassStats] = defaultdict(PassStats)
        self.oracle_calls: Dict[str, int] = defaultdict(int)

    @contextmanager
    def timed(self, name: str):
        entry = self.passes[name]
        entry.calls += 1
        start = time.perf_counter()
        try:
            yield entry
        finally:
            entry.seconds += time.perf_counter() - start

    def record_tightenings(self, name: str, count: int) -> None:
        self.passes[name].tightenings += count

    def record_oracle(self, status: str) -> None:
        self.oracle_calls[status] += 1

    def summary(self) -> Dict[str, Any]:
        return {
            "passes": {name: {"calls": s.calls, "tightenings": s.tightenings, "seconds": s.seconds}
                       for name, s in self.passes.items()},
            "oracle_calls": dict(self.oracle_calls),
        }

    def log(self, level: int = logging.INFO) -> None:
        for name, s in self.passes.items():
            logger.log(level, f"{name:>9s}: {s.calls} calls, {s.tightenings} tightenings, {s.seconds:.3f}s")
        if self.oracle_calls:
            logger.log(level, f"oracle: {dict(self.oracle_calls)}")
