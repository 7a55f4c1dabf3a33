#===- nlr/solver/solver_base.py - LP/MILP Oracle Interface --------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Abstract LP/MILP oracle used by the relaxation-tightening passes. A
#   model is built once (variables with box bounds, linear rows, optional
#   binaries) and then optimized for one objective at a time.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import logging
import numpy as np
from scipy import sparse
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class SolveStatus:
    OPTIMAL = "OPTIMAL"
    FEASIBLE = "FEASIBLE"        # incumbent found, optimality not proven
    INFEASIBLE = "INFEASIBLE"
    UNKNOWN = "UNKNOWN"          # time limit, numerical trouble, unbounded


class SolverCaps:
    def __init__(self, supports_integers: bool = True, supports_timelimit: bool = True):
        self.supports_integers = supports_integers
        self.supports_timelimit = supports_timelimit


class Solver:
    """Oracle interface: columns are dense ints handed out by add_vars/add_binary_vars."""

    def capabilities(self) -> SolverCaps:
        return SolverCaps()

    # --- Model construction ---
    def begin(self, name: str = "tighten") -> None:  # pragma: no cover - abstract
        """Drop any previous model and start an empty one."""
        ...

    def add_vars(self, n: int) -> None:  # pragma: no cover - abstract
        """Append ``n`` free continuous columns."""
        ...

    def set_bounds(self, idxs: List[int], lb: np.ndarray, ub: np.ndarray) -> None:  # pragma: no cover - abstract
        ...

    def add_binary_vars(self, n: int) -> List[int]:  # pragma: no cover - abstract
        ...

    def add_lin_eq(self, vids: List[int], coeffs: List[float], rhs: float) -> None:  # pragma: no cover - abstract
        ...

    def add_lin_ge(self, vids: List[int], coeffs: List[float], rhs: float) -> None:  # pragma: no cover - abstract
        ...

    def add_lin_le(self, vids: List[int], coeffs: List[float], rhs: float) -> None:  # pragma: no cover - abstract
        ...

    # --- Objective & solve ---
    def set_objective_linear(self, vids: List[int], coeffs: List[float], const: float = 0.0, sense: str = "min") -> None:  # pragma: no cover - abstract
        ...

    def optimize(self, timelimit: Optional[float] = None) -> None:  # pragma: no cover - abstract
        ...

    def status(self) -> str:  # pragma: no cover - abstract
        ...

    def has_solution(self) -> bool:  # pragma: no cover - abstract
        ...

    def get_values(self, vids: List[int]) -> np.ndarray:  # pragma: no cover - abstract
        ...

    def objective_value(self) -> float:  # pragma: no cover - abstract
        """Proven objective bound of the last OPTIMAL solve."""
        ...

    @property
    def n(self) -> int:  # pragma: no cover - abstract
        ...

    # --- Shared driver ---
    def bound_variable(self, vid: int, sense: str, timelimit: Optional[float] = None) -> Tuple[str, Optional[float]]:
        """
        Minimize or maximize one column of the current model.

        Returns the status and, only when it is OPTIMAL, the objective value.
        """
        self.set_objective_linear([vid], [1.0], 0.0, sense=sense)
        if timelimit is not None and not self.capabilities().supports_timelimit:
            logger.debug(f"Time limit {timelimit}s ignored by {type(self).__name__}")
            timelimit = None
        self.optimize(timelimit)
        st = self.status()
        if st != SolveStatus.OPTIMAL:
            return st, None
        return st, self.objective_value()


Row = Tuple[List[int], List[float], float, float]   # (vids, coeffs, lo, hi)


class BufferedSolver(Solver):
    """
    Records the model in plain Python lists; subclasses translate it into
    their backend inside optimize() and fill _status / _x / _fun.
    """

    def __init__(self):
        self.begin()

    @property
    def n(self) -> int:
        return self._n

    def begin(self, name: str = "tighten") -> None:
        self._name = name
        self._n = 0
        self._lb: List[float] = []
        self._ub: List[float] = []
        self._integer: List[int] = []
        self._rows: List[Row] = []
        self._objective: Tuple[List[int], List[float], float, str] = ([], [], 0.0, "min")
        self._reset_result()

    def _reset_result(self) -> None:
        self._status = SolveStatus.UNKNOWN
        self._x: Optional[np.ndarray] = None
        self._fun: Optional[float] = None

    def add_vars(self, n: int) -> None:
        self._n += n
        self._lb.extend([-np.inf] * n); self._ub.extend([np.inf] * n); self._integer.extend([0] * n)

    def set_bounds(self, idxs: List[int], lb: np.ndarray, ub: np.ndarray) -> None:
        for idx, lo, hi in zip(idxs, lb, ub):
            self._lb[idx] = float(lo); self._ub[idx] = float(hi)

    def add_binary_vars(self, n: int) -> List[int]:
        start = self._n
        self.add_vars(n)
        for i in range(start, start + n):
            self._lb[i] = 0.0; self._ub[i] = 1.0; self._integer[i] = 1
        return list(range(start, start + n))

    def add_lin_eq(self, vids: List[int], coeffs: List[float], rhs: float) -> None:
        self._rows.append((list(vids), [float(a) for a in coeffs], float(rhs), float(rhs)))

    def add_lin_le(self, vids: List[int], coeffs: List[float], rhs: float) -> None:
        self._rows.append((list(vids), [float(a) for a in coeffs], -np.inf, float(rhs)))

    def add_lin_ge(self, vids: List[int], coeffs: List[float], rhs: float) -> None:
        self._rows.append((list(vids), [float(a) for a in coeffs], float(rhs), np.inf))

    def set_objective_linear(self, vids: List[int], coeffs: List[float], const: float = 0.0, sense: str = "min") -> None:
        self._objective = (list(vids), [float(a) for a in coeffs], float(const), "max" if sense == "max" else "min")

    # --- Helpers for subclasses ---
    def _objective_vector(self) -> np.ndarray:
        vids, coeffs, _, _ = self._objective
        c = np.zeros(self._n)
        for v, a in zip(vids, coeffs):
            c[v] += a
        return c

    def _partition(self) -> Tuple[List[Row], List[Row], List[Row]]:
        """Split rows into (equalities, <= rows, >= rows)."""
        eq = [r for r in self._rows if r[2] == r[3]]
        le = [r for r in self._rows if r[2] != r[3] and np.isfinite(r[3])]
        ge = [r for r in self._rows if r[2] != r[3] and np.isfinite(r[2])]
        return eq, le, ge

    def _matrix(self, rows: List[Row]) -> sparse.csr_matrix:
        data, ri, ci = [], [], []
        for r, (vids, coeffs, _, _) in enumerate(rows):
            for v, a in zip(vids, coeffs):
                ri.append(r); ci.append(v); data.append(a)
        return sparse.csr_matrix((data, (ri, ci)), shape=(len(rows), self._n))

    def status(self) -> str:
        return self._status

    def has_solution(self) -> bool:
        return self._x is not None

    def get_values(self, vids: List[int]) -> np.ndarray:
        assert self._x is not None, "No solution available"
        return self._x[vids]

    def objective_value(self) -> float:
        assert self._fun is not None, "No optimal objective available"
        return self._fun
