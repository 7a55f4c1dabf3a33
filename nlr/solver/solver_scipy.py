#===- nlr/solver/solver_scipy.py - SciPy HiGHS Oracle Backend -----------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Licence-free LP/MILP oracle. optimize() hands the buffered model to
#   scipy.optimize.linprog (HiGHS) or, when binaries exist, to
#   scipy.optimize.milp.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import logging
import numpy as np
from typing import Optional
from scipy import sparse
from scipy.optimize import Bounds, LinearConstraint, linprog, milp

from nlr.solver.solver_base import BufferedSolver, SolverCaps, SolveStatus

logger = logging.getLogger(__name__)

# scipy result codes: 0 optimal, 1 limit reached, 2 infeasible, 3 unbounded, 4 numerical trouble
_STATUS = {0: SolveStatus.OPTIMAL, 2: SolveStatus.INFEASIBLE}
MIP_REL_GAP = 1e-9


class ScipySolver(BufferedSolver):
    """HiGHS through SciPy; exact LP and MILP, CPU only."""

    def capabilities(self) -> SolverCaps:
        return SolverCaps(supports_integers=True, supports_timelimit=True)

    def optimize(self, timelimit: Optional[float] = None) -> None:
        self._reset_result()
        if self._n == 0:
            return
        _, _, const, sense = self._objective
        sign = -1.0 if sense == "max" else 1.0
        c = sign * self._objective_vector()
        options = {} if timelimit is None else {"time_limit": float(timelimit)}

        integer = any(self._integer)
        res = self._solve_milp(c, options) if integer else self._solve_lp(c, options)

        self._status = _STATUS.get(res.status, SolveStatus.UNKNOWN)
        if self._status == SolveStatus.OPTIMAL and res.x is not None:
            self._x = np.asarray(res.x, dtype=float)
            # A MILP optimum is only proven up to the gap; the dual bound is the sound value
            fun = res.fun
            if integer and getattr(res, "mip_dual_bound", None) is not None:
                fun = res.mip_dual_bound
            self._fun = sign * float(fun) + const
        elif self._status == SolveStatus.UNKNOWN and res.x is not None:
            self._status = SolveStatus.FEASIBLE
            self._x = np.asarray(res.x, dtype=float)
        logger.debug(f"[{self._name}] scipy status {res.status} -> {self._status}")

    def _solve_lp(self, c: np.ndarray, options: dict):
        eq, le, ge = self._partition()
        A_ub = b_ub = A_eq = b_eq = None
        if le or ge:
            A_ub = sparse.vstack([self._matrix(le), -self._matrix(ge)]).tocsr()
            b_ub = np.array([r[3] for r in le] + [-r[2] for r in ge])
        if eq:
            A_eq = self._matrix(eq); b_eq = np.array([r[2] for r in eq])
        bounds = [(lo if np.isfinite(lo) else None, hi if np.isfinite(hi) else None)
                  for lo, hi in zip(self._lb, self._ub)]
        return linprog(c, A_ub=A_ub, b_ub=b_ub, A_eq=A_eq, b_eq=b_eq, bounds=bounds,
                       method="highs", options=options)

    def _solve_milp(self, c: np.ndarray, options: dict):
        constraints = None
        if self._rows:
            constraints = LinearConstraint(self._matrix(self._rows),
                                           np.array([r[2] for r in self._rows]),
                                           np.array([r[3] for r in self._rows]))
        options = dict(options, mip_rel_gap=MIP_REL_GAP)
        return milp(c, integrality=np.array(self._integer), bounds=Bounds(np.array(self._lb), np.array(self._ub)),
                    constraints=constraints, options=options)
