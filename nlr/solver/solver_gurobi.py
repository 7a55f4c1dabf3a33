#===- nlr/solver/solver_gurobi.py - Gurobi Oracle Backend ---------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#
#
# Purpose:
#   Gurobi oracle. Each optimize() call materializes the buffered model with
#   the matrix API (one MVar, one addMConstr per row sense), solves it and
#   disposes of it, so no licence token is held between objectives.
#
#===---------------------------------------------------------------------===#

from __future__ import annotations
import logging
import os
import numpy as np
from typing import Optional

import gurobipy as gp
from gurobipy import GRB

from nlr.errors import OracleUnavailableError
from nlr.solver.solver_base import BufferedSolver, SolverCaps, SolveStatus

logger = logging.getLogger(__name__)


def setup_gurobi_license() -> None:
    """Point GRB_LICENSE_FILE at $NLRHOME/gurobi/gurobi.lic when not already set."""
    if 'GRB_LICENSE_FILE' in os.environ or 'NLRHOME' not in os.environ:
        return
    license_path = os.path.abspath(os.path.join(os.environ['NLRHOME'], 'gurobi', 'gurobi.lic'))
    if os.path.exists(license_path):
        os.environ['GRB_LICENSE_FILE'] = license_path
        logger.info(f"Gurobi license found and set: {license_path}")
    else:
        logger.warning(f"Gurobi license not found at: {license_path}")


def _finite_or_grb(values) -> np.ndarray:
    return np.nan_to_num(np.asarray(values, dtype=float), neginf=-GRB.INFINITY, posinf=GRB.INFINITY)


class GurobiSolver(BufferedSolver):
    """Gurobi backend for exact LP/MILP solving."""

    def __init__(self):
        setup_gurobi_license()
        super().__init__()

    def capabilities(self) -> SolverCaps:
        return SolverCaps(supports_integers=True, supports_timelimit=True)

    def _build(self, timelimit: Optional[float]):
        try:
            m = gp.Model(self._name)
        except gp.GurobiError as e:
            raise OracleUnavailableError(f"Cannot create Gurobi model: {e}") from e
        m.Params.OutputFlag = 0
        # Report INFEASIBLE and UNBOUNDED separately; only the former is a proof
        m.Params.DualReductions = 0
        if timelimit is not None:
            m.Params.TimeLimit = float(timelimit)

        vtype = np.where(np.array(self._integer) == 1, GRB.BINARY, GRB.CONTINUOUS)
        x = m.addMVar(self._n, lb=_finite_or_grb(self._lb), ub=_finite_or_grb(self._ub), vtype=vtype, name="x")
        eq, le, ge = self._partition()
        for rows, sense, side in ((eq, GRB.EQUAL, 2), (le, GRB.LESS_EQUAL, 3), (ge, GRB.GREATER_EQUAL, 2)):
            if rows:
                m.addMConstr(self._matrix(rows), x, sense, np.array([r[side] for r in rows]))

        _, _, _, obj_sense = self._objective
        m.setObjective(self._objective_vector() @ x, GRB.MAXIMIZE if obj_sense == "max" else GRB.MINIMIZE)
        return m, x

    def optimize(self, timelimit: Optional[float] = None) -> None:
        self._reset_result()
        if self._n == 0:
            return
        m, x = self._build(timelimit)
        try:
            m.optimize()
            const = self._objective[2]
            if m.Status == GRB.OPTIMAL:
                self._status = SolveStatus.OPTIMAL
                self._x = np.asarray(x.X, dtype=float)
                # A MIP optimum is only proven up to the gap; the bound is the sound value
                self._fun = float(m.ObjBound if m.IsMIP else m.ObjVal) + const
            elif m.Status == GRB.INFEASIBLE:
                self._status = SolveStatus.INFEASIBLE
            elif m.SolCount > 0:
                self._status = SolveStatus.FEASIBLE
                self._x = np.asarray(x.X, dtype=float)
        except gp.GurobiError as e:
            raise OracleUnavailableError(f"Gurobi optimize failed: {e}") from e
        finally:
            logger.debug(f"[{self._name}] gurobi status {m.Status} -> {self._status}")
            m.dispose()
