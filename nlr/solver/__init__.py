#===- nlr/solver/__init__.py - LP/MILP Oracle Backends ------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#

from nlr.errors import OracleUnavailableError
from nlr.solver.solver_base import Solver, SolverCaps, SolveStatus
from nlr.solver.solver_scipy import ScipySolver


def make_solver(name: str = "scipy") -> Solver:
    """Create an oracle backend by name ("scipy" or "gurobi")."""
    if name == "scipy":
        return ScipySolver()
    if name == "gurobi":
        # Imported lazily: gurobipy needs a licence at model creation time
        try:
            from nlr.solver.solver_gurobi import GurobiSolver
        except ImportError as e:
            raise OracleUnavailableError(f"gurobipy is not available: {e}") from e
        return GurobiSolver()
    raise ValueError(f"Unknown solver backend: {name}. Use 'scipy' or 'gurobi'.")


__all__ = ['Solver', 'SolverCaps', 'SolveStatus', 'ScipySolver', 'make_solver']
