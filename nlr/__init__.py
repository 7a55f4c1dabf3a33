#===- nlr/__init__.py - Network-Level Reasoner --------------------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#

from nlr.core import (BoundType, LayerType, LinearExpression, NeuronBound, NeuronIndex,
                      PhaseStatus, Tightening)
from nlr.errors import (ConfigError, InfeasibleBoundsError, NLRError, OracleUnavailableError,
                        TopologyError, UnsupportedActivationError)
from nlr.bound_store import BoundExplainer, BoundStore, DictBoundStore
from nlr.layer import Layer
from nlr.topology import Topology
from nlr.query import (AbsoluteValueConstraint, Equation, EquationType, MaxConstraint, Query,
                       ReluConstraint, SigmoidConstraint, SignConstraint)
from nlr.reasoner import NetworkLevelReasoner
from nlr.reducer import NetworkReducer, ReductionReport
from nlr.util.config import ReasonerConfig, load_config, save_config
from nlr.util.log import setup_logging

__version__ = "0.1.0"
