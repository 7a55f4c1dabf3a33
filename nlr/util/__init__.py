#===- nlr/util/__init__.py - Configuration, Logging, Statistics ---------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#

from nlr.util.config import ReasonerConfig, load_config, save_config
from nlr.util.log import setup_logging
from nlr.util.stats import PropagationStats

__all__ = ['ReasonerConfig', 'load_config', 'save_config', 'setup_logging', 'PropagationStats']
