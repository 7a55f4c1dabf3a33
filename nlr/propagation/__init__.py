#===- nlr/propagation/__init__.py - Bound Propagation Passes ------------====#
# NLR: Network-Level Reasoner
# Copyright (C) 2025– NLR Team
#
# Licensed under the GNU Affero General Public License v3.0 or later (AGPLv3+).
# Distributed without any warranty; see <http://www.gnu.org/licenses/>.
#===---------------------------------------------------------------------===#

from nlr.propagation.interval import interval_arithmetic
from nlr.propagation.symbolic import symbolic_propagation
from nlr.propagation.relaxation import relaxation_propagation, tighten_layer

__all__ = ['interval_arithmetic', 'symbolic_propagation', 'relaxation_propagation', 'tighten_layer']
