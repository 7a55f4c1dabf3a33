#!/usr/bin/env python3
"""
Shared network builders for the reasoner test suites.

This module provides:
- NetworkFactory.identity_relu(): INPUT -> WS(identity) -> RELU -> WS(sum) of any width
- NetworkFactory.four_layer_relu(): the worked three-neuron instance of it
- NetworkFactory.random_network(): seeded fully-connected networks for sampling tests
- NetworkFactory.query_from_box(): a Query carrying input (and extra) bounds
- sample_box(): uniform samples from an input box
- layer_values(): per-layer concrete values for a batch

Every network is built through the public construction API and its neurons
are bound to consecutive variables in topological order.
"""

import torch
from typing import Dict, Optional, Sequence, Tuple

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from nlr import LayerType, NetworkLevelReasoner, Query, ReasonerConfig


class NetworkFactory:

    @staticmethod
    def identity_relu(size: int, config: Optional[ReasonerConfig] = None) -> NetworkLevelReasoner:
        """INPUT(n) -> WS(n, identity) -> RELU(n) -> WS(1, all ones); variables 0..3n."""
        nlr = NetworkLevelReasoner(config)
        nlr.add_layer(0, LayerType.INPUT, size)
        nlr.add_layer(1, LayerType.WEIGHTED_SUM, size)
        nlr.add_layer(2, LayerType.RELU, size)
        nlr.add_layer(3, LayerType.WEIGHTED_SUM, 1)
        for s, t in [(0, 1), (1, 2), (2, 3)]:
            nlr.add_layer_dependency(s, t)
        for i in range(size):
            nlr.set_weight(0, i, 1, i, 1.0)
            nlr.add_activation_source(1, i, 2, i)
            nlr.set_weight(2, i, 3, 0, 1.0)
        nlr.reindex_neurons()
        return nlr

    @staticmethod
    def four_layer_relu(config: Optional[ReasonerConfig] = None) -> NetworkLevelReasoner:
        return NetworkFactory.identity_relu(3, config)

    @staticmethod
    def random_network(sizes: Sequence[int], activation: LayerType = LayerType.RELU,
                       seed: int = 42, config: Optional[ReasonerConfig] = None) -> NetworkLevelReasoner:
        """sizes[0] inputs, then WS/activation pairs for each hidden size, then a WS output."""
        torch.manual_seed(seed)
        nlr = NetworkLevelReasoner(config)
        nlr.add_layer(0, LayerType.INPUT, sizes[0])
        lid, prev = 0, 0
        for k, size in enumerate(sizes[1:]):
            last = k == len(sizes) - 2
            lid += 1
            nlr.add_layer(lid, LayerType.WEIGHTED_SUM, size)
            nlr.add_layer_dependency(prev, lid)
            nlr.get_layer(lid).set_weights(prev, torch.randn(size, nlr.get_layer(prev).size, dtype=torch.float64))
            for i, b in enumerate(torch.randn(size).tolist()):
                nlr.set_bias(lid, i, b)
            prev = lid
            if last:
                break
            lid += 1
            nlr.add_layer(lid, activation, size)
            nlr.add_layer_dependency(prev, lid)
            for i in range(size):
                nlr.add_activation_source(prev, i, lid, i)
            prev = lid
        nlr.reindex_neurons()
        return nlr

    @staticmethod
    def query_from_box(nlr: NetworkLevelReasoner, lb: Sequence[float], ub: Sequence[float],
                       extra: Optional[Dict[int, Tuple[float, float]]] = None) -> Query:
        query = Query(sum(L.size for L in nlr.topology))
        inputs = nlr.topology.input_layer()
        for i in range(inputs.size):
            var = inputs.neuron_to_variable(i)
            query.set_lower_bound(var, lb[i]); query.set_upper_bound(var, ub[i])
        for var, (lo, hi) in (extra or {}).items():
            query.set_lower_bound(var, lo); query.set_upper_bound(var, hi)
        return query


def sample_box(lb: Sequence[float], ub: Sequence[float], n: int = 256) -> torch.Tensor:
    lb = torch.tensor(lb, dtype=torch.float64); ub = torch.tensor(ub, dtype=torch.float64)
    return lb + (ub - lb) * torch.rand(n, lb.numel(), dtype=torch.float64)


def layer_values(nlr: NetworkLevelReasoner, X: torch.Tensor) -> Dict[int, torch.Tensor]:
    return nlr._forward(X)
