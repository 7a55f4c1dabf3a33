#!/usr/bin/env python3
"""
Unit tests for nlr.layer and nlr.topology.

This module tests:
- Construction API preconditions (layer kinds, unknown ids, cycles)
- Successor bookkeeping and topological ordering
- Variable bindings and layer cloning
- Layer id compaction after removal
"""

import unittest
import torch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from nlr import LayerType, NeuronIndex, Topology, TopologyError
from network_fixtures import NetworkFactory


class TestTopologyConstruction(unittest.TestCase):

    def setUp(self):
        self.topology = Topology()
        self.topology.add_layer(0, LayerType.INPUT, 2)
        self.topology.add_layer(1, LayerType.WEIGHTED_SUM, 3)
        self.topology.add_layer(2, LayerType.RELU, 3)
        self.topology.add_layer_dependency(0, 1)
        self.topology.add_layer_dependency(1, 2)

    def test_duplicate_layer_rejected(self):
        with self.assertRaises(TopologyError):
            self.topology.add_layer(1, LayerType.RELU, 3)

    def test_unknown_layer_type_rejected(self):
        with self.assertRaises(TopologyError):
            self.topology.add_layer(7, "SOFTMAX", 3)

    def test_unknown_layer_id_rejected(self):
        with self.assertRaises(TopologyError):
            self.topology.add_layer_dependency(0, 9)

    def test_cycle_rejected(self):
        with self.assertRaises(TopologyError):
            self.topology.add_layer_dependency(2, 1)

    def test_input_cannot_have_predecessor(self):
        with self.assertRaises(TopologyError):
            self.topology.add_layer_dependency(1, 0)

    def test_weight_on_activation_layer_rejected(self):
        with self.assertRaises(TopologyError):
            self.topology.layer(2).set_weight(1, 0, 0, 1.0)

    def test_weight_on_non_dependency_rejected(self):
        self.topology.add_layer(3, LayerType.WEIGHTED_SUM, 1)
        with self.assertRaises(TopologyError):
            self.topology.layer(3).set_weight(1, 0, 0, 1.0)

    def test_activation_source_on_weighted_sum_rejected(self):
        with self.assertRaises(TopologyError):
            self.topology.layer(1).add_activation_source(NeuronIndex(0, 0), 0)

    def test_relu_takes_single_source(self):
        L = self.topology.layer(2)
        L.add_activation_source(NeuronIndex(1, 0), 0)
        with self.assertRaises(TopologyError):
            L.add_activation_source(NeuronIndex(1, 1), 0)

    def test_max_takes_many_sources(self):
        self.topology.add_layer(3, LayerType.MAX, 1)
        self.topology.add_layer_dependency(2, 3)
        M = self.topology.layer(3)
        for i in range(3):
            M.add_activation_source(NeuronIndex(2, i), 0)
        self.assertEqual(len(M.get_activation_sources(0)), 3)

    def test_successors_kept_consistent(self):
        self.assertEqual(self.topology.layer(0).successors, [1])
        self.assertEqual(self.topology.layer(1).successors, [2])
        self.topology.compute_successor_layers()
        self.assertEqual(self.topology.succs, {0: [1], 1: [2], 2: []})

    def test_weights_shape_is_target_by_source(self):
        self.assertEqual(tuple(self.topology.layer(1).weights[0].shape), (3, 2))
        self.assertEqual(self.topology.layer(1).weights[0].dtype, torch.float64)


class TestTopologyQueries(unittest.TestCase):

    def setUp(self):
        torch.manual_seed(42)
        self.nlr = NetworkFactory.four_layer_relu()

    def test_topological_order(self):
        self.assertEqual(self.nlr.topology.topological_order(), [0, 1, 2, 3])

    def test_order_ties_broken_by_id(self):
        t = Topology()
        t.add_layer(0, LayerType.INPUT, 1)
        t.add_layer(2, LayerType.WEIGHTED_SUM, 1)
        t.add_layer(1, LayerType.WEIGHTED_SUM, 1)
        t.add_layer(3, LayerType.WEIGHTED_SUM, 1)
        for s, d in [(0, 2), (0, 1), (1, 3), (2, 3)]:
            t.add_layer_dependency(s, d)
        self.assertEqual(t.topological_order(), [0, 1, 2, 3])

    def test_input_and_output_layers(self):
        self.assertEqual(self.nlr.topology.input_layer().id, 0)
        self.assertEqual(self.nlr.topology.output_layer().id, 3)
        self.assertEqual(self.nlr.get_max_layer_size(), 3)

    def test_reindex_binds_consecutive_variables(self):
        self.assertEqual(self.nlr.get_layer(2).variables(), {0: 6, 1: 7, 2: 8})
        self.assertEqual(self.nlr.topology.find_variable(9), NeuronIndex(3, 0))
        self.assertIsNone(self.nlr.topology.find_variable(42))

    def test_rebinding_overwrites(self):
        L = self.nlr.get_layer(0)
        L.set_neuron_variable(0, 20)
        self.assertEqual(L.neuron_to_variable(0), 20)
        self.assertFalse(L.has_variable(0))
        self.assertEqual(L.variable_to_neuron(20), 0)

    def test_rebinding_shared_variable_keeps_other_holder(self):
        L = self.nlr.get_layer(2)
        L.set_neuron_variable(1, 6)
        L.set_neuron_variable(1, 30)
        self.assertEqual(self.nlr.topology.find_variable(6), NeuronIndex(2, 0))
        L.set_neuron_variable(0, 31)
        self.assertIsNone(self.nlr.topology.find_variable(6))
        self.assertEqual(self.nlr.topology.find_variable(30), NeuronIndex(2, 1))

    def test_validate_reports_missing_source(self):
        t = Topology()
        t.add_layer(0, LayerType.INPUT, 1)
        t.add_layer(1, LayerType.RELU, 1)
        t.add_layer_dependency(0, 1)
        with self.assertRaises(TopologyError):
            t.validate()

    def test_clone_shares_no_state(self):
        other = self.nlr.topology.clone()
        other.layer(1).set_weight(0, 0, 0, 5.0)
        other.layer(1).set_lb(0, -3.0)
        other.layer(2).eliminate_neuron(1, 0.0)
        self.assertEqual(self.nlr.get_layer(1).get_weight(0, 0, 0), 1.0)
        self.assertEqual(self.nlr.get_layer(1).get_lb(0), -float("inf"))
        self.assertFalse(self.nlr.get_layer(2).neuron_eliminated(1))

    def test_remove_and_reduce_layer_index(self):
        t = self.nlr.topology
        t.remove_layer(3)
        t.add_layer(4, LayerType.WEIGHTED_SUM, 1)
        t.add_layer_dependency(2, 4)
        t.reduce_layer_index(4)
        self.assertEqual(sorted(t.by_id), [0, 1, 2, 3])
        self.assertEqual(t.layer(3).predecessors, [2])
        self.assertEqual(t.layer(2).successors, [3])
        self.assertIn(2, t.layer(3).weights)

    def test_describe_mentions_bindings(self):
        lines = self.nlr.get_layer(2).describe()
        self.assertIn("RELU", lines[0])
        self.assertIn("x6", lines[1])
        self.assertIn("1:0", lines[1])


if __name__ == '__main__':
    unittest.main()
