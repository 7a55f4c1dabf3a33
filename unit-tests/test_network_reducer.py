#!/usr/bin/env python3
"""
Unit tests for nlr.reducer.NetworkReducer.

This module tests:
- Stability scores and the (bucket score, NeuronIndex) selection order
- The worked four-layer reduction, copying and in-place variants
- Selection of the smallest scores at a fractional rate
- Fixed phases agree with concrete evaluation over the bound box
"""

import math
import unittest
import torch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from nlr import (ConfigError, EquationType, LayerType, NetworkReducer, NeuronIndex, PhaseStatus,
                 ReasonerConfig, ReluConstraint)
from network_fixtures import NetworkFactory, layer_values, sample_box

SCORES = [0.5, 0.1, 0.3, 0.6, 0.7]
# Pre-activation boxes whose scores are SCORES; signs alternate between phases
BOXES = [(0.5, 2.0), (-3.0, -0.1), (0.3, 1.0), (-2.0, -0.6), (0.7, 3.0)]


def scenario_query(nlr, boxes):
    lb = [lo for lo, _ in boxes]; ub = [hi for _, hi in boxes]
    return NetworkFactory.query_from_box(nlr, lb, ub)


class TestSelection(unittest.TestCase):

    def setUp(self):
        self.reducer = NetworkReducer(NetworkFactory.identity_relu(5))
        self.scores = {NeuronIndex(2, i): s for i, s in enumerate(SCORES)}

    def test_compute_stability_scores(self):
        nlr = NetworkFactory.identity_relu(5)
        nlr.obtain_current_bounds(scenario_query(nlr, BOXES))
        nlr.interval_arithmetic_bound_propagation()
        scores = NetworkReducer(nlr).compute_stability_scores()
        self.assertEqual(scores, self.scores)

    def test_select_smallest(self):
        selected = self.reducer.select_neurons(self.scores, 0.6)
        self.assertEqual(selected, [NeuronIndex(2, 1), NeuronIndex(2, 2), NeuronIndex(2, 0)])

    def test_rate_extremes(self):
        self.assertEqual(self.reducer.select_neurons(self.scores, 0.0), [])
        self.assertEqual(len(self.reducer.select_neurons(self.scores, 1.0)), 5)
        self.assertEqual(self.reducer.determine_bucket_tolerance(0.0, self.reducer.build_buckets(self.scores), 5),
                         -math.inf)
        with self.assertRaises(ConfigError):
            self.reducer.select_neurons(self.scores, 1.5)

    def test_ties_broken_by_index(self):
        scores = {NeuronIndex(2, 2): 1.0, NeuronIndex(2, 0): 1.0, NeuronIndex(2, 1): 1.0}
        self.assertEqual(self.reducer.select_neurons(scores, 0.5), [NeuronIndex(2, 0)])

    def test_threshold(self):
        buckets = self.reducer.build_buckets(self.scores)
        self.assertEqual(self.reducer.determine_bucket_tolerance(0.6, buckets, 5), 0.5)

    def test_bucket_tolerance_groups_scores(self):
        reducer = NetworkReducer(NetworkFactory.identity_relu(5), ReasonerConfig(bucket_tolerance=0.25))
        buckets = reducer.build_buckets(self.scores)
        self.assertEqual(buckets[0.5], [NeuronIndex(2, 0), NeuronIndex(2, 3)])
        self.assertEqual(reducer.select_neurons(self.scores, 0.6),
                         [NeuronIndex(2, 1), NeuronIndex(2, 2), NeuronIndex(2, 0)])
        self.assertEqual(reducer.determine_bucket_tolerance(0.6, buckets, 5), 0.5)


class TestFourLayerReduction(unittest.TestCase):

    BOXES = [(-2.0, -1.0), (1.0, 2.0), (-1.0, 1.0)]

    def setUp(self):
        torch.manual_seed(42)
        self.nlr = NetworkFactory.four_layer_relu()
        self.query = scenario_query(self.nlr, self.BOXES)

    def test_reduce_full_rate(self):
        reducer = NetworkReducer(self.nlr)
        reduced = reducer.reduce(self.query, 1.0)

        self.assertEqual((reduced.get_lower_bound(6), reduced.get_upper_bound(6)), (0.0, 0.0))
        identities = [eq for eq in reduced.equations if eq.auxiliary_variable is None]
        self.assertEqual(len(identities), 1)
        self.assertEqual(len(identities[0].addends), 2)
        self.assertEqual(sorted(identities[0].variables()), [4, 7])
        self.assertEqual(identities[0].type, EquationType.EQ)
        self.assertEqual([(c.b, c.f) for c in reduced.pl_constraints], [(5, 8)])

        report = reducer.last_report
        self.assertEqual(report.stable_inactive, [NeuronIndex(2, 0)])
        self.assertEqual(report.stable_active, [NeuronIndex(2, 1)])
        self.assertEqual(report.skipped, [NeuronIndex(2, 2)])
        self.assertEqual(report.threshold, 1.0)

    def test_reduce_leaves_inputs_untouched(self):
        NetworkReducer(self.nlr).reduce(self.query, 1.0)
        self.assertEqual(self.nlr.get_layer(2).eliminated, {})
        self.assertEqual(self.nlr.get_layer(2).phase, {})
        self.assertEqual(self.query.equations, [])
        self.assertEqual(self.query.get_upper_bound(6), math.inf)

    def test_reduced_query_keeps_caller_bounds(self):
        self.query.set_upper_bound(8, 0.75)
        reduced = NetworkReducer(self.nlr).reduce(self.query, 1.0)
        self.assertEqual(reduced.get_upper_bound(8), 0.75)
        self.assertEqual(reduced.get_lower_bound(0), -2.0)

    def test_lower_rate_keeps_straddling_relu(self):
        reducer = NetworkReducer(self.nlr)
        reduced = reducer.reduce(self.query, 0.5)
        self.assertEqual(reducer.last_report.selected, [NeuronIndex(2, 0)])
        self.assertEqual([(c.b, c.f) for c in reduced.pl_constraints], [(4, 7), (5, 8)])

    def test_rate_from_config(self):
        nlr = NetworkFactory.four_layer_relu(ReasonerConfig(reduction_rate=1.0))
        reducer = NetworkReducer(nlr)
        reducer.reduce(scenario_query(nlr, self.BOXES))
        self.assertEqual(reducer.last_report.fixed, 2)

    def test_reduce_in_place(self):
        query = scenario_query(self.nlr, self.BOXES)
        self.nlr.generate_query(query)
        report = NetworkReducer(self.nlr).reduce_in_place(query, 1.0)

        self.assertEqual(report.fixed, 2)
        relu = self.nlr.get_layer(2)
        self.assertTrue(relu.neuron_eliminated(0))
        self.assertEqual(relu.phase[1], PhaseStatus.ACTIVE)
        self.assertNotIn(2, relu.phase)

        self.assertEqual([(c.b, c.f) for c in query.pl_constraints], [(5, 8)])
        self.assertEqual((query.get_lower_bound(6), query.get_upper_bound(6)), (0.0, 0.0))
        self.assertTrue(all(6 not in eq.variables() for eq in query.equations))
        self.assertIn([(1.0, 4), (-1.0, 7)], [eq.addends for eq in query.equations])
        remaining = self.nlr.get_constraints_in_topological_order()
        self.assertEqual(len(remaining), 1)
        self.assertIsInstance(remaining[0], ReluConstraint)


class TestFiveNeuronReduction(unittest.TestCase):

    def setUp(self):
        torch.manual_seed(42)
        self.nlr = NetworkFactory.identity_relu(5)

    def test_smallest_scores_fixed(self):
        query = scenario_query(self.nlr, BOXES)
        self.nlr.generate_query(query)
        report = NetworkReducer(self.nlr).reduce_in_place(query, 0.6)

        self.assertEqual(report.stable_inactive, [NeuronIndex(2, 1)])
        self.assertEqual(sorted(report.stable_active), [NeuronIndex(2, 0), NeuronIndex(2, 2)])
        self.assertEqual(report.skipped, [])
        self.assertEqual([(c.b, c.f) for c in query.pl_constraints], [(8, 13), (9, 14)])
        self.assertEqual((query.get_lower_bound(11), query.get_upper_bound(11)), (0.0, 0.0))
        self.assertNotIn(3, self.nlr.get_layer(2).phase)
        self.assertNotIn(4, self.nlr.get_layer(2).phase)

    def test_copy_variant_agrees(self):
        reduced = NetworkReducer(self.nlr).reduce(scenario_query(self.nlr, BOXES), 0.6)
        self.assertEqual([(c.b, c.f) for c in reduced.pl_constraints], [(8, 13), (9, 14)])
        identities = sorted(sorted(eq.variables()) for eq in reduced.equations if eq.auxiliary_variable is None)
        self.assertEqual(identities, [[5, 10], [7, 12]])


class TestReductionSoundness(unittest.TestCase):

    def test_fixed_phases_agree_with_evaluation(self):
        torch.manual_seed(42)
        for seed in (1, 2, 3):
            with self.subTest(seed=seed):
                nlr = NetworkFactory.random_network([3, 8, 6, 1], LayerType.RELU, seed=seed)
                original = nlr.clone()
                lb, ub = [-0.5, 0.0, -1.0], [0.5, 0.4, -0.2]
                query = NetworkFactory.query_from_box(nlr, lb, ub)
                nlr.generate_query(query)
                report = NetworkReducer(nlr).reduce_in_place(query, 1.0)

                values = layer_values(original, sample_box(lb, ub, 512))
                for index in report.stable_inactive + report.stable_active:
                    src = original.get_layer(index.layer).get_activation_sources(index.neuron)[0]
                    pre = values[src.layer][:, src.neuron]
                    if index in report.stable_inactive:
                        self.assertTrue(torch.all(pre <= 1e-9))
                    else:
                        self.assertTrue(torch.all(pre >= -1e-9))

                X = sample_box(lb, ub, 256)
                self.assertTrue(torch.allclose(original.simulate(X), nlr.simulate(X)))


if __name__ == '__main__':
    unittest.main()
