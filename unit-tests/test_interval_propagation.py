#!/usr/bin/env python3
"""
Unit tests for nlr.propagation.interval and the activation tables.

This module tests:
- Interval images of each activation kind
- Weighted-sum sign split and the 0 * inf = 0 rule
- Soundness: sampled concrete values stay inside the propagated box
- Monotonic tightening across repeated passes
- Eliminated neurons are skipped
"""

import math
import unittest
import torch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from nlr import DictBoundStore, LayerType, NetworkLevelReasoner, NeuronIndex
from nlr.propagation.activations import INTERVAL, EVALUATE
from nlr.propagation.interval import interval_arithmetic
from nlr.propagation.utils import affine_bounds
from network_fixtures import NetworkFactory, layer_values, sample_box

INF = math.inf


def col(*xs):
    return torch.tensor([[x] for x in xs], dtype=torch.float64)


class TestIntervalImages(unittest.TestCase):

    def test_relu(self):
        lb, ub = INTERVAL[LayerType.RELU](col(-2.0, 1.0, -1.0), col(-1.0, 2.0, 1.0))
        self.assertEqual(lb.tolist(), [0.0, 1.0, 0.0])
        self.assertEqual(ub.tolist(), [0.0, 2.0, 1.0])

    def test_abs(self):
        lb, ub = INTERVAL[LayerType.ABSOLUTE_VALUE](col(-3.0, 1.0, -4.0), col(2.0, 5.0, -1.0))
        self.assertEqual(lb.tolist(), [0.0, 1.0, 1.0])
        self.assertEqual(ub.tolist(), [3.0, 5.0, 4.0])

    def test_sign(self):
        lb, ub = INTERVAL[LayerType.SIGN](col(-3.0, 0.0, -4.0), col(2.0, 5.0, -1.0))
        self.assertEqual(lb.tolist(), [-1.0, 1.0, -1.0])
        self.assertEqual(ub.tolist(), [1.0, 1.0, -1.0])

    def test_max_with_padding(self):
        l = torch.tensor([[-1.0, 2.0], [0.5, -INF]], dtype=torch.float64)
        u = torch.tensor([[3.0, 2.5], [1.0, -INF]], dtype=torch.float64)
        lb, ub = INTERVAL[LayerType.MAX](l, u)
        self.assertEqual(lb.tolist(), [2.0, 0.5])
        self.assertEqual(ub.tolist(), [3.0, 1.0])

    def test_sigmoid_monotone(self):
        lb, ub = INTERVAL[LayerType.SIGMOID](col(-INF, 0.0), col(0.0, INF))
        self.assertEqual(lb.tolist(), [0.0, 0.5])
        self.assertEqual(ub.tolist(), [0.5, 1.0])

    def test_sign_of_zero_is_positive(self):
        self.assertEqual(EVALUATE[LayerType.SIGN](col(0.0, -0.5)).tolist(), [1.0, -1.0])


class TestAffineBounds(unittest.TestCase):

    def test_sign_split(self):
        W = torch.tensor([[1.0, -2.0]], dtype=torch.float64)
        lb, ub = affine_bounds(W, torch.tensor([-1.0, 0.0], dtype=torch.float64),
                               torch.tensor([1.0, 3.0], dtype=torch.float64))
        self.assertEqual(lb.tolist(), [-7.0])
        self.assertEqual(ub.tolist(), [1.0])

    def test_zero_weight_times_infinity(self):
        W = torch.tensor([[0.0, 1.0]], dtype=torch.float64)
        lb, ub = affine_bounds(W, torch.tensor([-INF, 1.0], dtype=torch.float64),
                               torch.tensor([INF, 2.0], dtype=torch.float64))
        self.assertEqual(lb.tolist(), [1.0])
        self.assertEqual(ub.tolist(), [2.0])


class TestIntervalPropagation(unittest.TestCase):

    def setUp(self):
        torch.manual_seed(42)

    def _propagate(self, nlr: NetworkLevelReasoner, lb, ub) -> None:
        nlr.obtain_current_bounds(NetworkFactory.query_from_box(nlr, lb, ub))
        nlr.interval_arithmetic_bound_propagation()

    def test_four_layer_example(self):
        nlr = NetworkFactory.four_layer_relu()
        self._propagate(nlr, [-2.0, 1.0, -1.0], [-1.0, 2.0, 1.0])
        relu = nlr.get_layer(2)
        self.assertEqual(relu.lb.tolist(), [0.0, 1.0, 0.0])
        self.assertEqual(relu.ub.tolist(), [0.0, 2.0, 1.0])
        self.assertEqual(nlr.get_layer(3).lb.tolist(), [1.0])
        self.assertEqual(nlr.get_layer(3).ub.tolist(), [3.0])

    def test_tightenings_logged_per_variable(self):
        nlr = NetworkFactory.four_layer_relu()
        self._propagate(nlr, [-2.0, 1.0, -1.0], [-1.0, 2.0, 1.0])
        tightenings = {(t.variable, t.type.value): t.value for t in nlr.get_constraint_tightenings()}
        self.assertEqual(tightenings[(9, "UPPER")], 3.0)
        self.assertEqual(tightenings[(6, "UPPER")], 0.0)
        nlr.clear_constraint_tightenings()
        self.assertEqual(nlr.get_constraint_tightenings(), [])

    def test_soundness_by_sampling(self):
        for activation in (LayerType.RELU, LayerType.ABSOLUTE_VALUE, LayerType.SIGN, LayerType.SIGMOID):
            with self.subTest(activation=activation):
                nlr = NetworkFactory.random_network([3, 5, 4, 2], activation, seed=7)
                lb, ub = [-1.0, -0.5, 0.0], [1.0, 0.5, 2.0]
                self._propagate(nlr, lb, ub)
                values = layer_values(nlr, sample_box(lb, ub, 512))
                for L in nlr.topology:
                    v = values[L.id]
                    self.assertTrue(torch.all(v >= L.lb - 1e-9), f"layer {L.id} below lb")
                    self.assertTrue(torch.all(v <= L.ub + 1e-9), f"layer {L.id} above ub")

    def test_monotonic_tightening(self):
        nlr = NetworkFactory.random_network([2, 4, 4, 1], seed=3)
        self._propagate(nlr, [-1.0, -1.0], [1.0, 1.0])
        before = {L.id: (L.lb.clone(), L.ub.clone()) for L in nlr.topology}
        nlr.interval_arithmetic_bound_propagation()
        nlr.symbolic_bound_propagation()
        for L in nlr.topology:
            lb, ub = before[L.id]
            self.assertTrue(torch.all(L.lb >= lb))
            self.assertTrue(torch.all(L.ub <= ub))

    def test_monotonic_across_mixed_passes(self):
        nlr = NetworkFactory.random_network([2, 4, 4, 1], seed=3)
        self._propagate(nlr, [-1.0, -1.0], [1.0, 1.0])
        steps = [nlr.symbolic_bound_propagation, nlr.lp_relaxation_propagation,
                 nlr.interval_arithmetic_bound_propagation, nlr.symbolic_bound_propagation,
                 nlr.lp_relaxation_propagation]
        for step in steps:
            before = {L.id: (L.lb.clone(), L.ub.clone()) for L in nlr.topology}
            step()
            for L in nlr.topology:
                lb, ub = before[L.id]
                self.assertTrue(torch.all(L.lb >= lb), f"{step.__name__} widened lb of layer {L.id}")
                self.assertTrue(torch.all(L.ub <= ub), f"{step.__name__} widened ub of layer {L.id}")

    def test_second_pass_is_a_fixpoint(self):
        nlr = NetworkFactory.random_network([2, 3, 1], seed=5)
        self._propagate(nlr, [-1.0, -1.0], [1.0, 1.0])
        self.assertEqual(nlr.interval_arithmetic_bound_propagation(), 0)

    def test_eliminated_neuron_skipped(self):
        nlr = NetworkFactory.four_layer_relu()
        nlr.eliminate_variable(6, 0.0)
        nlr.obtain_current_bounds(NetworkFactory.query_from_box(nlr, [-2.0, 1.0, -1.0], [-1.0, 2.0, 1.0]))
        batches = list(interval_arithmetic(nlr.topology))
        touched = {b.index for batch in batches for b in batch}
        self.assertNotIn(NeuronIndex(2, 0), touched)
        self.assertEqual(nlr.get_layer(2).get_ub(0), 0.0)

    def test_unbounded_inputs_stay_sound(self):
        nlr = NetworkFactory.four_layer_relu()
        nlr.obtain_current_bounds(DictBoundStore({0: -1.0}, {0: 1.0}))
        nlr.interval_arithmetic_bound_propagation()
        out = nlr.get_layer(3)
        self.assertEqual(out.get_lb(0), 0.0)
        self.assertEqual(out.get_ub(0), INF)
        self.assertEqual(nlr.get_layer(1).get_lb(1), -INF)
        self.assertFalse(torch.isnan(out.lb).any())
        self.assertEqual(nlr.get_layer(2).get_lb(0), 0.0)


if __name__ == '__main__':
    unittest.main()
