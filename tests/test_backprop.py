"""Tests for backpropagation: exact single steps, gradient agreement with
finite differences, online and batch convergence.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from nn_activation import Constant, Logistic
from nn_backprop import Backpropagation, BackwardPhase, ForwardPhase
from nn_computation import NetworkFunction
from nn_criteria import AdaptiveLearningFactor, ConstantLearningFactor
from nn_topology import LogicError, NeuronRole, RangeError, Topology


def _single_synapse(weight=0.5):
    t = Topology()
    i = t.add_neuron(NeuronRole.INPUT)
    o = t.add_neuron(NeuronRole.OUTPUT)
    t.set_synapse(o, i, weight)
    return t, i, o


def _sigmoid_net():
    """2 inputs + bias -> 2 hidden -> 1 output, logistic activations."""
    t = Topology(Logistic())
    bias = t.add_neuron(activation=Constant(1.0))
    i0 = t.add_neuron(NeuronRole.INPUT)
    i1 = t.add_neuron(NeuronRole.INPUT)
    h0 = t.add_neuron()
    h1 = t.add_neuron()
    o = t.add_neuron(NeuronRole.OUTPUT)
    weights = {
        (h0, bias): 0.1, (h0, i0): 0.4, (h0, i1): -0.6,
        (h1, bias): -0.2, (h1, i0): 0.7, (h1, i1): 0.3,
        (o, bias): 0.05, (o, h0): 0.9, (o, h1): -0.8,
    }
    for (dst, src), w in weights.items():
        t.set_synapse(dst, src, w)
    return t, [(bias, 1.0)]


def _half_sq_error(topology, fixations, inputs, targets):
    produced = NetworkFunction(topology, fixations)(inputs)
    return 0.5 * sum((p - y) ** 2 for p, y in zip(produced, targets))


class TestSingleStep:

    def test_online_step(self):
        t, i, o = _single_synapse(0.5)
        bp = Backpropagation(t)
        err2 = bp.train_sample([2.0], [3.0], ConstantLearningFactor(0.0, 0.1))
        # produced 1.0, error -2.0
        assert err2 == pytest.approx(4.0)
        assert t.get_synapse(o, i) == pytest.approx(0.9)

    def test_batch_step_divides_rate(self):
        t, i, o = _single_synapse(0.5)
        bp = Backpropagation(t)
        err2 = bp.train_batch(
            [([1.0], [1.0]), ([2.0], [0.0])],
            ConstantLearningFactor(0.0, 0.2),
        )
        assert err2 == pytest.approx(0.625)
        # 0.5 + 0.1 * 0.5 * 1.0 - 0.1 * 1.0 * 2.0
        assert t.get_synapse(o, i) == pytest.approx(0.35)

    def test_zero_rate_leaves_weights(self):
        t, i, o = _single_synapse(0.5)
        criterion = ConstantLearningFactor(sigma=100.0, alpha=1.0)
        Backpropagation(t).train_sample([2.0], [3.0], criterion)
        assert not criterion.update
        assert t.get_synapse(o, i) == 0.5


class TestGradient:

    def test_update_matches_finite_difference(self):
        inputs, targets = [0.3, -0.8], [0.9]
        rate, h = 1e-3, 1e-6

        probe, fixes = _sigmoid_net()
        expected = {}
        for src, dst, w in list(probe.synapses()):
            probe.set_synapse(dst, src, w + h)
            e_plus = _half_sq_error(probe, fixes, inputs, targets)
            probe.set_synapse(dst, src, w - h)
            e_minus = _half_sq_error(probe, fixes, inputs, targets)
            probe.set_synapse(dst, src, w)
            expected[(src, dst)] = (e_plus - e_minus) / (2 * h)

        t, fixes = _sigmoid_net()
        before = {(s, d): w for s, d, w in t.synapses()}
        Backpropagation(t, fixes).train_sample(
            inputs, targets, ConstantLearningFactor(0.0, rate)
        )
        after = {(s, d): w for s, d, w in t.synapses()}

        assert set(after) == set(expected)
        for key, grad in expected.items():
            observed = (before[key] - after[key]) / rate
            assert observed == pytest.approx(grad, rel=1e-4, abs=1e-8)

    def test_pinned_bias_stays_fixed_across_steps(self):
        t, fixes = _sigmoid_net()
        (bias, _), = fixes
        bp = Backpropagation(t, fixes)
        criterion = ConstantLearningFactor(0.0, 0.5)
        samples = [([1.0, 1.0], [0.0]), ([0.0, 1.0], [1.0])]

        for _ in range(3):
            bp.train_batch(samples, criterion)
            for k in range(len(samples)):
                slot = bp.slot(k)
                assert slot.forward.result(bias).phi_net == 1.0
                assert slot.backward.result(bias).delta == 0.0


class TestConvergence:

    def _linear(self):
        t = Topology()
        ins = [t.add_neuron(NeuronRole.INPUT) for _ in range(4)]
        outs = [t.add_neuron(NeuronRole.OUTPUT) for _ in range(3)]
        for o in outs:
            for i in ins:
                t.set_synapse(o, i, 0.1)
        return t

    def test_batch_linear_fit(self):
        t = self._linear()
        bp = Backpropagation(t)
        criterion = ConstantLearningFactor(sigma=1e-10, alpha=0.005)
        samples = [
            ([k * 1.0, k * 2.0, k * 3.0, k * 4.0], [k * 14.0, k * 12.0, k * 10.0])
            for k in range(1, 6)
        ]

        history = []
        for _ in range(200):
            history.append(bp.train_batch(samples, criterion))
            if not criterion.update:
                break

        assert not criterion.update
        assert history[-1] <= 1e-10
        assert all(b <= a for a, b in zip(history, history[1:]))
        assert bp.slot_count == len(samples)

        out = NetworkFunction(t)([1.0, 2.0, 3.0, 4.0])
        assert out == pytest.approx([14.0, 12.0, 10.0], abs=1e-4)

    def test_adaptive_early_stop(self):
        t = self._linear()
        bp = Backpropagation(t)
        criterion = AdaptiveLearningFactor(sigma=1e-6, alpha=0.001)
        samples = [([1.0, 2.0, 3.0, 4.0], [14.0, 12.0, 10.0])]

        for _ in range(2000):
            err = bp.train_batch(samples, criterion)
            if not criterion.update:
                break
        assert not criterion.update
        assert err <= 1e-6

        # Nothing changes, so the batch keeps reporting no update
        for _ in range(3):
            assert bp.train_batch(samples, criterion) == err
            assert not criterion.update

    def test_online_reduces_error(self):
        t, fixes = _sigmoid_net()
        samples = [([0.0, 0.0], [0.0]), ([0.0, 1.0], [1.0]),
                   ([1.0, 0.0], [1.0]), ([1.0, 1.0], [1.0])]

        def total_error():
            return sum(_half_sq_error(t, fixes, x, y) for x, y in samples)

        initial = total_error()
        bp = Backpropagation(t, fixes)
        criterion = ConstantLearningFactor(0.0, 0.5)
        for _ in range(300):
            for x, y in samples:
                bp.train_sample(x, y, criterion)
        assert total_error() < initial
        assert bp.slot_count == 1

    def test_recurrent_training_runs(self):
        t = Topology()
        i = t.add_neuron(NeuronRole.INPUT)
        a = t.add_neuron()
        b = t.add_neuron()
        o = t.add_neuron(NeuronRole.OUTPUT)
        t.set_synapse(a, i, 0.5)
        t.set_synapse(a, b, 0.2)
        t.set_synapse(b, a, 0.5)
        t.set_synapse(o, b, 0.5)
        bp = Backpropagation(t)
        criterion = ConstantLearningFactor(0.0, 0.05)
        first = bp.train_sample([1.0], [1.0], criterion)
        for _ in range(50):
            last = bp.train_sample([1.0], [1.0], criterion)
        assert last < first


class TestErrors:

    def test_input_count_mismatch(self):
        t, _, _ = _single_synapse()
        with pytest.raises(RangeError):
            Backpropagation(t).train_sample([1.0, 2.0], [1.0], ConstantLearningFactor(0.0, 0.1))

    def test_target_count_mismatch(self):
        t, _, _ = _single_synapse()
        with pytest.raises(LogicError):
            Backpropagation(t).train_sample([1.0], [1.0, 2.0], ConstantLearningFactor(0.0, 0.1))

    def test_batch_error_aborts_before_update(self):
        t, fixes = _sigmoid_net()
        before = list(t.synapses())
        bp = Backpropagation(t, fixes)
        samples = [([1.0, 0.0], [1.0]), ([0.0, 1.0], [1.0, 0.0])]
        with pytest.raises(LogicError):
            bp.train_batch(samples, ConstantLearningFactor(0.0, 1.0))
        assert list(t.synapses()) == before

    def test_backward_on_output_neuron(self):
        t, i, o = _single_synapse()
        forward = ForwardPhase(t)
        forward([1.0])
        backward = BackwardPhase(t, Backpropagation._create_fmap(t), forward)
        with pytest.raises(LogicError):
            backward.computation.fx(o)

    def test_empty_batch(self):
        t, _, _ = _single_synapse()
        with pytest.raises(LogicError):
            Backpropagation(t).train_batch([], ConstantLearningFactor(0.0, 0.1))

    def test_fixation_of_missing_neuron(self):
        t, _, _ = _single_synapse()
        with pytest.raises(RangeError):
            Backpropagation(t, [(7, 1.0)])
