"""
neuronet Backpropagation - Training of synapse weights

Backward propagation of errors, built from two memoizing computations per
training sample:

    1. Forward phase: (net, phi(net)) for every neuron, seeded at the inputs.
    2. Backward phase: delta for every neuron, seeded at the outputs with
       (produced - target) * phi'(net) and pulled back through a forward
       adjacency map built once per instance.

Weights are then updated as ``w -= rate * delta(dst) * phi_net(src)``.

Online/stochastic training processes one sample per call.  Batch training
gives every sample its own forward/backward slot, consults the criterion
once with the average squared error and applies all slots with
``rate / batch_size``, which equals one step along the averaged gradient.

See https://en.wikipedia.org/wiki/Backpropagation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Sequence, Tuple

from nn_computation import Computation
from nn_topology import Dendrite, LogicError, Neuron, NeuronRole, RangeError, Topology

logger = logging.getLogger("neuronet.backprop")

Criterion = Callable[[float], float]
Sample = Tuple[Sequence[float], Sequence[float]]

# For each neuron: the dendrites sourced from it, with their destination index
ForwardMap = List[List[Tuple[Dendrite, int]]]


# ---------------------------------------------------------------------------
# Phase results
# ---------------------------------------------------------------------------

@dataclass
class ForwardResult:
    """Forward phase result of a neuron.

    Attributes:
        net: Weighted sum of inputs.
        phi_net: Activation value phi(net).
    """

    net: float = 0.0
    phi_net: float = 0.0


@dataclass
class BackwardResult:
    """Backward phase result of a neuron.

    Attributes:
        delta: Error signal attributed to the neuron.
    """

    delta: float = 0.0


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------

def _forward_result(comp: Computation[ForwardResult], neuron: Neuron) -> ForwardResult:
    net = 0.0
    for dend in neuron.dendrites:
        net += dend.weight * comp.fx(dend.source).phi_net
    return ForwardResult(net=net, phi_net=neuron.activation.apply(net))


class ForwardPhase:
    """Activation values and their arguments."""

    def __init__(self, topology: Topology):
        self.topology = topology
        self.computation: Computation[ForwardResult] = Computation(
            topology, _forward_result, ForwardResult
        )

    def fix(self, index: int, phi: float) -> None:
        """Pin the activation value of neuron ``index``."""
        self.computation.pin(index, ForwardResult(net=0.0, phi_net=phi))

    def result(self, index: int) -> ForwardResult:
        return self.computation.fixed_fx(index)

    def __call__(self, inputs: Sequence[float]) -> List[float]:
        """Run the phase; returns the output values."""
        if len(inputs) != self.topology.input_size:
            raise RangeError(
                f"Expected {self.topology.input_size} inputs, got {len(inputs)}"
            )

        comp = self.computation
        comp.reset()

        for neuron, value in zip(self.topology.inputs(), inputs):
            comp.const_fx(neuron.index, ForwardResult(net=0.0, phi_net=float(value)))

        output = [comp.fx(n.index).phi_net for n in self.topology.outputs()]

        # Settle neurons off the output paths so every update is defined
        for neuron in self.topology.neurons():
            comp.fx(neuron.index)

        return output


class BackwardPhase:
    """Error propagation (deltas).

    Args:
        topology: Trained network.
        fmap: Forward adjacency map of the network.
        forward: Forward phase of the same slot; must have run first.
    """

    def __init__(self, topology: Topology, fmap: ForwardMap, forward: ForwardPhase):
        self.topology = topology
        self._fmap = fmap
        self._forward = forward
        self.computation: Computation[BackwardResult] = Computation(
            topology, self._delta, BackwardResult
        )

    def _delta(self, comp: Computation[BackwardResult], neuron: Neuron) -> BackwardResult:
        if neuron.role == NeuronRole.OUTPUT:
            raise LogicError(
                f"Output neuron {neuron.index} reached during error propagation"
            )

        delta = 0.0
        for dend, dst in self._fmap[neuron.index]:
            delta += comp.fx(dst).delta * dend.weight

        net = self._forward.result(neuron.index).net
        return BackwardResult(delta=delta * neuron.activation.derivative(net))

    def fix(self, index: int, delta: float) -> None:
        """Pin the delta of neuron ``index``."""
        self.computation.pin(index, BackwardResult(delta=delta))

    def result(self, index: int) -> BackwardResult:
        return self.computation.fixed_fx(index)

    def __call__(self, error: Sequence[float]) -> None:
        """Run the phase for output ``error`` (produced minus target)."""
        comp = self.computation
        comp.reset()

        for neuron, err in zip(self.topology.outputs(), error):
            net = self._forward.result(neuron.index).net
            comp.const_fx(
                neuron.index,
                BackwardResult(delta=err * neuron.activation.derivative(net)),
            )

        # Pulling the inputs computes every delta on the way
        for neuron in self.topology.inputs():
            comp.fx(neuron.index)

        # Neurons the inputs do not reach (e.g. fed by a bias source only)
        for neuron in self.topology.neurons():
            if neuron.dendrites:
                comp.fx(neuron.index)


@dataclass
class ComputationSlot:
    """Forward/backward phase pair of one training sample."""

    forward: ForwardPhase
    backward: BackwardPhase


# ---------------------------------------------------------------------------
# Backpropagation
# ---------------------------------------------------------------------------

class Backpropagation:
    """Backpropagation training of a topology's synapse weights.

    The instance captures the topology's synapse structure; rebuild it after
    adding or removing neurons or synapses.

    Args:
        topology: Network to train (weights are modified in place).
        fixations: ``(index, value)`` pairs of neurons with a hard-fixed
            activation value (e.g. bias = 1).  Their delta is fixed to 0.
    """

    def __init__(
        self,
        topology: Topology,
        fixations: Iterable[Tuple[int, float]] = (),
    ):
        self.topology = topology
        self._fmap = self._create_fmap(topology)
        self._fixes: List[Tuple[int, float]] = [
            (index, float(value)) for index, value in fixations
        ]
        for index, _ in self._fixes:
            topology.get_neuron(index)
        self._slots: List[ComputationSlot] = []

    @staticmethod
    def _create_fmap(topology: Topology) -> ForwardMap:
        fmap: ForwardMap = [[] for _ in range(topology.slot_count)]
        for neuron in topology.neurons():
            for dend in neuron.dendrites:
                fmap[dend.source].append((dend, neuron.index))
        return fmap

    @property
    def slot_count(self) -> int:
        return len(self._slots)

    def slot(self, index: int) -> ComputationSlot:
        """Forward/backward phases of the ``index``-th sample of the last step."""
        return self._slots[index]

    def _ensure_slots(self, n: int) -> None:
        while len(self._slots) < n:
            forward = ForwardPhase(self.topology)
            backward = BackwardPhase(self.topology, self._fmap, forward)
            for index, value in self._fixes:
                forward.fix(index, value)
                backward.fix(index, 0.0)
            self._slots.append(ComputationSlot(forward, backward))

    def _compute(
        self,
        inputs: Sequence[float],
        targets: Sequence[float],
        slot: ComputationSlot,
    ) -> float:
        """Forward and backward phase for one sample.

        Returns:
            Squared error norm.
        """
        produced = slot.forward(inputs)

        if len(targets) != len(produced):
            raise LogicError(
                f"Expected {len(produced)} target values, got {len(targets)}"
            )

        error = [p - float(t) for p, t in zip(produced, targets)]
        err_norm2 = 0.0
        for err in error:
            err_norm2 += err * err

        slot.backward(error)
        return err_norm2

    def _update(self, rate: float, slot: ComputationSlot) -> None:
        for neuron in self.topology.neurons():
            if not neuron.dendrites:
                continue
            delta = slot.backward.result(neuron.index).delta
            for dend in neuron.dendrites:
                phi = slot.forward.result(dend.source).phi_net
                dend.weight -= rate * delta * phi

    def train_sample(
        self,
        inputs: Sequence[float],
        targets: Sequence[float],
        criterion: Criterion,
    ) -> float:
        """Online/stochastic training step on one sample.

        Args:
            inputs: Input values.
            targets: Desired output values.
            criterion: Maps the squared error norm to the learning rate;
                0 means no update.

        Returns:
            Squared error norm before the update.
        """
        self._ensure_slots(1)
        slot = self._slots[0]

        err_norm2 = self._compute(inputs, targets, slot)
        rate = criterion(err_norm2)
        if rate != 0:
            self._update(rate, slot)

        logger.debug("Online step: |err|^2 == %g, rate %g", err_norm2, rate)
        return err_norm2

    def train_batch(self, samples: Iterable[Sample], criterion: Criterion) -> float:
        """Batch training step.

        Args:
            samples: ``(inputs, targets)`` pairs.
            criterion: Receives the average squared error norm; the rate it
                returns is divided by the batch size per sample.

        Returns:
            Average squared error norm before the update.
        """
        samples = list(samples)
        batch_size = len(samples)
        if batch_size == 0:
            raise LogicError("Empty training batch")

        self._ensure_slots(batch_size)

        err_norm2_avg = 0.0
        for (inputs, targets), slot in zip(samples, self._slots):
            err_norm2_avg += self._compute(inputs, targets, slot)
        err_norm2_avg /= batch_size

        rate = criterion(err_norm2_avg)
        if rate != 0:
            rate_per_sample = rate / batch_size
            for slot in self._slots[:batch_size]:
                self._update(rate_per_sample, slot)

        logger.debug(
            "Batch of %d: avg |err|^2 == %g, rate %g",
            batch_size, err_norm2_avg, rate,
        )
        return err_norm2_avg
