"""
neuronet Computation - Memoizing evaluation of a function over a topology

A ``Computation`` evaluates a per-neuron node function lazily and caches the
result in a ``Fixable`` slot per neuron index.  Before the node function
recurses into a neuron's sources, the slot is provisionally fixed to a
default value.  A cycle that leads back to the same neuron therefore reads
the provisional value instead of recursing forever, which is what makes
recurrent topologies evaluable.

The same primitive drives plain inference (``NetworkFunction``) and both
backpropagation phases; only the result type and the node function differ.
"""

from __future__ import annotations

from typing import (
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from nn_topology import LogicError, Neuron, RangeError, Topology

R = TypeVar("R")


# ---------------------------------------------------------------------------
# Fixable value
# ---------------------------------------------------------------------------

class Fixable(Generic[R]):
    """Value container with a fixation mark.

    Fixation is explicit; ``set`` on a fixed value raises unless told to
    override.
    """

    __slots__ = ("value", "fixed")

    def __init__(self, value: Optional[R] = None):
        self.value = value
        self.fixed = False

    def set(self, value: R, override_fixed: bool = False) -> R:
        if self.fixed and not override_fixed:
            raise LogicError("Attempt to set a fixed value")
        self.value = value
        return value

    def fix(self, value: Optional[R] = None, override_fixed: bool = False) -> None:
        if value is not None:
            self.set(value, override_fixed)
        self.fixed = True

    def reset(self) -> None:
        self.value = None
        self.fixed = False

    def __repr__(self) -> str:
        return f"Fixable({self.value!r}, fixed={self.fixed})"


# ---------------------------------------------------------------------------
# Memoizing evaluator
# ---------------------------------------------------------------------------

NodeFunction = Callable[["Computation[R]", Neuron], R]


class Computation(Generic[R]):
    """Cycle-safe memoizing evaluation of ``node_fn`` over a topology.

    The slot count is taken from the topology at construction; the
    computation must be rebuilt when neurons are added or removed.

    Args:
        topology: Network to evaluate over.
        node_fn: ``node_fn(computation, neuron) -> R``.  It obtains the
            values of other neurons through ``computation.fx``.
        default: Factory of the provisional value used as the cycle guard.
    """

    def __init__(
        self,
        topology: Topology,
        node_fn: NodeFunction,
        default: Callable[[], R],
    ):
        self.topology = topology
        self._node_fn = node_fn
        self._default = default
        self._results: List[Fixable[R]] = [
            Fixable() for _ in range(topology.slot_count)
        ]
        self._pins: Dict[int, R] = {}
        self._reset = True
        # Node function invocations since construction
        self.calls = 0

    def __len__(self) -> int:
        return len(self._results)

    @property
    def is_reset(self) -> bool:
        return self._reset

    def check_index(self, index: int) -> None:
        if not 0 <= index < len(self._results):
            raise RangeError(f"Neuron index {index} out of range")

    def reset(self) -> None:
        """Clear every computed or seeded value; pinned values stay.

        Does nothing if there is nothing to clear.
        """
        if self._reset:
            return
        for slot in self._results:
            slot.reset()
        for index, value in self._pins.items():
            self._results[index].fix(value)
        self._reset = True

    def const_fx(self, index: int, value: R, override_fixed: bool = False) -> None:
        """Set and fix the value of neuron ``index`` without computing it.

        Raises:
            LogicError: The value is already fixed and ``override_fixed``
                is False.
        """
        self.check_index(index)
        self._results[index].fix(value, override_fixed)
        self._reset = False

    def pin(self, index: int, value: R) -> None:
        """Hard-fix neuron ``index`` to ``value`` for the computation's lifetime.

        Unlike ``const_fx`` the fixation survives ``reset()``.
        """
        self.check_index(index)
        self._pins[index] = value
        self._results[index].fix(value, override_fixed=True)

    def is_fixed(self, index: int) -> bool:
        self.check_index(index)
        return self._results[index].fixed

    def fixed_fx(self, index: int) -> R:
        """Value of neuron ``index`` if already fixed.

        Never computes anything.

        Raises:
            LogicError: The value is not fixed.
        """
        self.check_index(index)
        slot = self._results[index]
        if not slot.fixed:
            raise LogicError(f"Value of neuron {index} is not fixed")
        return slot.value

    def fx(self, index: int) -> R:
        """Value of neuron ``index``, computed on first access.

        Repeated calls are cheap.  The slot is fixed to the provisional
        default before ``node_fn`` runs and overwritten afterwards.
        """
        self.check_index(index)
        slot = self._results[index]
        if slot.fixed:
            return slot.value

        slot.fix(self._default())  # cycle guard
        self._reset = False

        neuron = self.topology.get_neuron(index)
        self.calls += 1
        return slot.set(self._node_fn(self, neuron), override_fixed=True)


# ---------------------------------------------------------------------------
# Network function (inference)
# ---------------------------------------------------------------------------

def _activation_value(comp: Computation[float], neuron: Neuron) -> float:
    net = 0.0
    for dend in neuron.dendrites:
        net += dend.weight * comp.fx(dend.source)
    return neuron.activation.apply(net)


class NetworkFunction:
    """Forward inference over a topology.

    Args:
        topology: Network to evaluate.
        fixations: ``(index, value)`` pairs of neurons whose activation is
            pinned (e.g. a bias source fixed to 1).

    Raises:
        RangeError: A fixation names a slot without a live neuron.
    """

    def __init__(
        self,
        topology: Topology,
        fixations: Iterable[Tuple[int, float]] = (),
    ):
        self.topology = topology
        self.computation: Computation[float] = Computation(
            topology, _activation_value, float
        )
        for index, value in fixations:
            topology.get_neuron(index)
            self.computation.pin(index, float(value))

    def evaluate(self, inputs: Sequence[float]) -> List[float]:
        """Compute the network output for ``inputs``.

        Args:
            inputs: One value per INPUT neuron, in registration order.

        Returns:
            One value per OUTPUT neuron, in registration order.

        Raises:
            RangeError: ``len(inputs)`` differs from the input size.
        """
        if len(inputs) != self.topology.input_size:
            raise RangeError(
                f"Expected {self.topology.input_size} inputs, got {len(inputs)}"
            )

        comp = self.computation
        comp.reset()

        for neuron, value in zip(self.topology.inputs(), inputs):
            comp.const_fx(neuron.index, float(value))

        return [comp.fx(neuron.index) for neuron in self.topology.outputs()]

    __call__ = evaluate
