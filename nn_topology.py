"""
neuronet Topology - Neuron graph store

Owns neurons and their incoming synapses (dendrites).  Neurons are addressed
by stable integer indices into an arena; a removed neuron leaves a tombstone
so that every other index stays valid until ``reindex()`` compacts the arena.

Design principles:
    - Index-addressed arena: dendrites reference their source by index, so
      cyclic (recurrent) wiring carries no ownership cycles
    - Small fan-in: dendrites live in a plain list on the destination and are
      located by linear scan
    - Evaluators are built from a topology snapshot; adding or removing
      neurons or synapses invalidates them (weight changes do not)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from nn_activation import Activation, Identity

logger = logging.getLogger("neuronet.topology")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RangeError(IndexError):
    """Invalid neuron index or dimension mismatch."""


class LogicError(RuntimeError):
    """Library misuse (e.g. reading a value that was never computed)."""


# ---------------------------------------------------------------------------
# Core Data Structures
# ---------------------------------------------------------------------------

class NeuronRole(Enum):
    """Neuron role in the network interface."""
    INTERNAL = auto()
    INPUT = auto()
    OUTPUT = auto()


@dataclass
class Dendrite:
    """Incoming synapse of a neuron.

    Attributes:
        source: Index of the source neuron.
        weight: Synapse weight; mutated in place by training.
    """

    source: int
    weight: float = 0.0


@dataclass
class Neuron:
    """Computation node of the network.

    Attributes:
        index: Position in the topology arena.
        role: INTERNAL, INPUT or OUTPUT.
        activation: Transfer function (value and derivative).
        dendrites: Incoming synapses, in creation order.
    """

    index: int
    role: NeuronRole = NeuronRole.INTERNAL
    activation: Activation = field(default_factory=Identity)
    dendrites: List[Dendrite] = field(default_factory=list)

    def get_dendrite(self, source: int) -> Optional[Dendrite]:
        for dend in self.dendrites:
            if dend.source == source:
                return dend
        return None

    def set_dendrite(self, source: int, weight: float) -> Dendrite:
        """Set synapse weight from ``source``, adding the synapse if absent."""
        dend = self.get_dendrite(source)
        if dend is None:
            dend = Dendrite(source=source, weight=weight)
            self.dendrites.append(dend)
        else:
            dend.weight = weight
        return dend

    def unset_dendrite(self, source: int) -> bool:
        """Remove the synapse from ``source``; returns False if there was none."""
        for i, dend in enumerate(self.dendrites):
            if dend.source == source:
                del self.dendrites[i]
                return True
        return False

    def minimise_dendrites(self) -> int:
        """Drop synapses whose weight is exactly 0; returns how many."""
        kept = [d for d in self.dendrites if d.weight != 0]
        removed = len(self.dendrites) - len(kept)
        self.dendrites = kept
        return removed


@dataclass
class TopologyStats:
    """Topology statistics snapshot.

    Attributes:
        total_neurons: Number of live neurons.
        total_synapses: Number of synapses.
        input_size: Number of INPUT neurons.
        output_size: Number of OUTPUT neurons.
        mean_weight: Mean synapse weight.
        std_weight: Standard deviation of synapse weights.
    """

    total_neurons: int = 0
    total_synapses: int = 0
    input_size: int = 0
    output_size: int = 0
    mean_weight: float = 0.0
    std_weight: float = 0.0


# ---------------------------------------------------------------------------
# Topology Container
# ---------------------------------------------------------------------------

class Topology:
    """Neural network topology: neurons, synapses and the I/O interface.

    Args:
        activation: Default activation for neurons added without one
            (identity if None).
    """

    def __init__(self, activation: Optional[Activation] = None):
        self.default_activation: Activation = activation or Identity()

        # index -> neuron; None marks a removed neuron
        self._neurons: List[Optional[Neuron]] = []
        self._size = 0

        self._inputs: List[int] = []
        self._outputs: List[int] = []

    # -----------------------------------------------------------------------
    # Sizes
    # -----------------------------------------------------------------------

    @property
    def size(self) -> int:
        """Number of live neurons."""
        return self._size

    @property
    def slot_count(self) -> int:
        """Arena length (live neurons plus tombstones)."""
        return len(self._neurons)

    @property
    def input_size(self) -> int:
        return len(self._inputs)

    @property
    def output_size(self) -> int:
        return len(self._outputs)

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return (
            f"Topology(size={self._size}, inputs={len(self._inputs)}, "
            f"outputs={len(self._outputs)})"
        )

    # -----------------------------------------------------------------------
    # I/O registration
    # -----------------------------------------------------------------------

    def _io_layer(self, role: NeuronRole) -> Optional[List[int]]:
        if role == NeuronRole.INPUT:
            return self._inputs
        if role == NeuronRole.OUTPUT:
            return self._outputs
        return None

    def _io_add(self, neuron: Neuron) -> None:
        layer = self._io_layer(neuron.role)
        if layer is not None:
            layer.append(neuron.index)

    def _io_remove(self, neuron: Neuron) -> None:
        layer = self._io_layer(neuron.role)
        if layer is not None and neuron.index in layer:
            layer.remove(neuron.index)

    def _synapses_remove(self, index: int) -> None:
        """Remove every synapse sourced from neuron ``index``."""
        for n in self.neurons():
            n.unset_dendrite(index)

    # -----------------------------------------------------------------------
    # Neuron management
    # -----------------------------------------------------------------------

    def add_neuron(
        self,
        role: NeuronRole = NeuronRole.INTERNAL,
        activation: Optional[Activation] = None,
    ) -> int:
        """Append a neuron.

        Args:
            role: Neuron role.
            activation: Transfer function (topology default if None).

        Returns:
            Index of the new neuron.
        """
        index = len(self._neurons)
        neuron = Neuron(
            index=index,
            role=role,
            activation=activation or self.default_activation,
        )
        self._neurons.append(neuron)
        self._size += 1
        self._io_add(neuron)
        return index

    def set_neuron(
        self,
        index: int,
        role: NeuronRole = NeuronRole.INTERNAL,
        activation: Optional[Activation] = None,
    ) -> int:
        """Create or replace the neuron at ``index``.

        The arena is extended with empty slots as needed.  A replaced neuron
        loses its I/O registration and every synapse sourced from it; the new
        occupant starts without dendrites.

        Returns:
            ``index``
        """
        if index < 0:
            raise RangeError(f"Invalid neuron index {index}")

        while len(self._neurons) <= index:
            self._neurons.append(None)

        old = self._neurons[index]
        if old is not None:
            self._io_remove(old)
            self._synapses_remove(index)
        else:
            self._size += 1

        neuron = Neuron(
            index=index,
            role=role,
            activation=activation or self.default_activation,
        )
        self._neurons[index] = neuron
        self._io_add(neuron)
        return index

    def get_neuron(self, index: int) -> Neuron:
        """Neuron at ``index``; RangeError if there is none."""
        neuron = None
        if 0 <= index < len(self._neurons):
            neuron = self._neurons[index]
        if neuron is None:
            raise RangeError(f"Invalid neuron index {index}")
        return neuron

    def has_neuron(self, index: int) -> bool:
        return 0 <= index < len(self._neurons) and self._neurons[index] is not None

    def remove_neuron(self, index: int) -> None:
        """Remove a neuron and all synapses sourced from it.

        The slot is tombstoned; other neurons keep their indices.
        """
        neuron = self.get_neuron(index)
        self._io_remove(neuron)
        self._synapses_remove(index)
        self._neurons[index] = None
        self._size -= 1

    def clear(self) -> None:
        self._neurons.clear()
        self._inputs.clear()
        self._outputs.clear()
        self._size = 0

    # -----------------------------------------------------------------------
    # Synapse management
    # -----------------------------------------------------------------------

    def set_synapse(self, dst: int, src: int, weight: float) -> Dendrite:
        """Set weight of synapse ``src -> dst``, creating it if needed."""
        self.get_neuron(src)
        return self.get_neuron(dst).set_dendrite(src, weight)

    def unset_synapse(self, dst: int, src: int) -> bool:
        """Remove synapse ``src -> dst``; returns False if it did not exist."""
        return self.get_neuron(dst).unset_dendrite(src)

    def get_synapse(self, dst: int, src: int) -> Optional[float]:
        """Weight of synapse ``src -> dst`` or None."""
        dend = self.get_neuron(dst).get_dendrite(src)
        return None if dend is None else dend.weight

    # -----------------------------------------------------------------------
    # Iteration
    # -----------------------------------------------------------------------

    def neurons(self) -> Iterator[Neuron]:
        """Live neurons in index order."""
        for neuron in self._neurons:
            if neuron is not None:
                yield neuron

    def inputs(self) -> Iterator[Neuron]:
        """INPUT neurons in registration order."""
        for index in self._inputs:
            yield self._neurons[index]

    def outputs(self) -> Iterator[Neuron]:
        """OUTPUT neurons in registration order."""
        for index in self._outputs:
            yield self._neurons[index]

    def synapses(self) -> Iterator[Tuple[int, int, float]]:
        """All synapses as ``(source, destination, weight)``."""
        for neuron in self.neurons():
            for dend in neuron.dendrites:
                yield dend.source, neuron.index, dend.weight

    # -----------------------------------------------------------------------
    # Structural maintenance
    # -----------------------------------------------------------------------

    def reindex(self) -> None:
        """Compact live neurons to indices 0..size-1, keeping their order.

        Invalidates all previously obtained indices and every evaluator
        built on this topology.
        """
        remap: Dict[int, int] = {}
        neurons: List[Optional[Neuron]] = []
        for neuron in self.neurons():
            remap[neuron.index] = len(neurons)
            neuron.index = len(neurons)
            neurons.append(neuron)

        for neuron in neurons:
            for dend in neuron.dendrites:
                dend.source = remap[dend.source]

        self._inputs = [remap[i] for i in self._inputs]
        self._outputs = [remap[i] for i in self._outputs]
        self._neurons = neurons

    def prune(self) -> int:
        """Remove synapses of exactly zero weight.

        Near-zero weights are kept.  Returns the number of synapses removed.
        """
        pruned = sum(n.minimise_dendrites() for n in self.neurons())
        if pruned:
            logger.info("Pruned %d zero-weight synapses", pruned)
        return pruned

    def minimize(self) -> int:
        """Prune, then remove INTERNAL neurons with no incoming synapses.

        Removal is repeated until nothing changes, since removing a neuron
        may strip the last synapse of another.  INPUT and OUTPUT neurons are
        always kept.  The topology is reindexed at the end.

        Note:
            This preserves the network function only when every removed
            neuron's activation is 0 at 0.  A constant (bias) neuron has no
            synapses and is removed as well.

        Returns:
            Number of neurons removed.
        """
        self.prune()

        removed = 0
        while True:
            doomed = [
                n.index for n in self.neurons()
                if n.role == NeuronRole.INTERNAL and not n.dendrites
            ]
            if not doomed:
                break
            for index in doomed:
                self.remove_neuron(index)
            removed += len(doomed)

        self.reindex()

        if removed:
            logger.info("Minimised topology: removed %d neurons", removed)
        return removed

    # -----------------------------------------------------------------------
    # Query
    # -----------------------------------------------------------------------

    def get_stats(self) -> TopologyStats:
        """Topology statistics snapshot."""
        weights = [w for _, _, w in self.synapses()]
        return TopologyStats(
            total_neurons=self._size,
            total_synapses=len(weights),
            input_size=len(self._inputs),
            output_size=len(self._outputs),
            mean_weight=float(np.mean(weights)) if weights else 0.0,
            std_weight=float(np.std(weights)) if weights else 0.0,
        )
