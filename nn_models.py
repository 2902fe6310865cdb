"""
neuronet Models - Feed-forward topology builders

``FeedForward`` wires an N-layer feed-forward network with optional bias
source and lateral synapses (each neuron to the preceding neurons of its
layer, which keeps the graph acyclic).  ``Perceptron`` is the same with the
logistic sigmoid activation.

Builders only use ``Topology.add_neuron`` and ``Topology.set_synapse``.
"""

from __future__ import annotations

import logging
from enum import Flag
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from nn_activation import Activation, Constant, Identity, Logistic
from nn_backprop import Backpropagation
from nn_computation import NetworkFunction
from nn_config import WeightInitConfig
from nn_topology import LogicError, NeuronRole, Topology

logger = logging.getLogger("neuronet.models")

WeightInit = Callable[[], float]


class Feature(Flag):
    """Feed-forward network feature bits."""
    NONE = 0
    BIAS = 1
    LATERAL_PREV = 2

    LATERAL = LATERAL_PREV
    DEFAULT = NONE


def uniform_weight_init(config: Optional[WeightInitConfig] = None) -> WeightInit:
    """Weight initialiser drawing from U(min_weight, max_weight).

    The defaults give small non-zero weights.
    """
    config = config or WeightInitConfig()
    rng = np.random.default_rng(config.seed)

    def draw() -> float:
        return float(rng.uniform(config.min_weight, config.max_weight))

    return draw


class FeedForward:
    """Feed-forward neural network.

    Args:
        layers: Neuron count per layer, input layer first, output layer
            last (at least 2).  If None, call ``create`` later.
        activation: Activation of all non-bias neurons (identity if None).
        features: Feature bits.
        weight_init: Callable returning initial synapse weights; a uniform
            numpy generator configured by ``weight_config`` if None.
        weight_config: Range and seed for the default weight initialiser.
    """

    def __init__(
        self,
        layers: Optional[Sequence[int]] = None,
        activation: Optional[Activation] = None,
        features: Feature = Feature.DEFAULT,
        weight_init: Optional[WeightInit] = None,
        weight_config: Optional[WeightInitConfig] = None,
    ):
        self._features = features
        self._topology = Topology(activation or Identity())
        self._bias: Optional[int] = None

        if layers is not None:
            self.create(layers, weight_init or uniform_weight_init(weight_config))

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def features(self) -> Feature:
        return self._features

    @features.setter
    def features(self, features: Feature) -> None:
        if self._topology.size:
            raise LogicError("Can't set features for an existing topology")
        self._features = features

    @property
    def bias_index(self) -> Optional[int]:
        """Index of the bias source neuron (None without BIAS)."""
        return self._bias

    def create(self, layers: Sequence[int], weight_init: WeightInit) -> None:
        """Build the topology.

        Raises:
            LogicError: Fewer than two layers, or the topology already exists.
        """
        if len(layers) < 2:
            raise LogicError("Invalid topology: not enough layers")
        if self._topology.size:
            raise LogicError("Topology already created")

        topo = self._topology

        if Feature.BIAS in self._features:
            self._bias = topo.add_neuron(NeuronRole.INTERNAL, Constant(1.0))

        prev_layer = [topo.add_neuron(NeuronRole.INPUT) for _ in range(layers[0])]

        for i in range(1, len(layers)):
            role = NeuronRole.OUTPUT if i == len(layers) - 1 else NeuronRole.INTERNAL
            layer: List[int] = []
            for _ in range(layers[i]):
                n = topo.add_neuron(role)

                if self._bias is not None:
                    topo.set_synapse(n, self._bias, weight_init())

                if Feature.LATERAL_PREV in self._features:
                    for sibling in layer:
                        topo.set_synapse(n, sibling, weight_init())

                for prev in prev_layer:
                    topo.set_synapse(n, prev, weight_init())

                layer.append(n)
            prev_layer = layer

        stats = topo.get_stats()
        logger.debug(
            "Created feed-forward topology %s: %d neurons, %d synapses",
            list(layers), stats.total_neurons, stats.total_synapses,
        )

    def fixations(self) -> List[Tuple[int, float]]:
        """Hard fixations implied by the features (bias source = 1)."""
        if self._bias is None:
            return []
        return [(self._bias, 1.0)]

    def function(self) -> NetworkFunction:
        """Create the network function."""
        return NetworkFunction(self._topology, self.fixations())

    def training(self) -> Backpropagation:
        """Create the training algorithm for the network."""
        return Backpropagation(self._topology, self.fixations())


class Perceptron(FeedForward):
    """Feed-forward network with logistic sigmoid activation.

    Args:
        layers: Neuron count per layer (at least 2).
        features: Feature bits.
        midpoint: Logistic midpoint.
        maximum: Logistic maximum.
        steepness: Logistic steepness.
        weight_init: Initial weight generator.
        weight_config: Range and seed for the default weight initialiser.
    """

    def __init__(
        self,
        layers: Optional[Sequence[int]] = None,
        features: Feature = Feature.DEFAULT,
        midpoint: float = 0.0,
        maximum: float = 1.0,
        steepness: float = 1.0,
        weight_init: Optional[WeightInit] = None,
        weight_config: Optional[WeightInitConfig] = None,
    ):
        super().__init__(
            layers,
            activation=Logistic(midpoint=midpoint, maximum=maximum, steepness=steepness),
            features=features,
            weight_init=weight_init,
            weight_config=weight_config,
        )
