"""
neuronet Activation functions

Each activation exposes ``apply(x)`` (also callable directly) and
``derivative(x)``; backpropagation needs the latter, plain inference does
not.  Shape parameters are ordinary runtime fields.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


class Activation:
    """Base class for neuron transfer functions.

    Subclass and override ``apply`` (and ``derivative`` if the activation is
    to be trained through).
    """

    def apply(self, x: float) -> float:
        raise NotImplementedError

    def derivative(self, x: float) -> float:
        raise NotImplementedError(
            f"{type(self).__name__} does not provide a derivative"
        )

    def __call__(self, x: float) -> float:
        return self.apply(x)


@dataclass(frozen=True)
class Identity(Activation):
    """phi(x) = x"""

    def apply(self, x: float) -> float:
        return x

    def derivative(self, x: float) -> float:
        return 1.0


@dataclass(frozen=True)
class Logistic(Activation):
    """Logistic sigmoid.

    phi(x) = maximum / (1 + exp(-steepness * (x - midpoint)))

    The defaults give the standard sigmoid.

    Attributes:
        midpoint: x value of the sigmoid's midpoint.
        maximum: Supremum of the function.
        steepness: Logistic growth rate.
    """

    midpoint: float = 0.0
    maximum: float = 1.0
    steepness: float = 1.0

    def apply(self, x: float) -> float:
        z = self.steepness * (x - self.midpoint)
        # Split on sign so exp() never overflows
        if z >= 0:
            return self.maximum / (1.0 + math.exp(-z))
        e = math.exp(z)
        return self.maximum * e / (1.0 + e)

    def derivative(self, x: float) -> float:
        f_x = self.apply(x)
        return self.steepness * (1.0 - f_x / self.maximum) * f_x


@dataclass(frozen=True)
class HyperbolicTangent(Activation):
    """phi(x) = tanh(x)"""

    def apply(self, x: float) -> float:
        return math.tanh(x)

    def derivative(self, x: float) -> float:
        t = math.tanh(x)
        return 1.0 - t * t


@dataclass(frozen=True)
class Constant(Activation):
    """Constant output regardless of the argument (bias source).

    Attributes:
        value: The constant.
    """

    value: float = 1.0

    def apply(self, x: float) -> float:
        return self.value

    def derivative(self, x: float) -> float:
        return 0.0
