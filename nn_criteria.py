"""
neuronet Learning-rate criteria

A criterion maps the squared error norm of a training step (or the batch
average of it) to the learning rate for that step.  A rate of 0 means "do
not update".  The ``update`` property tells whether the last call asked for
an update; batch training may stop once it reads False, since the same
batch will not exceed the error bound again without outside change.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nn_config import TrainingConfig

logger = logging.getLogger("neuronet.criteria")


class LearningCriterion:
    """Base class for learning-rate policies.

    Subclass and override ``__call__``; set ``self._update`` on every call.
    """

    def __init__(self) -> None:
        self._update = False

    @property
    def update(self) -> bool:
        """True iff the last call returned a non-zero rate."""
        return self._update

    def __call__(self, err_norm2: float) -> float:
        raise NotImplementedError


class ConstantLearningFactor(LearningCriterion):
    """Fixed learning rate while the error exceeds ``sigma``.

    Args:
        sigma: Maximum acceptable squared error norm.
        alpha: Learning rate.
    """

    def __init__(self, sigma: float, alpha: float = 0.0):
        super().__init__()
        self.sigma = sigma
        self.alpha = alpha

    def __call__(self, err_norm2: float) -> float:
        self._update = err_norm2 > self.sigma
        return self.alpha if self._update else 0.0

    def __repr__(self) -> str:
        return f"ConstantLearningFactor(sigma={self.sigma}, alpha={self.alpha})"


class AdaptiveLearningFactor(LearningCriterion):
    """Learning rate that adapts to the convergence trend.

    A counter goes up when the error drops between consecutive calls and
    down otherwise.  Reaching ``conv_max`` multiplies the rate by
    ``alpha_increase``; reaching ``conv_min`` multiplies it by
    ``alpha_decrease``.  Either way the counter restarts from 0.  Errors at
    or below ``sigma`` yield 0 and leave the state untouched.

    Args:
        sigma: Maximum acceptable squared error norm.
        alpha: Initial learning rate.
        conv_max: Convergence counter maximum (> 0).
        conv_min: Convergence counter minimum (< 0).
        alpha_increase: Rate multiplier on steady convergence (> 1).
        alpha_decrease: Rate multiplier on divergence (< 1).
    """

    def __init__(
        self,
        sigma: float = 0.0,
        alpha: float = 0.01,
        conv_max: int = 5,
        conv_min: int = -2,
        alpha_increase: float = 1.15,
        alpha_decrease: float = 0.3,
    ):
        super().__init__()
        if conv_max <= 0 or conv_min >= 0:
            raise ValueError(
                f"Need conv_max > 0 > conv_min, got {conv_max}, {conv_min}"
            )
        self.sigma = sigma
        self.alpha = alpha
        self.conv_max = conv_max
        self.conv_min = conv_min
        self.alpha_increase = alpha_increase
        self.alpha_decrease = alpha_decrease

        self._last_err_norm2 = 0.0
        self._conv_cnt = 0

    @property
    def convergence_count(self) -> int:
        return self._conv_cnt

    def __call__(self, err_norm2: float) -> float:
        self._update = err_norm2 > self.sigma
        if not self._update:
            return 0.0

        if err_norm2 < self._last_err_norm2:
            self._conv_cnt += 1
            if self._conv_cnt >= self.conv_max:
                self._conv_cnt = 0
                self.alpha *= self.alpha_increase
                logger.debug("Converging, learning rate raised to %g", self.alpha)
        else:
            # Divergence or stagnation
            self._conv_cnt -= 1
            if self._conv_cnt <= self.conv_min:
                self._conv_cnt = 0
                self.alpha *= self.alpha_decrease
                logger.debug("Diverging, learning rate lowered to %g", self.alpha)

        self._last_err_norm2 = err_norm2
        return self.alpha

    def __repr__(self) -> str:
        return (
            f"AdaptiveLearningFactor(sigma={self.sigma}, alpha={self.alpha}, "
            f"counter={self._conv_cnt})"
        )


def create_criterion(config: "TrainingConfig") -> LearningCriterion:
    """Build the criterion described by a ``TrainingConfig``."""
    if config.criterion == "constant":
        return ConstantLearningFactor(sigma=config.sigma, alpha=config.alpha)
    if config.criterion == "adaptive":
        return AdaptiveLearningFactor(
            sigma=config.sigma,
            alpha=config.alpha,
            conv_max=config.conv_max,
            conv_min=config.conv_min,
            alpha_increase=config.alpha_increase,
            alpha_decrease=config.alpha_decrease,
        )
    raise ValueError(f"Unknown learning criterion: {config.criterion}")
