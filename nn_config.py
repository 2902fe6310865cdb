"""
neuronet Configuration - Training and weight initialisation tunables.

Provides a single ``NNConfig`` dataclass grouping the learning-criterion
parameters and the random weight initialisation range used by the topology
builders.  Configuration can be loaded from a dict of overrides, a JSON
file, or left at the defaults.

Usage::

    from nn_config import load_nn_config

    # Defaults
    cfg = load_nn_config()

    # With overrides
    cfg = load_nn_config({"training": {"alpha": 0.05, "sigma": 1e-8}})

    # From JSON file
    cfg = load_nn_config(config_path="~/.neuronet.json")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("neuronet.config")

_SECTIONS = ("training", "weights")


# ── Section dataclasses ────────────────────────────────────────────────


@dataclass
class TrainingConfig:
    """Learning criterion parameters.

    ``criterion`` is ``"adaptive"`` or ``"constant"``; the ``conv_*`` and
    ``alpha_*`` fields only apply to the adaptive one.
    """

    criterion: str = "adaptive"
    alpha: float = 0.01
    sigma: float = 0.0
    conv_max: int = 5
    conv_min: int = -2
    alpha_increase: float = 1.15
    alpha_decrease: float = 0.3


@dataclass
class WeightInitConfig:
    """Uniform random synapse weight initialisation."""

    min_weight: float = 1e-5
    max_weight: float = 1e-3
    seed: Optional[int] = None


# ── Top-level config ───────────────────────────────────────────────────


@dataclass
class NNConfig:
    """Top-level neuronet configuration.

    Use ``load_nn_config()`` to create an instance with overrides applied.
    """

    training: TrainingConfig = field(default_factory=TrainingConfig)
    weights: WeightInitConfig = field(default_factory=WeightInitConfig)


# ── Factory ────────────────────────────────────────────────────────────


def _merge_section(section: Any, values: Dict[str, Any]) -> None:
    """Copy known fields from ``values`` onto a section; warn on the rest."""
    for name, value in values.items():
        if not hasattr(section, name):
            logger.warning(
                "Ignoring unknown config key %s.%s", type(section).__name__, name
            )
            continue
        setattr(section, name, value)


def _merge(cfg: NNConfig, data: Dict[str, Any]) -> None:
    for name in _SECTIONS:
        if name in data:
            _merge_section(getattr(cfg, name), data[name])


def load_nn_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> NNConfig:
    """Build an ``NNConfig``.

    Defaults come first, then the JSON file at ``config_path`` (if given
    and present), then ``overrides``; a later source replaces individual
    fields of an earlier one.  A file that cannot be read or parsed is
    skipped with a warning.

    Args:
        overrides: ``{"training": {...}, "weights": {...}}``; either
            section may be omitted.
        config_path: JSON file laid out like ``overrides``; ``~`` is
            expanded.
    """
    cfg = NNConfig()

    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.exists():
            logger.debug("No neuronet config at %s", path)
        else:
            try:
                with open(path) as f:
                    _merge(cfg, json.load(f))
            except (OSError, ValueError) as exc:
                logger.warning("Failed to load neuronet config from %s: %s", path, exc)

    if overrides is not None:
        _merge(cfg, overrides)

    return cfg
