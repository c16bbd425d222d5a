"""
Unit types and their activation/sampling strategies.

Each unit kind maps to a ``UnitStrategy``: a pair of pure functions, one
turning a pre-activation (bias already added) into probabilities or means,
one drawing a stochastic sample from those probabilities.

The strategy for a layer is resolved once when the layer is built, so an
unsupported hidden/visible combination fails at construction and never in
the middle of a Gibbs chain.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, NamedTuple, Union

import torch

from . import noise
from .errors import ConfigurationError

# Gaussian visible units are assumed to have a fixed standard deviation.
GAUSSIAN_SIGMA = 0.1
GAUSSIAN_PRECISION = 1.0 / (GAUSSIAN_SIGMA * GAUSSIAN_SIGMA)


class UnitType(Enum):
    BINARY = "binary"
    GAUSSIAN = "gaussian"
    RELU = "relu"
    RELU6 = "relu6"
    RELU1 = "relu1"

    def is_relu(self) -> bool:
        return self in (UnitType.RELU, UnitType.RELU6, UnitType.RELU1)

    @classmethod
    def parse(cls, value: Union[str, "UnitType"]) -> "UnitType":
        """Accept an enum member or its (case-insensitive) name/value."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for unit in cls:
            if unit.value == key:
                return unit
        raise ConfigurationError(
            f"Unknown unit type {value!r}. Known: {[u.value for u in cls]}"
        )


class UnitStrategy(NamedTuple):
    activate: Callable[[torch.Tensor], torch.Tensor]
    sample: Callable[[torch.Tensor], torch.Tensor]


HIDDEN_UNITS = (UnitType.BINARY, UnitType.RELU, UnitType.RELU6, UnitType.RELU1)
VISIBLE_UNITS = (UnitType.BINARY, UnitType.GAUSSIAN)


def _relu(x: torch.Tensor) -> torch.Tensor:
    return x.clamp(min=0.0)


def _relu6(x: torch.Tensor) -> torch.Tensor:
    return x.clamp(min=0.0, max=6.0)


def _relu1(x: torch.Tensor) -> torch.Tensor:
    return x.clamp(min=0.0, max=1.0)


def _binary_gaussian(x: torch.Tensor) -> torch.Tensor:
    return torch.sigmoid(GAUSSIAN_PRECISION * x)


def _relu_sample(p: torch.Tensor) -> torch.Tensor:
    # Noise is added to the already rectified value, not to the raw
    # pre-activation; this only approximates the NReLU Gibbs step.
    return _relu(noise.logistic_noise(p))


def _identity(x: torch.Tensor) -> torch.Tensor:
    return x


_HIDDEN: Dict[UnitType, UnitStrategy] = {
    UnitType.BINARY: UnitStrategy(torch.sigmoid, noise.bernoulli),
    UnitType.RELU: UnitStrategy(_relu, _relu_sample),
    UnitType.RELU6: UnitStrategy(_relu6, lambda p: noise.ranged_noise(p, 6.0)),
    UnitType.RELU1: UnitStrategy(_relu1, lambda p: noise.ranged_noise(p, 1.0)),
}

_VISIBLE: Dict[UnitType, UnitStrategy] = {
    UnitType.BINARY: UnitStrategy(torch.sigmoid, noise.bernoulli),
    UnitType.GAUSSIAN: UnitStrategy(_identity, noise.normal_noise),
}


def visible_strategy(visible: UnitType) -> UnitStrategy:
    if visible not in _VISIBLE:
        raise ConfigurationError(
            f"Invalid visible unit type {visible.value!r}; "
            f"expected one of {[u.value for u in VISIBLE_UNITS]}"
        )
    return _VISIBLE[visible]


def hidden_strategy(hidden: UnitType, visible: UnitType) -> UnitStrategy:
    """Resolve the hidden strategy, which for BINARY units depends on the visible type."""
    visible_strategy(visible)

    if hidden not in _HIDDEN:
        raise ConfigurationError(
            f"Invalid hidden unit type {hidden.value!r}; "
            f"expected one of {[u.value for u in HIDDEN_UNITS]}"
        )

    if hidden is UnitType.BINARY and visible is UnitType.GAUSSIAN:
        return UnitStrategy(_binary_gaussian, noise.bernoulli)
    return _HIDDEN[hidden]
