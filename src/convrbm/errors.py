"""Exceptions raised by the convolutional RBM layer."""

from __future__ import annotations


class ConvRBMError(Exception):
    """Base class for all convrbm errors."""


class ConfigurationError(ConvRBMError, ValueError):
    """Unsupported unit-type combination or malformed layer config."""


class ShapeError(ConvRBMError, ValueError):
    """Input cannot be adapted to the layer's canonical shape."""


class NotInitializedError(ConvRBMError, RuntimeError):
    """The layer was used before ``init_layer`` allocated its tensors."""


class NaNCheckError(ConvRBMError, FloatingPointError):
    """A freshly computed tensor contains NaN or infinite values."""

    def __init__(self, name: str, n_bad: int, numel: int) -> None:
        super().__init__(f"{name}: {n_bad}/{numel} values are NaN or infinite")
        self.name = name
        self.n_bad = n_bad
        self.numel = numel
