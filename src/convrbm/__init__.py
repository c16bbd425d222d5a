"""Convolutional Restricted Boltzmann Machine layer."""

from .context import SGDContext
from .errors import (
    ConfigurationError,
    ConvRBMError,
    NaNCheckError,
    NotInitializedError,
    ShapeError,
)
from .model import ConvRBM
from .pool import WorkerPool
from .units import UnitType

__all__ = [
    "ConfigurationError",
    "ConvRBM",
    "ConvRBMError",
    "NaNCheckError",
    "NotInitializedError",
    "SGDContext",
    "ShapeError",
    "UnitType",
    "WorkerPool",
]

__version__ = "0.1.0"
