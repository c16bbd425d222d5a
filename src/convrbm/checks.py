"""Development-time numerical checks and the activation timing hook."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator

import torch

from .errors import NaNCheckError

logger = logging.getLogger(__name__)


def nan_check_deep(t: torch.Tensor, name: str = "tensor") -> None:
    """Raise ``NaNCheckError`` if any element of ``t`` is NaN or infinite."""
    bad = ~torch.isfinite(t)
    if bad.any():
        raise NaNCheckError(name, int(bad.sum().item()), t.numel())


@contextmanager
def auto_timer(name: str) -> Iterator[None]:
    """Log the wall time spent inside the block at DEBUG level."""
    if not logger.isEnabledFor(logging.DEBUG):
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug("%s: %.3f ms", name, elapsed_ms)
