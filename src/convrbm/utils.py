"""Device and seeding helpers."""

from __future__ import annotations

import random
from typing import Optional, Union

import torch


def resolve_device(device: Union[str, torch.device, None] = "auto") -> torch.device:
    """Map "auto" to CUDA when available, otherwise return the requested device."""
    if device is None or device == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(device)


def set_seed(seed: Optional[int]) -> None:
    """Seed python and torch RNGs. ``None`` leaves them untouched."""
    if seed is None:
        return
    random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
