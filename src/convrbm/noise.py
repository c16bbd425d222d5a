"""Noise generators used by the sampling step of each unit type.

All functions take a tensor of probabilities (or means) and return a new
tensor of the same shape; the input is never modified.
"""

from __future__ import annotations

import torch


def bernoulli(p: torch.Tensor) -> torch.Tensor:
    """Sample {0, 1} with P(1) = p."""
    return torch.bernoulli(p)


def normal_noise(x: torch.Tensor) -> torch.Tensor:
    """x + N(0, 1)."""
    return x + torch.randn_like(x)


def logistic_noise(x: torch.Tensor) -> torch.Tensor:
    """x + N(0, sigmoid(x)), the noisy rectifier approximation."""
    return x + torch.randn_like(x) * torch.sigmoid(x)


def ranged_noise(x: torch.Tensor, limit: float) -> torch.Tensor:
    """x + U(-0.5, 0.5), clipped to [0, limit]."""
    return (x + torch.rand_like(x) - 0.5).clamp(min=0.0, max=limit)
