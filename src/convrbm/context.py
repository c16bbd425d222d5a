"""Gradient / optimizer state for training a ConvRBM with SGD."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import torch


@dataclass(eq=False)
class SGDContext:
    """Buffers a CD training driver needs for one ConvRBM layer.

    The driver owns this object. The layer only keeps a weak reference to it
    (see ``ConvRBM.init_sgd_context``).
    """

    nc: int
    nv1: int
    nv2: int
    k: int
    nh1: int
    nh2: int
    batch_size: int = 25
    dtype: torch.dtype = torch.float32
    device: Optional[torch.device] = None

    w_grad: torch.Tensor = field(init=False)
    b_grad: torch.Tensor = field(init=False)
    c_grad: torch.Tensor = field(init=False)

    # momentum increments
    w_inc: torch.Tensor = field(init=False)
    b_inc: torch.Tensor = field(init=False)
    c_inc: torch.Tensor = field(init=False)

    v1: torch.Tensor = field(init=False)
    h1_a: torch.Tensor = field(init=False)
    h1_s: torch.Tensor = field(init=False)
    v2_a: torch.Tensor = field(init=False)
    v2_s: torch.Tensor = field(init=False)
    h2_a: torch.Tensor = field(init=False)
    h2_s: torch.Tensor = field(init=False)

    def __post_init__(self) -> None:
        nw1 = self.nv1 - self.nh1 + 1
        nw2 = self.nv2 - self.nh2 + 1
        B = self.batch_size

        def zeros(*shape: int) -> torch.Tensor:
            return torch.zeros(*shape, dtype=self.dtype, device=self.device)

        self.w_grad = zeros(self.k, self.nc, nw1, nw2)
        self.b_grad = zeros(self.k)
        self.c_grad = zeros(self.nc)

        self.w_inc = zeros(self.k, self.nc, nw1, nw2)
        self.b_inc = zeros(self.k)
        self.c_inc = zeros(self.nc)

        self.v1 = zeros(B, self.nc, self.nv1, self.nv2)
        self.h1_a = zeros(B, self.k, self.nh1, self.nh2)
        self.h1_s = zeros(B, self.k, self.nh1, self.nh2)
        self.v2_a = zeros(B, self.nc, self.nv1, self.nv2)
        self.v2_s = zeros(B, self.nc, self.nv1, self.nv2)
        self.h2_a = zeros(B, self.k, self.nh1, self.nh2)
        self.h2_s = zeros(B, self.k, self.nh1, self.nh2)
