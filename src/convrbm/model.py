"""
Convolutional Restricted Boltzmann Machine (CRBM) layer in PyTorch.

Follows the CRBM definition of Honglak Lee:

- Visible units: BINARY or GAUSSIAN
- Hidden units: BINARY, RELU, RELU6 or RELU1
- k filters of shape (nc, nw1, nw2) shared over the visible image
- Forward pass: valid cross-correlation, backward pass: full convolution

The layer only computes activations, samples and energies. Weight updates
are done by an external training driver through ``init_sgd_context``.

Config:
    config["model"] = {"visible_unit": "binary", "hidden_unit": "relu",
                       "nc": 1, "nv1": 28, "nv2": 28, "k": 40, "nh1": 24, "nh2": 24}
"""

from __future__ import annotations

import logging
import math
import weakref
from typing import Any, Dict, List, Optional, Sequence, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from .checks import auto_timer, nan_check_deep
from .context import SGDContext
from .errors import ConvRBMError, NotInitializedError, ShapeError
from .pool import WorkerPool, maybe_parallel
from .units import UnitStrategy, UnitType, hidden_strategy, visible_strategy

logger = logging.getLogger(__name__)

SHAPE_KEYS = ("nc", "nv1", "nv2", "k", "nh1", "nh2")

_PHASE_BUFFERS = ("v1", "h1_a", "h1_s", "v2_a", "v2_s", "h2_a", "h2_s")
_BACKUP_BUFFERS = ("bak_W", "bak_b", "bak_c")

Pair = Tuple[torch.Tensor, Optional[torch.Tensor]]


class ConvRBM(nn.Module):
    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()

        # Accept either a full app config with "model" key, or a model-only dict.
        config = config or {}
        model_cfg = config.get("model", config)

        self.visible_unit = UnitType.parse(model_cfg.get("visible_unit", "binary"))
        self.hidden_unit = UnitType.parse(model_cfg.get("hidden_unit", "binary"))

        # Raises ConfigurationError for unsupported combinations
        self._hidden: UnitStrategy = hidden_strategy(self.hidden_unit, self.visible_unit)
        self._visible: UnitStrategy = visible_strategy(self.visible_unit)

        self.batch_size = int(model_cfg.get("batch_size", 25))
        self.serial = bool(model_cfg.get("serial", False))
        self.nan_checks = bool(model_cfg.get("nan_checks", True))

        self.nc = self.nv1 = self.nv2 = 0
        self.k = self.nh1 = self.nh2 = 0
        self.nw1 = self.nw2 = 0

        # --------- unallocated until init_layer ----------
        self.register_parameter("W", None)
        self.register_parameter("b", None)
        self.register_parameter("c", None)

        for name in _PHASE_BUFFERS + _BACKUP_BUFFERS:
            self.register_buffer(name, None, persistent=False)

        self._sgd_context: Optional[weakref.ref] = None

        dims = [model_cfg.get(key) for key in SHAPE_KEYS]
        if all(d is not None for d in dims):
            self.init_layer(*(int(d) for d in dims))

    # --------------------------------------------------
    # Shape resolution
    # --------------------------------------------------

    def init_layer(self, nc: int, nv1: int, nv2: int, k: int, nh1: int, nh2: int) -> None:
        """Resolve the filter shape, allocate every tensor and re-initialize parameters.

        ``nh <= nv`` is not checked; a larger hidden map gives a non-positive
        filter dimension and torch fails on allocation or at the first
        convolution.
        """
        self.nc, self.nv1, self.nv2 = nc, nv1, nv2
        self.k, self.nh1, self.nh2 = k, nh1, nh2

        self.nw1 = nv1 - nh1 + 1
        self.nw2 = nv2 - nh2 + 1

        kw = self._factory_kwargs()

        if self.hidden_unit.is_relu():
            W = torch.empty(k, nc, self.nw1, self.nw2, **kw)
            nn.init.normal_(W, mean=0.0, std=0.01)
            b = torch.zeros(k, **kw)
        else:
            W = 0.01 * torch.randn(k, nc, self.nw1, self.nw2, **kw)
            # negative bias keeps logistic units sparse at start
            b = torch.full((k,), -0.1, **kw)

        self.W = nn.Parameter(W)
        self.b = nn.Parameter(b)
        self.c = nn.Parameter(torch.zeros(nc, **kw))

        self.v1 = torch.zeros(nc, nv1, nv2, **kw)
        self.h1_a = torch.zeros(k, nh1, nh2, **kw)
        self.h1_s = torch.zeros(k, nh1, nh2, **kw)
        self.v2_a = torch.zeros(nc, nv1, nv2, **kw)
        self.v2_s = torch.zeros(nc, nv1, nv2, **kw)
        self.h2_a = torch.zeros(k, nh1, nh2, **kw)
        self.h2_s = torch.zeros(k, nh1, nh2, **kw)

        self.bak_W = self.bak_b = self.bak_c = None

        logger.debug("init_layer: %s", self.to_short_string())

    def _factory_kwargs(self) -> Dict[str, Any]:
        if self.W is not None:
            return {"dtype": self.W.dtype, "device": self.W.device}
        return {"dtype": torch.get_default_dtype(), "device": torch.device("cpu")}

    def _require_init(self) -> None:
        if self.W is None:
            raise NotInitializedError("ConvRBM.init_layer() must be called before use")

    @property
    def initialized(self) -> bool:
        return self.W is not None

    # --------------------------------------------------
    # Dimension queries
    # --------------------------------------------------

    @property
    def visible_shape(self) -> Tuple[int, int, int]:
        return (self.nc, self.nv1, self.nv2)

    @property
    def hidden_shape(self) -> Tuple[int, int, int]:
        return (self.k, self.nh1, self.nh2)

    def input_size(self) -> int:
        return self.nc * self.nv1 * self.nv2

    def output_size(self) -> int:
        return self.k * self.nh1 * self.nh2

    def parameters_count(self) -> int:
        """Number of shared weights (biases are not counted)."""
        return self.nc * self.k * self.nw1 * self.nw2

    def to_short_string(self) -> str:
        return (
            f"CRBM(dyn)({self.hidden_unit.name}): "
            f"{self.nv1}x{self.nv2}x{self.nc} -> ({self.nw1}x{self.nw2}) -> "
            f"{self.nh1}x{self.nh2}x{self.k}"
        )

    def extra_repr(self) -> str:
        return self.to_short_string()

    # --------------------------------------------------
    # Input adapters
    # --------------------------------------------------

    def _adapt(self, x: Any, shape: Sequence[int], what: str) -> torch.Tensor:
        self._require_init()
        t = torch.as_tensor(x, dtype=self.W.dtype, device=self.W.device)
        if t.numel() != math.prod(shape):
            raise ShapeError(
                f"Cannot adapt {what} input of shape {tuple(t.shape)} to {tuple(shape)}"
            )
        return t.reshape(*shape)

    def _adapt_batch(self, x: Any, shape: Sequence[int], what: str) -> torch.Tensor:
        self._require_init()
        t = torch.as_tensor(x, dtype=self.W.dtype, device=self.W.device)
        n = math.prod(shape)
        # an empty batch keeps its per-sample size in the trailing dims
        if t.numel() == 0 and t.dim() > 1 and math.prod(t.shape[1:]) == n:
            return t.reshape(0, *shape)
        if t.dim() == 0 or t.numel() == 0 or t.numel() % n != 0:
            raise ShapeError(
                f"Cannot adapt {what} batch of shape {tuple(t.shape)} to (B, {', '.join(map(str, shape))})"
            )
        return t.reshape(-1, *shape)

    def as_visible(self, x: Any) -> torch.Tensor:
        """Convert ``x`` (tensor, array, nested list, flat vector) to ``(nc, nv1, nv2)``."""
        return self._adapt(x, self.visible_shape, "visible")

    def as_hidden(self, x: Any) -> torch.Tensor:
        """Convert ``x`` to ``(k, nh1, nh2)``."""
        return self._adapt(x, self.hidden_shape, "hidden")

    def as_visible_batch(self, x: Any) -> torch.Tensor:
        """Convert ``x`` to ``(B, nc, nv1, nv2)``; a single sample becomes B=1."""
        return self._adapt_batch(x, self.visible_shape, "visible")

    def as_hidden_batch(self, x: Any) -> torch.Tensor:
        return self._adapt_batch(x, self.hidden_shape, "hidden")

    # --------------------------------------------------
    # Buffer factories
    # --------------------------------------------------

    def prepare_input(self) -> torch.Tensor:
        self._require_init()
        return torch.zeros(self.visible_shape, **self._factory_kwargs())

    def prepare_one_output(self) -> torch.Tensor:
        self._require_init()
        return torch.zeros(self.hidden_shape, **self._factory_kwargs())

    def prepare_output(self, samples: int) -> List[torch.Tensor]:
        return [self.prepare_one_output() for _ in range(samples)]

    def prepare_input_batch(self, batch_size: Optional[int] = None) -> torch.Tensor:
        self._require_init()
        B = self.batch_size if batch_size is None else batch_size
        return torch.zeros((B,) + self.visible_shape, **self._factory_kwargs())

    def prepare_output_batch(self, batch_size: Optional[int] = None) -> torch.Tensor:
        self._require_init()
        B = self.batch_size if batch_size is None else batch_size
        return torch.zeros((B,) + self.hidden_shape, **self._factory_kwargs())

    # --------------------------------------------------
    # Core operators
    # --------------------------------------------------

    def _valid(self, v: torch.Tensor) -> torch.Tensor:
        """(B, nc, nv1, nv2) -> (B, k, nh1, nh2), cross-correlation with W."""
        return F.conv2d(v, self.W)

    def _full(self, h: torch.Tensor) -> torch.Tensor:
        """(B, k, nh1, nh2) -> (B, nc, nv1, nv2), transpose of ``_valid``."""
        return F.conv_transpose2d(h, self.W)

    def _check(self, t: torch.Tensor, name: str) -> None:
        if self.nan_checks:
            nan_check_deep(t, name)

    def _activate(self, strategy: UnitStrategy, x: torch.Tensor, sample: bool) -> Pair:
        probs = strategy.activate(x)
        samples = strategy.sample(probs) if sample else None
        return probs, samples

    @staticmethod
    def _out_buffers(out: Sequence[torch.Tensor], shape: Tuple[int, ...],
                     sample: bool, prefix: str) -> Pair:
        """Unpack caller-supplied ``out`` buffers, which must match ``shape`` exactly."""
        out_a, out_s = out
        bad = tuple(out_a.shape) != shape
        if sample:
            bad = bad or out_s is None or tuple(out_s.shape) != shape
        if bad:
            got = tuple(out_a.shape), None if out_s is None else tuple(out_s.shape)
            raise ShapeError(f"{prefix} output buffers must have shape {shape}, got {got}")
        return out_a, out_s

    def _emit(self, probs: torch.Tensor, samples: Optional[torch.Tensor],
              out: Optional[Sequence[torch.Tensor]], prefix: str) -> Pair:
        self._check(probs, f"{prefix}_a")
        if samples is not None:
            self._check(samples, f"{prefix}_s")

        if out is None:
            return probs, samples

        out_a, out_s = self._out_buffers(out, tuple(probs.shape), samples is not None, prefix)
        out_a.copy_(probs)
        if samples is None:
            return out_a, None
        out_s.copy_(samples)
        return out_a, out_s

    # --------------------------------------------------
    # Single-sample activations
    # --------------------------------------------------

    @torch.no_grad()
    def activate_hidden(
        self,
        v: Any,
        *,
        sample: bool = True,
        out: Optional[Sequence[torch.Tensor]] = None,
    ) -> Pair:
        """Compute P(h | v) and optionally a sample for one visible tensor.

        Args:
            v: Visible input, adapted to ``(nc, nv1, nv2)``.
            sample: If False, only probabilities are computed.
            out: Optional ``(h_a, h_s)`` tensors written in place.

        Returns:
            ``(h_a, h_s)`` of shape ``(k, nh1, nh2)``; ``h_s`` is None when
            ``sample`` is False.
        """
        with auto_timer("crbm:activate_hidden"):
            v = self.as_visible(v)
            x = self._valid(v.unsqueeze(0))[0] + self.b.view(-1, 1, 1)
            probs, samples = self._activate(self._hidden, x, sample)
            return self._emit(probs, samples, out, "h")

    @torch.no_grad()
    def activate_visible(
        self,
        h: Any,
        *,
        sample: bool = True,
        out: Optional[Sequence[torch.Tensor]] = None,
    ) -> Pair:
        """Reconstruct P(v | h) (or the Gaussian mean) from one hidden sample."""
        with auto_timer("crbm:activate_visible"):
            h = self.as_hidden(h)
            x = self._full(h.unsqueeze(0))[0] + self.c.view(-1, 1, 1)
            probs, samples = self._activate(self._visible, x, sample)
            return self._emit(probs, samples, out, "v")

    # --------------------------------------------------
    # Batched activations
    # --------------------------------------------------

    def _batch_activate(
        self,
        inputs: torch.Tensor,
        operator,
        bias: torch.Tensor,
        strategy: UnitStrategy,
        out_shape: Tuple[int, int, int],
        sample: bool,
        out: Optional[Sequence[torch.Tensor]],
        pool: Optional[WorkerPool],
        prefix: str,
    ) -> Pair:
        B = inputs.size(0)
        kw = self._factory_kwargs()

        if out is None:
            out_a = torch.empty((B,) + out_shape, **kw)
            out_s = torch.empty((B,) + out_shape, **kw) if sample else None
        else:
            out_a, out_s = self._out_buffers(out, (B,) + out_shape, sample, prefix)

        bias = bias.view(1, -1, 1, 1)

        # grad mode is thread-local, pool threads need their own no_grad
        @torch.no_grad()
        def work(start: int, end: int) -> None:
            x = operator(inputs[start:end]) + bias
            probs, samples = self._activate(strategy, x, sample)
            out_a[start:end].copy_(probs)
            if samples is not None:
                out_s[start:end].copy_(samples)

        maybe_parallel(work, B, pool=pool, serial=self.serial)

        self._check(out_a, f"{prefix}_a")
        if not sample:
            return out_a, None
        self._check(out_s, f"{prefix}_s")
        return out_a, out_s

    @torch.no_grad()
    def batch_activate_hidden(
        self,
        v: Any,
        *,
        sample: bool = True,
        out: Optional[Sequence[torch.Tensor]] = None,
        pool: Optional[WorkerPool] = None,
    ) -> Pair:
        """Batched ``activate_hidden`` over ``(B, nc, nv1, nv2)``.

        When a ``pool`` is given and the layer is not serial, the batch is
        split into chunks processed by the pool's threads.
        """
        with auto_timer("crbm:batch_activate_hidden"):
            v = self.as_visible_batch(v)
            return self._batch_activate(
                v, self._valid, self.b, self._hidden, self.hidden_shape,
                sample, out, pool, "h",
            )

    @torch.no_grad()
    def batch_activate_visible(
        self,
        h: Any,
        *,
        sample: bool = True,
        out: Optional[Sequence[torch.Tensor]] = None,
        pool: Optional[WorkerPool] = None,
    ) -> Pair:
        """Batched ``activate_visible`` over ``(B, k, nh1, nh2)``."""
        with auto_timer("crbm:batch_activate_visible"):
            h = self.as_hidden_batch(h)
            return self._batch_activate(
                h, self._full, self.c, self._visible, self.visible_shape,
                sample, out, pool, "v",
            )

    # --------------------------------------------------
    # Forward (semantic: inference, NOT training)
    # --------------------------------------------------

    def forward(self, v: torch.Tensor) -> torch.Tensor:
        """Return hidden probabilities for a batch."""
        return self.batch_activate_hidden(v, sample=False)[0]

    # --------------------------------------------------
    # Gibbs step on the layer's phase buffers
    # --------------------------------------------------

    @torch.no_grad()
    def gibbs_step(self, v: Any) -> None:
        """Run v1 -> h1 -> v2 -> h2 on one sample, filling the phase buffers."""
        self.v1.copy_(self.as_visible(v))
        self.activate_hidden(self.v1, out=(self.h1_a, self.h1_s))
        self.activate_visible(self.h1_s, out=(self.v2_a, self.v2_s))
        self.activate_hidden(self.v2_a, out=(self.h2_a, self.h2_s))

    @torch.no_grad()
    def reconstruct(self, v: Any, steps: int = 1, pool: Optional[WorkerPool] = None) -> torch.Tensor:
        """Run ``steps`` batched Gibbs steps and return the visible probabilities."""
        v = self.as_visible_batch(v)
        for _ in range(steps):
            _, h = self.batch_activate_hidden(v, pool=pool)
            v, _ = self.batch_activate_visible(h, sample=False, pool=pool)
        return v

    # --------------------------------------------------
    # Energy
    # --------------------------------------------------

    @property
    def has_energy(self) -> bool:
        """Energy is only defined for BINARY hidden with BINARY or GAUSSIAN visible units."""
        return self.hidden_unit is UnitType.BINARY and self.visible_unit in (
            UnitType.BINARY,
            UnitType.GAUSSIAN,
        )

    def _visible_term(self, v: torch.Tensor) -> torch.Tensor:
        """Per-sample visible energy term of a (B, nc, nv1, nv2) batch."""
        if self.visible_unit is UnitType.BINARY:
            return -(self.c * v.sum(dim=(2, 3))).sum(dim=1)
        return -((v - self.c.view(1, -1, 1, 1)) ** 2 / 2.0).sum(dim=(1, 2, 3))

    @torch.no_grad()
    def energy(self, v: Any, h: Any) -> float:
        """Joint energy E(v, h).

        Only BINARY/BINARY and GAUSSIAN/BINARY have a formula; every other
        pair returns 0.0 and the value must not be relied upon.
        """
        if not self.has_energy:
            return 0.0

        v = self.as_visible(v).unsqueeze(0)
        h = self.as_hidden(h)
        x = self._valid(v)[0]

        e = (
            self._visible_term(v)[0]
            - (self.b * h.sum(dim=(1, 2))).sum()
            - (h * x).sum()
        )
        return float(e.item())

    @torch.no_grad()
    def batch_free_energy(self, v: Any) -> torch.Tensor:
        """Per-sample free energy F(v) of a batch, zeros for unsupported pairs."""
        v = self.as_visible_batch(v)
        if not self.has_energy:
            return torch.zeros(v.size(0), dtype=v.dtype, device=v.device)

        x = self._valid(v) + self.b.view(1, -1, 1, 1)
        return self._visible_term(v) - F.softplus(x).sum(dim=(1, 2, 3))

    def free_energy(self, v: Any = None) -> float:
        """Free energy of ``v``, or of the layer's ``v1`` buffer when omitted."""
        self._require_init()
        if v is None:
            v = self.v1
        v = self.as_visible(v)
        return float(self.batch_free_energy(v.unsqueeze(0))[0].item())

    # --------------------------------------------------
    # Backup parameters
    # --------------------------------------------------

    @property
    def has_backup(self) -> bool:
        return self.bak_W is not None

    @torch.no_grad()
    def backup_parameters(self) -> None:
        """Copy W, b, c into the backup buffers, creating them on first use."""
        self._require_init()
        if self.bak_W is None or self.bak_W.shape != self.W.shape:
            self.bak_W = self.W.detach().clone()
            self.bak_b = self.b.detach().clone()
            self.bak_c = self.c.detach().clone()
        else:
            self.bak_W.copy_(self.W)
            self.bak_b.copy_(self.b)
            self.bak_c.copy_(self.c)

    @torch.no_grad()
    def restore_parameters(self) -> None:
        if not self.has_backup:
            raise ConvRBMError("restore_parameters() called without a backup")
        self.W.copy_(self.bak_W)
        self.b.copy_(self.bak_b)
        self.c.copy_(self.bak_c)

    # --------------------------------------------------
    # Training context
    # --------------------------------------------------

    def init_sgd_context(self, batch_size: Optional[int] = None) -> SGDContext:
        """Create the SGD state for this layer and attach it weakly.

        The caller owns the returned context. The layer never keeps it alive:
        ``sgd_context`` becomes None once the caller drops it.
        """
        self._require_init()
        ctx = SGDContext(
            self.nc, self.nv1, self.nv2, self.k, self.nh1, self.nh2,
            batch_size=self.batch_size if batch_size is None else batch_size,
            dtype=self.W.dtype,
            device=self.W.device,
        )
        self._sgd_context = weakref.ref(ctx)
        return ctx

    @property
    def sgd_context(self) -> Optional[SGDContext]:
        if self._sgd_context is None:
            return None
        return self._sgd_context()
