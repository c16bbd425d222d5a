"""Diagnostics for checking a ConvRBM's energies and monitoring Gibbs chains."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import torch
from tqdm.auto import tqdm

from .errors import ConfigurationError
from .model import ConvRBM
from .pool import WorkerPool


class EnergyTester:
    """Cross-check the analytic free energy against brute-force enumeration.

    Args:
        model: Initialized ConvRBM with BINARY hidden units.
        max_hidden_units: Refuse enumeration above this many hidden units
            (there are ``2 ** n`` hidden configurations).
        progress: Show tqdm progress bars.
    """

    def __init__(
        self,
        model: ConvRBM,
        *,
        max_hidden_units: int = 12,
        progress: bool = False,
    ):
        self.model = model
        self.max_hidden_units = max_hidden_units
        self.progress = progress

    def _require_energy(self) -> None:
        if not self.model.has_energy:
            raise ConfigurationError(
                f"No energy is defined for {self.model.hidden_unit.name} hidden / "
                f"{self.model.visible_unit.name} visible units"
            )

    @staticmethod
    def _int_to_bits(value: int, n: int) -> torch.Tensor:
        """Convert an integer to n binary bits (LSB-first)."""
        return torch.tensor([(value >> i) & 1 for i in range(n)], dtype=torch.float64)

    @torch.no_grad()
    def exact_free_energy(self, v: Any) -> float:
        """F(v) = -log sum_h exp(-E(v, h)), summing over every hidden state."""
        self._require_energy()
        n = self.model.output_size()
        if n > self.max_hidden_units:
            raise ValueError(
                f"Refusing to enumerate 2**{n} hidden states "
                f"(max_hidden_units={self.max_hidden_units})"
            )

        v = self.model.as_visible(v)
        neg_energies: List[float] = []

        for value in tqdm(range(2 ** n), desc="hidden states", leave=False, disable=not self.progress):
            h = self._int_to_bits(value, n)
            neg_energies.append(-self.model.energy(v, h))

        return -float(torch.logsumexp(torch.tensor(neg_energies, dtype=torch.float64), dim=0))

    def check_free_energy(self, v: Any, *, atol: float = 1e-4) -> Dict[str, Any]:
        """Compare analytic and enumerated free energy of one visible sample.

        Returns:
            Dictionary with ``analytic``, ``exact``, ``abs_error`` and ``ok``.
        """
        self._require_energy()
        analytic = self.model.free_energy(v)
        exact = self.exact_free_energy(v)
        err = abs(analytic - exact)
        return {
            "analytic": analytic,
            "exact": exact,
            "abs_error": err,
            "ok": bool(err <= atol * max(1.0, abs(exact))),
        }

    @torch.no_grad()
    def gibbs_monitor(
        self,
        v: Any,
        *,
        steps: int = 10,
        pool: Optional[WorkerPool] = None,
    ) -> Dict[str, list]:
        """Run a sampled Gibbs chain from ``v`` and record per-step statistics.

        Returns:
            History dictionary with ``step``, ``free_energy`` (batch mean of
            the chain state) and ``recon_mse`` (against the starting data).
        """
        data = self.model.as_visible_batch(v)
        chain = data

        history: Dict[str, list] = {"step": [], "free_energy": [], "recon_mse": []}

        pbar = tqdm(range(1, steps + 1), desc="Gibbs chain", disable=not self.progress)
        for step in pbar:
            _, h = self.model.batch_activate_hidden(chain, pool=pool)
            v_a, v_s = self.model.batch_activate_visible(h, pool=pool)
            chain = v_s

            fe = self.model.batch_free_energy(chain).mean().item()
            mse = torch.mean((data - v_a) ** 2).item()

            history["step"].append(step)
            history["free_energy"].append(fe)
            history["recon_mse"].append(mse)

            pbar.set_postfix(fe=f"{fe:.3f}", mse=f"{mse:.4f}")

        pbar.close()
        return history
