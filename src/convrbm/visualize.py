"""Filter visualization (needs the optional ``matplotlib`` dependency)."""

from __future__ import annotations

import math
from typing import Optional

from .model import ConvRBM


def plot_filters(
    model: ConvRBM,
    save_path: Optional[str] = None,
    show: bool = True,
    channel: int = 0,
) -> None:
    """Draw the ``k`` learned filters of one input channel as a grid of images.

    Args:
        model: Initialized ConvRBM.
        save_path: If provided, save the figure to this path.
        show: If True, display the plot interactively.
        channel: Input channel whose filters are drawn.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError as e:
        print(f"[plot_filters] matplotlib import failed: {e}")
        return

    model._require_init()
    filters = model.W.detach().cpu()[:, channel]

    n = filters.size(0)
    cols = int(math.ceil(math.sqrt(n)))
    rows = int(math.ceil(n / cols))

    fig, axes = plt.subplots(rows, cols, figsize=(1.6 * cols, 1.6 * rows), squeeze=False)

    vmax = float(filters.abs().max()) or 1.0
    for i, ax in enumerate(axes.flat):
        ax.axis("off")
        if i < n:
            ax.imshow(filters[i].numpy(), cmap="RdBu_r", vmin=-vmax, vmax=vmax)
            ax.set_title(f"k={i}", fontsize=8)

    fig.suptitle(f"{model.to_short_string()} | channel {channel}", fontsize=10, fontweight="bold")
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Filter grid saved to: {save_path}")

    if show:
        plt.show()
    else:
        plt.close(fig)
