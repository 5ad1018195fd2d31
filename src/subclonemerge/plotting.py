from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np

from .treemerge import NodePlacement

logger = logging.getLogger(__name__)


def plot_leftover_counts(
    *,
    placements: Sequence[NodePlacement],
    out_png: str | Path,
    title: str = "Unexplained events per subclone",
) -> None:
    """Bar chart of leftover events per node of the derived tree.

    Bars of nodes that could not be placed at all are drawn in red.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = [p.label for p in placements]
    values = [len(p.placement.leftover) for p in placements]
    colors = ["tab:blue" if p.placement.placeable else "tab:red" for p in placements]

    plt.figure(figsize=(max(4.0, 0.5 * len(labels) + 2.0), 4.0))
    plt.bar(range(len(labels)), values, color=colors)
    plt.xlabel("Subclone (derived tree)")
    plt.ylabel("Leftover events")
    plt.title(title)
    plt.xticks(range(len(labels)), labels, rotation=30, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_compatibility_matrix(
    *,
    compatible: np.ndarray,
    p_ids: Sequence[str],
    q_ids: Sequence[str],
    out_png: str | Path,
    title: str = "Tree compatibility",
    max_ticks: int = 40,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    mat = np.asarray(compatible, dtype=float)
    if mat.size == 0:
        mat = np.zeros((1, 1))

    plt.figure()
    plt.imshow(mat, cmap="Greens", vmin=0.0, vmax=1.0, aspect="auto", interpolation="nearest")
    plt.xlabel("Derived tree (q)")
    plt.ylabel("Reference tree (p)")
    plt.title(title)
    # Tick labels become unreadable past a few dozen trees.
    if 0 < len(q_ids) <= max_ticks:
        plt.xticks(range(len(q_ids)), list(q_ids), rotation=90)
    if 0 < len(p_ids) <= max_ticks:
        plt.yticks(range(len(p_ids)), list(p_ids))
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
