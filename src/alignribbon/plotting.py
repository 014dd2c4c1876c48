from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

import matplotlib.pyplot as plt
import numpy as np

from .models import Interval

logger = logging.getLogger(__name__)


def _save(out_png: Path, *, xlabel: str, ylabel: str, title: str) -> None:
    if xlabel:
        plt.xlabel(xlabel)
    plt.ylabel(ylabel)
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
    logger.debug("Wrote plot %s", out_png)


def plot_read_length_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Read length distribution",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    edges = np.asarray(bin_edges, dtype=float)
    plt.figure()
    if counts:
        plt.bar(edges[:-1], counts, width=np.diff(edges), align="edge")
    _save(out_png, xlabel="Read length (bp)", ylabel="Read count", title=title)


def plot_interval_counts(
    *,
    intervals: Sequence[Interval],
    out_png: str | Path,
    title: str = "Alignments per consolidated interval",
    max_bars: int = 40,
) -> None:
    """Bar chart of alignment counts for the retained intervals, in axis order.

    Only the first ``max_bars`` intervals are drawn.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    shown = [iv for iv in intervals if iv.retained][:max_bars]
    labels = [f"{iv.chrom}:{iv.start}-{iv.end}" for iv in shown]

    plt.figure(figsize=(max(6.4, 0.35 * len(shown)), 4.8))
    plt.bar(range(len(shown)), [iv.alignment_count for iv in shown])
    plt.xticks(range(len(shown)), labels, rotation=60, ha="right", fontsize=7)
    _save(out_png, xlabel="", ylabel="Alignment count", title=title)


def plot_alignments_per_read(
    *,
    alignments_per_read: Sequence[int],
    out_png: str | Path,
    title: str = "Alignments per read",
    max_bin: int = 10,
) -> None:
    """Bars for 1..max_bin alignments; larger counts share one ``max_bin+1+`` bar."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    n = np.clip(np.asarray(alignments_per_read, dtype=int), 0, max_bin + 1)
    counts = np.bincount(n, minlength=max_bin + 2)[1:]
    labels = [str(k) for k in range(1, max_bin + 1)] + [f"{max_bin + 1}+"]
    if counts[-1] == 0:
        counts, labels = counts[:-1], labels[:-1]

    plt.figure()
    plt.bar(range(len(counts)), counts)
    plt.xticks(range(len(counts)), labels)
    _save(out_png, xlabel="Number of alignments in read", ylabel="Read count", title=title)
