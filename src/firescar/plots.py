#!/usr/bin/env python3
"""firescar.plots

Figures for each step of the fire walkthrough.

Every function returns the matplotlib Figure and writes it to ``out`` when a
path is given. Nothing here calls plt.show(); the walkthrough runs headless.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from firescar.analysis.pca import PcaResult
from firescar.ingest.stack import NdviStack


plt.rcParams.update({
    "figure.figsize": (7, 4),
    "axes.grid": True,
    "axes.spines.top": False,
    "axes.spines.right": False,
})

NDVI_CMAP = "RdYlGn"


def _save(fig, out: Optional[Path]):
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(out, dpi=150, bbox_inches="tight")
        print(f"Wrote figure -> {out}")
    return fig


def _extent(stack: NdviStack):
    b = stack.bounds
    return (b.left, b.right, b.bottom, b.top)


def plot_layer(stack: NdviStack, index: int = 0, *, out: Optional[Path] = None):
    """Map of a single NDVI layer."""
    fig, ax = plt.subplots()
    im = ax.imshow(stack.data[index], cmap=NDVI_CMAP, vmin=-0.2, vmax=1.0, extent=_extent(stack))
    ax.set_title(f"NDVI {stack.dates[index].isoformat()}")
    ax.grid(False)
    fig.colorbar(im, ax=ax, label="NDVI")
    return _save(fig, out)


def plot_pixel_series(samples: pd.DataFrame, *, out: Optional[Path] = None):
    """One line per sampled cell, NDVI against date."""
    fig, ax = plt.subplots()
    for _, grp in samples.groupby("cell"):
        ax.plot(pd.to_datetime(grp["date"]), grp["ndvi"], lw=0.8, alpha=0.6)
    ax.set_xlabel("Date")
    ax.set_ylabel("NDVI")
    ax.set_title(f"NDVI time series, {samples['cell'].nunique()} random pixels")
    fig.autofmt_xdate()
    return _save(fig, out)


def plot_zonal_means(zonal: pd.DataFrame, *, labels: Optional[dict] = None, out: Optional[Path] = None):
    """Zonal value against date, one line per zone."""
    labels = labels or {0: "unburned", 1: "burned"}
    fig, ax = plt.subplots()
    for zone, grp in zonal.groupby("zone"):
        ax.plot(pd.to_datetime(grp["date"]), grp["value"], marker="o", ms=3, label=labels.get(zone, f"zone {zone}"))
    ax.set_xlabel("Date")
    ax.set_ylabel("Mean NDVI")
    ax.legend()
    fig.autofmt_xdate()
    return _save(fig, out)


def plot_loadings(pca: PcaResult, n: int = 3, *, out: Optional[Path] = None):
    """Loadings of the first n components against date."""
    n = min(n, pca.n_components)
    dates = pd.to_datetime(pd.Series(pca.dates))
    fig, ax = plt.subplots()
    ratio = pca.explained_variance_ratio
    for i in range(n):
        ax.plot(dates, pca.loadings[:, i], label=f"PC{i + 1} ({ratio[i]:.0%})")
    ax.axhline(0, color="0.5", lw=0.8)
    ax.set_xlabel("Date")
    ax.set_ylabel("Loading")
    ax.legend()
    fig.autofmt_xdate()
    return _save(fig, out)


def plot_scores(
    scores: np.ma.MaskedArray,
    stack: NdviStack,
    components: Sequence[int] = (1, 2),
    *,
    out: Optional[Path] = None,
):
    """Side-by-side score maps."""
    k = scores.shape[0]
    fig, axes = plt.subplots(1, k, figsize=(5 * k, 4), squeeze=False)
    for i, ax in enumerate(axes[0]):
        im = ax.imshow(scores[i], cmap="viridis", extent=_extent(stack))
        ax.set_title(f"PC{components[i]} score")
        ax.grid(False)
        fig.colorbar(im, ax=ax)
    return _save(fig, out)
