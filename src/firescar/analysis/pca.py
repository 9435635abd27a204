#!/usr/bin/env python3
"""pca.py

Principal component analysis of an NDVI stack.

Each layer (date) is a variable and each pixel an observation. The workflow
is the classic raster one:

1. layer_stats()          -> per-layer mean and the layer x layer covariance
2. principal_components() -> eigen-decomposition of that matrix
3. predict_scores()       -> project every pixel onto the first k components

Loadings (one weight per date) show WHEN a component is active; score maps
show WHERE. On a fire year the first component is overall greenness and a
later one picks up the post-fire drop inside the burn scars.

Only complete-case pixels (valid in every layer) enter the statistics.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from firescar.ingest.stack import NdviStack


@dataclass
class LayerStats:
    mean: np.ndarray
    covariance: np.ndarray
    n_cells: int

    @property
    def sd(self) -> np.ndarray:
        return np.sqrt(np.diag(self.covariance))

    def correlation(self) -> np.ndarray:
        sd = self.sd
        denom = np.outer(sd, sd)
        with np.errstate(divide="ignore", invalid="ignore"):
            corr = np.where(denom > 0, self.covariance / denom, 0.0)
        np.fill_diagonal(corr, 1.0)
        return corr


@dataclass
class PcaResult:
    """Loadings are unit eigenvectors, one column per component."""

    loadings: np.ndarray
    sdev: np.ndarray
    center: np.ndarray
    scale: np.ndarray
    dates: List[date]

    @property
    def n_components(self) -> int:
        return int(self.loadings.shape[1])

    @property
    def explained_variance_ratio(self) -> np.ndarray:
        var = self.sdev ** 2
        total = var.sum()
        return var / total if total > 0 else np.zeros_like(var)

    def summary(self) -> pd.DataFrame:
        var = self.sdev ** 2
        ratio = self.explained_variance_ratio
        return pd.DataFrame({
            "component": [f"PC{i + 1}" for i in range(len(var))],
            "sdev": self.sdev,
            "variance": var,
            "proportion": ratio,
            "cumulative": np.cumsum(ratio),
        })


def _complete_cases(stack: NdviStack) -> np.ndarray:
    """(n_pixels, n_layers) matrix of pixels valid in every layer."""
    mask = np.ma.getmaskarray(stack.data).any(axis=0)
    values = np.ma.getdata(stack.data).astype(np.float64)
    return values[:, ~mask].T


def layer_stats(stack: NdviStack) -> LayerStats:
    """Per-layer mean and sample covariance (divisor n - 1) over complete cases."""
    x = _complete_cases(stack)
    if x.shape[0] < 2:
        raise ValueError(f"Need at least 2 complete pixels for covariance, found {x.shape[0]}")
    mean = x.mean(axis=0)
    cov = np.cov(x, rowvar=False, ddof=1)
    cov = np.atleast_2d(cov)
    return LayerStats(mean=mean, covariance=cov, n_cells=int(x.shape[0]))


def standardize_stack(stack: NdviStack, stats: Optional[LayerStats] = None) -> NdviStack:
    """Per-layer z-score. Zero-variance layers are only centred."""
    stats = stats or layer_stats(stack)
    sd = np.where(stats.sd > 0, stats.sd, 1.0)
    z = (stack.data - stats.mean[:, None, None].astype(np.float32)) / sd[:, None, None].astype(np.float32)
    return NdviStack(
        data=z.astype(np.float32),
        dates=list(stack.dates),
        names=list(stack.names),
        transform=stack.transform,
        crs=stack.crs,
        nodata=stack.nodata,
        profile=dict(stack.profile),
    )


def principal_components(
    stats: LayerStats,
    dates: Sequence[date],
    *,
    use_correlation: bool = False,
) -> PcaResult:
    """Eigen-decompose the covariance (or correlation) matrix.

    Components come out in decreasing variance. Each eigenvector is signed
    so its loadings sum to >= 0, which keeps results stable between runs.
    """
    if len(dates) != stats.covariance.shape[0]:
        raise ValueError(f"{len(dates)} dates for a {stats.covariance.shape[0]}-layer covariance matrix")

    matrix = stats.correlation() if use_correlation else stats.covariance
    eigval, eigvec = np.linalg.eigh(matrix)
    order = np.argsort(eigval)[::-1]
    eigval = np.clip(eigval[order], 0.0, None)
    eigvec = eigvec[:, order]

    signs = np.where(eigvec.sum(axis=0) < 0, -1.0, 1.0)
    eigvec = eigvec * signs

    if use_correlation:
        scale = np.where(stats.sd > 0, stats.sd, 1.0)
    else:
        scale = np.ones_like(stats.mean)

    return PcaResult(
        loadings=eigvec,
        sdev=np.sqrt(eigval),
        center=stats.mean.copy(),
        scale=scale,
        dates=list(dates),
    )


def predict_scores(stack: NdviStack, pca: PcaResult, components: Sequence[int] = (1, 2)) -> np.ma.MaskedArray:
    """Score maps for the requested (1-based) components.

    Returns a float32 masked array (k, rows, cols); a cell masked in any
    layer is masked in every score map.
    """
    comps = [int(c) for c in components]
    for c in comps:
        if not 1 <= c <= pca.n_components:
            raise ValueError(f"Component {c} out of range 1..{pca.n_components}")
    if stack.count != len(pca.center):
        raise ValueError(f"Stack has {stack.count} layers, PCA was fit on {len(pca.center)}")

    mask = np.ma.getmaskarray(stack.data).any(axis=0)
    x = np.ma.getdata(stack.data).astype(np.float64).reshape(stack.count, -1).T
    x = (x - pca.center) / pca.scale
    w = pca.loadings[:, [c - 1 for c in comps]]
    scores = (x @ w).T.reshape(len(comps), stack.height, stack.width)

    full_mask = np.broadcast_to(mask, scores.shape)
    return np.ma.MaskedArray(np.where(full_mask, 0.0, scores).astype(np.float32), mask=full_mask.copy())


def loadings_frame(pca: PcaResult, n: Optional[int] = None) -> pd.DataFrame:
    """Loadings by date for the first ``n`` components (all by default)."""
    n = pca.n_components if n is None else min(int(n), pca.n_components)
    df = pd.DataFrame(pca.loadings[:, :n], columns=[f"PC{i + 1}" for i in range(n)])
    df.insert(0, "date", list(pca.dates))
    return df
