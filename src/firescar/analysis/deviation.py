#!/usr/bin/env python3
"""deviation.py

Cell-wise overlays and deviation maps.

overlay() applies a function to two aligned (broadcastable) masked arrays;
the deviation helpers are the two overlays the fire lesson uses: each date
against the pixel's own seasonal mean, and each date against the unburned
landscape mean for that date.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from firescar.ingest.stack import NdviStack


def overlay(
    a: np.ma.MaskedArray,
    b: np.ma.MaskedArray,
    fun: Callable[[np.ndarray, np.ndarray], np.ndarray] = np.subtract,
) -> np.ma.MaskedArray:
    """Apply ``fun`` cell by cell; masked where either input is masked."""
    a = np.ma.asarray(a)
    b = np.ma.asarray(b)
    mask = np.ma.getmaskarray(a) | np.ma.getmaskarray(b)
    with np.errstate(invalid="ignore", divide="ignore"):
        out = np.asarray(fun(np.ma.getdata(a), np.ma.getdata(b)), dtype=np.float32)
    mask = np.broadcast_to(mask, out.shape) | ~np.isfinite(out)
    return np.ma.MaskedArray(out, mask=mask)


def temporal_mean(stack: NdviStack) -> np.ma.MaskedArray:
    """Per-pixel mean across layers, ignoring masked layers."""
    return stack.data.mean(axis=0).astype(np.float32)


def _with_data(stack: NdviStack, data: np.ma.MaskedArray) -> NdviStack:
    return NdviStack(
        data=data,
        dates=list(stack.dates),
        names=list(stack.names),
        transform=stack.transform,
        crs=stack.crs,
        nodata=stack.nodata,
        profile=dict(stack.profile),
    )


def deviation_from_mean(stack: NdviStack) -> NdviStack:
    """Each layer minus the pixel's temporal mean."""
    return _with_data(stack, overlay(stack.data, temporal_mean(stack)[np.newaxis, ...]))


def deviation_from_zone(stack: NdviStack, zones: np.ndarray, reference_zone: int = 0) -> NdviStack:
    """Each layer minus that date's mean NDVI over ``reference_zone``."""
    if zones.shape != (stack.height, stack.width):
        raise ValueError(f"Zone raster shape {zones.shape} does not match stack {(stack.height, stack.width)}")
    in_ref = zones == reference_zone
    if not in_ref.any():
        raise ValueError(f"Reference zone {reference_zone} has no cells")

    ref_means = np.empty(stack.count, dtype=np.float64)
    for i in range(stack.count):
        sel = stack.data[i][in_ref]
        ref_means[i] = float(sel.mean()) if sel.count() else np.nan

    ref = np.ma.masked_invalid(ref_means.astype(np.float32))[:, np.newaxis, np.newaxis]
    return _with_data(stack, overlay(stack.data, ref))
