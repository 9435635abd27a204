#!/usr/bin/env python3
"""crop.py

Crop an NDVI stack (and grids aligned with it) to a region of interest.

The ROI is a bbox [xmin, ymin, xmax, ymax]. By default it is taken to be in
the stack's own CRS; pass ``bbox_crs`` (e.g. "EPSG:4326") to have it
transformed first.

Required deps: rasterio, numpy
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
from rasterio.warp import transform_bounds
from rasterio.windows import Window, from_bounds
from rasterio.windows import transform as window_transform

from firescar.config import AnalysisConfig, BBox
from firescar.ingest.stack import NdviStack, load_stack, scale_ndvi


def _window_for_bbox(bbox: BBox, transform, height: int, width: int) -> Window:
    """Integer window covering bbox, clipped to the grid.

    Raises ValueError when the bbox misses the grid entirely.
    """
    win = from_bounds(*bbox, transform=transform)
    # Round outward so partially covered edge cells are kept
    row0 = int(np.floor(round(win.row_off, 6)))
    col0 = int(np.floor(round(win.col_off, 6)))
    row1 = int(np.ceil(round(win.row_off + win.height, 6)))
    col1 = int(np.ceil(round(win.col_off + win.width, 6)))

    row0, col0 = max(row0, 0), max(col0, 0)
    row1, col1 = min(row1, height), min(col1, width)
    if row1 <= row0 or col1 <= col0:
        raise ValueError(f"ROI {bbox} does not intersect the raster grid")
    return Window(col0, row0, col1 - col0, row1 - row0)


def _slices(win: Window) -> Tuple[slice, slice]:
    return (
        slice(int(win.row_off), int(win.row_off + win.height)),
        slice(int(win.col_off), int(win.col_off + win.width)),
    )


def crop_stack(stack: NdviStack, bbox: BBox, *, bbox_crs: Optional[str] = None) -> NdviStack:
    """Return a new stack cropped to bbox.

    Args:
        stack: input stack.
        bbox: (xmin, ymin, xmax, ymax).
        bbox_crs: CRS of bbox if different from the stack CRS.
    """
    if bbox_crs is not None and stack.crs is None:
        raise ValueError(f"Cannot transform ROI from {bbox_crs}: the stack has no CRS")
    if bbox_crs is not None and str(stack.crs).upper() != str(bbox_crs).upper():
        # densify so curved edges of the reprojected box are covered
        bbox = transform_bounds(bbox_crs, stack.crs, *bbox, densify_pts=21)

    win = _window_for_bbox(bbox, stack.transform, stack.height, stack.width)
    rows, cols = _slices(win)

    profile = dict(stack.profile)
    profile.update(height=int(win.height), width=int(win.width), transform=window_transform(win, stack.transform))

    return NdviStack(
        data=stack.data[:, rows, cols].copy(),
        dates=list(stack.dates),
        names=list(stack.names),
        transform=window_transform(win, stack.transform),
        crs=stack.crs,
        nodata=stack.nodata,
        profile=profile,
    )


def crop_array(array: np.ndarray, transform, bbox: BBox) -> Tuple[np.ndarray, object]:
    """Crop a 2-D array on a grid described by ``transform`` to bbox.

    Returns (cropped array, cropped transform). Used to bring a full-extent
    zone raster down to a cropped stack.
    """
    if array.ndim != 2:
        raise ValueError(f"crop_array expects a 2-D array, got shape {array.shape}")
    win = _window_for_bbox(bbox, transform, array.shape[0], array.shape[1])
    rows, cols = _slices(win)
    return array[rows, cols].copy(), window_transform(win, transform)


def load_roi_stack(cfg: AnalysisConfig, *, crop: bool = True) -> NdviStack:
    """Load the configured NDVI stack, scaled, and cropped to the ROI if one is set."""
    stack = load_stack(cfg.ndvi_dir, glob=cfg.ndvi_glob, date_pattern=cfg.date_pattern, date_format=cfg.date_format)
    stack = scale_ndvi(stack, cfg.scale_factor)
    if crop and cfg.roi is not None:
        stack = crop_stack(stack, cfg.roi, bbox_crs=cfg.roi_crs)
    return stack
