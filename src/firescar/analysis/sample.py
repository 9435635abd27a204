#!/usr/bin/env python3
"""sample.py

Pull per-pixel NDVI time series out of a stack.

Random cells are drawn once (seeded) and their full series returned in long
form, ready for a date-vs-NDVI line plot per cell.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
import pandas as pd
from rasterio.transform import rowcol, xy

from firescar.ingest.stack import NdviStack


SAMPLE_COLUMNS = ["cell", "row", "col", "x", "y", "date", "ndvi"]


def sample_cells(
    stack: NdviStack,
    n: int,
    *,
    seed: int = 42,
    require_complete: bool = True,
) -> Tuple[np.ndarray, np.ndarray]:
    """Draw ``n`` distinct random (row, col) positions.

    With ``require_complete`` only cells valid in every layer are eligible,
    otherwise cells valid in at least one layer.
    """
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    mask = np.ma.getmaskarray(stack.data)
    eligible = ~mask.any(axis=0) if require_complete else ~mask.all(axis=0)
    rows, cols = np.nonzero(eligible)
    if n > rows.size:
        raise ValueError(f"Asked for {n} cells but only {rows.size} eligible cells exist")
    rng = np.random.default_rng(seed)
    pick = np.sort(rng.choice(rows.size, size=n, replace=False))
    return rows[pick], cols[pick]


def extract_series(stack: NdviStack, rows: Sequence[int], cols: Sequence[int]) -> pd.DataFrame:
    """Long table of the series at the given cells (masked values -> NaN)."""
    rows = np.asarray(rows, dtype=int)
    cols = np.asarray(cols, dtype=int)
    if rows.shape != cols.shape:
        raise ValueError("rows and cols must have the same length")
    xs, ys = xy(stack.transform, rows, cols, offset="center")
    xs, ys = np.atleast_1d(xs), np.atleast_1d(ys)
    values = stack.data[:, rows, cols].astype(np.float64).filled(np.nan)

    records = []
    for k, (r, c) in enumerate(zip(rows, cols)):
        cell = int(r) * stack.width + int(c)
        for i, d in enumerate(stack.dates):
            records.append({
                "cell": cell,
                "row": int(r),
                "col": int(c),
                "x": float(xs[k]),
                "y": float(ys[k]),
                "date": d,
                "ndvi": float(values[i, k]),
            })
    return pd.DataFrame(records, columns=SAMPLE_COLUMNS)


def pixel_series(stack: NdviStack, x: float, y: float) -> pd.DataFrame:
    """Series of the cell containing map coordinate (x, y)."""
    r, c = rowcol(stack.transform, x, y)
    r, c = int(r), int(c)
    if not (0 <= r < stack.height and 0 <= c < stack.width):
        raise ValueError(f"Point ({x}, {y}) is outside the stack bounds {tuple(stack.bounds)}")
    return extract_series(stack, [r], [c])


def sample_pixels(stack: NdviStack, n: int, *, seed: int = 42) -> pd.DataFrame:
    """Random complete-case cells and their series."""
    rows, cols = sample_cells(stack, n, seed=seed)
    return extract_series(stack, rows, cols)
