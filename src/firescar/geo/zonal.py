#!/usr/bin/env python3
"""zonal.py

Zonal statistics of an NDVI stack against a zone raster.

Output is a long table with one row per (date, zone), so burned and unburned
NDVI can be plotted against time directly, or pivoted wide with zonal_wide().
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from firescar.ingest.stack import NdviStack


STATS = ("mean", "median", "min", "max", "std", "count")


def zonal_mean(stack: NdviStack, zones: np.ndarray, *, stat: str = "mean") -> pd.DataFrame:
    """Aggregate each layer by zone.

    Every zone value present in ``zones`` gets a row per layer, including 0
    (background). A zone with no valid cells in a layer gets NaN (count
    gives 0) and n_valid == 0. ``std`` is the sample standard deviation.

    Returns:
        DataFrame with columns date, layer, zone, value, n_valid.
    """
    if stat not in STATS:
        raise ValueError(f"Unknown stat {stat!r}; choose from {sorted(STATS)}")
    if zones.shape != (stack.height, stack.width):
        raise ValueError(f"Zone raster shape {zones.shape} does not match stack {(stack.height, stack.width)}")

    zone_ids = pd.Index(np.unique(zones).astype(np.int64), name="zone")
    flat_zones = zones.ravel().astype(np.int64)
    frames = []
    for i, (d, name) in enumerate(zip(stack.dates, stack.names)):
        layer = stack.data[i]
        valid = ~np.ma.getmaskarray(layer).ravel()
        cells = pd.DataFrame({
            "zone": flat_zones[valid],
            "value": np.ma.getdata(layer).ravel()[valid].astype(np.float64),
        })
        agg = cells.groupby("zone")["value"].agg(value=stat, n_valid="count").reindex(zone_ids)
        agg["n_valid"] = agg["n_valid"].fillna(0).astype(int)
        agg["value"] = agg["value"].astype(float)
        if stat == "count":
            agg["value"] = agg["value"].fillna(0.0)
        agg = agg.reset_index()
        agg.insert(0, "layer", name)
        agg.insert(0, "date", d)
        frames.append(agg)
    return pd.concat(frames, ignore_index=True)[["date", "layer", "zone", "value", "n_valid"]]


def zonal_wide(long_df: pd.DataFrame) -> pd.DataFrame:
    """Pivot zonal output to rows = date, columns = zone."""
    wide = long_df.pivot(index="date", columns="zone", values="value")
    wide.columns = [f"zone_{c}" for c in wide.columns]
    return wide


def zonal_difference(long_df: pd.DataFrame, zone: int = 1, reference: int = 0) -> pd.Series:
    """Per-date difference ``zone - reference`` (burned minus unburned NDVI)."""
    wide = long_df.pivot(index="date", columns="zone", values="value")
    for z in (zone, reference):
        if z not in wide.columns:
            raise ValueError(f"Zone {z} not present; zones are {sorted(wide.columns.tolist())}")
    diff = wide[zone] - wide[reference]
    diff.name = f"zone_{zone}_minus_{reference}"
    return diff
