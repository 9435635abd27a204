#!/usr/bin/env python3
"""zones.py

Burn-scar zones on the NDVI grid.

The fire perimeters come as a polygon shapefile, and some of its polygons are
invalid (self-intersecting rings). Rasterizing them as-is fails, so a
pre-rasterized copy of the same perimeters is shipped alongside. This module
makes that choice explicit:

1. read the shapefile and check geometry validity
2. if everything is valid, rasterize onto the stack grid
3. otherwise use the pre-rasterized fallback raster if one was supplied
4. otherwise repair the geometries and rasterize

Zone rasters are int32 with 0 as background ("not burned").

Required deps: geopandas, shapely, rasterio, numpy, pandas
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from rasterio.features import rasterize

from firescar.geo.crop import crop_array
from firescar.ingest.stack import NdviStack


class InvalidZoneGeometry(ValueError):
    """Raised when zone polygons can't be rasterized because some are invalid."""

    def __init__(self, n_invalid: int, n_total: int):
        self.n_invalid = n_invalid
        self.n_total = n_total
        super().__init__(
            f"{n_invalid} of {n_total} zone geometries are invalid; "
            "supply a pre-rasterized zone file or repair the geometries"
        )


# -----------------------------------------------------------------------------
# Vector side
# -----------------------------------------------------------------------------

def read_zones(shp: Path) -> gpd.GeoDataFrame:
    """Read the burn-scar polygons. Fails fast on missing/empty/CRS-less input."""
    if not shp.exists():
        raise SystemExit(f"Zone shapefile not found: {shp}")
    gdf = gpd.read_file(shp)
    if gdf.empty:
        raise SystemExit(f"Loaded {shp} but it contains zero features. Wrong file?")
    if gdf.crs is None:
        raise SystemExit(
            f"{shp} has no CRS (.prj missing or unreadable). "
            "Fix that first; it has to be matched to the NDVI grid."
        )
    return gdf


def invalid_geometries(gdf: gpd.GeoDataFrame) -> pd.Series:
    """Boolean Series flagging invalid, empty or missing geometries."""
    geom = gdf.geometry
    return geom.isna() | geom.is_empty | ~geom.is_valid


def make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Repair invalid geometries and drop anything left empty.

    A self-intersecting ring becomes a MultiPolygon covering the same area.
    Missing geometries are dropped before repair.
    """
    out = gdf[gdf.geometry.notna()].copy()
    out["geometry"] = out.geometry.make_valid()
    return out[~out.geometry.is_empty].copy()


def rasterize_zones(
    gdf: gpd.GeoDataFrame,
    like: NdviStack,
    *,
    field: Optional[str] = None,
    repair: bool = False,
) -> np.ndarray:
    """Burn zone polygons onto the stack grid.

    Burn value is ``gdf[field]`` when given, else 1 for every polygon. Cells
    not covered by any polygon are 0. Only cells whose centre falls inside a
    polygon are burned.

    Raises:
        InvalidZoneGeometry: some geometries are invalid and repair is False.
        ValueError: ``field`` missing or not integer-like.
    """
    bad = invalid_geometries(gdf)
    if bad.any():
        if not repair:
            raise InvalidZoneGeometry(int(bad.sum()), len(gdf))
        print(f"[zones] repairing {int(bad.sum())} invalid geometr{'y' if bad.sum() == 1 else 'ies'}")
        gdf = make_valid(gdf)

    if field is not None:
        if field not in gdf.columns:
            raise ValueError(f"Zone field '{field}' not found. Available columns: {list(gdf.columns)}")
        values = pd.to_numeric(gdf[field], errors="raise").astype("int32").tolist()
    else:
        values = [1] * len(gdf)

    if like.crs is not None and gdf.crs is not None and not gdf.crs.equals(like.crs.to_wkt()):
        gdf = gdf.to_crs(like.crs.to_wkt())

    shapes = [(geom, v) for geom, v in zip(gdf.geometry, values) if geom is not None and not geom.is_empty]
    if not shapes:
        return np.zeros((like.height, like.width), dtype=np.int32)

    return rasterize(
        shapes,
        out_shape=(like.height, like.width),
        transform=like.transform,
        fill=0,
        all_touched=False,
        dtype="int32",
    )


# -----------------------------------------------------------------------------
# Raster side
# -----------------------------------------------------------------------------

def load_zone_raster(path: Path, like: NdviStack) -> np.ndarray:
    """Read a pre-rasterized zone file aligned with ``like``.

    The file may cover a larger extent than ``like`` (a full-scene raster
    against a cropped stack) as long as it has the same CRS and resolution;
    it is cropped to the stack bounds. Nodata cells become 0.
    """
    if not path.exists():
        raise SystemExit(f"Zone raster not found: {path}")

    with rasterio.open(path) as src:
        arr = src.read(1)
        nodata = src.nodata
        transform = src.transform
        crs = src.crs

    zones = np.where(np.isfinite(arr), arr, 0)
    if nodata is not None and not np.isnan(nodata):
        zones = np.where(arr == nodata, 0, zones)
    zones = zones.astype(np.int32)

    if like.crs is not None and crs is not None and crs != like.crs:
        raise ValueError(f"{path.name} has CRS {crs}, stack has {like.crs}")

    if zones.shape == (like.height, like.width) and transform.almost_equals(like.transform):
        return zones

    if not (np.isclose(transform.a, like.transform.a) and np.isclose(transform.e, like.transform.e)):
        raise ValueError(
            f"{path.name} resolution ({transform.a}, {transform.e}) differs from the stack "
            f"({like.transform.a}, {like.transform.e})"
        )

    cropped, cropped_transform = crop_array(zones, transform, tuple(like.bounds))
    if cropped.shape != (like.height, like.width) or not cropped_transform.almost_equals(like.transform):
        raise ValueError(
            f"{path.name} does not line up with the stack grid "
            f"(cropped to {cropped.shape}, stack is {(like.height, like.width)})"
        )
    return cropped


def resolve_zones(
    like: NdviStack,
    *,
    fire_shp: Optional[Path] = None,
    fire_raster: Optional[Path] = None,
    field: Optional[str] = None,
    repair: bool = False,
) -> np.ndarray:
    """Produce the zone raster for ``like`` from whatever inputs are available.

    Shapefile first; on invalid geometries fall back to ``fire_raster``, and
    only repair the polygons when no fallback was given (or ``repair`` asks
    for it up front).
    """
    if fire_shp is None and fire_raster is None:
        raise SystemExit("No burn-scar input: set fire.shapefile and/or fire.raster in the config")

    if fire_shp is not None:
        gdf = read_zones(fire_shp)
        try:
            zones = rasterize_zones(gdf, like, field=field, repair=repair)
            print(f"[zones] rasterized {len(gdf)} polygons from {fire_shp.name}")
            return zones
        except InvalidZoneGeometry as e:
            print(f"[zones] {e}")
            if fire_raster is None:
                print("[zones] no fallback raster; repairing geometries instead")
                return rasterize_zones(gdf, like, field=field, repair=True)

    zones = load_zone_raster(fire_raster, like)  # type: ignore[arg-type]
    print(f"[zones] using pre-rasterized zones from {fire_raster.name}")  # type: ignore[union-attr]
    return zones


def zone_counts(zones: np.ndarray) -> pd.DataFrame:
    """Cell count per zone value (0 = background)."""
    values, counts = np.unique(zones, return_counts=True)
    return pd.DataFrame({"zone": values.astype(int), "n_cells": counts.astype(int)})
