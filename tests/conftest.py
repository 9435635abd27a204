#!/usr/bin/env python3
"""Synthetic NDVI scenes for the tests.

Grid: 10 rows x 12 cols, 100 m cells, EPSG:3338, upper-left corner (0, 1000).
Cell (r, c) has its centre at (50 + 100 c, 950 - 100 r).

Six layers, May..Oct 2005. Cells in rows 2-4, cols 3-7 burn after the third
date: their NDVI drops by 0.4 from layer index 3 on. BURN_BOX covers exactly
those cell centres.
"""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

# Ensure we can import from src without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))


CRS = "EPSG:3338"
TRANSFORM = from_origin(0, 1000, 100, 100)
HEIGHT, WIDTH = 10, 12
NODATA = -3000.0
DATES = [date(2005, m, 15) for m in range(5, 11)]
SEASON = [0.30, 0.50, 0.70, 0.75, 0.60, 0.40]
BURN_ROWS = slice(2, 5)
BURN_COLS = slice(3, 8)
BURN_BOX = (300.0, 500.0, 800.0, 800.0)


def synthetic_layers() -> np.ndarray:
    """(6, 10, 12) float32 NDVI with the burn applied."""
    cols = np.arange(WIDTH, dtype=np.float32) * 0.005
    rows = np.arange(HEIGHT, dtype=np.float32)[:, None] * 0.002
    layers = []
    for i, s in enumerate(SEASON):
        layer = np.full((HEIGHT, WIDTH), s, dtype=np.float32) + cols + rows
        if i >= 3:
            layer[BURN_ROWS, BURN_COLS] -= 0.4
        layers.append(layer)
    return np.stack(layers)


def write_geotiff(path: Path, array: np.ndarray, *, transform=TRANSFORM, nodata=NODATA, dtype="float32") -> Path:
    if array.ndim == 2:
        array = array[None, ...]
    profile = {
        "driver": "GTiff",
        "height": array.shape[1],
        "width": array.shape[2],
        "count": array.shape[0],
        "dtype": dtype,
        "crs": CRS,
        "transform": transform,
        "nodata": nodata,
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(array.astype(dtype))
    return path


def write_ndvi_dir(directory: Path) -> Path:
    """One single-band file per date, named ndvi_YYYY_MM_DD.tif.

    Cell (0, 0) of the second layer is nodata.
    """
    directory.mkdir(parents=True, exist_ok=True)
    layers = synthetic_layers()
    layers[1, 0, 0] = NODATA
    for d, layer in zip(DATES, layers):
        write_geotiff(directory / f"ndvi_{d:%Y_%m_%d}.tif", layer)
    return directory


@pytest.fixture
def ndvi_dir(tmp_path: Path) -> Path:
    return write_ndvi_dir(tmp_path / "ndvi")


@pytest.fixture
def stack(ndvi_dir: Path):
    from firescar.ingest.stack import load_stack

    return load_stack(ndvi_dir, glob="ndvi_*.tif")


@pytest.fixture
def zones() -> np.ndarray:
    z = np.zeros((HEIGHT, WIDTH), dtype=np.int32)
    z[BURN_ROWS, BURN_COLS] = 1
    return z


@pytest.fixture
def bowtie_shp(tmp_path: Path) -> Path:
    """A burn perimeter with a self-intersecting ring plus one valid polygon."""
    import geopandas as gpd
    from shapely.geometry import Polygon, box

    bowtie = Polygon([(300, 500), (800, 800), (800, 500), (300, 800)])
    valid = box(1000, 100, 1100, 200)
    gdf = gpd.GeoDataFrame({"fire_id": [1, 2]}, geometry=[bowtie, valid], crs=CRS)
    out = tmp_path / "fire" / "fires_2005.shp"
    out.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_file(out)
    return out


@pytest.fixture
def valid_shp(tmp_path: Path) -> Path:
    import geopandas as gpd
    from shapely.geometry import box

    gdf = gpd.GeoDataFrame({"fire_id": [7]}, geometry=[box(*BURN_BOX)], crs=CRS)
    out = tmp_path / "fire" / "fires_valid.shp"
    out.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_file(out)
    return out


@pytest.fixture
def zone_raster(tmp_path: Path, zones: np.ndarray) -> Path:
    out = tmp_path / "fire" / "fires_2005.tif"
    out.parent.mkdir(parents=True, exist_ok=True)
    return write_geotiff(out, zones, nodata=255, dtype="uint8")
