#!/usr/bin/env python3

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from conftest import BURN_COLS, BURN_ROWS, TRANSFORM
from firescar.geo.crop import crop_stack
from firescar.geo.zones import (
    InvalidZoneGeometry,
    invalid_geometries,
    load_zone_raster,
    make_valid,
    rasterize_zones,
    read_zones,
    resolve_zones,
    zone_counts,
)


def test_read_zones_missing(tmp_path: Path):
    with pytest.raises(SystemExit):
        read_zones(tmp_path / "missing.shp")


def test_invalid_geometries_flags_bowtie(bowtie_shp: Path):
    gdf = read_zones(bowtie_shp)
    assert invalid_geometries(gdf).tolist() == [True, False]


def test_make_valid_repairs(bowtie_shp: Path):
    fixed = make_valid(read_zones(bowtie_shp))
    assert not invalid_geometries(fixed).any()
    assert len(fixed) == 2


def test_rasterize_valid_polygon(stack, valid_shp: Path, zones):
    out = rasterize_zones(read_zones(valid_shp), stack)
    assert out.dtype == np.int32
    np.testing.assert_array_equal(out, zones)


def test_rasterize_with_field(stack, valid_shp: Path):
    out = rasterize_zones(read_zones(valid_shp), stack, field="fire_id")
    assert set(np.unique(out).tolist()) == {0, 7}


def test_rasterize_unknown_field(stack, valid_shp: Path):
    with pytest.raises(ValueError, match="not found"):
        rasterize_zones(read_zones(valid_shp), stack, field="nope")


def test_rasterize_invalid_geometry_raises(stack, bowtie_shp: Path):
    with pytest.raises(InvalidZoneGeometry) as exc:
        rasterize_zones(read_zones(bowtie_shp), stack)
    assert exc.value.n_invalid == 1
    assert exc.value.n_total == 2


def test_rasterize_invalid_geometry_with_repair(stack, bowtie_shp: Path):
    out = rasterize_zones(read_zones(bowtie_shp), stack, repair=True)
    burned = out[BURN_ROWS, BURN_COLS]
    assert burned.sum() > 0
    # the valid square still lands in its cell
    assert out[8, 10] == 1
    # nothing outside the two perimeters
    outside = out.copy()
    outside[BURN_ROWS, BURN_COLS] = 0
    outside[8, 10] = 0
    assert outside.sum() == 0


def test_load_zone_raster_same_grid(stack, zone_raster: Path, zones):
    np.testing.assert_array_equal(load_zone_raster(zone_raster, stack), zones)


def test_load_zone_raster_crops_to_cropped_stack(stack, zone_raster: Path, zones):
    cropped = crop_stack(stack, (200, 300, 1000, 900))
    out = load_zone_raster(zone_raster, cropped)
    assert out.shape == (6, 8)
    np.testing.assert_array_equal(out, zones[1:7, 2:10])


def _write_zone_raster(path: Path, array: np.ndarray, *, crs: str, transform) -> Path:
    with rasterio.open(
        path, "w", driver="GTiff", height=array.shape[0], width=array.shape[1], count=1,
        dtype="uint8", crs=crs, transform=transform, nodata=255,
    ) as dst:
        dst.write(array.astype("uint8"), 1)
    return path


def test_load_zone_raster_rejects_other_crs(stack, zones, tmp_path: Path):
    path = _write_zone_raster(tmp_path / "utm.tif", zones, crs="EPSG:32606", transform=TRANSFORM)
    with pytest.raises(ValueError, match="CRS"):
        load_zone_raster(path, stack)


def test_load_zone_raster_rejects_other_resolution(stack, tmp_path: Path):
    fine = np.zeros((20, 24), dtype=np.uint8)
    path = _write_zone_raster(tmp_path / "fine.tif", fine, crs="EPSG:3338", transform=from_origin(0, 1000, 50, 50))
    with pytest.raises(ValueError, match="resolution"):
        load_zone_raster(path, stack)


def test_resolve_zones_falls_back_to_raster(stack, bowtie_shp: Path, zone_raster: Path, zones, capsys):
    out = resolve_zones(stack, fire_shp=bowtie_shp, fire_raster=zone_raster)
    np.testing.assert_array_equal(out, zones)
    assert "pre-rasterized" in capsys.readouterr().out


def test_resolve_zones_repairs_without_fallback(stack, bowtie_shp: Path):
    out = resolve_zones(stack, fire_shp=bowtie_shp)
    assert out.sum() > 0


def test_resolve_zones_prefers_valid_shapefile(stack, valid_shp: Path, zone_raster: Path, zones):
    out = resolve_zones(stack, fire_shp=valid_shp, fire_raster=zone_raster, field="fire_id")
    assert set(np.unique(out).tolist()) == {0, 7}


def test_resolve_zones_needs_an_input(stack):
    with pytest.raises(SystemExit):
        resolve_zones(stack)


def test_zone_counts(zones):
    df = zone_counts(zones)
    assert df.set_index("zone")["n_cells"].to_dict() == {0: 105, 1: 15}
