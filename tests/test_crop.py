#!/usr/bin/env python3

from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest
from rasterio.warp import transform_bounds

from conftest import CRS, TRANSFORM
from firescar.geo.crop import crop_array, crop_stack


def test_crop_stack_to_cell_aligned_bbox(stack):
    cropped = crop_stack(stack, (200, 300, 1000, 900))
    assert (cropped.height, cropped.width) == (6, 8)
    assert cropped.transform.c == pytest.approx(200)
    assert cropped.transform.f == pytest.approx(900)
    assert cropped.dates == stack.dates
    np.testing.assert_array_equal(cropped.data[:, 0, 0], stack.data[:, 1, 2])


def test_crop_stack_keeps_partially_covered_cells(stack):
    cropped = crop_stack(stack, (250, 350, 950, 850))
    assert (cropped.height, cropped.width) == (6, 8)


def test_crop_stack_clips_to_grid(stack):
    cropped = crop_stack(stack, (-500, -500, 300, 300))
    assert (cropped.height, cropped.width) == (3, 3)
    assert cropped.transform.c == pytest.approx(0)


def test_crop_stack_outside_grid(stack):
    with pytest.raises(ValueError, match="does not intersect"):
        crop_stack(stack, (5000, 5000, 6000, 6000))


def test_crop_stack_keeps_mask(stack):
    cropped = crop_stack(stack, (0, 800, 300, 1000))
    assert cropped.data.mask[1, 0, 0]


def test_crop_array_matches_stack_window(stack, zones):
    bbox = (200, 300, 1000, 900)
    cropped, transform = crop_array(zones, TRANSFORM, bbox)
    assert cropped.shape == (6, 8)
    assert transform.almost_equals(crop_stack(stack, bbox).transform)
    assert cropped.sum() == zones.sum()


def test_crop_array_requires_2d(stack):
    with pytest.raises(ValueError):
        crop_array(np.zeros((2, 3, 3)), TRANSFORM, (0, 0, 100, 100))


def test_crop_stack_transforms_geographic_bbox(stack):
    bbox = (200, 300, 1000, 900)
    lonlat = transform_bounds(CRS, "EPSG:4326", *bbox, densify_pts=21)
    cropped = crop_stack(stack, lonlat, bbox_crs="EPSG:4326")
    # the reprojected box is at least as large as the original one
    assert cropped.transform.c <= 200 + 1e-6
    assert cropped.transform.f >= 900 - 1e-6
    assert cropped.height >= 6 and cropped.width >= 8
    expected = crop_stack(stack, transform_bounds("EPSG:4326", CRS, *lonlat, densify_pts=21))
    assert cropped.transform.almost_equals(expected.transform)
    assert (cropped.height, cropped.width) == (expected.height, expected.width)


def test_crop_stack_same_crs_is_not_transformed(stack):
    cropped = crop_stack(stack, (200, 300, 1000, 900), bbox_crs=CRS.lower())
    assert (cropped.height, cropped.width) == (6, 8)


def test_crop_stack_bbox_crs_needs_stack_crs(stack):
    with pytest.raises(ValueError, match="no CRS"):
        crop_stack(replace(stack, crs=None), (200, 300, 1000, 900), bbox_crs="EPSG:4326")
