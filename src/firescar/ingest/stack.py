#!/usr/bin/env python3
"""stack.py

Load a directory of single-band NDVI GeoTIFFs into one date-ordered stack.

The NDVI layers share one grid (same extent, resolution and CRS) and carry
their acquisition date in the filename, e.g. ``ndvi_2005_06_26.tif`` or the
MODIS style ``MOD13Q1.A2005177.tif`` (parsed with ``%Y%j``).

This module is called by ``python -m firescar.ingest ...`` and by the
walkthrough. It also writes stacks back to disk as a single multi-band GeoTIFF
whose band descriptions hold ISO dates, so a written stack loads again with
its dates intact.

Required deps: rasterio, numpy, pandas
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
import rasterio
from rasterio.coords import BoundingBox

from firescar.config import DEFAULT_DATE_FORMAT, DEFAULT_DATE_PATTERN, DEFAULT_NDVI_GLOB


PathLike = Union[str, Path]


# -----------------------------------------------------------------------------
# Stack container
# -----------------------------------------------------------------------------

@dataclass
class NdviStack:
    """Date-ordered NDVI layers on one grid.

    ``data`` is a float32 masked array shaped (layers, rows, cols) with
    nodata and NaN cells masked.
    """

    data: np.ma.MaskedArray
    dates: List[date]
    names: List[str]
    transform: Any
    crs: Any
    nodata: Optional[float] = None
    profile: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.data.ndim != 3:
            raise ValueError(f"Stack data must be 3-D (layers, rows, cols), got shape {self.data.shape}")
        if not (len(self.dates) == len(self.names) == self.data.shape[0]):
            raise ValueError(
                f"Stack has {self.data.shape[0]} layers but {len(self.dates)} dates and {len(self.names)} names"
            )

    @property
    def count(self) -> int:
        return int(self.data.shape[0])

    @property
    def height(self) -> int:
        return int(self.data.shape[1])

    @property
    def width(self) -> int:
        return int(self.data.shape[2])

    @property
    def bounds(self) -> BoundingBox:
        # array_bounds returns (west, south, east, north)
        return BoundingBox(*rasterio.transform.array_bounds(self.height, self.width, self.transform))

    def select(self, indices: Sequence[int]) -> "NdviStack":
        """Return a sub-stack holding only the given layer indices."""
        idx = list(indices)
        return NdviStack(
            data=self.data[idx],
            dates=[self.dates[i] for i in idx],
            names=[self.names[i] for i in idx],
            transform=self.transform,
            crs=self.crs,
            nodata=self.nodata,
            profile=dict(self.profile),
        )


# -----------------------------------------------------------------------------
# Filename dates
# -----------------------------------------------------------------------------

def parse_layer_date(
    name: str,
    pattern: str = DEFAULT_DATE_PATTERN,
    fmt: str = DEFAULT_DATE_FORMAT,
) -> date:
    """Extract the acquisition date embedded in a layer name.

    ``pattern`` is a regex; if it has a named group ``date`` that group is
    parsed, otherwise the whole match is. ``fmt`` is a strptime format
    (``%Y%j`` handles day-of-year names).

    Raises ValueError if the pattern doesn't match or the date won't parse.
    """
    m = re.search(pattern, name)
    if not m:
        raise ValueError(f"No date matching {pattern!r} in layer name: {name}")
    token = m.group("date") if "date" in m.re.groupindex else m.group(0)
    try:
        return datetime.strptime(token, fmt).date()
    except ValueError as e:
        raise ValueError(f"Could not parse {token!r} from {name} with format {fmt!r}") from e


def find_rasters(directory: Path, pattern: str = DEFAULT_NDVI_GLOB) -> List[Path]:
    """Return the files in ``directory`` matching a glob, sorted by name."""
    if not directory.is_dir():
        raise FileNotFoundError(f"NDVI directory not found: {directory}")
    files = sorted(p for p in directory.glob(pattern) if p.is_file())
    if not files:
        raise FileNotFoundError(f"No files matched {pattern!r} in {directory}")
    return files


# -----------------------------------------------------------------------------
# Reading
# -----------------------------------------------------------------------------

def _masked(data: np.ndarray, nodata: Optional[float]) -> np.ma.MaskedArray:
    data = data.astype(np.float32)
    mask = ~np.isfinite(data)
    if nodata is not None and not np.isnan(nodata):
        mask |= data == np.float32(nodata)
    return np.ma.MaskedArray(data, mask=mask)


def _has_iso_descriptions(descriptions) -> bool:
    """True when every band description is an ISO date."""
    if not descriptions or any(d is None for d in descriptions):
        return False
    try:
        for d in descriptions:
            date.fromisoformat(str(d))
    except ValueError:
        return False
    return True


def _load_multiband(path: Path) -> NdviStack:
    """Load a stack previously written by write_stack (ISO dates in band descriptions)."""
    with rasterio.open(path) as src:
        descriptions = list(src.descriptions)
        if any(d is None for d in descriptions):
            raise ValueError(f"{path} has {src.count} bands but no date descriptions on every band")
        dates = [date.fromisoformat(str(d)) for d in descriptions]
        data = _masked(src.read(), src.nodata)
        stack = NdviStack(
            data=data,
            dates=dates,
            names=[str(d) for d in descriptions],
            transform=src.transform,
            crs=src.crs,
            nodata=src.nodata,
            profile=src.profile.copy(),
        )
    return stack


def load_stack(
    source: Union[PathLike, Sequence[PathLike]],
    *,
    glob: str = DEFAULT_NDVI_GLOB,
    date_pattern: str = DEFAULT_DATE_PATTERN,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> NdviStack:
    """Read NDVI rasters into a date-ordered NdviStack.

    Args:
        source: a directory (searched with ``glob``), a list of files, or a
            single multi-band GeoTIFF written by write_stack.
        glob: filename pattern used when ``source`` is a directory.
        date_pattern: regex locating the date in each file stem.
        date_format: strptime format for the matched date.

    Raises:
        FileNotFoundError: no input files.
        ValueError: grids differ between files, a date can't be parsed, or two
            files share a date.
    """
    if isinstance(source, (str, Path)):
        src_path = Path(source)
        if src_path.is_file():
            with rasterio.open(src_path) as src:
                count = src.count
                descriptions = src.descriptions
            if count > 1 or _has_iso_descriptions(descriptions):
                return _load_multiband(src_path)
            files = [src_path]
        else:
            files = find_rasters(src_path, glob)
    else:
        files = [Path(p) for p in source]
        if not files:
            raise FileNotFoundError("No NDVI files given")

    dated = sorted(((parse_layer_date(p.stem, date_pattern, date_format), p) for p in files), key=lambda t: t[0])
    seen: Dict[date, Path] = {}
    for d, p in dated:
        if d in seen:
            raise ValueError(f"Duplicate date {d.isoformat()}: {seen[d].name} and {p.name}")
        seen[d] = p

    with rasterio.open(dated[0][1]) as src0:
        height, width = src0.height, src0.width
        transform = src0.transform
        crs = src0.crs
        nodata = src0.nodata
        profile = src0.profile.copy()

    layers: List[np.ma.MaskedArray] = []
    for _, p in dated:
        with rasterio.open(p) as src:
            if (src.height, src.width) != (height, width):
                raise ValueError(f"{p.name} is {src.height}x{src.width}, expected {height}x{width}")
            if not src.transform.almost_equals(transform):
                raise ValueError(f"{p.name} has a different transform than {dated[0][1].name}")
            if src.crs != crs:
                raise ValueError(f"{p.name} has CRS {src.crs}, expected {crs}")
            layers.append(_masked(src.read(1), src.nodata))

    return NdviStack(
        data=np.ma.stack(layers),
        dates=[d for d, _ in dated],
        names=[p.stem for _, p in dated],
        transform=transform,
        crs=crs,
        nodata=nodata,
        profile=profile,
    )


def scale_ndvi(stack: NdviStack, factor: float = 1.0, offset: float = 0.0) -> NdviStack:
    """Apply a linear scale to stored values (MODIS NDVI is stored x10000)."""
    if factor == 1.0 and offset == 0.0:
        return stack
    data = (stack.data * np.float32(factor) + np.float32(offset)).astype(np.float32)
    return NdviStack(
        data=data,
        dates=list(stack.dates),
        names=list(stack.names),
        transform=stack.transform,
        crs=stack.crs,
        nodata=stack.nodata,
        profile=dict(stack.profile),
    )


def layer_summary(stack: NdviStack) -> pd.DataFrame:
    """Per-layer min / max / mean and valid cell count."""
    rows = []
    for i, (d, name) in enumerate(zip(stack.dates, stack.names)):
        layer = stack.data[i]
        n_valid = int(layer.count())
        rows.append({
            "layer": name,
            "date": d,
            "min": float(layer.min()) if n_valid else np.nan,
            "max": float(layer.max()) if n_valid else np.nan,
            "mean": float(layer.mean()) if n_valid else np.nan,
            "n_valid": n_valid,
        })
    return pd.DataFrame(rows, columns=["layer", "date", "min", "max", "mean", "n_valid"])


# -----------------------------------------------------------------------------
# Writing
# -----------------------------------------------------------------------------

WRITE_NODATA = -9999.0


def write_stack(
    data: Union[NdviStack, np.ma.MaskedArray],
    out_path: Path,
    *,
    like: Optional[NdviStack] = None,
    descriptions: Optional[Sequence[str]] = None,
    overwrite: bool = False,
) -> Optional[Path]:
    """Write a stack (or any aligned 3-D masked array) as a multi-band GeoTIFF.

    Masked cells are written as nodata (-9999). Band descriptions default to
    the stack's ISO dates. A bare array needs ``like`` for georeferencing.

    Returns the path written, or None if the file exists and ``overwrite`` is
    False.
    """
    if isinstance(data, NdviStack):
        like = data
        arr = data.data
        if descriptions is None:
            descriptions = [d.isoformat() for d in data.dates]
    else:
        if like is None:
            raise ValueError("write_stack needs `like` to georeference a bare array")
        arr = np.ma.asarray(data)
        if arr.ndim == 2:
            arr = arr[np.newaxis, ...]

    if arr.shape[1:] != (like.height, like.width):
        raise ValueError(f"Array shape {arr.shape[1:]} does not match grid {(like.height, like.width)}")
    if descriptions is not None and len(descriptions) != arr.shape[0]:
        raise ValueError(f"{len(descriptions)} descriptions for {arr.shape[0]} bands")

    if out_path.exists() and not overwrite:
        print(f"[SKIP] {out_path.name} (exists; pass --overwrite to replace)")
        return None

    profile = {
        "driver": "GTiff",
        "height": like.height,
        "width": like.width,
        "count": int(arr.shape[0]),
        "dtype": "float32",
        "crs": like.crs,
        "transform": like.transform,
        "nodata": WRITE_NODATA,
        "compress": "deflate",
    }
    if like.height >= 256 and like.width >= 256:
        profile.update(tiled=True, blockxsize=256, blockysize=256)

    filled = np.ma.filled(arr.astype(np.float32), WRITE_NODATA)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(out_path, "w", **profile) as dst:
        dst.write(filled)
        if descriptions is not None:
            for i, desc in enumerate(descriptions, start=1):
                dst.set_band_description(i, str(desc))

    print(f"Wrote {arr.shape[0]} band(s) -> {out_path}")
    return out_path
