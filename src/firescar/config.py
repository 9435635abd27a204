#!/usr/bin/env python3
"""firescar.config

Shared configuration utilities for the firescar CLIs.

This module provides common helpers used across firescar.ingest, firescar.geo
and firescar.analysis. Every CLI reads the same analysis YAML, so paths and
parameters are resolved in one place.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Relative paths in the analysis YAML resolve against the project root
  (the parent of the config/ directory holding the YAML).
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


BBox = Tuple[float, float, float, float]


# -----------------------------------------------------------------------------
# Default paths and parameters
# -----------------------------------------------------------------------------
# Centralized so all CLIs use the same defaults.

DEFAULT_ANALYSIS_YAML = Path("config/alaska_2005.yaml")

# Filenames look like ndvi_2005_06_26.tif
DEFAULT_DATE_PATTERN = r"(?P<date>\d{4}_\d{2}_\d{2})"
DEFAULT_DATE_FORMAT = "%Y_%m_%d"
DEFAULT_NDVI_GLOB = "*.tif"
DEFAULT_OUT_DIR = Path("data/output")


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------

def coerce_bbox(x: Any) -> Optional[BBox]:
    """Try to coerce [xmin, ymin, xmax, ymax] into a bbox tuple.

    Returns None if input is invalid, missing, or degenerate (xmin >= xmax).
    """
    if x is None:
        return None
    if isinstance(x, (list, tuple)) and len(x) == 4:
        try:
            xmin, ymin, xmax, ymax = map(float, x)
        except (TypeError, ValueError):
            return None
        if xmin >= xmax or ymin >= ymax:
            return None
        return (xmin, ymin, xmax, ymax)
    return None


def format_bbox(b: BBox, precision: int = 5) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"


# -----------------------------------------------------------------------------
# Analysis config
# -----------------------------------------------------------------------------

@dataclass
class AnalysisConfig:
    """Resolved contents of an analysis YAML (see config/alaska_2005.yaml)."""

    ndvi_dir: Path
    out_dir: Path = DEFAULT_OUT_DIR
    ndvi_glob: str = DEFAULT_NDVI_GLOB
    date_pattern: str = DEFAULT_DATE_PATTERN
    date_format: str = DEFAULT_DATE_FORMAT
    scale_factor: float = 1.0
    roi: Optional[BBox] = None
    roi_crs: Optional[str] = None
    fire_shp: Optional[Path] = None
    fire_raster: Optional[Path] = None
    zone_field: Optional[str] = None
    repair_geometries: bool = False
    n_samples: int = 20
    seed: int = 42
    n_components: int = 2
    use_correlation: bool = False


def _resolve(root: Path, value: Any) -> Optional[Path]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    p = Path(str(value)).expanduser()
    return p if p.is_absolute() else root / p


def load_analysis_config(path: Path) -> AnalysisConfig:
    """Load the analysis YAML into an AnalysisConfig.

    Expects structure like:
        ndvi:
          dir: data/ndvi
          glob: "ndvi_*.tif"
          date_pattern: "(?P<date>\\d{4}_\\d{2}_\\d{2})"
          date_format: "%Y_%m_%d"
        roi:
          bounds: [xmin, ymin, xmax, ymax]
        fire:
          shapefile: data/fire/fires_2005.shp
          raster: data/fire/fires_2005.tif
        pca:
          n_components: 2
        output:
          dir: data/output

    Only ndvi.dir is required. Raises SystemExit on invalid structure.
    """
    data = load_yaml(path)
    root = path.resolve().parent
    if root.name == "config":
        root = root.parent

    ndvi = data.get("ndvi")
    if not isinstance(ndvi, dict) or not ndvi.get("dir"):
        raise SystemExit(f"{path} must have an 'ndvi:' mapping with a 'dir' entry.")

    roi = data.get("roi") or {}
    fire = data.get("fire") or {}
    sample = data.get("sample") or {}
    pca = data.get("pca") or {}
    output = data.get("output") or {}
    for key, block in (("roi", roi), ("fire", fire), ("sample", sample), ("pca", pca), ("output", output)):
        if not isinstance(block, dict):
            raise SystemExit(f"{path}: '{key}:' must be a mapping")

    bounds = roi.get("bounds")
    bbox = coerce_bbox(bounds)
    if bounds is not None and bbox is None:
        raise SystemExit(f"{path}: roi.bounds must be [xmin, ymin, xmax, ymax], got {bounds!r}")

    return AnalysisConfig(
        ndvi_dir=_resolve(root, ndvi["dir"]),  # type: ignore[arg-type]
        out_dir=_resolve(root, output.get("dir")) or root / DEFAULT_OUT_DIR,
        ndvi_glob=str(ndvi.get("glob", DEFAULT_NDVI_GLOB)),
        date_pattern=str(ndvi.get("date_pattern", DEFAULT_DATE_PATTERN)),
        date_format=str(ndvi.get("date_format", DEFAULT_DATE_FORMAT)),
        scale_factor=float(ndvi.get("scale_factor", 1.0)),
        roi=bbox,
        roi_crs=roi.get("crs"),
        fire_shp=_resolve(root, fire.get("shapefile")),
        fire_raster=_resolve(root, fire.get("raster")),
        zone_field=fire.get("field"),
        repair_geometries=bool(fire.get("repair", False)),
        n_samples=int(sample.get("n", 20)),
        seed=int(sample.get("seed", 42)),
        n_components=int(pca.get("n_components", 2)),
        use_correlation=bool(pca.get("use_correlation", False)),
    )
