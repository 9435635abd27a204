#!/usr/bin/env python3
"""firescar.geo

Geospatial processing CLI for the fire walkthrough.

This is one of several firescar subsystem CLIs:
- firescar.ingest   → stack NDVI layers, per-layer summary
- firescar.geo      → crop, burn-scar zones, zonal statistics (this file)
- firescar.analysis → pixel samples, PCA, deviation maps, full walkthrough

Design notes:
- Mirrors firescar.ingest: global --config / --dry-run / --overwrite
- Lazy-imports the geo modules to keep CLI startup fast
- The burn-scar shapefile has invalid polygons; rasterize-zones reports that
  and uses --fallback (a pre-rasterized copy) or --repair

Examples:
  # Crop the NDVI stack to the ROI in the config
  python -m firescar.geo crop

  # Rasterize burn scars onto the cropped grid
  python -m firescar.geo rasterize-zones --fallback data/fire/fires_2005.tif

  # Mean NDVI per zone per date
  python -m firescar.geo zonal-stats --out-csv data/output/zonal_mean.csv
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from firescar.config import DEFAULT_ANALYSIS_YAML, format_bbox, load_analysis_config


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for firescar.geo."""
    ap = argparse.ArgumentParser(
        prog="firescar.geo",
        description="Crop, burn-scar zones and zonal statistics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m firescar.ingest    # NDVI stack
  python -m firescar.geo       # Crop, zones, zonal stats (this)
  python -m firescar.analysis  # Samples, PCA, deviation, walkthrough
        """,
    )

    # --- Global args ---
    ap.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_ANALYSIS_YAML,
        help=f"Path to analysis YAML (default: {DEFAULT_ANALYSIS_YAML})",
    )
    ap.add_argument("--dry-run", action="store_true", help="Print planned actions without writing files")
    ap.add_argument("--overwrite", action="store_true", help="Overwrite existing output files")

    sub = ap.add_subparsers(dest="command", required=True)

    # --- crop ---
    crop = sub.add_parser("crop", help="Crop the NDVI stack to the configured ROI")
    crop.add_argument(
        "--bounds",
        nargs=4,
        type=float,
        default=None,
        metavar=("XMIN", "YMIN", "XMAX", "YMAX"),
        help="ROI bounds (default: roi.bounds from the config)",
    )
    crop.add_argument("--out", type=Path, default=None, help="Output GeoTIFF (default: <out_dir>/ndvi_cropped.tif)")

    # --- rasterize-zones ---
    zones = sub.add_parser(
        "rasterize-zones",
        help="Burn fire perimeters onto the NDVI grid",
        description="""
Rasterize the burn-scar shapefile onto the (cropped) NDVI grid.

Some perimeters in the 2005 shapefile are invalid polygons. If any are found:
- with --fallback (or fire.raster in the config), the pre-rasterized file is used
- otherwise, or with --repair, geometries are repaired and then rasterized
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    zones.add_argument("--shp", type=Path, default=None, help="Burn-scar shapefile (default: fire.shapefile)")
    zones.add_argument("--fallback", type=Path, default=None, help="Pre-rasterized zones (default: fire.raster)")
    zones.add_argument("--field", default=None, help="Attribute to burn as zone value (default: 1 for every polygon)")
    zones.add_argument("--repair", action="store_true", help="Repair invalid geometries instead of falling back")
    zones.add_argument("--out", type=Path, default=None, help="Output GeoTIFF (default: <out_dir>/fire_zones.tif)")

    # --- zonal-stats ---
    zonal = sub.add_parser("zonal-stats", help="Per-date NDVI statistic for each zone")
    zonal.add_argument("--stat", default="mean", choices=["mean", "median", "min", "max", "std", "count"])
    zonal.add_argument("--out-csv", type=Path, default=None, help="Output CSV (default: <out_dir>/zonal_<stat>.csv)")
    zonal.add_argument("--wide", action="store_true", help="Write one column per zone instead of long form")

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------
# Each handler: load config, honour --dry-run, lazy-import, call the core function.

def _handle_crop(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    bbox = tuple(args.bounds) if args.bounds else cfg.roi
    if bbox is None:
        raise SystemExit(f"No ROI: pass --bounds or set roi.bounds in {args.config}")
    out = args.out or cfg.out_dir / "ndvi_cropped.tif"

    if args.dry_run:
        print("[dry-run] Would crop NDVI stack:")
        print(f"  NDVI: {cfg.ndvi_dir / cfg.ndvi_glob}")
        print(f"  ROI: {format_bbox(bbox)}")  # type: ignore[arg-type]
        print(f"  Output: {out}")
        return 0

    from firescar.geo.crop import crop_stack, load_roi_stack
    from firescar.ingest.stack import write_stack

    stack = load_roi_stack(cfg, crop=False)
    cropped = crop_stack(stack, bbox, bbox_crs=cfg.roi_crs)  # type: ignore[arg-type]
    print(f"[crop] {stack.height}x{stack.width} -> {cropped.height}x{cropped.width}")
    write_stack(cropped, out, overwrite=args.overwrite)
    return 0


def _handle_rasterize_zones(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    shp = args.shp or cfg.fire_shp
    fallback = args.fallback or cfg.fire_raster
    field = args.field or cfg.zone_field
    repair = args.repair or cfg.repair_geometries
    out = args.out or cfg.out_dir / "fire_zones.tif"

    if args.dry_run:
        print("[dry-run] Would rasterize burn-scar zones:")
        print(f"  Shapefile: {shp}")
        print(f"  Fallback raster: {fallback}")
        print(f"  Field: {field or '(constant 1)'}  Repair: {repair}")
        print(f"  Output: {out}")
        return 0

    from firescar.geo.crop import load_roi_stack
    from firescar.geo.zones import resolve_zones, zone_counts
    from firescar.ingest.stack import write_stack

    stack = load_roi_stack(cfg)
    zones = resolve_zones(stack, fire_shp=shp, fire_raster=fallback, field=field, repair=repair)
    for _, row in zone_counts(zones).iterrows():
        print(f"  - zone {row['zone']}: {row['n_cells']} cells")
    write_stack(zones[None, ...], out, like=stack, descriptions=["zone"], overwrite=args.overwrite)
    return 0


def _handle_zonal_stats(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    out_csv = args.out_csv or cfg.out_dir / f"zonal_{args.stat}.csv"

    if args.dry_run:
        print("[dry-run] Would compute zonal statistics:")
        print(f"  NDVI: {cfg.ndvi_dir / cfg.ndvi_glob}")
        print(f"  Zones: shapefile={cfg.fire_shp} fallback={cfg.fire_raster}")
        print(f"  Stat: {args.stat}")
        print(f"  Output: {out_csv}")
        return 0

    from firescar.geo.crop import load_roi_stack
    from firescar.geo.zonal import zonal_mean, zonal_wide
    from firescar.geo.zones import resolve_zones

    stack = load_roi_stack(cfg)
    zones = resolve_zones(
        stack,
        fire_shp=cfg.fire_shp,
        fire_raster=cfg.fire_raster,
        field=cfg.zone_field,
        repair=cfg.repair_geometries,
    )
    df = zonal_mean(stack, zones, stat=args.stat)
    table = zonal_wide(df) if args.wide else df
    print(zonal_wide(df).to_string())

    if out_csv.exists() and not args.overwrite:
        print(f"[SKIP] {out_csv.name}")
        return 0
    out_csv.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out_csv, index=args.wide)
    print(f"Wrote {len(table)} rows -> {out_csv}")
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for firescar.geo CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "crop": _handle_crop,
        "rasterize-zones": _handle_rasterize_zones,
        "zonal-stats": _handle_zonal_stats,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    # Bad inputs (unreadable rasters, mismatched grids, bad dates) fail with a message, not a traceback
    try:
        return handler(args)
    except (OSError, ValueError) as e:
        raise SystemExit(f"{args.command} failed: {e}") from e


if __name__ == "__main__":
    raise SystemExit(main())
