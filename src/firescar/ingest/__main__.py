#!/usr/bin/env python3
"""firescar.ingest

NDVI stack CLI.

This is one of several firescar subsystem CLIs:
- firescar.ingest   → stack NDVI layers, per-layer summary (this file)
- firescar.geo      → crop, burn-scar zones, zonal statistics
- firescar.analysis → pixel samples, PCA, deviation maps, full walkthrough

Examples:
  # Print per-layer min/max/mean for the configured NDVI directory
  python -m firescar.ingest summary

  # Write the (ROI-cropped) stack as one multi-band GeoTIFF
  python -m firescar.ingest stack --crop --out data/output/ndvi_cropped.tif
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from firescar.config import DEFAULT_ANALYSIS_YAML, load_analysis_config


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for firescar.ingest."""
    ap = argparse.ArgumentParser(
        prog="firescar.ingest",
        description="Stack NDVI rasters for the fire walkthrough",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m firescar.ingest    # NDVI stack (this)
  python -m firescar.geo       # Crop, zones, zonal stats
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

    # --- summary ---
    summary = sub.add_parser("summary", help="Per-layer min/max/mean of the NDVI stack")
    summary.add_argument("--csv", type=Path, default=None, help="Optional path to write the summary CSV")
    summary.add_argument("--crop", action="store_true", help="Crop to the configured ROI first")

    # --- stack ---
    stack = sub.add_parser("stack", help="Write the NDVI layers as one multi-band GeoTIFF")
    stack.add_argument("--out", type=Path, default=None, help="Output GeoTIFF (default: <out_dir>/ndvi_stack.tif)")
    stack.add_argument("--crop", action="store_true", help="Crop to the configured ROI first")

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_summary(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)

    if args.dry_run:
        print("[dry-run] Would summarize NDVI layers:")
        print(f"  NDVI: {cfg.ndvi_dir / cfg.ndvi_glob}")
        print(f"  CSV: {args.csv or '-'}")
        return 0

    from firescar.geo.crop import load_roi_stack
    from firescar.ingest.stack import layer_summary

    stack = load_roi_stack(cfg, crop=args.crop)
    df = layer_summary(stack)
    print(df.to_string(index=False))

    if args.csv:
        if args.csv.exists() and not args.overwrite:
            print(f"[SKIP] {args.csv.name}")
        else:
            args.csv.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(args.csv, index=False)
            print(f"Wrote {len(df)} rows -> {args.csv}")
    return 0


def _handle_stack(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    out = args.out or cfg.out_dir / ("ndvi_cropped.tif" if args.crop else "ndvi_stack.tif")

    if args.dry_run:
        print("[dry-run] Would stack NDVI layers:")
        print(f"  NDVI: {cfg.ndvi_dir / cfg.ndvi_glob}")
        print(f"  Crop: {args.crop}")
        print(f"  Output: {out}")
        return 0

    from firescar.geo.crop import load_roi_stack
    from firescar.ingest.stack import write_stack

    stack = load_roi_stack(cfg, crop=args.crop)
    print(f"[stack] {stack.count} layers, {stack.dates[0].isoformat()} .. {stack.dates[-1].isoformat()}")
    write_stack(stack, out, overwrite=args.overwrite)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for firescar.ingest CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "summary": _handle_summary,
        "stack": _handle_stack,
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
