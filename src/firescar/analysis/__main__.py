#!/usr/bin/env python3
"""firescar.analysis

Time-series analysis CLI for the fire walkthrough.

This is one of several firescar subsystem CLIs:
- firescar.ingest   → stack NDVI layers, per-layer summary
- firescar.geo      → crop, burn-scar zones, zonal statistics
- firescar.analysis → pixel samples, PCA, deviation maps, full walkthrough (this file)

Examples:
  # 20 random pixel series from the cropped stack
  python -m firescar.analysis sample --n 20

  # PCA on the layer covariance matrix, first 3 score maps
  python -m firescar.analysis pca --components 3

  # Each date minus the pixel's seasonal mean
  python -m firescar.analysis deviation

  # Everything, in lesson order, with figures
  python -m firescar.analysis walkthrough --plots
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
    """Build the argument parser for firescar.analysis."""
    ap = argparse.ArgumentParser(
        prog="firescar.analysis",
        description="Pixel samples, PCA and deviation maps for NDVI time series",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m firescar.ingest    # NDVI stack
  python -m firescar.geo       # Crop, zones, zonal stats
  python -m firescar.analysis  # Samples, PCA, deviation, walkthrough (this)
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

    # --- sample ---
    sample = sub.add_parser("sample", help="Random pixel NDVI time series")
    sample.add_argument("--n", type=int, default=None, help="Number of pixels (default: sample.n)")
    sample.add_argument("--seed", type=int, default=None, help="Random seed (default: sample.seed)")
    sample.add_argument("--out-csv", type=Path, default=None, help="Output CSV (default: <out_dir>/pixel_samples.csv)")
    sample.add_argument("--plot", type=Path, default=None, help="Optional PNG of the sampled series")

    # --- pca ---
    pca = sub.add_parser("pca", help="PCA of the NDVI stack (layers as variables)")
    pca.add_argument("--components", type=int, default=None, help="Score maps to write (default: pca.n_components)")
    pca.add_argument("--correlation", action="store_true", help="Use the correlation matrix (standardized layers)")
    pca.add_argument("--out-dir", type=Path, default=None, help="Output directory (default: output.dir)")

    # --- deviation ---
    dev = sub.add_parser("deviation", help="Deviation maps: each date minus a reference")
    dev.add_argument(
        "--reference",
        choices=["pixel-mean", "zone"],
        default="pixel-mean",
        help="Subtract the pixel's temporal mean, or that date's mean over --zone (default: pixel-mean)",
    )
    dev.add_argument("--zone", type=int, default=0, help="Reference zone for --reference zone (default: 0, unburned)")
    dev.add_argument("--out", type=Path, default=None, help="Output GeoTIFF (default: <out_dir>/ndvi_deviation.tif)")

    # --- walkthrough ---
    walk = sub.add_parser("walkthrough", help="Run every step of the fire walkthrough in order")
    walk.add_argument("--plots", action="store_true", help="Also write PNG figures to <out_dir>/figures")

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_sample(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    n = args.n if args.n is not None else cfg.n_samples
    seed = args.seed if args.seed is not None else cfg.seed
    out_csv = args.out_csv or cfg.out_dir / "pixel_samples.csv"

    if args.dry_run:
        print(f"[dry-run] Would sample {n} pixels (seed={seed}) -> {out_csv}")
        return 0

    from firescar.analysis.sample import sample_pixels
    from firescar.geo.crop import load_roi_stack

    stack = load_roi_stack(cfg)
    samples = sample_pixels(stack, n, seed=seed)
    print(samples.pivot(index="date", columns="cell", values="ndvi").round(3).to_string())

    if out_csv.exists() and not args.overwrite:
        print(f"[SKIP] {out_csv.name}")
    else:
        out_csv.parent.mkdir(parents=True, exist_ok=True)
        samples.to_csv(out_csv, index=False)
        print(f"Wrote {len(samples)} rows -> {out_csv}")

    if args.plot:
        import matplotlib.pyplot as plt

        from firescar.plots import plot_pixel_series

        plt.close(plot_pixel_series(samples, out=args.plot))
    return 0


def _handle_pca(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    k = args.components if args.components is not None else cfg.n_components
    if k < 1:
        raise SystemExit(f"pca needs at least 1 component, got {k}")
    use_corr = args.correlation or cfg.use_correlation
    out_dir = args.out_dir or cfg.out_dir

    if args.dry_run:
        print("[dry-run] Would run PCA:")
        print(f"  NDVI: {cfg.ndvi_dir / cfg.ndvi_glob}")
        print(f"  Matrix: {'correlation' if use_corr else 'covariance'}")
        print(f"  Score maps: PC1..PC{k} -> {out_dir / 'pca_scores.tif'}")
        return 0

    from firescar.analysis.pca import layer_stats, loadings_frame, predict_scores, principal_components
    from firescar.geo.crop import load_roi_stack
    from firescar.ingest.stack import write_stack

    stack = load_roi_stack(cfg)
    stats = layer_stats(stack)
    result = principal_components(stats, stack.dates, use_correlation=use_corr)
    k = min(k, result.n_components)

    summary = result.summary()
    loadings = loadings_frame(result, k)
    print(f"[pca] {stats.n_cells} complete pixels, {stack.count} layers")
    print(summary.head(k).to_string(index=False))
    print(loadings.to_string(index=False))

    out_dir.mkdir(parents=True, exist_ok=True)
    for name, df in (("pca_summary.csv", summary), ("pca_loadings.csv", loadings)):
        path = out_dir / name
        if path.exists() and not args.overwrite:
            print(f"[SKIP] {name}")
            continue
        df.to_csv(path, index=False)
        print(f"Wrote {len(df)} rows -> {path}")

    components = list(range(1, k + 1))
    scores = predict_scores(stack, result, components)
    write_stack(
        scores,
        out_dir / "pca_scores.tif",
        like=stack,
        descriptions=[f"PC{c}" for c in components],
        overwrite=args.overwrite,
    )
    return 0


def _handle_deviation(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    out = args.out or cfg.out_dir / "ndvi_deviation.tif"

    if args.dry_run:
        ref = "pixel temporal mean" if args.reference == "pixel-mean" else f"zone {args.zone} mean"
        print(f"[dry-run] Would write deviation from {ref} -> {out}")
        return 0

    from firescar.analysis.deviation import deviation_from_mean, deviation_from_zone
    from firescar.geo.crop import load_roi_stack
    from firescar.ingest.stack import write_stack

    stack = load_roi_stack(cfg)
    if args.reference == "zone":
        from firescar.geo.zones import resolve_zones

        zones = resolve_zones(
            stack,
            fire_shp=cfg.fire_shp,
            fire_raster=cfg.fire_raster,
            field=cfg.zone_field,
            repair=cfg.repair_geometries,
        )
        dev = deviation_from_zone(stack, zones, reference_zone=args.zone)
    else:
        dev = deviation_from_mean(stack)
    write_stack(dev, out, overwrite=args.overwrite)
    return 0


def _handle_walkthrough(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)

    from firescar.analysis.walkthrough import run_walkthrough

    run_walkthrough(cfg, dry_run=args.dry_run, overwrite=args.overwrite, plots=args.plots)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for firescar.analysis CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "sample": _handle_sample,
        "pca": _handle_pca,
        "deviation": _handle_deviation,
        "walkthrough": _handle_walkthrough,
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
