#!/usr/bin/env python3
"""walkthrough.py

The Alaska 2005 fire walkthrough, start to finish.

Steps (each one a thin call into the modules of this package):
1. stack the NDVI layers and print per-layer min/max
2. crop to the ROI
3. sample random pixel time series
4. resolve burn-scar zones (shapefile, or the pre-rasterized fallback)
5. zonal mean NDVI, burned vs unburned, and their difference
6. layer covariance + PCA, loadings by date
7. PCA score maps
8. standardized stack
9. deviation maps (each date minus the pixel mean)

All outputs land in cfg.out_dir. Called by ``python -m firescar.analysis walkthrough``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from firescar.config import AnalysisConfig, format_bbox


OUTPUT_NAMES = {
    "summary": "layer_summary.csv",
    "cropped": "ndvi_cropped.tif",
    "samples": "pixel_samples.csv",
    "zones": "fire_zones.tif",
    "zonal": "zonal_mean.csv",
    "zonal_difference": "zonal_difference.csv",
    "pca_summary": "pca_summary.csv",
    "pca_loadings": "pca_loadings.csv",
    "pca_scores": "pca_scores.tif",
    "standardized": "ndvi_standardized.tif",
    "deviation": "ndvi_deviation.tif",
}


def _write_csv(df: pd.DataFrame, path: Path, *, overwrite: bool, index: bool = False) -> Optional[Path]:
    if path.exists() and not overwrite:
        print(f"[SKIP] {path.name} (exists; pass --overwrite to replace)")
        return None
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)
    print(f"Wrote {len(df)} rows -> {path}")
    return path


def run_walkthrough(
    cfg: AnalysisConfig,
    *,
    dry_run: bool = False,
    overwrite: bool = False,
    plots: bool = False,
) -> Dict[str, Path]:
    """Run every step and return {output key: path}.

    With dry_run nothing is read or written; the plan is printed and the
    planned paths returned.
    """
    out_dir = cfg.out_dir
    planned = {k: out_dir / v for k, v in OUTPUT_NAMES.items()}

    if dry_run:
        print("[dry-run] Would run the fire walkthrough:")
        print(f"  NDVI: {cfg.ndvi_dir / cfg.ndvi_glob}")
        print(f"  Dates: {cfg.date_pattern} ({cfg.date_format})")
        print(f"  ROI: {format_bbox(cfg.roi) if cfg.roi else 'full extent'}")
        print(f"  Zones: shapefile={cfg.fire_shp} fallback={cfg.fire_raster}")
        print(f"  PCA: {cfg.n_components} components, correlation={cfg.use_correlation}")
        for key, path in planned.items():
            print(f"  - {key}: {path}")
        return planned

    # Lazy imports: heavy geo stack only when actually running
    from firescar.analysis.deviation import deviation_from_mean
    from firescar.analysis.pca import (
        layer_stats,
        loadings_frame,
        predict_scores,
        principal_components,
        standardize_stack,
    )
    from firescar.analysis.sample import sample_pixels
    from firescar.geo.crop import crop_stack
    from firescar.geo.zonal import zonal_difference, zonal_mean
    from firescar.geo.zones import resolve_zones, zone_counts
    from firescar.ingest.stack import layer_summary, load_stack, scale_ndvi, write_stack

    written: Dict[str, Path] = {}

    def _keep(key: str, path: Optional[Path]) -> None:
        written[key] = path or planned[key]

    # --- 1. stack ---
    stack = load_stack(cfg.ndvi_dir, glob=cfg.ndvi_glob, date_pattern=cfg.date_pattern, date_format=cfg.date_format)
    stack = scale_ndvi(stack, cfg.scale_factor)
    print(f"[stack] {stack.count} layers, {stack.height}x{stack.width}, "
          f"{stack.dates[0].isoformat()} .. {stack.dates[-1].isoformat()}")
    summary = layer_summary(stack)
    print(summary.to_string(index=False))
    _keep("summary", _write_csv(summary, planned["summary"], overwrite=overwrite))

    # --- 2. crop ---
    if cfg.roi is not None:
        stack = crop_stack(stack, cfg.roi, bbox_crs=cfg.roi_crs)
        print(f"[crop] ROI {format_bbox(cfg.roi)} -> {stack.height}x{stack.width}")
    _keep("cropped", write_stack(stack, planned["cropped"], overwrite=overwrite))

    # --- 3. pixel series ---
    samples = sample_pixels(stack, cfg.n_samples, seed=cfg.seed)
    _keep("samples", _write_csv(samples, planned["samples"], overwrite=overwrite))

    # --- 4. zones ---
    zones = resolve_zones(
        stack,
        fire_shp=cfg.fire_shp,
        fire_raster=cfg.fire_raster,
        field=cfg.zone_field,
        repair=cfg.repair_geometries,
    )
    for _, row in zone_counts(zones).iterrows():
        print(f"  - zone {row['zone']}: {row['n_cells']} cells")
    _keep("zones", write_stack(zones[None, ...], planned["zones"], like=stack, descriptions=["zone"], overwrite=overwrite))

    # --- 5. zonal mean ---
    zonal = zonal_mean(stack, zones)
    _keep("zonal", _write_csv(zonal, planned["zonal"], overwrite=overwrite))
    zone_ids = sorted(zonal["zone"].unique().tolist())
    if 0 in zone_ids and len(zone_ids) > 1:
        burned = next(z for z in zone_ids if z != 0)
        diff = zonal_difference(zonal, zone=burned, reference=0)
        _keep("zonal_difference", _write_csv(diff.reset_index(), planned["zonal_difference"], overwrite=overwrite))
    else:
        print("[zonal] need a background zone and at least one burned zone for a difference; skipping")

    # --- 6. PCA ---
    stats = layer_stats(stack)
    pca = principal_components(stats, stack.dates, use_correlation=cfg.use_correlation)
    print(f"[pca] {stats.n_cells} complete pixels")
    print(pca.summary().head(max(cfg.n_components, 3)).to_string(index=False))
    _keep("pca_summary", _write_csv(pca.summary(), planned["pca_summary"], overwrite=overwrite))
    _keep("pca_loadings", _write_csv(loadings_frame(pca), planned["pca_loadings"], overwrite=overwrite))

    # --- 7. score maps ---
    components = list(range(1, min(cfg.n_components, pca.n_components) + 1))
    scores = predict_scores(stack, pca, components)
    _keep("pca_scores", write_stack(
        scores, planned["pca_scores"], like=stack,
        descriptions=[f"PC{c}" for c in components], overwrite=overwrite,
    ))

    # --- 8. standardized stack ---
    _keep("standardized", write_stack(standardize_stack(stack, stats), planned["standardized"], overwrite=overwrite))

    # --- 9. deviation maps ---
    _keep("deviation", write_stack(deviation_from_mean(stack), planned["deviation"], overwrite=overwrite))

    if plots:
        import matplotlib.pyplot as plt

        from firescar import plots as fplots

        fig_dir = out_dir / "figures"
        figures = [
            fplots.plot_layer(stack, 0, out=fig_dir / "ndvi_first_layer.png"),
            fplots.plot_pixel_series(samples, out=fig_dir / "pixel_series.png"),
            fplots.plot_zonal_means(zonal, out=fig_dir / "zonal_mean.png"),
            fplots.plot_loadings(pca, n=max(cfg.n_components, 3), out=fig_dir / "pca_loadings.png"),
            fplots.plot_scores(scores, stack, components, out=fig_dir / "pca_scores.png"),
        ]
        for fig in figures:
            plt.close(fig)

    print(f"[walkthrough] Done -> {out_dir}")
    return written
