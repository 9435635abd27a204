#!/usr/bin/env python3

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
import pytest
import rasterio

from conftest import DATES
from firescar.analysis.__main__ import main as analysis_main
from firescar.config import load_analysis_config
from firescar.geo.__main__ import main as geo_main
from firescar.ingest.__main__ import main as ingest_main
from firescar.ingest.stack import load_stack


@pytest.fixture
def config_yaml(tmp_path: Path, ndvi_dir: Path, bowtie_shp: Path, zone_raster: Path) -> Path:
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    path = cfg_dir / "analysis.yaml"
    path.write_text(
        """
ndvi:
  dir: ndvi
  glob: "ndvi_*.tif"
roi:
  bounds: [200, 300, 1000, 900]
fire:
  shapefile: fire/fires_2005.shp
  raster: fire/fires_2005.tif
sample:
  n: 4
  seed: 1
pca:
  n_components: 2
output:
  dir: out
"""
    )
    return path


def test_dry_run_writes_nothing(config_yaml: Path, tmp_path: Path, capsys):
    assert ingest_main(["--config", str(config_yaml), "--dry-run", "stack", "--crop"]) == 0
    assert geo_main(["--config", str(config_yaml), "--dry-run", "rasterize-zones"]) == 0
    assert analysis_main(["--config", str(config_yaml), "--dry-run", "pca"]) == 0
    assert analysis_main(["--config", str(config_yaml), "--dry-run", "walkthrough"]) == 0
    assert "[dry-run]" in capsys.readouterr().out
    assert not (tmp_path / "out").exists()


def test_ingest_summary_csv(config_yaml: Path, tmp_path: Path):
    out = tmp_path / "summary.csv"
    assert ingest_main(["--config", str(config_yaml), "summary", "--csv", str(out)]) == 0
    df = pd.read_csv(out)
    assert len(df) == len(DATES)
    assert df["n_valid"].tolist()[:2] == [120, 119]


def test_geo_crop(config_yaml: Path, tmp_path: Path):
    assert geo_main(["--config", str(config_yaml), "crop"]) == 0
    cropped = load_stack(tmp_path / "out" / "ndvi_cropped.tif")
    assert (cropped.height, cropped.width) == (6, 8)
    assert cropped.dates == DATES


def test_geo_zonal_stats_uses_fallback(config_yaml: Path, tmp_path: Path, capsys):
    out = tmp_path / "zonal.csv"
    assert geo_main(["--config", str(config_yaml), "zonal-stats", "--out-csv", str(out)]) == 0
    assert "pre-rasterized" in capsys.readouterr().out
    df = pd.read_csv(out)
    assert sorted(df["zone"].unique().tolist()) == [0, 1]


def test_analysis_sample(config_yaml: Path, tmp_path: Path):
    assert analysis_main(["--config", str(config_yaml), "sample", "--n", "3"]) == 0
    df = pd.read_csv(tmp_path / "out" / "pixel_samples.csv")
    assert df["cell"].nunique() == 3


def test_geo_rasterize_zones_writes_cropped_zones(config_yaml: Path, tmp_path: Path, capsys):
    assert geo_main(["--config", str(config_yaml), "rasterize-zones"]) == 0
    assert "pre-rasterized" in capsys.readouterr().out
    with rasterio.open(tmp_path / "out" / "fire_zones.tif") as src:
        assert (src.height, src.width) == (6, 8)
        assert src.descriptions == ("zone",)
        band = src.read(1)
    assert band.sum() == 15
    assert band[1:4, 1:6].min() == 1


def test_analysis_pca_writes_tables_and_scores(config_yaml: Path, tmp_path: Path):
    assert analysis_main(["--config", str(config_yaml), "pca", "--components", "3"]) == 0
    out = tmp_path / "out"
    summary = pd.read_csv(out / "pca_summary.csv")
    assert len(summary) == len(DATES)
    assert summary["cumulative"].iloc[-1] == pytest.approx(1.0)
    loadings = pd.read_csv(out / "pca_loadings.csv")
    assert list(loadings.columns) == ["date", "PC1", "PC2", "PC3"]
    with rasterio.open(out / "pca_scores.tif") as src:
        assert src.descriptions == ("PC1", "PC2", "PC3")


def test_analysis_pca_rejects_zero_components(config_yaml: Path):
    with pytest.raises(SystemExit, match="at least 1 component"):
        analysis_main(["--config", str(config_yaml), "pca", "--components", "0"])


def test_analysis_deviation_from_pixel_mean(config_yaml: Path, tmp_path: Path):
    assert analysis_main(["--config", str(config_yaml), "deviation"]) == 0
    dev = load_stack(tmp_path / "out" / "ndvi_deviation.tif")
    assert dev.dates == DATES
    assert abs(float(dev.data.sum(axis=0).mean())) < 1e-4


def test_analysis_deviation_from_unburned_zone(config_yaml: Path, tmp_path: Path):
    out = tmp_path / "dev_zone.tif"
    args = ["--config", str(config_yaml), "deviation", "--reference", "zone", "--zone", "0", "--out", str(out)]
    assert analysis_main(args) == 0
    dev = load_stack(out)
    assert (dev.height, dev.width) == (6, 8)
    # burned cells sit well below the unburned mean after the fire, not before
    assert float(dev.data[-1, 1:4, 1:6].mean()) < -0.3
    assert abs(float(dev.data[0, 1:4, 1:6].mean())) < 0.1


def test_bad_input_becomes_systemexit(config_yaml: Path, tmp_path: Path):
    for f in (tmp_path / "ndvi").glob("*.tif"):
        f.unlink()
    with pytest.raises(SystemExit, match="summary failed"):
        ingest_main(["--config", str(config_yaml), "summary"])


def test_walkthrough_writes_every_output(config_yaml: Path, tmp_path: Path):
    from firescar.analysis.walkthrough import OUTPUT_NAMES, run_walkthrough

    cfg = load_analysis_config(config_yaml)
    open_before = plt.get_fignums()
    written = run_walkthrough(cfg, plots=True)
    assert plt.get_fignums() == open_before
    assert set(written) == set(OUTPUT_NAMES)
    for path in written.values():
        assert path.exists(), path

    with rasterio.open(written["pca_scores"]) as src:
        assert src.count == 2
        assert src.descriptions == ("PC1", "PC2")
        assert (src.height, src.width) == (6, 8)

    zonal = pd.read_csv(written["zonal_difference"])
    assert zonal.iloc[-1, 1] < -0.3
    assert (tmp_path / "out" / "figures" / "pca_loadings.png").exists()

    # second run skips everything already there
    again = run_walkthrough(cfg)
    assert again == written
