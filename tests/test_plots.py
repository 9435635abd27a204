#!/usr/bin/env python3

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt

from firescar import plots
from firescar.analysis.pca import layer_stats, predict_scores, principal_components
from firescar.analysis.sample import sample_pixels
from firescar.geo.zonal import zonal_mean


def test_figures_are_written(stack, zones, tmp_path: Path):
    pca = principal_components(layer_stats(stack), stack.dates)
    scores = predict_scores(stack, pca, (1, 2))

    figs = [
        plots.plot_layer(stack, 3, out=tmp_path / "layer.png"),
        plots.plot_pixel_series(sample_pixels(stack, 4, seed=0), out=tmp_path / "series.png"),
        plots.plot_zonal_means(zonal_mean(stack, zones), out=tmp_path / "zonal.png"),
        plots.plot_loadings(pca, n=3, out=tmp_path / "loadings.png"),
        plots.plot_scores(scores, stack, (1, 2), out=tmp_path / "scores.png"),
    ]
    for name in ("layer", "series", "zonal", "loadings", "scores"):
        assert (tmp_path / f"{name}.png").stat().st_size > 0
    assert len(figs[4].axes) == 4  # two maps + two colorbars
    for fig in figs:
        plt.close(fig)


def test_figure_without_output(stack):
    fig = plots.plot_layer(stack, 0)
    assert fig.axes[0].get_title() == "NDVI 2005-05-15"
    plt.close(fig)
