"""
Minimal raster backend and tabular outputs.

The PNG holds the color grid only (no glyphs): optional cluster and annotation
bars on the left, one band of pixels per layout row, connector lines between path
pieces, and an x-axis line with tick marks below the rows. Row labels and
tick labels go to companion TSVs, as does the annotation legend.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence, Union

import numpy as np
import pandas as pd
from matplotlib import image as mpimg

from .binning import BinProfiles
from .clustering import ClusteringResult, cluster_table, medoid_table
from .pipeline import Visualization

logger = logging.getLogger(__name__)

CLUSTER_BAR_WIDTH = 6
# between the cluster and annotation bars
BAR_GAP = 4
AXIS_HEIGHT = 12
TICK_HEIGHT = 5
BLACK = (0, 0, 0)


def _draw_line(image: np.ndarray, x0: int, y0: int, x1: int, y1: int, width: int = 1) -> None:
    steps = max(abs(x1 - x0), abs(y1 - y0), 1)
    xs = np.round(np.linspace(x0, x1, steps + 1)).astype(np.int64)
    ys = np.round(np.linspace(y0, y1, steps + 1)).astype(np.int64)
    half = width // 2
    for dy in range(-half, width - half):
        yy = ys + dy
        ok = (yy >= 0) & (yy < image.shape[0]) & (xs >= 0) & (xs < image.shape[1])
        image[yy[ok], xs[ok]] = BLACK


def render_image(vis: Visualization, x_padding: int = 0) -> np.ndarray:
    """Compose the ``(height, width, 3)`` uint8 image."""
    bar = CLUSTER_BAR_WIDTH if vis.clustering is not None and not vis.clustering.skipped else 0
    annotation = vis.annotation_bar_width if vis.annotations is not None else 0
    gap = BAR_GAP if bar and annotation else 0
    left = bar + gap + annotation + x_padding
    n_bins = vis.layout.n_bins
    axis_height = AXIS_HEIGHT if vis.ticks else 0
    height = max(vis.layout.height + axis_height, 1)
    width = max(left + n_bins + x_padding, 1)
    image = np.full((height, width, 3), 255, dtype=np.uint8)

    grid, filled = vis.cell_grid()
    bar_colors = vis.cluster_bar()
    annotation_colors = vis.annotation_bar()
    for idx, row in enumerate(vis.layout.rows):
        band = image[row.y:row.y_end, left:left + n_bins]
        band[:, filled[idx]] = grid[idx, filled[idx]]
        if bar and bar_colors[idx] is not None:
            image[row.y:row.y_end, :bar] = bar_colors[idx]
        if annotation and annotation_colors[idx] is not None:
            image[row.y:row.y_end, bar + gap:bar + gap + annotation] = annotation_colors[idx]

    for conn in vis.layout.connectors:
        a, b = vis.layout.rows[conn.from_row], vis.layout.rows[conn.to_row]
        thickness = max(1, int(round(conn.thickness * min(a.height, b.height) / 2)))
        _draw_line(image,
                   left + conn.from_bin - 1, a.y + a.height // 2,
                   left + conn.to_bin, b.y + b.height // 2,
                   thickness)

    if vis.ticks:
        axis_y = vis.layout.height + 1
        image[axis_y, left:left + n_bins] = BLACK
        for tick in vis.ticks:
            x = left + min(tick.bin_index, n_bins - 1)
            image[axis_y:axis_y + TICK_HEIGHT, x] = BLACK
    return image


def write_png(vis: Visualization, output: Union[str, Path], x_padding: int = 0) -> Path:
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    mpimg.imsave(output, render_image(vis, x_padding), format="png")
    logger.info("Wrote %s", output)
    return output


def row_table(vis: Visualization) -> pd.DataFrame:
    """Label, vertical span and cluster of every row, plus its annotation when loaded."""
    frame = pd.DataFrame({
        "label": [row.label for row in vis.layout.rows],
        "y": [row.y for row in vis.layout.rows],
        "height": [row.height for row in vis.layout.rows],
        "cluster": pd.array([row.cluster for row in vis.layout.rows], dtype="Int64"),
    })
    if vis.annotations is not None:
        frame["annotation"] = [row.annotation or "" for row in vis.layout.rows]
        frame["annotation_color"] = [_hex(rgb) if rgb is not None else "" for rgb in vis.annotation_bar()]
    return frame


def legend_table(vis: Visualization) -> pd.DataFrame:
    legend = vis.legend()
    return pd.DataFrame({
        "category": [category for category, _ in legend],
        "color": [_hex(rgb) for _, rgb in legend],
    })


def _hex(rgb) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def tick_table(vis: Visualization) -> pd.DataFrame:
    return pd.DataFrame({
        "bin": [t.bin_index for t in vis.ticks],
        "offset": [t.offset for t in vis.ticks],
        "value": [t.value for t in vis.ticks],
        "label": [t.label for t in vis.ticks],
    })


def write_tsv(frame: pd.DataFrame, path: Union[str, Path]) -> Path:
    path = Path(path)
    frame.to_csv(path, sep="\t", index=False)
    return path


def write_cluster_tables(result: ClusteringResult, names: Sequence[str], prefix: Union[str, Path]):
    """Write ``<prefix>.clusters.tsv`` and ``<prefix>.medoids.tsv``."""
    prefix = str(prefix)
    clusters = write_tsv(cluster_table(result, names), prefix + ".clusters.tsv")
    medoids = write_tsv(medoid_table(result, names), prefix + ".medoids.tsv")
    logger.info("Cluster assignments saved to %s, medoids to %s", clusters, medoids)
    return clusters, medoids


def write_profiles(profiles: BinProfiles, path: Union[str, Path]) -> Path:
    """Occupied (path, bin) statistics as a parquet table."""
    path = Path(path)
    profiles.to_frame().to_parquet(path, index=False)
    logger.info("Bin profiles saved to %s", path)
    return path
