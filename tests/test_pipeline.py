"""End-to-end tests of the visualization pipeline and the raster backend."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from gfalook.binning import BinningEngine
from gfalook.colors import ANNOTATION_COLORS, LOW_DEPTH_GREYS, get_palette, path_color
from gfalook.errors import IntegrityError
from gfalook.params import build_config
from gfalook.pipeline import build_visualization, prepare_inputs, run_clustering
from gfalook.raster import (
    AXIS_HEIGHT,
    BAR_GAP,
    CLUSTER_BAR_WIDTH,
    legend_table,
    render_image,
    row_table,
    write_cluster_tables,
    write_png,
)
from tests._helpers import build_graph


def _config(**sections):
    sections.setdefault("system", {"jobs": 1})
    return build_config(sections)


def test_default_visualization(linear_graph) -> None:
    vis = build_visualization(linear_graph, _config())
    assert [row.label for row in vis.layout.rows] == ["p1", "p2", "p3"]
    assert vis.colors.shape == (3, 20, 3)
    assert vis.layout.height == 30
    assert vis.ticks == []

    grid, filled = vis.cell_grid()
    assert np.array_equal(filled, vis.profiles.occupied)
    assert tuple(grid[0, 0]) == path_color("p1")
    assert tuple(grid[1, 5]) == (255, 255, 255)


def test_ignore_prefix_scenario() -> None:
    graph = build_graph([("s", "ACGTACGT")], [("decoy1", "s+"), ("decoy2", "s+"), ("real1", "s+")])
    vis = build_visualization(graph, _config(selection={"ignore_prefix": "decoy"}))
    assert vis.profiles.names == ["real1"]
    assert [row.label for row in vis.layout.rows] == ["real1"]


def test_paths_to_display_order(linear_graph, tmp_path: Path) -> None:
    listing = tmp_path / "paths.txt"
    listing.write_text("p3\np1\nabsent\n")
    vis = build_visualization(linear_graph, _config(selection={"paths_to_display": str(listing)}))
    assert vis.profiles.names == ["p3", "p1"]


def test_compressed_scenario(linear_graph) -> None:
    vis = build_visualization(linear_graph, _config(layout={"compressed_mode": True}, image={"width": 5}))
    assert len(vis.layout.rows) == 1
    assert vis.colors.shape == (1, 5, 3)
    prepared = prepare_inputs(linear_graph, _config(image={"width": 5}))
    full = BinningEngine(linear_graph, prepared.axis, prepared.grid).run(prepared.paths)
    assert np.allclose(vis.profiles.coverage[0], full.coverage.mean(axis=0))


@pytest.mark.parametrize("method", ["dbscan", "upgma"])
def test_identical_paths_cluster_together(identical_graph, method: str) -> None:
    config = _config(clustering={"enable": True, "method": method})
    vis = build_visualization(identical_graph, config)
    assert vis.clustering.num_clusters == 1
    assert np.all(vis.distances.values == 0)
    assert [row.cluster for row in vis.layout.rows] == [0, 0, 0]


def test_representatives_rows(linear_graph) -> None:
    config = _config(clustering={"enable": True, "method": "upgma", "upgma_threshold": 0.0,
                                 "representatives": True})
    vis = build_visualization(linear_graph, config)
    assert len(vis.layout.rows) == vis.clustering.num_clusters == 3
    assert all(row.label.endswith("(n=1)") for row in vis.layout.rows)
    # one gap between consecutive clusters
    assert vis.layout.height == 3 * 10 + 2 * 10


def test_clustering_needs_two_paths() -> None:
    graph = build_graph([("s", "ACGT")], [("only", "s+")])
    vis = build_visualization(graph, _config(clustering={"enable": True}))
    assert vis.clustering.skipped
    assert [row.label for row in vis.layout.rows] == ["only"]


def test_empty_selection_gives_empty_canvas(linear_graph) -> None:
    vis = build_visualization(linear_graph, _config(selection={"ignore_prefix": "p"}, axis={"x_axis": "pangenomic"}))
    assert vis.is_empty
    assert vis.colors.shape == (0, 20, 3)
    image = render_image(vis)
    assert image.shape == (AXIS_HEIGHT, 20, 3)


def test_path_range_window(linear_graph) -> None:
    vis = build_visualization(linear_graph, _config(selection={"path_range": "p2:4-6"}))
    assert vis.layout.n_bins == 2
    assert vis.profiles.grid.start == 18


def test_malformed_range_aborts(linear_graph) -> None:
    with pytest.raises(IntegrityError):
        build_visualization(linear_graph, _config(selection={"path_range": "20-10"}))


def test_reference_axis_ticks(linear_graph) -> None:
    vis = build_visualization(linear_graph, _config(axis={"x_axis": "p2", "x_ticks": 20}))
    assert vis.axis_label == "p2"
    assert {t.bin_index for t in vis.ticks} == set(range(0, 4)) | set(range(10, 20))


def test_pack_layout_with_connectors(blocks_graph) -> None:
    vis = build_visualization(blocks_graph, _config(layout={"pack_paths": True, "link_path_pieces": 0.5},
                                                    offsets={"order": "segment_order"}))
    assert len(vis.layout.rows) == 2
    assert len(vis.layout.connectors) == 1
    assert vis.layout.connectors[0].thickness == 0.5


def test_render_image_dimensions(linear_graph) -> None:
    config = _config(clustering={"enable": True}, axis={"x_axis": "pangenomic"})
    vis = build_visualization(linear_graph, config)
    image = render_image(vis, x_padding=2)
    assert image.dtype == np.uint8
    assert image.shape == (vis.layout.height + AXIS_HEIGHT, CLUSTER_BAR_WIDTH + 2 + 20 + 2, 3)


def test_outputs_on_disk(linear_graph, tmp_path: Path) -> None:
    vis = build_visualization(linear_graph, _config(clustering={"enable": True}))
    png = write_png(vis, tmp_path / "out" / "linear.png")
    assert png.exists()
    assert png.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"

    clusters, medoids = write_cluster_tables(vis.clustering, vis.profiles.names, tmp_path / "linear")
    table = pd.read_csv(clusters, sep="\t")
    assert list(table.columns) == ["path.name", "cluster"]
    assert sorted(table["path.name"]) == ["p1", "p2", "p3"]
    assert list(pd.read_csv(medoids, sep="\t").columns) == ["cluster", "medoid.path", "cluster.size"]
    assert list(row_table(vis).columns) == ["label", "y", "height", "cluster"]


def test_run_clustering(linear_graph) -> None:
    profiles, distances, result = run_clustering(linear_graph, _config(clustering={"method": "upgma"}))
    assert profiles.n_paths == 3
    assert distances.values.shape == (3, 3)
    assert sorted(result.ordering) == [0, 1, 2]


def _uneven_graph():
    # bin 0 is covered by all three paths, bin 1 by one of them
    return build_graph([("a", "ACGT"), ("b", "ACGT")], [("p1", "a+,b+"), ("p2", "a+"), ("p3", "a+")])


def test_compressed_row_is_colored_by_mean_depth() -> None:
    vis = build_visualization(_uneven_graph(), _config(layout={"compressed_mode": True}, image={"width": 2}))
    assert np.allclose(vis.profiles.mean_depth[0], [1.0, 1 / 3])
    assert tuple(vis.colors[0, 0]) == LOW_DEPTH_GREYS[1]
    assert tuple(vis.colors[0, 1]) == LOW_DEPTH_GREYS[0]


def test_compressed_row_uses_rdbu_by_default() -> None:
    config = _config(layout={"compressed_mode": True}, image={"width": 2}, color={"no_grey_depth": True})
    vis = build_visualization(_uneven_graph(), config)
    assert np.array_equal(vis.colors[0, 0], np.round(get_palette("RdBu")[0]).astype(np.uint8))

    chosen = _config(layout={"compressed_mode": True}, image={"width": 2},
                     color={"no_grey_depth": True, "palette": "PiYG"})
    vis = build_visualization(_uneven_graph(), chosen)
    assert np.array_equal(vis.colors[0, 0], np.round(get_palette("PiYG")[0]).astype(np.uint8))


def test_windowed_reference_axis_is_relative(linear_graph) -> None:
    vis = build_visualization(linear_graph, _config(selection={"path_range": "p1:10-20"},
                                                    axis={"x_axis": "p1", "x_ticks": 2}))
    assert [(t.bin_index, t.label) for t in vis.ticks] == [(0, "0"), (9, "9")]

    absolute = build_visualization(linear_graph, _config(selection={"path_range": "p1:10-20"},
                                                         axis={"x_axis": "p1", "x_ticks": 2, "absolute": True}))
    assert [t.label for t in absolute.ticks] == ["10", "19"]


def test_annotations_bar_rows_and_legend(linear_graph, tmp_path: Path) -> None:
    table = tmp_path / "populations.tsv"
    table.write_text("sample\tpopulation\np1\tAFR\np\tEUR\nzz\tAMR\n")
    config = _config(selection={"annotation_file": str(table)}, clustering={"enable": True})
    vis = build_visualization(linear_graph, config)

    by_label = {row.label: row.annotation for row in vis.layout.rows}
    assert by_label == {"p1": "AFR", "p2": "EUR", "p3": "EUR"}
    # AMR matches no displayed path
    assert vis.legend() == [("AFR", ANNOTATION_COLORS[0]), ("EUR", ANNOTATION_COLORS[2])]

    image = render_image(vis)
    assert image.shape[1] == CLUSTER_BAR_WIDTH + BAR_GAP + 10 + 20
    first = vis.layout.rows[0]
    bar_x = CLUSTER_BAR_WIDTH + BAR_GAP
    expected = vis.annotations.colors[first.annotation]
    assert tuple(image[first.y, bar_x]) == expected
    assert tuple(image[first.y, CLUSTER_BAR_WIDTH]) == (255, 255, 255)

    rows = row_table(vis)
    assert list(rows.columns) == ["label", "y", "height", "cluster", "annotation", "annotation_color"]
    assert list(legend_table(vis)["category"]) == ["AFR", "EUR"]
