"""
Visualization pipeline: graph -> bin profiles -> clusters -> layout + colors -> axis.

:func:`build_visualization` is the single entry point used by the CLI. It
returns a :class:`Visualization` holding everything a rendering backend
needs: the row layout, a color for every profile bin, and axis ticks.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from .binning import BinGrid, BinningEngine, BinProfiles, make_bin_grid
from .clustering import ClusteringResult, cluster_paths
from .colors import RGB, ColorSettings, cluster_color, compute_colors
from .coordinates import CoordinateMapper, Tick, resolve_window
from .graph import Graph, GraphPath, PangenomeAxis
from .inputs import (
    PathAnnotations,
    RangeSpec,
    load_annotations,
    load_highlight_node_ids,
    load_path_colors,
    load_paths_to_display,
    load_prefix_merges,
    parse_path_range,
    select_paths,
)
from .layout import Layout, annotate_rows, compress_profiles, group_rows, link_gaps, pack_rows, stack_rows
from .params import GfalookConfig
from .similarity import DistanceMatrix, compute_distances

logger = logging.getLogger(__name__)


@dataclass
class Visualization:
    """Geometry and colors for one rendered image."""
    layout: Layout
    colors: np.ndarray  # (profile rows, bins, 3) uint8
    profiles: Optional[BinProfiles] = None  # the profiles drawn; one row in compressed mode
    ticks: List[Tick] = field(default_factory=list)
    axis_label: Optional[str] = None
    distances: Optional[DistanceMatrix] = None
    clustering: Optional[ClusteringResult] = None
    path_height: int = 10
    annotations: Optional[PathAnnotations] = None
    annotation_bar_width: int = 10

    @property
    def is_empty(self) -> bool:
        return not self.layout.rows

    def cell_grid(self) -> Tuple[np.ndarray, np.ndarray]:
        """Per layout row and bin: RGB color (white when empty) and the drawn mask."""
        source = self.layout.source_grid()
        filled = source >= 0
        grid = np.full(source.shape + (3,), 255, dtype=np.uint8)
        if filled.any():
            rows, bins = np.nonzero(filled)
            grid[rows, bins] = self.colors[source[rows, bins], bins]
        return grid, filled

    def cluster_bar(self) -> List[Optional[RGB]]:
        return [cluster_color(row.cluster) if row.cluster is not None else None
                for row in self.layout.rows]

    def annotation_bar(self) -> List[Optional[RGB]]:
        if self.annotations is None:
            return [None] * len(self.layout.rows)
        return [self.annotations.colors[row.annotation] if row.annotation is not None else None
                for row in self.layout.rows]

    def legend(self) -> List[Tuple[str, RGB]]:
        """Annotation categories shown in the image, with their colors."""
        if self.annotations is None:
            return []
        shown = {row.annotation for row in self.layout.rows}
        return [(category, self.annotations.colors[category])
                for category in self.annotations.categories if category in shown]


@dataclass
class PreparedInputs:
    """Selected paths and the binning grid, before any profiles are computed."""
    paths: List[GraphPath]
    axis: PangenomeAxis
    grid: BinGrid
    highlight: Optional[Set[str]] = None
    custom_colors: Optional[Dict[str, RGB]] = None
    window: Optional[RangeSpec] = None
    annotations: Optional[PathAnnotations] = None


def prepare_inputs(graph: Graph, config: GfalookConfig) -> PreparedInputs:
    """Load side files, filter paths and derive the pangenomic window and bins."""
    selection = config.selection
    display_list = load_paths_to_display(selection.paths_to_display) if selection.paths_to_display else None
    paths = select_paths(graph.paths, selection.ignore_prefix, display_list)

    axis = graph.build_axis(config.offsets.order)
    requested = parse_path_range(selection.path_range) if selection.path_range else None
    start, end = resolve_window(graph, axis, requested)
    grid = make_bin_grid(start, end, config.image.width, config.image.bin_width)
    logger.info("Window %d-%d split into %d bins of %.2f bp", start, end, grid.n_bins, grid.bin_width)

    return PreparedInputs(
        paths=paths,
        axis=axis,
        grid=grid,
        highlight=load_highlight_node_ids(selection.highlight_node_ids) if selection.highlight_node_ids else None,
        custom_colors=load_path_colors(selection.path_colors) if selection.path_colors else None,
        window=requested,
        annotations=(load_annotations(selection.annotation_file, selection.annotation_column)
                     if selection.annotation_file else None),
    )


def _cluster(profiles: BinProfiles, config: GfalookConfig, jobs: int) -> Tuple[DistanceMatrix, ClusteringResult]:
    cl = config.clustering
    distances = compute_distances(profiles, cl.metric, cl.use_all_bins, jobs)
    result = cluster_paths(
        distances,
        method=cl.method,
        threshold=cl.threshold,
        upgma_threshold=cl.upgma_threshold,
        min_points=cl.min_points,
        max_clusters=cl.max_clusters,
        dendrogram=cl.dendrogram,
        weights=profiles.window_lengths.tolist(),
    )
    return distances, result


def _build_layout(profiles: BinProfiles, config: GfalookConfig, jobs: int):
    height = config.image.path_height
    layout_cfg = config.layout
    distances = clustering = None

    if layout_cfg.compressed_mode:
        layout = stack_rows(profiles, [0], height)
    elif layout_cfg.pack_paths:
        layout = pack_rows(profiles, height, layout_cfg.link_path_pieces or 1.0)
    elif config.selection.prefix_merges:
        grouping = load_prefix_merges(config.selection.prefix_merges, profiles.names)
        layout = group_rows(profiles, grouping, height)
    elif config.clustering.enable:
        distances, clustering = _cluster(profiles, config, jobs)
        if clustering.skipped:
            layout = stack_rows(profiles, clustering.ordering, height)
        elif config.clustering.representatives:
            order = clustering.representatives
            labels = [f"{profiles.names[m]} (n={size})" for m, size in zip(order, clustering.cluster_sizes)]
            layout = stack_rows(profiles, order, height, labels=labels,
                                clusters=list(range(clustering.num_clusters)),
                                cluster_gap=layout_cfg.cluster_gap)
        else:
            layout = stack_rows(profiles, clustering.ordering, height,
                                clusters=clustering.cluster_ids, cluster_gap=layout_cfg.cluster_gap)
    else:
        layout = stack_rows(profiles, range(profiles.n_paths), height)

    if layout_cfg.link_path_pieces is not None and not layout_cfg.pack_paths:
        link_gaps(layout, layout_cfg.link_path_pieces)
    return layout, distances, clustering


def build_visualization(graph: Graph, config: GfalookConfig) -> Visualization:
    """Run the whole pipeline for one graph and configuration."""
    jobs = config.system.resolve_jobs()
    prepared = prepare_inputs(graph, config)
    grid = prepared.grid

    ticks: List[Tick] = []
    axis_label = None
    if config.axis.x_axis:
        mapper = CoordinateMapper.build(graph, prepared.axis, grid, config.axis.x_axis,
                                        config.axis.absolute, config.axis.absolute_start, prepared.window)
        ticks = mapper.ticks(config.axis.x_ticks)
        axis_label = mapper.label

    if not prepared.paths or grid.n_bins == 0:
        logger.warning("Nothing to draw; producing an empty canvas")
        return Visualization(
            layout=Layout(rows=[], n_bins=grid.n_bins),
            colors=np.zeros((0, grid.n_bins, 3), dtype=np.uint8),
            ticks=ticks,
            axis_label=axis_label,
            path_height=config.image.path_height,
        )

    profiles = BinningEngine(graph, prepared.axis, grid, prepared.highlight, jobs=jobs).run(prepared.paths)
    drawn = compress_profiles(profiles) if config.layout.compressed_mode else profiles
    settings = ColorSettings.from_config(config, prepared.custom_colors)
    if config.layout.compressed_mode:
        settings = settings.for_compressed()

    with ThreadPoolExecutor(max_workers=1) as executor:
        # colors do not depend on the layout
        color_future = executor.submit(compute_colors, drawn, settings, jobs)
        layout, distances, clustering = _build_layout(drawn, config, jobs)
        colors = color_future.result()
    if prepared.annotations is not None and not config.layout.compressed_mode:
        annotate_rows(layout, drawn.names, prepared.annotations)

    return Visualization(
        layout=layout,
        colors=colors,
        profiles=drawn,
        ticks=ticks,
        axis_label=axis_label,
        distances=distances,
        clustering=clustering,
        path_height=config.image.path_height,
        annotations=prepared.annotations,
        annotation_bar_width=config.image.annotation_bar_width,
    )


def run_clustering(graph: Graph, config: GfalookConfig) -> Tuple[BinProfiles, DistanceMatrix, ClusteringResult]:
    """Binning and clustering only."""
    jobs = config.system.resolve_jobs()
    prepared = prepare_inputs(graph, config)
    profiles = BinningEngine(graph, prepared.axis, prepared.grid, jobs=jobs).run(prepared.paths)
    distances, result = _cluster(profiles, config, jobs)
    return profiles, distances, result
