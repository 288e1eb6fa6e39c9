"""
gfalook command-line interface.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .errors import ConfigurationError, GfalookError
from .params import GfalookConfig, build_config, load_config, create_default_config
from . import __version__

console = Console()

DEFAULT_CONFIG = "gfalook.config.yaml"
LOG_LEVELS = {0: logging.ERROR, 1: logging.INFO, 2: logging.DEBUG}

# option name -> (config section, field)
OVERRIDES = {
    "width": ("image", "width"),
    "bin_width": ("image", "bin_width"),
    "path_height": ("image", "path_height"),
    "path_x_padding": ("image", "path_x_padding"),
    "ignore_prefix": ("selection", "ignore_prefix"),
    "paths_to_display": ("selection", "paths_to_display"),
    "path_range": ("selection", "path_range"),
    "prefix_merges": ("selection", "prefix_merges"),
    "highlight_node_ids": ("selection", "highlight_node_ids"),
    "path_colors": ("selection", "path_colors"),
    "annotation_file": ("selection", "annotation_file"),
    "annotation_column": ("selection", "annotation_column"),
    "annotation_bar_width": ("image", "annotation_bar_width"),
    "offset_order": ("offsets", "order"),
    "color_by_prefix": ("color", "color_by_prefix"),
    "palette": ("color", "palette"),
    "alignment_prefix": ("color", "alignment_prefix"),
    "link_path_pieces": ("layout", "link_path_pieces"),
    "cluster_gap": ("layout", "cluster_gap"),
    "cluster_method": ("clustering", "method"),
    "metric": ("clustering", "metric"),
    "threshold": ("clustering", "threshold"),
    "upgma_threshold": ("clustering", "upgma_threshold"),
    "min_points": ("clustering", "min_points"),
    "max_clusters": ("clustering", "max_clusters"),
    "x_axis": ("axis", "x_axis"),
    "x_ticks": ("axis", "x_ticks"),
    "absolute_start": ("axis", "absolute_start"),
    "jobs": ("system", "jobs"),
}

# boolean switches: only applied when given
SWITCHES = {
    "no_grey_depth": ("color", "no_grey_depth"),
    "change_darkness": ("gradient", "change_darkness"),
    "longest_path": ("gradient", "longest_path"),
    "white_to_black": ("gradient", "white_to_black"),
    "pack_paths": ("layout", "pack_paths"),
    "compressed_mode": ("layout", "compressed_mode"),
    "cluster_by_similarity": ("clustering", "enable"),
    "cluster_all_bins": ("clustering", "use_all_bins"),
    "representatives": ("clustering", "representatives"),
    "dendrogram": ("clustering", "dendrogram"),
    "x_axis_absolute": ("axis", "absolute"),
}


def _record_color_mode(mode: str):
    """Callback that remembers color-mode flags in command-line order."""
    def callback(ctx, param, value):
        if value:
            ctx.meta.setdefault("color_modes", []).append(mode)
        return value
    return callback


def color_mode_options(func):
    """Mutually exclusive color modes; when several are given the last one wins."""
    modes = [
        ("--color-by-mean-depth", "-m", "depth", "Color bins by mean depth"),
        ("--color-by-mean-inversion-rate", "-z", "inversion", "Color bins by inversion rate (black to red)"),
        ("--color-by-uncalled-bases", "-N", "uncalled", "Color bins by uncalled-base rate (black to green)"),
        ("--show-strand", "-S", "strand", "Blend forward and reverse colors by strand"),
        ("--color-by-highlight", None, "highlight", "Red for bins touching highlighted nodes"),
        ("--color-by-custom", None, "custom", "Use the --path-colors table"),
        ("--color-by-identity", None, "identity", "Hash of the path name (default)"),
    ]
    for long_name, short_name, mode, help_text in reversed(modes):
        decls = [long_name] + ([short_name] if short_name else [])
        func = click.option(*decls, is_flag=True, expose_value=False, help=help_text,
                            callback=_record_color_mode(mode))(func)
    return func


def setup_logging(verbose: int) -> None:
    level = LOG_LEVELS.get(max(0, min(verbose, 2)), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def apply_overrides(config: GfalookConfig, values: dict, color_modes=None) -> GfalookConfig:
    """Return a re-validated config with command-line values layered on top."""
    data = config.model_dump(mode="json")
    for option, (section, key) in OVERRIDES.items():
        value = values.get(option)
        if value is not None:
            data[section][key] = value
    for option, (section, key) in SWITCHES.items():
        if values.get(option):
            data[section][key] = True
    if color_modes:
        data["color"]["mode"] = color_modes[-1]
    if values.get("path_colors") and not color_modes and data["color"]["mode"] == "identity":
        data["color"]["mode"] = "custom"
    if values.get("highlight_node_ids") and not color_modes and data["color"]["mode"] == "identity":
        data["color"]["mode"] = "highlight"
    return build_config(data)


def _load(config_path: Optional[str]) -> GfalookConfig:
    if config_path is None:
        return GfalookConfig()
    return load_config(config_path)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def main(ctx, version):
    """gfalook: 1D visualization of variation graphs from GFA."""
    if version:
        click.echo(f"gfalook v{__version__}")
        sys.exit(0)

    if ctx.invoked_subcommand is None:
        console.print(f"[bold blue]gfalook[/bold blue] [dim]v{__version__}[/dim]")
        click.echo(ctx.get_help())


@main.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG,
              help="Configuration file path", type=click.Path())
@click.option("--force", is_flag=True, help="Overwrite existing files")
def init(config: str, force: bool):
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        console.print(f"[red]Configuration file already exists: {config_path}[/red]")
        console.print("Use --force to overwrite")
        sys.exit(1)
    create_default_config(config_path)
    console.print(f"✓ Created configuration: [green]{config_path}[/green]")


@main.command()
@click.argument("gfa", type=click.Path(exists=True, dir_okay=False))
@click.option("--out", "-o", required=True, type=click.Path(dir_okay=False), help="Output PNG")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file")
@click.option("--width", "-x", type=int, help="Image width in bins")
@click.option("--bin-width", "-w", type=float, help="Bin width in bases")
@click.option("--path-height", "-a", type=int, help="Pixels per path row")
@click.option("--path-x-padding", "-X", type=int, help="Horizontal padding in pixels")
@click.option("--ignore-prefix", "-I", help="Skip paths starting with this prefix")
@click.option("--paths-to-display", "-p", type=click.Path(exists=True), help="File of path names to show")
@click.option("--path-range", "-r", help="Window to display: [PATH:]start-end")
@click.option("--prefix-merges", "-M", type=click.Path(exists=True), help="File of prefixes to merge into one row")
@click.option("--highlight-node-ids", "-J", type=click.Path(exists=True), help="File of node ids to highlight")
@click.option("--path-colors", "-F", type=click.Path(exists=True), help="Path color table")
@click.option("--offset-order", type=click.Choice(["first_appearance", "segment_order"]))
@color_mode_options
@click.option("--color-by-prefix", "-s", help="Color by the name part before this character")
@click.option("--palette", "--colorbrewer-palette", "-B",
              help="Colormap SCHEME[:N] for depth coloring (default Spectral, RdBu in compressed mode)")
@click.option("--no-grey-depth", "-G", is_flag=True, help="Use the palette for low depth too")
@click.option("--alignment-prefix", "-A", help="Apply strand and darkness only to these paths")
@click.option("--change-darkness", "-d", is_flag=True, help="Darken bins along each path")
@click.option("--longest-path", "-l", is_flag=True, help="Normalize darkness by the longest path")
@click.option("--white-to-black", "-u", is_flag=True, help="Darkness from white to black")
@click.option("--pack-paths", "-R", is_flag=True, help="Pack path pieces into shared rows")
@click.option("--compressed-mode", "-O", is_flag=True, help="Collapse all paths into one row")
@click.option("--link-path-pieces", "-L", type=float, help="Connector thickness between pieces (0-1]")
@click.option("--cluster-by-similarity", "-k", is_flag=True, help="Cluster and reorder paths")
@click.option("--cluster-method", type=click.Choice(["dbscan", "upgma"]))
@click.option("--metric", type=click.Choice(["edr", "jaccard", "correlation"]))
@click.option("--cluster-all-bins", is_flag=True, help="Use all bins, not just variable ones")
@click.option("--threshold", type=float, help="Similarity threshold (eps = 1 - threshold)")
@click.option("--upgma-threshold", type=float, help="Cut height as a fraction of the tree height")
@click.option("--min-points", type=int, help="Minimum neighbourhood size for density clustering")
@click.option("--max-clusters", type=int, help="Cluster target for automatic thresholds")
@click.option("--representatives", "--cluster-representatives", "-K", is_flag=True,
              help="Show one medoid per cluster")
@click.option("--dendrogram", "-D", is_flag=True, help="Order rows by the dendrogram")
@click.option("--cluster-gap", type=int, help="Pixels between clusters")
@click.option("--x-axis", help="'pangenomic' or a reference path name")
@click.option("--x-ticks", type=int, help="Number of axis ticks")
@click.option("--x-axis-absolute", is_flag=True, help="Absolute coordinates for the reference path")
@click.option("--absolute-start", type=int, help="Start coordinate for absolute mode")
@click.option("--annotation-file", "-E", type=click.Path(exists=True, dir_okay=False),
              help="Prefix-to-category table (TSV, or CSV by extension)")
@click.option("--annotation-column", type=int, help="1-based category column (default 2 for TSV, 4 for CSV)")
@click.option("--annotation-bar-width", type=int, help="Annotation bar width in pixels")
@click.option("--profiles", type=click.Path(dir_okay=False), help="Write bin profiles to this parquet file")
@click.option("--jobs", "--threads", "-t", type=int, help="Worker threads")
@click.option("--verbose", "-v", count=True, help="Increase verbosity")
@click.pass_context
def render(ctx, gfa: str, out: str, config: Optional[str], profiles: Optional[str], verbose: int, **options):
    """Render GFA to a PNG image."""
    from .gfa import load_gfa
    from .manifest import GraphStats, RunManifest
    from .pipeline import build_visualization
    from .raster import legend_table, row_table, tick_table, write_cluster_tables, write_png, write_profiles, write_tsv

    try:
        config_obj = apply_overrides(_load(config), options, ctx.meta.get("color_modes"))
    except (ConfigurationError, FileNotFoundError) as e:
        _fail(f"Error loading config: {e}")
    setup_logging(verbose or config_obj.system.verbose)

    try:
        graph = load_gfa(gfa)
        vis = build_visualization(graph, config_obj)
        out_path = write_png(vis, out, config_obj.image.path_x_padding)
        manifest = RunManifest(out_path)
        manifest.set_config(config_obj)
        manifest.set_graph_stats(GraphStats(
            n_segments=len(graph.segments),
            n_links=len(graph.edges),
            n_paths=len(graph.paths),
            total_length=graph.total_length,
            n_displayed=vis.profiles.n_paths if vis.profiles is not None else 0,
        ))
        manifest.register_artifact("image", out_path, {"rows": len(vis.layout.rows)})
        manifest.register_artifact("rows", write_tsv(row_table(vis), f"{out_path}.rows.tsv"))
        if vis.ticks:
            manifest.register_artifact("ticks", write_tsv(tick_table(vis), f"{out_path}.ticks.tsv"))
        if vis.annotations is not None:
            manifest.register_artifact("legend", write_tsv(legend_table(vis), f"{out_path}.legend.tsv"))
        if vis.clustering is not None and not vis.clustering.skipped:
            clusters, medoids = write_cluster_tables(vis.clustering, vis.profiles.names, out_path)
            manifest.register_artifact("clusters", clusters)
            manifest.register_artifact("medoids", medoids)
        if profiles and vis.profiles is not None:
            manifest.register_artifact("profiles", write_profiles(vis.profiles, profiles))
        manifest.save()
    except (GfalookError, FileNotFoundError) as e:
        _fail(f"Error: {e}")

    console.print(f"✓ Wrote [green]{out_path}[/green] ({len(vis.layout.rows)} rows, {vis.layout.n_bins} bins)")


@main.command()
@click.argument("gfa", type=click.Path(exists=True, dir_okay=False))
@click.option("--out", "-o", required=True, help="Output prefix for the TSV files")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file")
@click.option("--ignore-prefix", "-I", help="Skip paths starting with this prefix")
@click.option("--paths-to-display", "-p", type=click.Path(exists=True), help="File of path names to cluster")
@click.option("--path-range", "-r", help="Window to use: [PATH:]start-end")
@click.option("--width", "-x", type=int, help="Number of bins")
@click.option("--bin-width", "-w", type=float, help="Bin width in bases")
@click.option("--cluster-method", type=click.Choice(["dbscan", "upgma"]))
@click.option("--metric", type=click.Choice(["edr", "jaccard", "correlation"]))
@click.option("--cluster-all-bins", is_flag=True, help="Use all bins, not just variable ones")
@click.option("--threshold", type=float, help="Similarity threshold (eps = 1 - threshold)")
@click.option("--upgma-threshold", type=float, help="Cut height as a fraction of the tree height")
@click.option("--min-points", type=int, help="Minimum neighbourhood size for density clustering")
@click.option("--max-clusters", type=int, help="Cluster target for automatic thresholds")
@click.option("--dendrogram", "-D", is_flag=True, help="Order paths by the dendrogram")
@click.option("--jobs", "--threads", "-t", type=int, help="Worker threads")
@click.option("--verbose", "-v", count=True, help="Increase verbosity")
def cluster(gfa: str, out: str, config: Optional[str], verbose: int, **options):
    """Cluster paths and write cluster/medoid tables."""
    from .gfa import load_gfa
    from .pipeline import run_clustering
    from .raster import write_cluster_tables

    try:
        # the path list only selects paths here, so it is set after validation
        display = options.pop("paths_to_display", None)
        config_obj = apply_overrides(_load(config), options)
        if display:
            config_obj = config_obj.model_copy(update={
                "selection": config_obj.selection.model_copy(update={"paths_to_display": Path(display)})
            })
    except (ConfigurationError, FileNotFoundError) as e:
        _fail(f"Error loading config: {e}")
    setup_logging(verbose or config_obj.system.verbose)

    try:
        graph = load_gfa(gfa)
        profiles, _, result = run_clustering(graph, config_obj)
        if result.skipped:
            console.print("[yellow]Fewer than two paths selected; nothing to cluster[/yellow]")
        clusters, medoids = write_cluster_tables(result, profiles.names, out)
    except (GfalookError, FileNotFoundError) as e:
        _fail(f"Error: {e}")

    console.print(f"✓ {result.num_clusters} clusters: [green]{clusters}[/green], [green]{medoids}[/green]")


@main.command()
@click.argument("gfa", type=click.Path(exists=True, dir_okay=False))
def stats(gfa: str):
    """Show graph statistics."""
    from .gfa import load_gfa

    try:
        graph = load_gfa(gfa)
    except (GfalookError, FileNotFoundError) as e:
        _fail(f"Error: {e}")

    lengths = [graph.path_length(p) for p in graph.paths]
    table = Table(title=f"Graph statistics: {Path(gfa).name}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Segments", f"{len(graph.segments):,}")
    table.add_row("Links", f"{len(graph.edges):,}")
    table.add_row("Paths", f"{len(graph.paths):,}")
    table.add_row("Total length (bp)", f"{graph.total_length:,}")
    table.add_row("Uncalled bases", f"{int(graph.segment_n_counts.sum()):,}")
    if lengths:
        table.add_row("Longest path (bp)", f"{max(lengths):,}")
        table.add_row("Shortest path (bp)", f"{min(lengths):,}")
    console.print(table)


if __name__ == "__main__":
    main()
