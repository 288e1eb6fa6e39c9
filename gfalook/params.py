"""
Configuration system for gfalook with strict validation.
"""

from pathlib import Path
from typing import Optional, Tuple, Union, Literal

import matplotlib
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError

DEFAULT_PALETTE = "Spectral"


def colormap_name(scheme: str) -> Optional[str]:
    """Registered matplotlib colormap name for ``scheme``, matched case-insensitively."""
    if scheme in matplotlib.colormaps:
        return scheme
    folded = {name.lower(): name for name in matplotlib.colormaps}
    return folded.get(scheme.lower())


def parse_palette_spec(spec: str) -> Tuple[str, Optional[int]]:
    """Split a ``SCHEME[:N]`` palette argument into (scheme, steps)."""
    parts = spec.split(":")
    if len(parts) == 1:
        return parts[0], None
    if len(parts) == 2 and parts[1].strip().isdigit():
        return parts[0], int(parts[1])
    raise ValueError(f"Invalid palette specification '{spec}', expected SCHEME:N")


class ImageConfig(BaseModel):
    """Output geometry."""
    width: int = Field(default=1500, description="Image width in pixels (upper bound on the bin count)")
    bin_width: Optional[float] = Field(default=None, description="Explicit bin width in bases; overrides width")
    path_height: int = Field(default=10, description="Height in pixels of one path row")
    path_x_padding: int = Field(default=0, description="Horizontal padding in pixels around path rows")
    annotation_bar_width: int = Field(default=10, description="Width in pixels of the annotation bar")

    @field_validator("width", "path_height", "annotation_bar_width")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("bin_width")
    @classmethod
    def validate_bin_width(cls, v):
        if v is not None and v <= 0:
            raise ValueError("bin_width must be positive")
        return v


class SelectionConfig(BaseModel):
    """Which paths are displayed and over which coordinate window."""
    ignore_prefix: Optional[str] = Field(default=None, description="Drop paths whose name starts with this prefix")
    paths_to_display: Optional[Path] = Field(default=None, description="File listing paths to display, in order")
    path_range: Optional[str] = Field(default=None, description="Window to display: [PATH:]start-end")
    prefix_merges: Optional[Path] = Field(default=None, description="File of prefixes; matching paths share a row")
    highlight_node_ids: Optional[Path] = Field(default=None, description="File of node ids to highlight")
    path_colors: Optional[Path] = Field(default=None, description="Per-path color table (name<TAB>color)")
    annotation_file: Optional[Path] = Field(default=None, description="Prefix-to-category table (TSV, or CSV by extension)")
    annotation_column: Optional[int] = Field(default=None, description="1-based category column; 2 for TSV, 4 for CSV")

    @field_validator("annotation_column")
    @classmethod
    def validate_column(cls, v):
        if v is not None and v < 2:
            raise ValueError("annotation_column must be at least 2 (column 1 holds the prefix)")
        return v


class OffsetConfig(BaseModel):
    """Pangenomic axis construction."""
    order: Literal["first_appearance", "segment_order"] = Field(default="first_appearance")


class ColorConfig(BaseModel):
    """Per-bin coloring."""
    mode: Literal["identity", "depth", "strand", "inversion", "uncalled", "highlight", "custom"] = Field(default="identity")
    color_by_prefix: Optional[str] = Field(default=None, description="Hash only the name part before this character")
    palette: Optional[str] = Field(default=None, description="Colormap as SCHEME[:N]; Spectral for depth, RdBu in compressed mode")
    no_grey_depth: bool = Field(default=False, description="Use the palette for low-coverage bins too")
    grey_floor: Tuple[float, float] = Field(default=(0.5, 1.5), description="Depth cut-offs for the two grey shades")
    alignment_prefix: Optional[str] = Field(default=None, description="Strand/darkness only for paths with this prefix")
    forward_color: Tuple[int, int, int] = Field(default=(50, 50, 200))
    reverse_color: Tuple[int, int, int] = Field(default=(200, 50, 50))

    @field_validator("color_by_prefix")
    @classmethod
    def validate_prefix_char(cls, v):
        if v is not None and len(v) != 1:
            raise ValueError("color_by_prefix must be a single character")
        return v

    @field_validator("palette")
    @classmethod
    def validate_palette(cls, v):
        if v is None:
            return v
        scheme, steps = parse_palette_spec(v)
        if colormap_name(scheme) is None:
            raise ValueError(f"Unknown palette '{scheme}', expected a matplotlib colormap name")
        if steps is not None and steps < 2:
            raise ValueError("palette step count must be at least 2")
        return v

    @field_validator("forward_color", "reverse_color")
    @classmethod
    def validate_rgb(cls, v):
        if any(c < 0 or c > 255 for c in v):
            raise ValueError("RGB components must be between 0 and 255")
        return v

    @field_validator("grey_floor")
    @classmethod
    def validate_grey_floor(cls, v):
        if v[0] < 0 or v[1] < v[0]:
            raise ValueError("grey_floor must be two non-negative, non-decreasing depths")
        return v


class GradientConfig(BaseModel):
    """Darkness gradient along paths."""
    change_darkness: bool = Field(default=False, description="Darken bins by position along the path")
    longest_path: bool = Field(default=False, description="Normalize position by the longest displayed path")
    white_to_black: bool = Field(default=False, description="Ignore hue and go from white to black")


class LayoutConfig(BaseModel):
    """Row assignment."""
    pack_paths: bool = Field(default=False, description="Pack path pieces into shared rows")
    compressed_mode: bool = Field(default=False, description="Collapse all paths into one mean row")
    link_path_pieces: Optional[float] = Field(default=None, description="Relative thickness of connectors between pieces")
    cluster_gap: int = Field(default=10, description="Gap in pixels between clusters")

    @field_validator("link_path_pieces")
    @classmethod
    def validate_link(cls, v):
        if v is not None and not 0.0 < v <= 1.0:
            raise ValueError("link_path_pieces must be in (0, 1]")
        return v

    @field_validator("cluster_gap")
    @classmethod
    def validate_gap(cls, v):
        if v < 0:
            raise ValueError("cluster_gap must be non-negative")
        return v


class ClusteringConfig(BaseModel):
    """Path similarity clustering."""
    enable: bool = Field(default=False, description="Order paths by similarity")
    method: Literal["dbscan", "upgma"] = Field(default="dbscan", description="Clustering algorithm")
    metric: Literal["edr", "jaccard", "correlation"] = Field(default="edr", description="Bin-profile dissimilarity")
    use_all_bins: bool = Field(default=False, description="Use all bins instead of only variable bins")
    threshold: Optional[float] = Field(default=None, description="Similarity threshold for density clustering (eps = 1 - threshold)")
    min_points: int = Field(default=1, description="Minimum neighbourhood size (including the point) for a core path")
    upgma_threshold: Optional[float] = Field(default=None, description="Cut height as a fraction of the maximum merge height")
    max_clusters: Optional[int] = Field(default=None, description="Upper bound on clusters for automatic thresholds")
    representatives: bool = Field(default=False, description="Show only the medoid of each cluster")
    dendrogram: bool = Field(default=False, description="Order rows by dendrogram leaf order")

    @field_validator("threshold", "upgma_threshold")
    @classmethod
    def validate_unit_interval(cls, v):
        if v is not None and not 0.0 <= v <= 1.0:
            raise ValueError("thresholds must be between 0 and 1")
        return v

    @field_validator("min_points", "max_clusters")
    @classmethod
    def validate_counts(cls, v):
        if v is not None and v < 1:
            raise ValueError("must be at least 1")
        return v


class AxisConfig(BaseModel):
    """X-axis coordinates."""
    x_axis: Optional[str] = Field(default=None, description="'pangenomic' or a reference path name")
    x_ticks: int = Field(default=10, description="Number of ticks")
    absolute: bool = Field(default=False, description="Report absolute coordinates for a reference path")
    absolute_start: Optional[int] = Field(default=None, description="Start coordinate; defaults to the name:start-end suffix")

    @field_validator("x_ticks")
    @classmethod
    def validate_ticks(cls, v):
        if v < 2:
            raise ValueError("x_ticks must be at least 2")
        return v


class SystemConfig(BaseModel):
    """System resource configuration."""
    jobs: Union[int, Literal["auto"]] = Field(default="auto", description="Number of worker threads")
    verbose: int = Field(default=1, description="0 = errors, 1 = info, 2 = debug")

    @field_validator("jobs")
    @classmethod
    def validate_jobs(cls, v):
        if isinstance(v, int) and v < 1:
            raise ValueError("jobs must be at least 1")
        return v

    def resolve_jobs(self) -> int:
        if isinstance(self.jobs, int):
            return self.jobs
        import os
        return os.cpu_count() or 4


class GfalookConfig(BaseModel):
    """Complete gfalook configuration."""
    image: ImageConfig = Field(default_factory=ImageConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    offsets: OffsetConfig = Field(default_factory=OffsetConfig)
    color: ColorConfig = Field(default_factory=ColorConfig)
    gradient: GradientConfig = Field(default_factory=GradientConfig)
    layout: LayoutConfig = Field(default_factory=LayoutConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    axis: AxisConfig = Field(default_factory=AxisConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)

    @model_validator(mode='after')
    def validate_consistency(self):
        """Cross-field validation."""
        layout, clustering, selection = self.layout, self.clustering, self.selection
        if layout.pack_paths:
            if selection.paths_to_display or layout.compressed_mode or selection.prefix_merges or clustering.enable:
                raise ValueError("pack_paths cannot be combined with paths_to_display, compressed_mode, prefix_merges or clustering")
        if layout.compressed_mode and (clustering.enable or selection.prefix_merges):
            raise ValueError("compressed_mode cannot be combined with clustering or prefix_merges")
        if clustering.enable and (selection.prefix_merges or selection.paths_to_display):
            raise ValueError("clustering cannot be combined with prefix_merges or paths_to_display")
        if (clustering.representatives or clustering.dendrogram) and not clustering.enable:
            raise ValueError("representatives and dendrogram require clustering.enable")
        if clustering.upgma_threshold is not None and clustering.method != "upgma":
            raise ValueError("upgma_threshold requires clustering.method = 'upgma'")
        if (self.gradient.longest_path or self.gradient.white_to_black) and not self.gradient.change_darkness:
            raise ValueError("longest_path and white_to_black require gradient.change_darkness")
        if self.axis.absolute and not self.axis.x_axis:
            raise ValueError("axis.absolute requires axis.x_axis")
        if self.color.mode == "custom" and not selection.path_colors:
            raise ValueError("color.mode 'custom' requires selection.path_colors")
        if self.color.mode == "highlight" and not selection.highlight_node_ids:
            raise ValueError("color.mode 'highlight' requires selection.highlight_node_ids")
        if selection.annotation_column is not None and not selection.annotation_file:
            raise ValueError("annotation_column requires selection.annotation_file")
        return self


def build_config(data: Optional[dict] = None) -> GfalookConfig:
    """Validate a configuration mapping, raising ConfigurationError on failure."""
    try:
        return GfalookConfig(**(data or {}))
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def load_config(config_path: Union[str, Path]) -> GfalookConfig:
    """Load and validate configuration from YAML file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f)

    return build_config(data)


def create_default_config(output_path: Union[str, Path]) -> None:
    """Create a default configuration file."""
    config = GfalookConfig()
    output_path = Path(output_path)

    config_dict = config.model_dump(mode="json")

    with open(output_path, "w") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, indent=2)
