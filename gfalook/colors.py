"""
Color engine.

Everything here is a pure function of its arguments: identity colors are
derived from a SHA-256 digest of the path name, statistic colors from the
bin profiles. Nothing is cached in module state, so colors can be computed
from worker threads and are identical between runs.
"""

from __future__ import annotations

import colorsys
import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Dict, Literal, Optional, Sequence, Tuple

import matplotlib
import numpy as np

from .binning import BinProfiles
from .params import DEFAULT_PALETTE, colormap_name, parse_palette_spec

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]
ColorMode = Literal["identity", "depth", "strand", "inversion", "uncalled", "highlight", "custom"]

LOW_DEPTH_GREYS: Tuple[RGB, RGB] = ((196, 196, 196), (128, 128, 128))
HIGHLIGHT_ON: RGB = (255, 0, 0)
HIGHLIGHT_OFF: RGB = (180, 180, 180)
UNLISTED_PATH_COLOR: RGB = (200, 200, 200)
DARKNESS_STRENGTH = 0.8
# ColorBrewer diverging schemes have 11 classes
PALETTE_CLASSES = 11
COMPRESSED_PALETTE = "RdBu"


def _rgb_table(name: str, n: Optional[int] = None) -> np.ndarray:
    """``(n, 3)`` colors (0-255 floats) sampled evenly from a matplotlib colormap."""
    cmap = matplotlib.colormaps[name]
    if n is not None:
        cmap = cmap.resampled(n)
    return cmap(np.arange(cmap.N))[:, :3] * 255.0


def _qualitative(name: str) -> Tuple[RGB, ...]:
    return tuple(tuple(int(c) for c in np.round(rgb)) for rgb in _rgb_table(name))


# cluster bar; annotation categories use Set2, or Paired beyond eight
CLUSTER_COLORS: Tuple[RGB, ...] = _qualitative("Set1")
ANNOTATION_COLORS: Tuple[RGB, ...] = _qualitative("Set2")
ANNOTATION_COLORS_EXTENDED: Tuple[RGB, ...] = _qualitative("Paired")


def path_color(name: str, prefix_separator: Optional[str] = None) -> RGB:
    """Stable color for a path name.

    Bytes 24, 8 and 16 of the SHA-256 digest give the red, green and blue
    weights; they are normalized to sum to one and brightened by up to 1.5x.
    With ``prefix_separator`` only the part of the name before it is hashed.
    """
    key = name.split(prefix_separator, 1)[0] if prefix_separator else name
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    rgb = np.array([digest[24], digest[8], digest[16]], dtype=np.float32) / np.float32(255.0)
    total = rgb.sum()
    if total > 0:
        rgb = rgb / total
    peak = rgb.max()
    factor = min(np.float32(1.5), np.float32(1.0) / peak) if peak > 0 else np.float32(1.0)
    out = np.round(255.0 * np.minimum(rgb * factor, 1.0))
    return int(out[0]), int(out[1]), int(out[2])


def cluster_color(cluster_id: int) -> RGB:
    return CLUSTER_COLORS[cluster_id % len(CLUSTER_COLORS)]


def annotation_colors(categories: Sequence[str]) -> Dict[str, RGB]:
    """Color per annotation category, in the order given."""
    table = ANNOTATION_COLORS if len(categories) <= len(ANNOTATION_COLORS) else ANNOTATION_COLORS_EXTENDED
    return {category: table[i % len(table)] for i, category in enumerate(categories)}


def get_palette(spec: str) -> np.ndarray:
    """Resolve ``SCHEME[:N]`` into an ``(N, 3)`` float array of colors.

    Any matplotlib colormap name is accepted (case-insensitive). N defaults
    to the 11 ColorBrewer classes.
    """
    scheme, steps = parse_palette_spec(spec)
    name = colormap_name(scheme)
    if name is None:
        logger.warning("Unknown palette '%s', using default %s", scheme, DEFAULT_PALETTE)
        name = DEFAULT_PALETTE
    if steps is not None and steps < 2:
        raise ValueError("palette step count must be at least 2")
    return _rgb_table(name, steps or PALETTE_CLASSES)


def blend(a: RGB, b: RGB, weight: np.ndarray) -> np.ndarray:
    """``a`` at weight 0, ``b`` at weight 1."""
    w = np.asarray(weight, dtype=np.float64)[..., np.newaxis]
    return np.asarray(a, dtype=np.float64) * (1.0 - w) + np.asarray(b, dtype=np.float64) * w


def depth_colors(
    depth: np.ndarray,
    palette: np.ndarray,
    no_grey_depth: bool = False,
    grey_floor: Tuple[float, float] = (0.5, 1.5),
) -> np.ndarray:
    """Map mean depth to palette colors, one palette entry per unit of depth.

    Depth between two entries is interpolated linearly. Unless
    ``no_grey_depth`` is set, depth below ``grey_floor[0]`` is light grey and
    below ``grey_floor[1]`` dark grey; the palette starts above that.
    """
    depth = np.asarray(depth, dtype=np.float64)
    palette = np.asarray(palette, dtype=np.float64)
    base = 1.0 if no_grey_depth else grey_floor[1] + 0.5
    steps = np.arange(len(palette))
    out = np.stack([np.interp(depth - base, steps, palette[:, c]) for c in range(3)], axis=-1)
    if not no_grey_depth:
        out[depth < grey_floor[1]] = LOW_DEPTH_GREYS[1]
        out[depth < grey_floor[0]] = LOW_DEPTH_GREYS[0]
    return out


def darken(colors: np.ndarray, darkness: np.ndarray) -> np.ndarray:
    """Scale HLS lightness by ``1 - 0.8 * darkness``; hue and saturation are kept."""
    flat = np.asarray(colors, dtype=np.float64).reshape(-1, 3) / 255.0
    factor = 1.0 - DARKNESS_STRENGTH * np.clip(np.asarray(darkness, dtype=np.float64).reshape(-1), 0.0, 1.0)
    out = np.empty_like(flat)
    for i, (rgb, scale) in enumerate(zip(flat.tolist(), factor.tolist())):
        hue, light, sat = colorsys.rgb_to_hls(*rgb)
        out[i] = colorsys.hls_to_rgb(hue, light * scale, sat)
    return (out * 255.0).reshape(np.shape(colors))


@dataclass
class ColorSettings:
    """Everything the color engine needs besides the profiles."""
    mode: ColorMode = "identity"
    palette: Optional[str] = None  # SCHEME[:N]; the mode picks a default when unset
    no_grey_depth: bool = False
    grey_floor: Tuple[float, float] = (0.5, 1.5)
    color_by_prefix: Optional[str] = None
    alignment_prefix: Optional[str] = None
    forward_color: RGB = (50, 50, 200)
    reverse_color: RGB = (200, 50, 50)
    change_darkness: bool = False
    longest_path: bool = False
    white_to_black: bool = False
    custom_colors: Optional[Dict[str, RGB]] = None

    @classmethod
    def from_config(cls, config, custom_colors: Optional[Dict[str, RGB]] = None) -> "ColorSettings":
        return cls(
            mode=config.color.mode,
            palette=config.color.palette,
            no_grey_depth=config.color.no_grey_depth,
            grey_floor=tuple(config.color.grey_floor),
            color_by_prefix=config.color.color_by_prefix,
            alignment_prefix=config.color.alignment_prefix,
            forward_color=tuple(config.color.forward_color),
            reverse_color=tuple(config.color.reverse_color),
            change_darkness=config.gradient.change_darkness,
            longest_path=config.gradient.longest_path,
            white_to_black=config.gradient.white_to_black,
            custom_colors=custom_colors,
        )

    def for_compressed(self) -> "ColorSettings":
        """Settings for the single mean row of compressed mode.

        Name-based modes carry no information there, so they fall back to
        mean depth on the RdBu palette (or the palette asked for).
        """
        if self.mode not in ("identity", "custom"):
            return self
        return replace(self, mode="depth", palette=self.palette or COMPRESSED_PALETTE)


def row_colors(profiles: BinProfiles, row: int, settings: ColorSettings,
               palette: Optional[np.ndarray] = None, longest: float = 0.0) -> np.ndarray:
    """RGB (float, 0-255) for every bin of one profile row."""
    name = profiles.names[row]
    n_bins = profiles.n_bins
    mode = settings.mode
    applies = settings.alignment_prefix is None or name.startswith(settings.alignment_prefix)

    if mode == "highlight":
        # the highlight view is flat: no gradient on top
        return blend(HIGHLIGHT_OFF, HIGHLIGHT_ON, profiles.highlighted[row].astype(np.float64))
    if mode == "depth":
        out = depth_colors(profiles.mean_depth[row],
                           palette if palette is not None else get_palette(settings.palette or DEFAULT_PALETTE),
                           settings.no_grey_depth, settings.grey_floor)
    elif mode == "inversion":
        out = blend((0, 0, 0), (255, 0, 0), profiles.inversion_rate[row])
    elif mode == "uncalled":
        out = blend((0, 0, 0), (0, 255, 0), profiles.uncalled_rate[row])
    elif mode == "strand" and applies:
        out = blend(settings.forward_color, settings.reverse_color, profiles.inversion_rate[row])
    elif mode == "custom":
        rgb = (settings.custom_colors or {}).get(name, UNLISTED_PATH_COLOR)
        out = np.tile(np.asarray(rgb, dtype=np.float64), (n_bins, 1))
    else:
        rgb = path_color(name, settings.color_by_prefix)
        out = np.tile(np.asarray(rgb, dtype=np.float64), (n_bins, 1))

    if settings.change_darkness and applies:
        length = longest if settings.longest_path else float(profiles.path_lengths[row])
        if length > 0:
            position = profiles.mean_position[row] / length
            darkness = np.where(profiles.inversion_rate[row] > 0.5, 1.0 - position, position)
            if settings.white_to_black:
                grey = 255.0 * (1.0 - np.clip(darkness, 0.0, 1.0))
                out = np.repeat(grey[:, np.newaxis], 3, axis=1)
            else:
                out = darken(out, darkness)
    return out


def compute_colors(profiles: BinProfiles, settings: ColorSettings, jobs: int = 1) -> np.ndarray:
    """``(paths, bins, 3)`` uint8 color array; rows are independent."""
    palette = get_palette(settings.palette or DEFAULT_PALETTE) if settings.mode == "depth" else None
    longest = float(profiles.path_lengths.max()) if profiles.n_paths else 0.0
    colors = np.zeros((profiles.n_paths, profiles.n_bins, 3), dtype=np.uint8)

    def fill(row: int) -> None:
        rgb = row_colors(profiles, row, settings, palette, longest)
        colors[row] = np.clip(np.round(rgb), 0, 255).astype(np.uint8)

    if jobs > 1 and profiles.n_paths > 1:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            list(executor.map(fill, range(profiles.n_paths)))
    else:
        for row in range(profiles.n_paths):
            fill(row)
    return colors
