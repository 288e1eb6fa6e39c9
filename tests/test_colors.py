"""Tests for the color engine."""

from __future__ import annotations

import numpy as np
import pytest

from gfalook.colors import (
    HIGHLIGHT_OFF,
    HIGHLIGHT_ON,
    ANNOTATION_COLORS,
    ANNOTATION_COLORS_EXTENDED,
    LOW_DEPTH_GREYS,
    UNLISTED_PATH_COLOR,
    ColorSettings,
    annotation_colors,
    blend,
    cluster_color,
    compute_colors,
    darken,
    depth_colors,
    get_palette,
    path_color,
)
from gfalook.params import build_config
from tests._helpers import profile_graph


def test_path_color_is_pure() -> None:
    first = path_color("HG002#1#chr20")
    second = path_color("HG002#1#chr20")
    assert first == second
    assert all(isinstance(c, int) and 0 <= c <= 255 for c in first)
    assert path_color("HG002#1#chr20") != path_color("HG002#2#chr20")


def test_color_by_prefix_hashes_the_prefix() -> None:
    assert path_color("HG1#1#chr1", "#") == path_color("HG1#2#chr1", "#") == path_color("HG1")


def test_cluster_colors_cycle() -> None:
    assert cluster_color(0) == (228, 26, 28)
    assert cluster_color(9) == cluster_color(0)


def test_palette_resolution() -> None:
    spectral = get_palette("Spectral")
    assert spectral.shape == (11, 3)
    assert np.allclose(spectral[0], (158, 1, 66))
    assert np.allclose(get_palette("spectral"), spectral)

    rdbu = get_palette("RdBu")
    five = get_palette("RdBu:5")
    assert five.shape == (5, 3)
    assert np.allclose(five[0], rdbu[0])
    assert np.allclose(five[2], rdbu[5])
    assert np.allclose(five[-1], rdbu[-1])


def test_unknown_palette_falls_back_to_spectral() -> None:
    assert np.allclose(get_palette("NoSuchColormap"), get_palette("Spectral"))


def test_annotation_colors_switch_to_paired_beyond_eight() -> None:
    assert ANNOTATION_COLORS[0] == (102, 194, 165)
    assert len(ANNOTATION_COLORS_EXTENDED) == 12
    few = annotation_colors(["a", "b"])
    assert few == {"a": ANNOTATION_COLORS[0], "b": ANNOTATION_COLORS[1]}
    many = annotation_colors([f"c{i}" for i in range(10)])
    assert many["c0"] == ANNOTATION_COLORS_EXTENDED[0]
    assert many["c9"] == ANNOTATION_COLORS_EXTENDED[9]


def test_depth_colors_greys_then_palette() -> None:
    palette = get_palette("Spectral")
    colors = depth_colors(np.array([0.2, 1.0, 2.0, 2.5, 3.0]), palette)
    assert tuple(colors[0]) == LOW_DEPTH_GREYS[0]
    assert tuple(colors[1]) == LOW_DEPTH_GREYS[1]
    assert np.allclose(colors[2], palette[0])
    assert np.allclose(colors[3], (palette[0] + palette[1]) / 2)
    assert np.allclose(colors[4], palette[1])


def test_depth_colors_without_grey() -> None:
    palette = get_palette("Spectral")
    colors = depth_colors(np.array([0.2, 1.0, 50.0]), palette, no_grey_depth=True)
    assert np.allclose(colors[0], palette[0])
    assert np.allclose(colors[1], palette[0])
    assert np.allclose(colors[2], palette[-1])


def test_blend_endpoints() -> None:
    out = blend((0, 0, 0), (255, 0, 0), np.array([0.0, 0.5, 1.0]))
    assert np.allclose(out, [[0, 0, 0], [127.5, 0, 0], [255, 0, 0]])


def test_darken_keeps_hue() -> None:
    colors = np.array([[200.0, 100.0, 50.0], [128.0, 128.0, 128.0]])
    assert np.allclose(darken(colors, np.zeros(2)), colors)
    out = darken(colors, np.array([1.0, 0.5]))
    assert np.allclose(out[0], [40, 20, 10])
    assert np.allclose(out[1], [76.8, 76.8, 76.8])


def _colors(profiles, jobs: int = 1, **settings):
    return compute_colors(profiles, ColorSettings(**settings), jobs=jobs)


def test_identity_mode_fills_every_bin(linear_graph) -> None:
    profiles = profile_graph(linear_graph)
    colors = _colors(profiles)
    assert colors.shape == (3, 20, 3)
    assert colors.dtype == np.uint8
    assert np.all(colors[0] == path_color("p1"))


def test_inversion_and_uncalled_modes(linear_graph) -> None:
    profiles = profile_graph(linear_graph)
    inversion = _colors(profiles, mode="inversion")
    assert tuple(inversion[1, 15]) == (255, 0, 0)
    assert tuple(inversion[1, 0]) == (0, 0, 0)

    uncalled = _colors(profiles, mode="uncalled")
    assert tuple(uncalled[0, 5]) == (0, 170, 0)
    assert tuple(uncalled[0, 0]) == (0, 0, 0)


def test_strand_mode_respects_alignment_prefix(linear_graph) -> None:
    profiles = profile_graph(linear_graph)
    strand = _colors(profiles, mode="strand")
    assert tuple(strand[1, 0]) == (50, 50, 200)
    assert tuple(strand[1, 15]) == (200, 50, 50)

    only_p1 = _colors(profiles, mode="strand", alignment_prefix="p1")
    assert tuple(only_p1[1, 15]) == path_color("p2")


def test_custom_and_highlight_modes(linear_graph) -> None:
    profiles = profile_graph(linear_graph, highlight=["2"])
    custom = _colors(profiles, mode="custom", custom_colors={"p1": (1, 2, 3)})
    assert tuple(custom[0, 0]) == (1, 2, 3)
    assert tuple(custom[1, 0]) == UNLISTED_PATH_COLOR

    highlight = _colors(profiles, mode="highlight", change_darkness=True)
    assert tuple(highlight[0, 5]) == HIGHLIGHT_ON
    assert tuple(highlight[0, 0]) == HIGHLIGHT_OFF


def test_darkness_gradient_along_path(linear_graph) -> None:
    profiles = profile_graph(linear_graph)
    colors = _colors(profiles, change_darkness=True).astype(int)
    p1 = colors[0]
    assert p1[0].sum() > p1[10].sum() > p1[19].sum()

    grey = _colors(profiles, change_darkness=True, white_to_black=True)
    # first base midpoint sits at 0.5 of 20 bases
    assert tuple(grey[0, 0]) == (249, 249, 249)
    # mostly inverted bins flip the gradient
    assert grey[1, 10, 0] > grey[1, 19, 0]
    assert grey[1, 19, 0] < 255 * (1 - 4.5 / 14) - 1


def test_longest_path_normalization(linear_graph) -> None:
    profiles = profile_graph(linear_graph)
    own = _colors(profiles, change_darkness=True, white_to_black=True)
    longest = _colors(profiles, change_darkness=True, white_to_black=True, longest_path=True)
    # p3 is shorter than p1, so its positions darken less against the longest path
    assert longest[2, 19, 0] > own[2, 19, 0]
    assert np.array_equal(longest[0], own[0])


def test_settings_from_config() -> None:
    config = build_config({"color": {"mode": "depth", "palette": "PiYG:7"},
                           "gradient": {"change_darkness": True}})
    settings = ColorSettings.from_config(config)
    assert settings.mode == "depth"
    assert settings.palette == "PiYG:7"
    assert settings.change_darkness
    assert settings.grey_floor == (0.5, 1.5)



def test_compressed_settings_fall_back_to_depth() -> None:
    identity = ColorSettings().for_compressed()
    assert identity.mode == "depth"
    assert identity.palette == "RdBu"
    assert ColorSettings(palette="PiYG").for_compressed().palette == "PiYG"
    assert ColorSettings(mode="inversion").for_compressed().mode == "inversion"


def test_parallel_colors_match_serial(linear_graph) -> None:
    profiles = profile_graph(linear_graph, width=9)
    assert np.array_equal(_colors(profiles, mode="depth"), _colors(profiles, jobs=4, mode="depth"))


@pytest.mark.parametrize("mode", ["identity", "depth", "strand", "inversion", "uncalled"])
def test_every_mode_produces_valid_rgb(linear_graph, mode: str) -> None:
    colors = _colors(profile_graph(linear_graph, width=7), mode=mode, change_darkness=True)
    assert colors.shape == (3, 7, 3)
