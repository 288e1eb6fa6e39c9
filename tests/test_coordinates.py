"""Tests for the coordinate mapper, ranges and tick generation."""

from __future__ import annotations

import pytest

from gfalook.binning import make_bin_grid
from gfalook.coordinates import (
    CoordinateMapper,
    ReferenceMap,
    format_coordinate,
    parse_subpath_start,
    resolve_window,
    strip_subpath_range,
)
from gfalook.errors import IntegrityError
from gfalook.inputs import RangeSpec, parse_path_range
from tests._helpers import build_graph


@pytest.mark.parametrize(
    ("value", "label"),
    [(0, "0"), (999, "999"), (1500, "1.5K"), (2_500_000, "2.5M"), (3_000_000_000, "3.0G")],
)
def test_format_coordinate(value: int, label: str) -> None:
    assert format_coordinate(value) == label


def test_subpath_names() -> None:
    assert parse_subpath_start("chr1:100-200") == 100
    assert parse_subpath_start("chr1") == 0
    assert strip_subpath_range("chr1:100-200") == "chr1"
    assert strip_subpath_range("HG1#1#chr1") == "HG1#1#chr1"


def test_parse_path_range() -> None:
    assert parse_path_range("10-20") == RangeSpec(10, 20)
    assert parse_path_range("p1:10-20") == RangeSpec(10, 20, "p1")
    assert parse_path_range("chr1:5-10:0-3") == RangeSpec(0, 3, "chr1:5-10")


@pytest.mark.parametrize("value", ["20-10", "abc", ":1-2", "5-5"])
def test_malformed_ranges(value: str) -> None:
    with pytest.raises(IntegrityError):
        parse_path_range(value)


@pytest.mark.parametrize("width", [100, 7, 33])
def test_pangenomic_ticks_round_trip(width: int) -> None:
    grid = make_bin_grid(0, 1000, width)
    mapper = CoordinateMapper(grid)
    ticks = mapper.ticks(10)
    assert ticks[0].bin_index == 0
    assert ticks[-1].bin_index == grid.n_bins - 1
    for tick in ticks:
        offset = mapper.coordinate_to_offset(tick.value)
        assert offset == pytest.approx(grid.bin_start(tick.bin_index))
        assert mapper.offset_to_bin(offset) == tick.bin_index


def test_pangenomic_tick_labels() -> None:
    mapper = CoordinateMapper(make_bin_grid(0, 1000, 100))
    ticks = mapper.ticks(10)
    assert [t.bin_index for t in ticks] == [0, 11, 22, 33, 44, 55, 66, 77, 88, 99]
    assert ticks[1].label == "110"
    assert mapper.label == "pangenomic"


def test_reference_map_positions(linear_graph) -> None:
    axis = linear_graph.build_axis()
    p2 = ReferenceMap(linear_graph, axis, linear_graph.path_by_name("p2"))
    assert p2.to_reference(0) == 0
    assert p2.to_reference(3) == 3
    # segment 2 is not on p2
    assert p2.to_reference(5) is None
    # reversed segment 3: the base at offset 19 comes first
    assert p2.to_reference(19) == 4
    assert p2.to_reference(10) == 13
    assert p2.to_pangenomic(4) == 19
    assert p2.to_pangenomic(13) == 10
    assert p2.axis_span == (0, 20)


@pytest.mark.parametrize("path_name", ["p1", "p2", "p3"])
def test_reference_ticks_round_trip(linear_graph, path_name: str) -> None:
    axis = linear_graph.build_axis()
    grid = make_bin_grid(0, axis.total_length, 20)
    mapper = CoordinateMapper.build(linear_graph, axis, grid, path_name)
    ticks = mapper.ticks(20)
    assert ticks
    for tick in ticks:
        offset = mapper.coordinate_to_offset(tick.value)
        assert offset == pytest.approx(tick.offset)
        assert mapper.offset_to_bin(offset) == tick.bin_index


def test_reference_ticks_skip_untraversed_bins(linear_graph) -> None:
    axis = linear_graph.build_axis()
    grid = make_bin_grid(0, axis.total_length, 20)
    p3 = CoordinateMapper.build(linear_graph, axis, grid, "p3")
    assert p3.bin_range() == (4, 19)
    assert p3.ticks(20)[0].bin_index == 4

    p2 = CoordinateMapper.build(linear_graph, axis, grid, "p2")
    assert all(not 4 <= t.bin_index < 10 for t in p2.ticks(20))


def test_absolute_coordinates() -> None:
    graph = build_graph([("1", "A" * 10), ("2", "C" * 10)], [("chr1:100-120", "1+,2+")])
    axis = graph.build_axis()
    grid = make_bin_grid(0, 20, 20)
    relative = CoordinateMapper.build(graph, axis, grid, "chr1:100-120")
    absolute = CoordinateMapper.build(graph, axis, grid, "chr1:100-120", absolute=True)
    explicit = CoordinateMapper.build(graph, axis, grid, "chr1:100-120", absolute=True, absolute_start=5000)

    assert relative.bin_to_coordinate(3) == 3
    assert absolute.bin_to_coordinate(3) == 103
    assert explicit.bin_to_coordinate(3) == 5003
    assert absolute.label == "chr1"
    assert relative.label == "chr1:100-120"
    assert absolute.coordinate_to_offset(103) == 3


def test_unknown_reference_falls_back_to_pangenomic(linear_graph) -> None:
    axis = linear_graph.build_axis()
    mapper = CoordinateMapper.build(linear_graph, axis, make_bin_grid(0, 20, 20), "nope")
    assert mapper.reference is None
    assert mapper.label == "pangenomic"


def test_resolve_window(linear_graph) -> None:
    axis = linear_graph.build_axis()
    assert resolve_window(linear_graph, axis, None) == (0, 20)
    assert resolve_window(linear_graph, axis, RangeSpec(5, 15)) == (5, 15)
    assert resolve_window(linear_graph, axis, RangeSpec(5, 500)) == (5, 20)
    assert resolve_window(linear_graph, axis, RangeSpec(0, 4, "p2")) == (0, 4)
    assert resolve_window(linear_graph, axis, RangeSpec(4, 6, "p2")) == (18, 20)


@pytest.mark.parametrize("spec", [RangeSpec(50, 60), RangeSpec(0, 5, "missing"), RangeSpec(30, 40, "p2")])
def test_resolve_window_errors(linear_graph, spec: RangeSpec) -> None:
    with pytest.raises(IntegrityError):
        resolve_window(linear_graph, linear_graph.build_axis(), spec)


def test_relative_coordinates_count_from_window_start(linear_graph) -> None:
    axis = linear_graph.build_axis()
    window = RangeSpec(10, 20, "p1")
    grid = make_bin_grid(*resolve_window(linear_graph, axis, window), 10)
    mapper = CoordinateMapper.build(linear_graph, axis, grid, "p1", window=window)
    ticks = mapper.ticks(2)
    assert [(t.bin_index, t.value, t.label) for t in ticks] == [(0, 0.0, "0"), (9, 9.0, "9")]
    for tick in ticks:
        assert mapper.coordinate_to_offset(tick.value) == pytest.approx(tick.offset)

    absolute = CoordinateMapper.build(linear_graph, axis, grid, "p1", absolute=True,
                                      absolute_start=1000, window=window)
    assert absolute.ticks(2)[0].value == 1010


def test_relative_origin_for_pangenomic_window(linear_graph) -> None:
    axis = linear_graph.build_axis()
    grid = make_bin_grid(10, 20, 10)
    # p2 walks segment 3 in reverse, so offset 19 holds its first base in the window
    mapper = CoordinateMapper.build(linear_graph, axis, grid, "p2", window=RangeSpec(10, 20))
    assert mapper.bin_to_coordinate(9) == 0
    assert mapper.bin_to_coordinate(0) == 9
    assert mapper.coordinate_to_offset(0) == pytest.approx(19)
