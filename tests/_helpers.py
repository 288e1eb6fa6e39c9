"""Shared helpers for building small graphs in tests."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence

from gfalook.binning import BinningEngine, BinProfiles, make_bin_grid
from gfalook.gfa import parse_gfa_lines
from gfalook.graph import Graph

# segment name -> sequence; "*" entries carry their length in an LN tag
LINEAR_SEGMENTS = (("1", "ACGT"), ("2", "NNNNAA"), ("3", "ACGTACGTAC"))
LINEAR_PATHS = (("p1", "1+,2+,3+"), ("p2", "1+,3-"), ("p3", "2-,3+"))


def gfa_lines(
    segments: Iterable[tuple],
    paths: Iterable[tuple] = (),
    links: Iterable[tuple] = (),
) -> list[str]:
    """Render GFA 1.0 lines from (name, seq) segments and (name, steps) paths."""

    lines = ["H\tVN:Z:1.0"]
    for segment in segments:
        name, seq = segment[0], segment[1]
        if seq == "*":
            lines.append(f"S\t{name}\t*\tLN:i:{segment[2]}")
        else:
            lines.append(f"S\t{name}\t{seq}")
    for src, src_orient, dst, dst_orient in links:
        lines.append(f"L\t{src}\t{src_orient}\t{dst}\t{dst_orient}\t0M")
    for name, steps in paths:
        lines.append(f"P\t{name}\t{steps}\t*")
    return lines


def build_graph(segments: Iterable[tuple], paths: Iterable[tuple] = ()) -> Graph:
    return parse_gfa_lines(gfa_lines(segments, paths))


def write_gfa(path: Path, segments: Iterable[tuple], paths: Iterable[tuple] = ()) -> Path:
    path.write_text("\n".join(gfa_lines(segments, paths)) + "\n")
    return path


def profile_graph(
    graph: Graph,
    width: int = 1500,
    bin_width: Optional[float] = None,
    order: str = "first_appearance",
    window: Optional[tuple[int, int]] = None,
    highlight: Optional[Sequence[str]] = None,
    jobs: int = 1,
) -> BinProfiles:
    """Bin every path of ``graph`` over the whole axis (or ``window``)."""

    axis = graph.build_axis(order)  # type: ignore[arg-type]
    start, end = window if window is not None else (0, axis.total_length)
    grid = make_bin_grid(start, end, width, bin_width)
    return BinningEngine(graph, axis, grid, highlight, jobs=jobs).run(graph.paths)
