"""
Coordinate mapper: bin indices to x-axis coordinates and back.

In pangenomic mode a bin is labelled with the pangenomic offset of its left
boundary. In reference mode the base starting at that boundary is located
along a chosen path. Relative labels count from the first base of the
displayed window on that path; absolute labels add a fixed start instead.
Ticks are always placed on bin boundaries and labelled through the same
mapping, so a label never drifts from the bin it annotates.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .binning import BinGrid
from .errors import IntegrityError
from .graph import Graph, GraphPath, PangenomeAxis
from .inputs import RangeSpec

logger = logging.getLogger(__name__)

PANGENOMIC = "pangenomic"
_SUBPATH = re.compile(r"^(.*):(\d+)-(\d+)$")
# guards floor() against b * w / w landing just below b
_BIN_SLACK = 1e-9


def format_coordinate(value: float) -> str:
    """Human-readable coordinate with K/M/G suffixes."""
    value = int(value)
    if value >= 1_000_000_000:
        return f"{value / 1_000_000_000:.1f}G"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)


def parse_subpath_start(name: str) -> int:
    """Start of a ``name:start-end`` path name, 0 when there is no range."""
    match = _SUBPATH.match(name)
    return int(match.group(2)) if match else 0


def strip_subpath_range(name: str) -> str:
    match = _SUBPATH.match(name)
    return match.group(1) if match else name


class ReferenceMap:
    """Piecewise mapping between pangenomic offsets and positions along a path.

    Positions are base based: the base at axis offset ``x`` of a reversed
    step sits at ``a + n - 1 - x`` within the step, so the map is a bijection
    on every step. An axis offset covered by several steps of the path (a
    loop) maps to the earliest of them.
    """

    def __init__(self, graph: Graph, axis: PangenomeAxis, path: GraphPath):
        graph.validate_path(path)
        self.name = path.name
        lengths = graph.segment_lengths[path.segment_ids].astype(np.int64)
        keep = lengths > 0
        self.lengths = lengths[keep]
        self.axis_start = axis.offsets[path.segment_ids][keep].astype(np.int64)
        self.reverse = path.reverse[keep]
        self.path_start = np.concatenate(([0], np.cumsum(self.lengths)[:-1])).astype(np.int64)
        self.length = int(self.lengths.sum())

    @property
    def axis_span(self) -> Tuple[int, int]:
        """Smallest and largest pangenomic offsets the path touches."""
        if self.length == 0:
            return 0, 0
        return int(self.axis_start.min()), int((self.axis_start + self.lengths).max())

    def to_reference(self, offset: float) -> Optional[float]:
        """Position along the path of a pangenomic offset, or None if not traversed."""
        inside = (self.axis_start <= offset) & (offset < self.axis_start + self.lengths)
        hits = np.flatnonzero(inside)
        if hits.size == 0:
            return None
        k = int(hits[0])
        if self.reverse[k]:
            base = math.floor(offset)
            return float(self.path_start[k] + (self.axis_start[k] + self.lengths[k] - 1 - base) + (offset - base))
        return float(self.path_start[k] + (offset - self.axis_start[k]))

    def to_pangenomic(self, position: float) -> float:
        """Pangenomic offset of a position along the path."""
        if self.length == 0:
            raise ValueError(f"path {self.name!r} has no length")
        position = min(max(position, 0.0), float(self.length))
        k = int(np.searchsorted(self.path_start, position, side="right")) - 1
        k = min(max(k, 0), len(self.lengths) - 1)
        delta = position - self.path_start[k]
        if not self.reverse[k]:
            return float(self.axis_start[k] + delta)
        if delta >= self.lengths[k]:
            # end of the path
            return float(self.axis_start[k])
        base = math.floor(delta)
        return float(self.axis_start[k] + self.lengths[k] - 1 - base + (delta - base))

    def window(self, start: int, end: int) -> Tuple[int, int]:
        """Pangenomic extent of the path positions ``[start, end)``."""
        ends = self.path_start + self.lengths
        hit = (self.path_start < end) & (ends > start)
        if not hit.any():
            raise IntegrityError("Coordinate range lies outside the path",
                                 path=self.name, value=f"{start}-{end}")
        lo_in = np.maximum(self.path_start[hit], start) - self.path_start[hit]
        hi_in = np.minimum(ends[hit], end) - self.path_start[hit]
        a, n, rev = self.axis_start[hit], self.lengths[hit], self.reverse[hit]
        lo = np.where(rev, a + n - hi_in, a + lo_in)
        hi = np.where(rev, a + n - lo_in, a + hi_in)
        return int(lo.min()), int(hi.max())

    def first_position(self, lo: float, hi: float) -> Optional[float]:
        """Smallest path position whose base lies in the pangenomic window ``[lo, hi)``."""
        a, n = self.axis_start, self.lengths
        left, right = np.maximum(a, lo), np.minimum(a + n, hi)
        hit = left < right
        if not hit.any():
            return None
        forward = self.path_start + (left - a)
        reverse = self.path_start + (a + n - right)
        return float(np.where(self.reverse, reverse, forward)[hit].min())


def resolve_window(graph: Graph, axis: PangenomeAxis, spec: Optional[RangeSpec]) -> Tuple[int, int]:
    """Pangenomic ``[start, end)`` window for an optional range request."""
    if spec is None:
        return 0, axis.total_length
    if spec.path is None:
        if spec.start >= axis.total_length:
            raise IntegrityError("Coordinate range starts beyond the end of the graph",
                                 value=f"{spec.start}-{spec.end}")
        return spec.start, min(spec.end, axis.total_length)
    try:
        path = graph.path_by_name(spec.path)
    except KeyError:
        raise IntegrityError("Coordinate range names an unknown path", path=spec.path) from None
    return ReferenceMap(graph, axis, path).window(spec.start, spec.end)


@dataclass(frozen=True)
class Tick:
    bin_index: int
    offset: float  # pangenomic offset of the bin's left boundary
    value: float  # displayed coordinate
    label: str


class CoordinateMapper:
    """Bin index to displayed coordinate, for pangenomic or reference-path axes."""

    def __init__(self, grid: BinGrid, reference: Optional[ReferenceMap] = None,
                 absolute: bool = False, absolute_start: Optional[int] = None,
                 window_start: Optional[float] = None):
        self.grid = grid
        self.reference = reference
        self.absolute = absolute and reference is not None
        # displayed value = path position + shift
        if self.absolute:
            self.shift = absolute_start if absolute_start is not None else parse_subpath_start(reference.name)
        elif reference is not None and window_start is not None:
            self.shift = -window_start
        else:
            self.shift = 0

    @classmethod
    def build(cls, graph: Graph, axis: PangenomeAxis, grid: BinGrid, x_axis: Optional[str],
              absolute: bool = False, absolute_start: Optional[int] = None,
              window: Optional[RangeSpec] = None) -> "CoordinateMapper":
        """Mapper for ``x_axis``; relative labels count from the start of ``window``."""
        if not x_axis or x_axis.lower() == PANGENOMIC:
            if absolute:
                logger.debug("absolute coordinates have no effect on the pangenomic axis")
            return cls(grid)
        try:
            path = graph.path_by_name(x_axis)
        except KeyError:
            logger.warning("Path '%s' not found, using pangenomic coordinates", x_axis)
            return cls(grid)
        reference = ReferenceMap(graph, axis, path)
        window_start = None
        if window is not None:
            if window.path == path.name:
                window_start = window.start
            else:
                window_start = reference.first_position(grid.start, grid.end)
        return cls(grid, reference, absolute, absolute_start, window_start)

    @property
    def label(self) -> str:
        if self.reference is None:
            return PANGENOMIC
        return strip_subpath_range(self.reference.name) if self.absolute else self.reference.name

    def bin_to_offset(self, bin_index: int) -> float:
        return self.grid.bin_start(bin_index)

    def offset_to_bin(self, offset: float) -> int:
        return int(math.floor((offset - self.grid.start) / self.grid.bin_width + _BIN_SLACK))

    def offset_to_coordinate(self, offset: float) -> Optional[float]:
        if self.reference is None:
            return offset
        position = self.reference.to_reference(offset)
        return None if position is None else position + self.shift

    def coordinate_to_offset(self, value: float) -> float:
        if self.reference is None:
            return value
        return self.reference.to_pangenomic(value - self.shift)

    def bin_to_coordinate(self, bin_index: int) -> Optional[float]:
        return self.offset_to_coordinate(self.bin_to_offset(bin_index))

    def bin_range(self) -> Tuple[int, int]:
        """First and last bin the axis covers (the reference path's extent)."""
        last = self.grid.n_bins - 1
        if self.reference is None or last < 0:
            return 0, max(last, 0)
        lo, hi = self.reference.axis_span
        first = min(max(self.offset_to_bin(max(lo, self.grid.start)), 0), last)
        # hi is exclusive
        span = (min(hi, self.grid.end) - self.grid.start) / self.grid.bin_width
        final = min(max(int(math.ceil(span - _BIN_SLACK)) - 1, first), last)
        return first, final

    def ticks(self, count: int) -> List[Tick]:
        """``count`` evenly spaced ticks on bin boundaries.

        Boundaries the reference path does not traverse are skipped.
        """
        if self.grid.n_bins == 0 or count < 1:
            return []
        first, last = self.bin_range()
        if count == 1 or first == last:
            candidates = [first]
        else:
            candidates = np.unique(np.round(np.linspace(first, last, count)).astype(np.int64)).tolist()
        ticks = []
        for b in candidates:
            offset = self.bin_to_offset(b)
            value = self.offset_to_coordinate(offset)
            if value is None:
                continue
            ticks.append(Tick(bin_index=int(b), offset=offset, value=value, label=format_coordinate(value)))
        return ticks
