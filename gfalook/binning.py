"""
Binning engine: projects each path onto the pangenomic axis and aggregates
per-bin statistics.

Every traversal step covers a half-open interval ``[offset, offset + length)``
of the axis. The interval is split over the bins it overlaps and each bin
receives the exact number of bases (possibly fractional when the bin width is
not an integer) that fall inside it, so a step shorter than a bin still
contributes and the per-path coverage sums to the traversed length.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from .graph import Graph, GraphPath, PangenomeAxis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BinGrid:
    """Fixed-width bins over the window ``[start, end)`` of the pangenomic axis."""
    start: int
    end: int
    bin_width: float
    n_bins: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def bin_start(self, index: int) -> float:
        """Pangenomic offset of the left boundary of bin ``index``."""
        return self.start + index * self.bin_width

    def edges(self) -> np.ndarray:
        """The ``n_bins + 1`` bin boundaries; the last one is clipped to ``end``."""
        edges = self.start + np.arange(self.n_bins + 1, dtype=np.float64) * self.bin_width
        if self.n_bins:
            edges[-1] = min(edges[-1], float(self.end))
        return edges

    def extents(self) -> np.ndarray:
        """Width in bases of each bin (the last bin may be narrower)."""
        return np.diff(self.edges())


def make_bin_grid(start: int, end: int, width: int, bin_width: Optional[float] = None) -> BinGrid:
    """Derive the bin grid for a window.

    Without an explicit ``bin_width`` the window is divided into
    ``min(width, window length)`` equal bins; otherwise the bin count is
    whatever is needed to cover the window.
    """
    if end < start:
        raise ValueError(f"window end {end} precedes start {start}")
    length = end - start
    if length == 0:
        return BinGrid(start=start, end=end, bin_width=1.0, n_bins=0)
    if bin_width is None:
        n_bins = max(1, min(int(width), length))
        bin_width = length / n_bins
    else:
        n_bins = max(1, int(math.ceil(length / bin_width)))
    return BinGrid(start=start, end=end, bin_width=float(bin_width), n_bins=n_bins)


@dataclass
class BinProfiles:
    """Per-(path, bin) statistics. Arrays are read-only once computed."""
    names: List[str]
    grid: BinGrid
    coverage: np.ndarray  # bases of the path inside the bin
    forward: np.ndarray  # bases traversed in forward orientation
    reverse: np.ndarray  # bases traversed in reverse orientation
    uncalled: np.ndarray  # uncalled bases
    position_sum: np.ndarray  # sum over bases of their offset along the path
    highlighted: np.ndarray  # bool, bin touches a highlighted segment
    path_lengths: np.ndarray  # full traversed length of each path
    window_lengths: np.ndarray  # traversed length inside the window

    def __post_init__(self):
        for name in ("coverage", "forward", "reverse", "uncalled", "position_sum",
                     "highlighted", "path_lengths", "window_lengths"):
            getattr(self, name).setflags(write=False)

    @property
    def n_paths(self) -> int:
        return len(self.names)

    @property
    def n_bins(self) -> int:
        return self.grid.n_bins

    def _ratio(self, numerator: np.ndarray) -> np.ndarray:
        out = np.zeros_like(numerator, dtype=np.float64)
        np.divide(numerator, self.coverage, out=out, where=self.coverage > 0)
        return out

    @property
    def mean_depth(self) -> np.ndarray:
        """Mean per-base depth of each bin (coverage over bin width)."""
        return self.coverage / self.grid.extents()[np.newaxis, :]

    @property
    def inversion_rate(self) -> np.ndarray:
        return self._ratio(self.reverse)

    @property
    def uncalled_rate(self) -> np.ndarray:
        return self._ratio(self.uncalled)

    @property
    def mean_position(self) -> np.ndarray:
        """Mean offset along the path of the bases in each bin."""
        return self._ratio(self.position_sum)

    @property
    def occupied(self) -> np.ndarray:
        return self.coverage > 0

    def row(self, name: str) -> int:
        return self.names.index(name)

    def subset(self, rows: Sequence[int]) -> "BinProfiles":
        """Profiles restricted to (and reordered by) the given rows."""
        idx = np.asarray(list(rows), dtype=np.int64)
        return BinProfiles(
            names=[self.names[i] for i in idx],
            grid=self.grid,
            coverage=self.coverage[idx],
            forward=self.forward[idx],
            reverse=self.reverse[idx],
            uncalled=self.uncalled[idx],
            position_sum=self.position_sum[idx],
            highlighted=self.highlighted[idx],
            path_lengths=self.path_lengths[idx],
            window_lengths=self.window_lengths[idx],
        )

    def to_frame(self):
        """Long-format table with one row per occupied (path, bin)."""
        import pandas as pd

        rows, bins = np.nonzero(self.occupied)
        edges = self.grid.edges()
        return pd.DataFrame({
            "path": [self.names[r] for r in rows],
            "bin": bins,
            "start": edges[bins],
            "end": edges[bins + 1],
            "coverage": self.coverage[rows, bins],
            "mean_depth": self.mean_depth[rows, bins],
            "inversion_rate": self.inversion_rate[rows, bins],
            "uncalled_rate": self.uncalled_rate[rows, bins],
            "mean_position": self.mean_position[rows, bins],
            "highlighted": self.highlighted[rows, bins],
        })


def bin_path(
    graph: Graph,
    axis: PangenomeAxis,
    path: GraphPath,
    grid: BinGrid,
    highlight: Optional[np.ndarray] = None,
) -> Dict[str, np.ndarray]:
    """Aggregate one path into per-bin statistics.

    Returns a dict of 1-D arrays of length ``grid.n_bins`` plus the scalar
    lengths under ``path_length`` and ``window_length``.
    """
    graph.validate_path(path)
    n = grid.n_bins
    seg = path.segment_ids
    lengths = graph.segment_lengths[seg].astype(np.float64)
    out = {
        "coverage": np.zeros(n), "forward": np.zeros(n), "reverse": np.zeros(n),
        "uncalled": np.zeros(n), "position_sum": np.zeros(n),
        "highlighted": np.zeros(n, dtype=bool),
        "path_length": float(lengths.sum()), "window_length": 0.0,
    }
    if n == 0 or len(path) == 0:
        return out

    starts = axis.offsets[seg].astype(np.float64)
    ends = starts + lengths
    path_pos = np.concatenate(([0.0], np.cumsum(lengths)[:-1]))

    lo = np.maximum(starts, grid.start)
    hi = np.minimum(ends, grid.end)
    keep = hi > lo
    if not keep.any():
        return out
    lo, hi = lo[keep], hi[keep]
    starts, ends, path_pos = starts[keep], ends[keep], path_pos[keep]
    reverse = path.reverse[keep]
    seg_kept = seg[keep]
    lengths = lengths[keep]

    first_bin = np.clip(np.floor((lo - grid.start) / grid.bin_width).astype(np.int64), 0, n - 1)
    last_bin = np.clip(np.ceil((hi - grid.start) / grid.bin_width).astype(np.int64) - 1, 0, n - 1)
    last_bin = np.maximum(last_bin, first_bin)
    counts = last_bin - first_bin + 1

    # one piece per (step, overlapped bin)
    step_of = np.repeat(np.arange(lo.shape[0]), counts)
    piece_offsets = np.arange(step_of.shape[0]) - np.repeat(np.cumsum(counts) - counts, counts)
    bins = first_bin[step_of] + piece_offsets
    bin_lo = grid.start + bins * grid.bin_width
    bin_hi = np.minimum(bin_lo + grid.bin_width, grid.end)
    piece_lo = np.maximum(lo[step_of], bin_lo)
    piece_hi = np.minimum(hi[step_of], bin_hi)
    # the outermost pieces absorb float slack so each step's pieces sum to its overlap
    piece_lo[np.r_[True, step_of[1:] != step_of[:-1]]] = lo
    piece_hi[np.r_[step_of[1:] != step_of[:-1], True]] = hi
    overlap = np.clip(piece_hi - piece_lo, 0.0, None)

    rev = reverse[step_of]
    mid = (piece_lo + piece_hi) / 2.0
    along = np.where(rev, ends[step_of] - mid, mid - starts[step_of]) + path_pos[step_of]
    n_frac = graph.segment_n_counts[seg_kept].astype(np.float64)
    n_frac = np.divide(n_frac, lengths, out=np.zeros_like(n_frac), where=lengths > 0)

    out["coverage"] = np.bincount(bins, weights=overlap, minlength=n)
    out["forward"] = np.bincount(bins, weights=overlap * ~rev, minlength=n)
    out["reverse"] = np.bincount(bins, weights=overlap * rev, minlength=n)
    out["uncalled"] = np.bincount(bins, weights=overlap * n_frac[step_of], minlength=n)
    out["position_sum"] = np.bincount(bins, weights=overlap * along, minlength=n)
    if highlight is not None:
        flagged = highlight[seg_kept][step_of] & (overlap > 0)
        out["highlighted"] = np.bincount(bins, weights=flagged, minlength=n) > 0
    out["window_length"] = float((hi - lo).sum())
    return out


class BinningEngine:
    """Computes the bin-profile matrix for a set of paths."""

    def __init__(self, graph: Graph, axis: PangenomeAxis, grid: BinGrid,
                 highlight_segments: Optional[Iterable[str]] = None, jobs: int = 1):
        self.graph = graph
        self.axis = axis
        self.grid = grid
        self.jobs = max(1, int(jobs))
        self.highlight = None
        if highlight_segments is not None:
            mask = np.zeros(len(graph.segments), dtype=bool)
            unknown = 0
            for name in highlight_segments:
                idx = graph.segment_index.get(name)
                if idx is None:
                    unknown += 1
                else:
                    mask[idx] = True
            if unknown:
                logger.warning("%d highlight node ids are not segments of the graph", unknown)
            self.highlight = mask

    def run(self, paths: Sequence[GraphPath]) -> BinProfiles:
        n_paths, n_bins = len(paths), self.grid.n_bins
        for path in paths:
            self.graph.validate_path(path)

        arrays = {name: np.zeros((n_paths, n_bins)) for name in
                  ("coverage", "forward", "reverse", "uncalled", "position_sum")}
        highlighted = np.zeros((n_paths, n_bins), dtype=bool)
        path_lengths = np.zeros(n_paths)
        window_lengths = np.zeros(n_paths)

        def fill(row: int) -> None:
            result = bin_path(self.graph, self.axis, paths[row], self.grid, self.highlight)
            for name, matrix in arrays.items():
                matrix[row] = result[name]
            highlighted[row] = result["highlighted"]
            path_lengths[row] = result["path_length"]
            window_lengths[row] = result["window_length"]

        if self.jobs > 1 and n_paths > 1:
            with ThreadPoolExecutor(max_workers=self.jobs) as executor:
                # list() re-raises the first worker exception
                list(executor.map(fill, range(n_paths)))
        else:
            for row in range(n_paths):
                fill(row)

        logger.info("Binned %d paths into %d bins of %.2f bp", n_paths, n_bins, self.grid.bin_width)
        return BinProfiles(
            names=[p.name for p in paths],
            grid=self.grid,
            highlighted=highlighted,
            path_lengths=path_lengths,
            window_lengths=window_lengths,
            **arrays,
        )
