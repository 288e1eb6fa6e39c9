"""
Graph model for variation graphs.

Segments are owned by the :class:`Graph` and referenced everywhere else by
their integer index. Paths store their traversal as two parallel numpy arrays
(segment index, reverse flag) so that binning can work on whole paths at once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Sequence, Tuple

import numpy as np

from .errors import IntegrityError

OffsetOrder = Literal["first_appearance", "segment_order"]


@dataclass(frozen=True)
class Segment:
    """A graph segment (node)."""
    name: str
    length: int
    n_count: int = 0  # uncalled bases (N/n) in the sequence


@dataclass(frozen=True)
class Edge:
    """An oriented link between two segments, stored in canonical direction."""
    from_segment: int
    from_reverse: bool
    to_segment: int
    to_reverse: bool


def canonical_edge(from_segment: int, from_reverse: bool, to_segment: int, to_reverse: bool) -> Edge:
    """Normalize edge direction so that both strands of a link compare equal."""
    if from_segment < to_segment or (from_segment == to_segment and not from_reverse):
        return Edge(from_segment, from_reverse, to_segment, to_reverse)
    return Edge(to_segment, not to_reverse, from_segment, not from_reverse)


@dataclass
class GraphPath:
    """An ordered traversal of oriented segments."""
    name: str
    segment_ids: np.ndarray  # int64, index into Graph.segments
    reverse: np.ndarray  # bool

    def __post_init__(self):
        self.segment_ids = np.asarray(self.segment_ids, dtype=np.int64)
        self.reverse = np.asarray(self.reverse, dtype=bool)
        if self.segment_ids.shape != self.reverse.shape:
            raise ValueError(f"Path {self.name!r}: segment and orientation arrays differ in length")
        self.segment_ids.setflags(write=False)
        self.reverse.setflags(write=False)

    @classmethod
    def from_steps(cls, name: str, steps: Sequence[Tuple[int, bool]]) -> "GraphPath":
        ids = np.fromiter((s for s, _ in steps), dtype=np.int64, count=len(steps))
        rev = np.fromiter((r for _, r in steps), dtype=bool, count=len(steps))
        return cls(name=name, segment_ids=ids, reverse=rev)

    def __len__(self) -> int:
        return int(self.segment_ids.shape[0])


@dataclass
class PangenomeAxis:
    """Shared linear coordinate system: one offset per segment."""
    offsets: np.ndarray  # int64, offset of each segment on the axis
    total_length: int
    order: OffsetOrder


@dataclass
class Graph:
    """Minimal variation graph for visualization."""
    segments: List[Segment] = field(default_factory=list)
    paths: List[GraphPath] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    segment_index: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if not self.segment_index:
            self.segment_index = {seg.name: i for i, seg in enumerate(self.segments)}
        self._lengths = None
        self._n_counts = None

    @property
    def segment_lengths(self) -> np.ndarray:
        if self._lengths is None or self._lengths.shape[0] != len(self.segments):
            self._lengths = np.array([s.length for s in self.segments], dtype=np.int64)
            self._lengths.setflags(write=False)
        return self._lengths

    @property
    def segment_n_counts(self) -> np.ndarray:
        if self._n_counts is None or self._n_counts.shape[0] != len(self.segments):
            self._n_counts = np.array([s.n_count for s in self.segments], dtype=np.int64)
            self._n_counts.setflags(write=False)
        return self._n_counts

    @property
    def total_length(self) -> int:
        return int(self.segment_lengths.sum())

    def path_by_name(self, name: str) -> GraphPath:
        for path in self.paths:
            if path.name == name:
                return path
        raise KeyError(name)

    def validate_path(self, path: GraphPath) -> None:
        """Raise IntegrityError if the path references a segment that does not exist."""
        n = len(self.segments)
        if len(path) == 0:
            return
        bad = (path.segment_ids < 0) | (path.segment_ids >= n)
        if bad.any():
            first = int(np.flatnonzero(bad)[0])
            raise IntegrityError(
                "Path references a segment absent from the graph",
                path=path.name,
                segment=int(path.segment_ids[first]),
            )

    def path_length(self, path: GraphPath) -> int:
        """Total traversed length of a path in bases."""
        self.validate_path(path)
        if len(path) == 0:
            return 0
        return int(self.segment_lengths[path.segment_ids].sum())

    def build_axis(self, order: OffsetOrder = "first_appearance") -> PangenomeAxis:
        """Assign every segment exactly one pangenomic offset.

        ``first_appearance`` lays segments out in the order they are first
        visited when walking all paths in input order; segments no path visits
        follow in segment order. ``segment_order`` uses the segment list order.
        """
        n = len(self.segments)
        lengths = self.segment_lengths
        if order == "segment_order":
            layout = np.arange(n, dtype=np.int64)
        elif order == "first_appearance":
            seen = np.zeros(n, dtype=bool)
            chunks = []
            for path in self.paths:
                self.validate_path(path)
                if len(path) == 0:
                    continue
                ids = path.segment_ids
                # first occurrence of each id within this path, in traversal order
                _, first_idx = np.unique(ids, return_index=True)
                ordered = ids[np.sort(first_idx)]
                fresh = ordered[~seen[ordered]]
                seen[fresh] = True
                chunks.append(fresh)
            chunks.append(np.flatnonzero(~seen).astype(np.int64))
            layout = np.concatenate(chunks) if chunks else np.arange(n, dtype=np.int64)
        else:
            raise ValueError(f"Unknown offset order: {order}")

        offsets = np.zeros(n, dtype=np.int64)
        if n:
            starts = np.concatenate(([0], np.cumsum(lengths[layout])[:-1]))
            offsets[layout] = starts
        offsets.setflags(write=False)
        return PangenomeAxis(offsets=offsets, total_length=int(lengths.sum()), order=order)
