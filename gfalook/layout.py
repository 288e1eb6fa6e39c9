"""
Layout engine: assigns paths (or merged groups) to vertical rows.

Each :class:`LayoutRow` carries a ``source`` array with, for every bin, the
profile row whose color is drawn there (-1 for an empty cell). Normal rows
have one member, prefix-merged rows several, and packed rows hold pieces of
different paths side by side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .binning import BinProfiles
from .inputs import PathAnnotations, PathGrouping

logger = logging.getLogger(__name__)

COMPRESSED_LABEL = "compressed"


@dataclass(frozen=True)
class Piece:
    """A contiguous run ``[start, end)`` of bins of one profile row."""
    member: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class Connector:
    """Line from the end of one piece to the start of the next piece of the same path."""
    member: int
    from_row: int
    from_bin: int  # exclusive end of the earlier piece
    to_row: int
    to_bin: int  # start of the later piece
    thickness: float = 1.0


@dataclass
class LayoutRow:
    label: str
    y: int
    height: int
    source: np.ndarray
    members: List[int] = field(default_factory=list)
    cluster: Optional[int] = None
    annotation: Optional[str] = None

    @property
    def y_end(self) -> int:
        return self.y + self.height

    def pieces(self) -> List[Piece]:
        out = []
        for member in self.members:
            for start, end in occupied_runs(self.source == member):
                out.append(Piece(member, start, end))
        return sorted(out, key=lambda p: (p.start, p.member))


@dataclass
class Layout:
    rows: List[LayoutRow]
    n_bins: int
    connectors: List[Connector] = field(default_factory=list)

    @property
    def height(self) -> int:
        return self.rows[-1].y_end if self.rows else 0

    def source_grid(self) -> np.ndarray:
        """``(rows, bins)`` matrix of profile row indices, -1 where empty."""
        if not self.rows:
            return np.full((0, self.n_bins), -1, dtype=np.int64)
        return np.vstack([row.source for row in self.rows])


def occupied_runs(mask: np.ndarray) -> List[Tuple[int, int]]:
    """Half-open ``(start, end)`` runs of True values."""
    padded = np.concatenate(([False], np.asarray(mask, dtype=bool), [False]))
    edges = np.flatnonzero(padded[1:] != padded[:-1])
    return [(int(s), int(e)) for s, e in zip(edges[0::2], edges[1::2])]


def compress_profiles(profiles: BinProfiles) -> BinProfiles:
    """Collapse every path into one row holding the per-bin arithmetic mean.

    Coverage is averaged directly. The per-path rates (inversion, uncalled,
    mean position) are averaged too, counting 0 for paths absent from a bin,
    and stored as sums over the mean coverage so that the compressed row
    reports exactly those means.
    """
    if profiles.n_paths == 0:
        return profiles

    def mean(a: np.ndarray) -> np.ndarray:
        return np.asarray(a, dtype=np.float64).mean(axis=0, keepdims=True)

    coverage = mean(profiles.coverage)
    reverse = mean(profiles.inversion_rate) * coverage
    return BinProfiles(
        names=[COMPRESSED_LABEL],
        grid=profiles.grid,
        coverage=coverage,
        forward=coverage - reverse,
        reverse=reverse,
        uncalled=mean(profiles.uncalled_rate) * coverage,
        position_sum=mean(profiles.mean_position) * coverage,
        highlighted=profiles.highlighted.any(axis=0, keepdims=True),
        path_lengths=mean(profiles.path_lengths[:, np.newaxis])[0],
        window_lengths=mean(profiles.window_lengths[:, np.newaxis])[0],
    )


def stack_rows(
    profiles: BinProfiles,
    order: Sequence[int],
    path_height: int,
    labels: Optional[Sequence[str]] = None,
    clusters: Optional[Sequence[int]] = None,
    cluster_gap: int = 0,
) -> Layout:
    """One row per path in ``order``; a gap separates consecutive clusters."""
    rows: List[LayoutRow] = []
    y = 0
    for pos, member in enumerate(order):
        cluster = clusters[pos] if clusters is not None else None
        if rows and cluster is not None and rows[-1].cluster != cluster:
            y += cluster_gap
        source = np.where(profiles.occupied[member], member, -1).astype(np.int64)
        rows.append(LayoutRow(
            label=labels[pos] if labels is not None else profiles.names[member],
            y=y,
            height=path_height,
            source=source,
            members=[member],
            cluster=cluster,
        ))
        y += path_height
    return Layout(rows=rows, n_bins=profiles.n_bins)


def group_rows(profiles: BinProfiles, grouping: PathGrouping, path_height: int) -> Layout:
    """One row per prefix group; later members paint over earlier ones."""
    rows: List[LayoutRow] = []
    for group, prefix in enumerate(grouping.prefixes):
        members = [i for i, g in enumerate(grouping.path_to_group) if g == group]
        source = np.full(profiles.n_bins, -1, dtype=np.int64)
        for member in members:
            source[profiles.occupied[member]] = member
        rows.append(LayoutRow(label=prefix, y=group * path_height, height=path_height,
                              source=source, members=members))
    skipped = sum(1 for g in grouping.path_to_group if g < 0)
    if skipped:
        logger.warning("%d paths match no merge prefix and are not shown", skipped)
    return Layout(rows=rows, n_bins=profiles.n_bins)


def pack_rows(profiles: BinProfiles, path_height: int, thickness: float = 1.0) -> Layout:
    """Greedy shelf packing of path pieces.

    Every path is split into its contiguous runs of occupied bins. Pieces are
    placed longest first (ties by path, then start) into the first row whose
    bins are free over the piece's span; a new row is opened when none is.
    Consecutive pieces of a path are joined by connectors.
    """
    pieces = [
        Piece(member, start, end)
        for member in range(profiles.n_paths)
        for start, end in occupied_runs(profiles.occupied[member])
    ]
    pieces.sort(key=lambda p: (-p.length, p.member, p.start))

    sources: List[np.ndarray] = []
    placed: List[Tuple[Piece, int]] = []
    for piece in pieces:
        for row_idx, source in enumerate(sources):
            if (source[piece.start:piece.end] < 0).all():
                break
        else:
            sources.append(np.full(profiles.n_bins, -1, dtype=np.int64))
            row_idx = len(sources) - 1
        sources[row_idx][piece.start:piece.end] = piece.member
        placed.append((piece, row_idx))

    rows = []
    for row_idx, source in enumerate(sources):
        members = sorted(set(source[source >= 0].tolist()))
        rows.append(LayoutRow(label="", y=row_idx * path_height, height=path_height,
                              source=source, members=members))

    connectors = []
    by_member: dict = {}
    for piece, row_idx in placed:
        by_member.setdefault(piece.member, []).append((piece, row_idx))
    for member in sorted(by_member):
        chain = sorted(by_member[member], key=lambda item: item[0].start)
        for (a, row_a), (b, row_b) in zip(chain, chain[1:]):
            connectors.append(Connector(member, row_a, a.end, row_b, b.start, thickness))

    logger.info("Packed %d pieces of %d paths into %d rows", len(pieces), profiles.n_paths, len(rows))
    return Layout(rows=rows, n_bins=profiles.n_bins, connectors=connectors)


def link_gaps(layout: Layout, thickness: float) -> Layout:
    """Add connectors across empty bins between pieces of the same path in a row."""
    for row_idx, row in enumerate(layout.rows):
        for member in row.members:
            runs = occupied_runs(row.source == member)
            for (_, end), (start, _) in zip(runs, runs[1:]):
                layout.connectors.append(Connector(member, row_idx, end, row_idx, start, thickness))
    return layout


def annotate_rows(layout: Layout, names: Sequence[str], annotations: PathAnnotations) -> Layout:
    """Set each row's annotation category; rows whose members disagree get none."""
    for row in layout.rows:
        categories = {annotations.category_of(names[member]) for member in row.members}
        row.annotation = categories.pop() if len(categories) == 1 else None
    return layout
