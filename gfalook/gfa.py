"""
GFA 1.x reader.

Parses S, L, P and W records into a :class:`~gfalook.graph.Graph`. Segment
lines are collected first so that paths and links may appear anywhere in the
file; a path step naming a segment that was never declared is an integrity
error rather than being dropped.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Set, Tuple, Union

from .errors import IntegrityError
from .graph import Edge, Graph, GraphPath, Segment, canonical_edge

logger = logging.getLogger(__name__)

_WALK_STEP = re.compile(r"([<>])([^<>]+)")
_LENGTH_TAG = re.compile(r"^LN:i:(\d+)$")


def _parse_segment(parts: List[str]) -> Segment:
    name = parts[1]
    seq = parts[2] if len(parts) > 2 else "*"
    if seq == "*":
        length = 0
        for tag in parts[3:]:
            match = _LENGTH_TAG.match(tag)
            if match:
                length = int(match.group(1))
                break
        return Segment(name=name, length=length, n_count=0)
    n_count = seq.count("N") + seq.count("n")
    return Segment(name=name, length=len(seq), n_count=n_count)


def _resolve(graph: Graph, path_name: str, seg_name: str) -> int:
    try:
        return graph.segment_index[seg_name]
    except KeyError:
        raise IntegrityError("Path step names an undeclared segment", path=path_name, segment=seg_name) from None


def _parse_path_steps(graph: Graph, path_name: str, field: str) -> List[Tuple[int, bool]]:
    steps = []
    for token in field.split(","):
        token = token.strip()
        if not token:
            continue
        if token.endswith("+"):
            name, reverse = token[:-1], False
        elif token.endswith("-"):
            name, reverse = token[:-1], True
        else:
            name, reverse = token, False
        steps.append((_resolve(graph, path_name, name), reverse))
    return steps


def _parse_walk_steps(graph: Graph, path_name: str, field: str) -> List[Tuple[int, bool]]:
    return [
        (_resolve(graph, path_name, name), orient == "<")
        for orient, name in _WALK_STEP.findall(field)
    ]


def parse_gfa_lines(lines: Iterable[str]) -> Graph:
    """Build a graph from an iterable of GFA lines."""
    graph = Graph()
    deferred: List[List[str]] = []

    for raw in lines:
        line = raw.rstrip("\n\r")
        if not line or line.startswith("#"):
            continue
        record = line[0]
        if record == "S":
            parts = line.split("\t")
            if len(parts) < 2:
                continue
            segment = _parse_segment(parts)
            if segment.name in graph.segment_index:
                raise IntegrityError("Duplicate segment declaration", segment=segment.name)
            graph.segment_index[segment.name] = len(graph.segments)
            graph.segments.append(segment)
        elif record in ("L", "P", "W"):
            deferred.append(line.split("\t"))

    edge_set: Set[Edge] = set()
    for parts in deferred:
        record = parts[0]
        if record == "P" and len(parts) >= 3:
            name = parts[1]
            graph.paths.append(GraphPath.from_steps(name, _parse_path_steps(graph, name, parts[2])))
        elif record == "W" and len(parts) >= 7:
            name = f"{parts[1]}#{parts[2]}#{parts[3]}"
            graph.paths.append(GraphPath.from_steps(name, _parse_walk_steps(graph, name, parts[6])))
        elif record == "L" and len(parts) >= 5:
            src = graph.segment_index.get(parts[1])
            dst = graph.segment_index.get(parts[3])
            if src is None or dst is None:
                raise IntegrityError("Link references an undeclared segment",
                                     segment=parts[1] if src is None else parts[3])
            edge_set.add(canonical_edge(src, parts[2] == "-", dst, parts[4] == "-"))

    # consecutive path steps imply links even when no L record exists
    for path in graph.paths:
        ids = path.segment_ids.tolist()
        rev = path.reverse.tolist()
        for i in range(1, len(ids)):
            edge_set.add(canonical_edge(ids[i - 1], rev[i - 1], ids[i], rev[i]))

    graph.edges = sorted(edge_set, key=lambda e: (e.from_segment, e.from_reverse, e.to_segment, e.to_reverse))
    logger.info(
        "Loaded %d segments (%d bp), %d paths, %d edges",
        len(graph.segments), graph.total_length, len(graph.paths), len(graph.edges),
    )
    return graph


def load_gfa(path: Union[str, Path]) -> Graph:
    """Load a GFA file from disk."""
    gfa_path = Path(path)
    if not gfa_path.exists():
        raise FileNotFoundError(f"GFA file not found: {gfa_path}")
    logger.info("Loading GFA file %s", gfa_path)
    with open(gfa_path, "r") as handle:
        graph = parse_gfa_lines(handle)
    if not graph.paths:
        logger.warning("No paths found in %s", gfa_path)
    return graph
