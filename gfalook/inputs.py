"""
Optional side inputs: path lists, color tables, highlight ids, prefix merges,
path annotations, and the path filters applied before binning.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

import pandas as pd

from .colors import annotation_colors
from .errors import IntegrityError
from .graph import GraphPath

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

_RANGE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


def _read_lines(path: Union[str, Path]) -> List[str]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    with open(path, "r") as handle:
        return [line.strip() for line in handle if line.strip()]


def load_paths_to_display(path: Union[str, Path]) -> List[str]:
    """One path name per line, order preserved."""
    return _read_lines(path)


def parse_color(value: str) -> Optional[RGB]:
    """Parse ``#RRGGBB`` or ``r,g,b``."""
    value = value.strip()
    if value.startswith("#") and len(value) == 7:
        try:
            return tuple(int(value[i:i + 2], 16) for i in (1, 3, 5))  # type: ignore[return-value]
        except ValueError:
            return None
    parts = [p.strip() for p in value.split(",")]
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        rgb = tuple(int(p) for p in parts)
        if all(0 <= c <= 255 for c in rgb):
            return rgb  # type: ignore[return-value]
    return None


def load_path_colors(path: Union[str, Path]) -> Dict[str, RGB]:
    """Tab-separated ``name<TAB>color`` table; '#' lines are comments."""
    colors: Dict[str, RGB] = {}
    for line in _read_lines(path):
        if line.startswith("#") and "\t" not in line:
            continue
        parts = line.split("\t")
        if len(parts) < 2:
            continue
        rgb = parse_color(parts[1])
        if rgb is None:
            logger.warning("Unparseable color %r for path %s, using grey", parts[1], parts[0])
            rgb = (128, 128, 128)
        colors[parts[0]] = rgb
    return colors


def load_highlight_node_ids(path: Union[str, Path]) -> Set[str]:
    """Node ids to highlight, one per line (kept as segment names)."""
    return set(_read_lines(path))


@dataclass
class PathGrouping:
    """Assignment of displayed paths to prefix-merge groups."""
    path_to_group: List[int]  # -1 for paths matching no prefix
    prefixes: List[str]  # group labels, in order of first use

    @property
    def num_groups(self) -> int:
        return len(self.prefixes)


def group_by_prefixes(path_names: Sequence[str], prefixes: Sequence[str]) -> PathGrouping:
    """Assign each path to the first listed prefix it starts with.

    Groups are numbered in order of first use by the displayed paths.
    """
    unique: List[str] = []
    for prefix in prefixes:
        if prefix in unique:
            logger.warning("Duplicate prefix found: %s", prefix)
        else:
            unique.append(prefix)

    used: List[str] = []
    path_to_group: List[int] = []
    for name in path_names:
        group = -1
        for idx, prefix in enumerate(used):
            if name.startswith(prefix):
                group = idx
                break
        if group < 0:
            for prefix in unique:
                if name.startswith(prefix):
                    used.append(prefix)
                    group = len(used) - 1
                    break
        path_to_group.append(group)
    return PathGrouping(path_to_group=path_to_group, prefixes=used)


def load_prefix_merges(path: Union[str, Path], path_names: Sequence[str]) -> PathGrouping:
    grouping = group_by_prefixes(path_names, _read_lines(path))
    logger.info("Read %d valid prefixes for %d groups", len(grouping.prefixes), grouping.num_groups)
    return grouping


def select_paths(
    paths: Sequence[GraphPath],
    ignore_prefix: Optional[str] = None,
    display_list: Optional[Sequence[str]] = None,
) -> List[GraphPath]:
    """Apply prefix exclusion, then an explicit inclusion list (whose order wins)."""
    selected = list(paths)
    if ignore_prefix:
        selected = [p for p in selected if not p.name.startswith(ignore_prefix)]
    if display_list is not None:
        by_name = {p.name: p for p in selected}
        missing = [name for name in display_list if name not in by_name]
        if missing:
            logger.warning("%d listed paths not found in the graph: %s", len(missing), ", ".join(missing[:5]))
        selected = [by_name[name] for name in display_list if name in by_name]
    if not selected:
        logger.warning("No paths left to display after filtering")
    return selected


@dataclass(frozen=True)
class RangeSpec:
    """A requested coordinate window, optionally relative to a path."""
    start: int
    end: int
    path: Optional[str] = None


def parse_path_range(value: str) -> RangeSpec:
    """Parse ``[PATH:]start-end``; malformed ranges are integrity errors."""
    match = _RANGE.match(value)
    path_name = None
    if match is None and ":" in value:
        path_name, coords = value.rsplit(":", 1)
        match = _RANGE.match(coords)
    if match is None or (path_name is not None and not path_name):
        raise IntegrityError("Malformed coordinate range, expected [PATH:]start-end", value=value)
    start, end = int(match.group(1)), int(match.group(2))
    if end <= start:
        raise IntegrityError("Coordinate range end must be greater than start", value=value)
    return RangeSpec(start=start, end=end, path=path_name)


@dataclass
class PathAnnotations:
    """Categories assigned to paths by name prefix, with one color per category."""
    prefix_to_category: Dict[str, str]
    categories: List[str]  # sorted
    colors: Dict[str, RGB]

    def __post_init__(self):
        # longest prefix wins
        self._prefixes = sorted(self.prefix_to_category, key=lambda p: (-len(p), p))

    def category_of(self, name: str) -> Optional[str]:
        for prefix in self._prefixes:
            if name.startswith(prefix):
                return self.prefix_to_category[prefix]
        return None


def load_annotations(path: Union[str, Path], column: Optional[int] = None) -> PathAnnotations:
    """Read a ``prefix<SEP>...category`` table whose first line is a header.

    ``.csv`` files are comma separated with the category in column 4 by
    default; anything else is tab separated with the category in column 2.
    ``column`` (1-based) overrides the default.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Annotation file not found: {path}")
    is_csv = path.suffix.lower() == ".csv"
    index = column - 1 if column else (3 if is_csv else 1)

    table = pd.read_csv(path, sep="," if is_csv else "\t", header=0, dtype=str,
                        keep_default_na=False, skip_blank_lines=True, encoding_errors="replace")
    mapping: Dict[str, str] = {}
    if index >= table.shape[1]:
        logger.warning("Annotation file %s has no column %d", path, index + 1)
    else:
        prefixes = table.iloc[:, 0].fillna("").str.strip()
        values = table.iloc[:, index].fillna("").str.strip()
        mapping = {prefix: value for prefix, value in zip(prefixes, values) if prefix and value}

    categories = sorted(set(mapping.values()))
    logger.info("Read %d annotated prefixes in %d categories", len(mapping), len(categories))
    return PathAnnotations(prefix_to_category=mapping, categories=categories,
                           colors=annotation_colors(categories))
