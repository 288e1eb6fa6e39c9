"""Pytest configuration for the gfalook test suite."""

from __future__ import annotations

from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests._helpers import LINEAR_PATHS, LINEAR_SEGMENTS, build_graph, write_gfa  # noqa: E402


@pytest.fixture
def linear_graph():
    """Three segments (4, 6 and 10 bp) and three paths of 20, 14 and 16 bp.

    First-appearance offsets: segment 1 at 0, segment 2 at 4, segment 3 at 10.
    Segment 2 holds four uncalled bases.
    """

    return build_graph(LINEAR_SEGMENTS, LINEAR_PATHS)


@pytest.fixture
def identical_graph():
    """Three paths of equal length with the same traversal."""

    segments = (("a", "ACGTACGTAC"), ("b", "GGGGG"), ("c", "TTTTTTTTTT"))
    paths = tuple((f"sample{i}", "a+,b+,c+") for i in range(1, 4))
    return build_graph(segments, paths)


@pytest.fixture
def blocks_graph():
    """Four 5 bp segments; paths cover disjoint and gapped stretches of them."""

    segments = tuple((str(i), "AAAAA") for i in range(1, 5))
    paths = (
        ("pA", "1+"),
        ("pB", "3+"),
        ("pC", "1+,2+,3+,4+"),
        ("pD", "2+,4+"),
    )
    return build_graph(segments, paths)


@pytest.fixture
def gfa_file(tmp_path: Path) -> Path:
    """The linear graph written to disk."""

    return write_gfa(tmp_path / "linear.gfa", LINEAR_SEGMENTS, LINEAR_PATHS)
