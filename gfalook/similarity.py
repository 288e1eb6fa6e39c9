"""
Pairwise path dissimilarity from bin profiles.

All metrics produce a symmetric matrix with a zero diagonal and entries in
[0, 1]:

- ``edr``: estimated difference rate ``(1 - J) / (1 + J)`` of the
  coverage-weighted Jaccard similarity ``J``, normalized by the largest
  observed value.
- ``jaccard``: ``1 - J``.
- ``correlation``: ``(1 - r) / 2`` of the Pearson correlation of the mean
  depth vectors.

By default only variable bins (bins whose coverage is not identical across
every path) enter the computation.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Literal

import numpy as np

from .binning import BinProfiles

logger = logging.getLogger(__name__)

Metric = Literal["edr", "jaccard", "correlation"]
METRICS = ("edr", "jaccard", "correlation")


@dataclass
class DistanceMatrix:
    """Symmetric path x path dissimilarity matrix. Read-only once built."""
    names: List[str]
    values: np.ndarray
    metric: str

    def __post_init__(self):
        self.values.setflags(write=False)

    def __len__(self) -> int:
        return len(self.names)

    def pairs(self) -> np.ndarray:
        """Upper-triangle entries in row-major order."""
        return self.values[np.triu_indices(len(self), k=1)]

    def working_copy(self) -> np.ndarray:
        """A private, writable copy for algorithms that shrink the matrix."""
        return np.array(self.values, dtype=np.float64, copy=True)

    def to_frame(self):
        import pandas as pd
        return pd.DataFrame(self.values, index=self.names, columns=self.names)


def variable_bins(matrix: np.ndarray) -> np.ndarray:
    """Mask of bins whose value differs between at least two rows."""
    if matrix.shape[0] == 0:
        return np.zeros(matrix.shape[1], dtype=bool)
    return (matrix != matrix[0]).any(axis=0)


def _weighted_jaccard_row(x: np.ndarray, i: int, totals: np.ndarray) -> np.ndarray:
    """Jaccard similarity between row ``i`` and every later row."""
    rest = x[i + 1:]
    inter = np.minimum(x[i], rest).sum(axis=1)
    union = totals[i] + totals[i + 1:] - inter
    sim = np.ones_like(inter)
    np.divide(inter, union, out=sim, where=union > 0)
    return sim


def _correlation_row(x: np.ndarray, i: int) -> np.ndarray:
    centered = x - x.mean(axis=1, keepdims=True)
    norms = np.sqrt((centered ** 2).sum(axis=1))
    rest = centered[i + 1:]
    dots = rest @ centered[i]
    denom = norms[i] * norms[i + 1:]
    r = np.zeros_like(dots)
    np.divide(dots, denom, out=r, where=denom > 0)
    # constant rows: identical vectors correlate perfectly, anything else is uncorrelated
    flat = denom == 0
    if flat.any():
        same = (x[i + 1:][flat] == x[i]).all(axis=1)
        r[flat] = np.where(same, 1.0, 0.0)
    return np.clip(r, -1.0, 1.0)


def compute_distances(
    profiles: BinProfiles,
    metric: Metric = "edr",
    use_all_bins: bool = False,
    jobs: int = 1,
) -> DistanceMatrix:
    """Build the distance matrix for every pair of profiled paths.

    Rows of the upper triangle are computed independently (in parallel when
    ``jobs > 1``) and mirrored; the result is deterministic for a given
    input order.
    """
    if metric not in METRICS:
        raise ValueError(f"Unknown distance metric: {metric}")
    n = profiles.n_paths
    source = profiles.mean_depth if metric == "correlation" else profiles.coverage
    if use_all_bins:
        x = np.asarray(source, dtype=np.float64)
    else:
        mask = variable_bins(profiles.coverage)
        logger.debug("Using %d of %d bins (variable bins only)", int(mask.sum()), profiles.n_bins)
        x = np.asarray(source[:, mask], dtype=np.float64)

    values = np.zeros((n, n), dtype=np.float64)
    totals = x.sum(axis=1)

    def fill(i: int) -> None:
        if metric == "correlation":
            d = (1.0 - _correlation_row(x, i)) / 2.0
        else:
            sim = _weighted_jaccard_row(x, i, totals)
            d = (1.0 - sim) / (1.0 + sim) if metric == "edr" else 1.0 - sim
        values[i, i + 1:] = d

    rows = range(max(n - 1, 0))
    if x.shape[1] == 0:
        # every profile is identical
        rows = range(0)
    if jobs > 1 and n > 2:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            list(executor.map(fill, rows))
    else:
        for i in rows:
            fill(i)

    if metric == "edr":
        max_edr = values.max() if n else 0.0
        if max_edr > 0:
            values /= max_edr
        logger.debug("Max EDR: %.6f", max_edr)

    values = np.triu(values, k=1)
    values = values + values.T
    np.clip(values, 0.0, 1.0, out=values)

    dm = DistanceMatrix(names=list(profiles.names), values=values, metric=metric)
    _log_distribution(dm)
    return dm


def _log_distribution(dm: DistanceMatrix) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    pairs = np.sort(dm.pairs())
    if pairs.size == 0:
        return
    logger.debug("Distance range: %.3f - %.3f", pairs[0], pairs[-1])
    if pairs.size >= 4:
        q1, median, q3 = np.quantile(pairs, [0.25, 0.5, 0.75])
        logger.debug("Distance quartiles: Q1=%.3f, median=%.3f, Q3=%.3f", q1, median, q3)
