"""
Path clustering: UPGMA dendrogram, tree cutting, density clustering and
medoid selection over a precomputed :class:`~gfalook.similarity.DistanceMatrix`.

The dendrogram is a flat list of merge records. Node ids ``0..n-1`` are the
leaves (path indices) and merge ``k`` creates node ``n + k``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Sequence

import numpy as np
from sklearn.cluster import DBSCAN

from .similarity import DistanceMatrix

logger = logging.getLogger(__name__)

# sklearn requires eps > 0; zero-distance neighbours are still within this
MIN_EPS = 1e-12
EPS_SCAN_STEP = 0.005
EPS_SCAN_MAX = 0.30


@dataclass(frozen=True)
class MergeRecord:
    """One UPGMA merge: two child node ids joined at ``height``."""
    left: int
    right: int
    height: float
    size: int


@dataclass
class ClusterTree:
    """Binary merge tree over ``n_leaves`` paths."""
    n_leaves: int
    merges: List[MergeRecord] = field(default_factory=list)

    @property
    def root(self) -> int:
        return self.n_leaves + len(self.merges) - 1 if self.merges else 0

    @property
    def max_height(self) -> float:
        return max((m.height for m in self.merges), default=0.0)

    @property
    def heights(self) -> List[float]:
        return [m.height for m in self.merges]

    def children(self, node: int) -> Optional[MergeRecord]:
        if node < self.n_leaves:
            return None
        return self.merges[node - self.n_leaves]

    def leaves(self, node: int) -> List[int]:
        """Leaf ids under ``node``, left subtree first."""
        out: List[int] = []
        stack = [node]
        while stack:
            current = stack.pop()
            record = self.children(current)
            if record is None:
                out.append(current)
            else:
                stack.append(record.right)
                stack.append(record.left)
        return out

    def leaf_order(self) -> List[int]:
        if self.n_leaves == 0:
            return []
        return self.leaves(self.root)

    def to_dict(self) -> Dict:
        return {
            "n_leaves": self.n_leaves,
            "merges": [[m.left, m.right, m.height, m.size] for m in self.merges],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ClusterTree":
        return cls(
            n_leaves=int(data["n_leaves"]),
            merges=[MergeRecord(int(l), int(r), float(h), int(s)) for l, r, h, s in data["merges"]],
        )


@dataclass
class ClusterAssignment:
    """Cluster id for every path (ids are consecutive from 0) plus medoids."""
    labels: np.ndarray
    medoids: List[int] = field(default_factory=list)

    @property
    def num_clusters(self) -> int:
        return int(self.labels.max()) + 1 if self.labels.size else 0

    def members(self) -> List[List[int]]:
        groups: List[List[int]] = [[] for _ in range(self.num_clusters)]
        for idx, label in enumerate(self.labels.tolist()):
            groups[label].append(idx)
        return groups

    def with_medoids(self, matrix: DistanceMatrix) -> "ClusterAssignment":
        return ClusterAssignment(
            labels=self.labels,
            medoids=[select_medoid(matrix, members) for members in self.members()],
        )


def _relabel(raw: Sequence[int]) -> np.ndarray:
    """Map arbitrary labels to 0.. in order of first appearance."""
    mapping: Dict[int, int] = {}
    out = np.empty(len(raw), dtype=np.int64)
    for i, label in enumerate(raw):
        if label not in mapping:
            mapping[label] = len(mapping)
        out[i] = mapping[label]
    return out


def _closest_pair(dists: np.ndarray, allowed: np.ndarray):
    """Return (i, j) of the smallest allowed distance, ties by (i + j, i)."""
    masked = np.where(allowed, dists, np.inf)
    best = masked.min()
    if not np.isfinite(best):
        return None
    ii, jj = np.nonzero(masked == best)
    order = np.lexsort((ii, ii + jj))
    k = order[0]
    return int(ii[k]), int(jj[k]), float(best)


def build_dendrogram(matrix: DistanceMatrix, constraint: Optional[Sequence[int]] = None) -> ClusterTree:
    """UPGMA over the distance matrix.

    Works on a private copy of the matrix; the merged cluster always keeps
    the lower slot, so slot ``i`` holds the cluster whose smallest path index
    is ``i`` and ``i + j`` is the combined path index used to break ties.
    With ``constraint`` (one label per path), merges inside the same label
    are preferred over merges across labels.
    """
    n = len(matrix)
    tree = ClusterTree(n_leaves=n)
    if n < 2:
        return tree

    dists = matrix.working_copy()
    active = np.ones(n, dtype=bool)
    node_of = np.arange(n, dtype=np.int64)
    sizes = np.ones(n, dtype=np.int64)
    upper = np.triu(np.ones((n, n), dtype=bool), k=1)
    labels = np.asarray(constraint) if constraint is not None else None

    for step in range(n - 1):
        allowed = upper & active[:, None] & active[None, :]
        pick = None
        if labels is not None:
            pick = _closest_pair(dists, allowed & (labels[:, None] == labels[None, :]))
        if pick is None:
            pick = _closest_pair(dists, allowed)
        i, j, height = pick

        si, sj = sizes[i], sizes[j]
        tree.merges.append(MergeRecord(int(node_of[i]), int(node_of[j]), height, int(si + sj)))

        merged = (dists[i] * si + dists[j] * sj) / (si + sj)
        dists[i, :] = merged
        dists[:, i] = merged
        dists[i, i] = 0.0
        active[j] = False
        sizes[i] = si + sj
        node_of[i] = n + step

    return tree


def cut_tree(tree: ClusterTree, threshold: float) -> ClusterAssignment:
    """Cluster paths by cutting the tree at ``threshold``.

    Walks down from the root; any subtree whose merge height is at most the
    threshold becomes one cluster, and leaves reached above it are singletons.
    Cluster ids follow the order of each cluster's smallest path index.
    """
    n = tree.n_leaves
    raw = np.zeros(n, dtype=np.int64)
    if n == 0:
        return ClusterAssignment(labels=raw)
    stack = [tree.root]
    while stack:
        node = stack.pop()
        record = tree.children(node)
        if record is None or record.height <= threshold:
            members = tree.leaves(node)
            raw[members] = min(members)
        else:
            stack.append(record.left)
            stack.append(record.right)
    return ClusterAssignment(labels=_relabel(raw.tolist()))


def density_cluster(matrix: DistanceMatrix, eps: float, min_points: int = 1) -> ClusterAssignment:
    """DBSCAN on the precomputed matrix; noise paths become singleton clusters.

    ``min_points`` counts the path itself, as sklearn's ``min_samples`` does.
    """
    n = len(matrix)
    if n == 0:
        return ClusterAssignment(labels=np.zeros(0, dtype=np.int64))
    model = DBSCAN(eps=max(eps, MIN_EPS), min_samples=min_points, metric="precomputed")
    labels = model.fit_predict(matrix.working_copy())
    raw = [int(label) if label >= 0 else -(idx + 1) for idx, label in enumerate(labels)]
    noise = sum(1 for label in labels if label < 0)
    if noise:
        logger.debug("%d noise paths kept as singleton clusters", noise)
    return ClusterAssignment(labels=_relabel(raw))


def select_medoid(matrix: DistanceMatrix, members: Sequence[int]) -> int:
    """Member with the smallest summed distance to the rest (first on ties)."""
    if not members:
        raise ValueError("cannot select the medoid of an empty cluster")
    idx = np.asarray(members, dtype=np.int64)
    sub = matrix.values[np.ix_(idx, idx)]
    return int(idx[int(np.argmin(sub.sum(axis=1)))])


def default_max_clusters(n_paths: int) -> int:
    return max(1, math.ceil(n_paths / 9))


def find_optimal_upgma_threshold(tree: ClusterTree, max_clusters: Optional[int] = None) -> float:
    """Largest merge height whose cut still yields at least ``max_clusters`` clusters."""
    if not tree.merges:
        return 0.0
    target = max_clusters or default_max_clusters(tree.n_leaves)
    heights = sorted(set(tree.heights), reverse=True)
    for height in heights:
        found = cut_tree(tree, height).num_clusters
        if found >= target:
            logger.debug("UPGMA auto-threshold: %.4f gives %d clusters (target: %d)", height, found, target)
            return height
    logger.debug("UPGMA using minimum threshold: %.4f", heights[-1])
    return heights[-1]


def find_optimal_eps(matrix: DistanceMatrix, max_clusters: Optional[int] = None, min_points: int = 1) -> float:
    """Scan eps upwards until the cluster count stabilizes below ``max_clusters``.

    A step is accepted when the count changes by at most one from the
    previous eps, or when it first drops to the target, and the count is
    within the target. Falls back to ``EPS_SCAN_MAX``.
    """
    n = len(matrix)
    if n == 0:
        return EPS_SCAN_MAX
    target = max_clusters or default_max_clusters(n)
    previous = density_cluster(matrix, 0.0, min_points).num_clusters
    logger.debug("DBSCAN eps scan: eps=0.000 -> %d clusters", previous)
    steps = int(round(EPS_SCAN_MAX / EPS_SCAN_STEP))
    for k in range(1, steps + 1):
        eps = round(k * EPS_SCAN_STEP, 6)
        current = density_cluster(matrix, eps, min_points).num_clusters
        stable = abs(previous - current) <= 1
        first_hit = previous > target >= current
        logger.debug("DBSCAN eps scan: eps=%.3f -> %d clusters", eps, current)
        if (stable or first_hit) and current <= target:
            return eps
        previous = current
    logger.debug("DBSCAN: no stabilization found, using fallback eps %.2f", EPS_SCAN_MAX)
    return EPS_SCAN_MAX


@dataclass
class ClusteringResult:
    """Row ordering and cluster bookkeeping for one run."""
    ordering: List[int]  # path indices in display order
    cluster_ids: List[int]  # cluster of each entry of ``ordering``
    assignment: ClusterAssignment  # per path index, clusters ranked largest first
    representatives: List[int]  # medoid path of each cluster
    cluster_sizes: List[int]
    tree: Optional[ClusterTree] = None
    threshold: Optional[float] = None
    skipped: bool = False

    @property
    def num_clusters(self) -> int:
        return len(self.cluster_sizes)


def _natural_order(n: int) -> ClusteringResult:
    labels = np.zeros(n, dtype=np.int64)
    return ClusteringResult(
        ordering=list(range(n)),
        cluster_ids=[0] * n,
        assignment=ClusterAssignment(labels=labels, medoids=[0] if n else []),
        representatives=[0] if n else [],
        cluster_sizes=[n] if n else [],
        skipped=True,
    )


def _greedy_order(matrix: DistanceMatrix, members: List[int], weights: Sequence[float]) -> List[int]:
    """Nearest-neighbour chain starting at the member with the largest weight."""
    start = max(members, key=lambda m: (weights[m], -members.index(m)))
    order = [start]
    remaining = [m for m in members if m != start]
    while remaining:
        current = order[-1]
        nxt = min(remaining, key=lambda m: matrix.values[current, m])
        order.append(nxt)
        remaining.remove(nxt)
    return order


def cluster_paths(
    matrix: DistanceMatrix,
    method: Literal["dbscan", "upgma"] = "dbscan",
    threshold: Optional[float] = None,
    upgma_threshold: Optional[float] = None,
    min_points: int = 1,
    max_clusters: Optional[int] = None,
    dendrogram: bool = False,
    weights: Optional[Sequence[float]] = None,
) -> ClusteringResult:
    """Cluster paths and derive their display order.

    ``threshold`` is a similarity for density clustering (eps = 1 - threshold);
    ``upgma_threshold`` is a fraction of the maximum merge height. Either is
    chosen automatically when unset. Clusters are ranked largest first.
    Rows follow the dendrogram leaf order when a tree is available and
    requested, otherwise members are chained greedily by nearest neighbour
    from the member with the largest ``weights`` entry (traversed bases).
    """
    n = len(matrix)
    if n < 2:
        logger.warning("Clustering needs at least two paths (got %d); keeping input order", n)
        return _natural_order(n)
    weights = list(weights) if weights is not None else [0.0] * n

    tree: Optional[ClusterTree] = None
    if method == "upgma":
        tree = build_dendrogram(matrix)
        if upgma_threshold is not None:
            cut = upgma_threshold * tree.max_height
        else:
            cut = find_optimal_upgma_threshold(tree, max_clusters)
        assignment = cut_tree(tree, cut)
        logger.debug("UPGMA cut at height %.4f gives %d clusters", cut, assignment.num_clusters)
    elif method == "dbscan":
        cut = 1.0 - threshold if threshold is not None else find_optimal_eps(matrix, max_clusters, min_points)
        assignment = density_cluster(matrix, cut, min_points)
        logger.debug("DBSCAN eps %.3f gives %d clusters", cut, assignment.num_clusters)
        if dendrogram:
            tree = build_dendrogram(matrix, constraint=assignment.labels)
    else:
        raise ValueError(f"Unknown clustering method: {method}")

    # rank clusters by size, largest first; ties keep first-appearance order
    groups = assignment.members()
    ranked = sorted(range(len(groups)), key=lambda c: -len(groups[c]))
    rank_of = {old: new for new, old in enumerate(ranked)}
    labels = np.array([rank_of[int(c)] for c in assignment.labels], dtype=np.int64)
    groups = [groups[c] for c in ranked]
    ranked_assignment = ClusterAssignment(labels=labels).with_medoids(matrix)

    if tree is not None and (dendrogram or method == "upgma"):
        ordering = tree.leaf_order()
    else:
        ordering = [m for members in groups for m in _greedy_order(matrix, members, weights)]

    result = ClusteringResult(
        ordering=ordering,
        cluster_ids=[int(labels[i]) for i in ordering],
        assignment=ranked_assignment,
        representatives=list(ranked_assignment.medoids),
        cluster_sizes=[len(g) for g in groups],
        tree=tree,
        threshold=cut,
    )
    logger.info("Clustered %d paths into %d clusters (%s)", n, result.num_clusters, method)
    return result


def cluster_table(result: ClusteringResult, names: Sequence[str]):
    """``path.name``/``cluster`` rows in display order."""
    import pandas as pd
    return pd.DataFrame({
        "path.name": [names[i] for i in result.ordering],
        "cluster": result.cluster_ids,
    })


def medoid_table(result: ClusteringResult, names: Sequence[str]):
    import pandas as pd
    return pd.DataFrame({
        "cluster": list(range(result.num_clusters)),
        "medoid.path": [names[i] for i in result.representatives],
        "cluster.size": result.cluster_sizes,
    })
