"""k-nearest-neighbor search backends.

The index is read-only after construction and safe to query from several
threads at once.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import numpy as np

from surfrec.core.errors import UnsupportedConfiguration

logger = logging.getLogger(__name__)


class SearchTree(ABC):
    """kNN index over a fixed (N, 3) point array."""

    name: str = ""

    def __init__(self, points: np.ndarray):
        self.points = np.asarray(points, dtype=np.float64)

    def __len__(self) -> int:
        return len(self.points)

    @abstractmethod
    def knn(self, queries: np.ndarray, k: int, workers: int = 1) -> tuple[np.ndarray, np.ndarray]:
        """Return (distances (Q, k), indices (Q, k)), nearest first."""
        ...


class ScipySearchTree(SearchTree):
    """scipy ``cKDTree``; batch queries run in parallel via ``workers``."""

    name = "scipy"

    def __init__(self, points: np.ndarray):
        super().__init__(points)
        from scipy.spatial import cKDTree

        self._tree = cKDTree(self.points)

    def knn(self, queries: np.ndarray, k: int, workers: int = 1) -> tuple[np.ndarray, np.ndarray]:
        q = np.asarray(queries, dtype=np.float64).reshape(-1, 3)
        k = max(1, min(k, len(self.points)))
        dist, idx = self._tree.query(q, k=k, workers=workers)
        return (
            np.asarray(dist, dtype=np.float64).reshape(len(q), k),
            np.asarray(idx, dtype=np.int64).reshape(len(q), k),
        )


class Open3DSearchTree(SearchTree):
    """Open3D ``KDTreeFlann`` (FLANN) index. Queries are issued one by one."""

    name = "open3d"

    def __init__(self, points: np.ndarray):
        super().__init__(points)
        import open3d as o3d

        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        self._tree = o3d.geometry.KDTreeFlann(pcd)

    def knn(self, queries: np.ndarray, k: int, workers: int = 1) -> tuple[np.ndarray, np.ndarray]:
        q = np.asarray(queries, dtype=np.float64).reshape(-1, 3)
        k = max(1, min(k, len(self.points)))
        dist = np.empty((len(q), k))
        idx = np.empty((len(q), k), dtype=np.int64)
        for i, point in enumerate(q):
            _, found, sq_dist = self._tree.search_knn_vector_3d(point, k)
            idx[i] = np.asarray(found, dtype=np.int64)
            dist[i] = np.sqrt(np.asarray(sq_dist))
        return dist, idx


SEARCH_TREES: dict[str, type[SearchTree]] = {
    ScipySearchTree.name: ScipySearchTree,
    Open3DSearchTree.name: Open3DSearchTree,
}


def create_search_tree(name: str, points: np.ndarray) -> SearchTree:
    """Instantiate a search tree backend by name."""
    key = name.lower()
    if key not in SEARCH_TREES:
        raise UnsupportedConfiguration(
            f"Unknown search tree '{name}'. Available: {', '.join(sorted(SEARCH_TREES))}"
        )
    tree = SEARCH_TREES[key](points)
    logger.debug(f"Built {key} search tree over {len(points)} points")
    return tree
