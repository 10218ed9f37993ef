"""Point-set surface: kNN index over a point buffer with local plane queries.

The surface owns a frozen PointBuffer and a neighbor index built from it.
After ``calculate_normals()`` every point carries an oriented unit normal,
and ``distance()`` evaluates the signed distance of query positions to the
tangent plane fitted through their ``kd`` nearest points, weighted by
inverse distance to the query.
"""

from __future__ import annotations

import logging

import numpy as np

from surfrec.core.contracts import PointBuffer
from surfrec.core.errors import InsufficientNeighbors, InternalInvariantViolation
from surfrec.utils.geometry import bounding_box, normalize_rows
from surfrec.utils.parallel import map_chunks

from ._normals import (
    fill_undetermined,
    fit_neighborhood_planes,
    interpolate_normals,
    orient_by_propagation,
    orient_to_reference,
)
from ._search_tree import SearchTree, create_search_tree

logger = logging.getLogger(__name__)

MIN_POINTS = 3
QUERY_CHUNK = 4096
# Floor on neighbor distance for inverse-distance weights; a query on a sample picks that sample.
_MIN_WEIGHT_DISTANCE = 1e-12


class PointSetSurface:
    """Implicit surface model over an unorganized point sample."""

    def __init__(
        self,
        buffer: PointBuffer,
        neighbor_count_normals: int = 10,
        neighbor_count_interpolation: int = 10,
        neighbor_count_distance: int = 5,
        use_ransac: bool = False,
        *,
        search_tree: str = "scipy",
        workers: int = -1,
        ransac_iterations: int = 20,
        ransac_seed: int = 0,
    ):
        if len(buffer) < MIN_POINTS:
            raise InsufficientNeighbors(
                f"Need at least {MIN_POINTS} points to model a surface, got {len(buffer)}"
            )
        self.buffer = buffer.freeze()
        self.kn = neighbor_count_normals
        self.ki = neighbor_count_interpolation
        self.kd = neighbor_count_distance
        self.use_ransac = use_ransac
        self.search_tree_name = search_tree
        self.workers = workers
        self.ransac_iterations = ransac_iterations
        self.ransac_seed = ransac_seed

        self._tree: SearchTree | None = None
        self._normals: np.ndarray | None = None
        self._bbox: tuple[np.ndarray, np.ndarray] | None = None
        self._revision = 0
        self.num_estimated = 0
        self.rebuild_index()

    @classmethod
    def build(
        cls,
        points: PointBuffer | np.ndarray,
        neighbor_count_normals: int = 10,
        neighbor_count_interpolation: int = 10,
        neighbor_count_distance: int = 5,
        use_ransac: bool = False,
        **kwargs,
    ) -> "PointSetSurface":
        """Build the neighbor index over ``points`` and return the surface handle."""
        if not isinstance(points, PointBuffer):
            points = PointBuffer(points=points)
        return cls(
            points,
            neighbor_count_normals,
            neighbor_count_interpolation,
            neighbor_count_distance,
            use_ransac,
            **kwargs,
        )

    # ── index ─────────────────────────────────────────────────────────

    @property
    def points(self) -> np.ndarray:
        return self.buffer.points

    @property
    def num_points(self) -> int:
        return len(self.buffer)

    @property
    def revision(self) -> int:
        """Incremented by every index rebuild; query results from older revisions are stale."""
        return self._revision

    def rebuild_index(self) -> None:
        """(Re)build the neighbor index and drop everything derived from the old one."""
        self._tree = create_search_tree(self.search_tree_name, self.points)
        self._normals = None
        self._bbox = None
        self._revision += 1

    def knn(self, positions: np.ndarray, k: int) -> tuple[np.ndarray, np.ndarray]:
        """(distances, indices) of the k nearest points, evaluated in parallel chunks."""
        q = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        k = max(1, min(k, self.num_points))
        tree = self._tree

        def query(chunk: np.ndarray) -> np.ndarray:
            dist, idx = tree.knn(chunk, k)
            return np.concatenate([dist, idx.astype(np.float64)], axis=1)

        packed = map_chunks(query, q, QUERY_CHUNK, self.workers) if len(q) else np.zeros((0, 2 * k))
        return packed[:, :k], packed[:, k:].astype(np.int64)

    def nearest(self, positions: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """(indices, distances) of the single nearest point per query."""
        dist, idx = self.knn(positions, 1)
        return idx[:, 0], dist[:, 0]

    def bounding_box(self) -> tuple[np.ndarray, np.ndarray]:
        if self._bbox is None:
            self._bbox = bounding_box(self.points)
        return self._bbox

    # ── normals ───────────────────────────────────────────────────────

    @property
    def normals(self) -> np.ndarray:
        if self._normals is None:
            raise InternalInvariantViolation("Surface normals queried before calculate_normals()")
        return self._normals

    @property
    def has_normals(self) -> bool:
        return self._normals is not None

    def calculate_normals(self, recalc: bool = False) -> int:
        """Estimate an oriented normal at every point that lacks one.

        Points with a usable input normal keep it unless ``recalc`` is set.
        Estimated normals are fitted to the ``kn`` nearest neighbors,
        oriented, then smoothed over ``ki`` neighbors.

        Returns:
            Number of estimated normals.

        Raises:
            InsufficientNeighbors: No neighborhood contains three distinct,
                non-collinear points.
        """
        n = self.num_points
        normals = np.zeros((n, 3))
        given = np.zeros(n, dtype=bool)
        if self.buffer.has_normals and not recalc:
            normals, given = normalize_rows(self.buffer.normals)

        targets = np.where(~given)[0]
        if len(targets) == 0:
            self._set_normals(normals, 0)
            return 0

        _, nbr = self.knn(self.points[targets], self.kn)
        estimated, ok = fit_neighborhood_planes(
            self.points, nbr, self.use_ransac, self.ransac_iterations, self.ransac_seed
        )
        normals[targets] = estimated
        valid = given.copy()
        valid[targets] = ok
        if not valid.any():
            raise InsufficientNeighbors(
                f"No neighborhood of {self.kn} points spans a plane "
                f"({n} points are coincident or collinear)"
            )
        normals, valid = fill_undetermined(normals, valid, targets, nbr)
        if not valid.all():
            normals = self._fill_from_nearest_valid(normals, valid)
        logger.debug(f"Fitted {int(ok.sum())}/{len(targets)} neighborhood planes")

        if given.any():
            reference = np.where(given)[0]
            ref_tree = create_search_tree(self.search_tree_name, self.points[reference])
            _, ref_idx = ref_tree.knn(self.points[targets], 1)
            normals = orient_to_reference(normals, targets, normals[reference], ref_idx[:, 0])
        else:
            normals = orient_by_propagation(self.points, normals, nbr)

        _, nbr_i = self.knn(self.points[targets], self.ki)
        normals[targets] = interpolate_normals(normals, targets, nbr_i)

        self._set_normals(normals, len(targets))
        logger.info(f"Estimated {len(targets)} normals ({n - len(targets)} taken from input)")
        return len(targets)

    def _fill_from_nearest_valid(self, normals: np.ndarray, valid: np.ndarray) -> np.ndarray:
        source = np.where(valid)[0]
        missing = np.where(~valid)[0]
        tree = create_search_tree(self.search_tree_name, self.points[source])
        _, idx = tree.knn(self.points[missing], 1)
        normals[missing] = normals[source[idx[:, 0]]]
        return normals

    def _set_normals(self, normals: np.ndarray, estimated: int) -> None:
        normals = np.ascontiguousarray(normals, dtype=np.float64)
        normals.setflags(write=False)
        self._normals = normals
        self.num_estimated = estimated

    # ── local surface queries ─────────────────────────────────────────

    def tangent_plane(self, positions: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Local plane through the ``kd`` nearest points of each query.

        Neighbors are weighted by inverse distance to the query, so the plane
        stays anchored near the closest samples even when ``kd`` reaches far
        across a sparse cloud.

        Returns:
            (centroids (Q, 3), unit normals (Q, 3), valid (Q,)). The normal is
            the renormalized weighted mean of the neighbors' normals; rows
            whose normals cancel out are invalid.
        """
        normals = self.normals
        dist, idx = self.knn(positions, self.kd)
        weights = 1.0 / np.maximum(dist, _MIN_WEIGHT_DISTANCE)
        weights /= weights.sum(axis=1, keepdims=True)
        centroids = np.einsum("qk,qkj->qj", weights, self.points[idx])
        unit, valid = normalize_rows(np.einsum("qk,qkj->qj", weights, normals[idx]))
        return centroids, unit, valid

    def distance(self, positions: np.ndarray) -> np.ndarray:
        """Signed distance of each query to its local tangent plane.

        Positive on the side the normals point to. Degenerate neighborhoods
        (coincident points with cancelling normals) yield 0.
        """
        q = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        centroids, unit, valid = self.tangent_plane(q)
        dist = np.einsum("ij,ij->i", unit, q - centroids)
        dist[~valid] = 0.0
        return dist

    def __repr__(self) -> str:
        return (
            f"PointSetSurface(points={self.num_points}, kn={self.kn}, ki={self.ki}, "
            f"kd={self.kd}, tree={self.search_tree_name!r})"
        )
