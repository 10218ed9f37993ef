"""Module A: Greedy planar region growing over face adjacency.

Seeds are taken in ascending face handle order; each cluster grows
breadth-first through edge-adjacent faces whose normal lies within the
angular threshold of the cluster's reference normal. The iterative mode
releases undersized clusters and lets the surviving clusters absorb them
before reseeding what is left.
"""

from __future__ import annotations

import logging
from collections import deque

import numpy as np

from surfrec.core.cluster_map import ClusterMap
from surfrec.core.mesh import MeshTopology
from surfrec.utils.geometry import angle_deg, normalize_rows

logger = logging.getLogger(__name__)


def _grow(
    sources: list[int],
    label: int,
    reference: np.ndarray,
    labels: np.ndarray,
    adjacency: list[list[int]],
    normals: np.ndarray,
    cos_threshold: float,
) -> int:
    """Breadth-first expansion from ``sources`` into unassigned faces. Returns faces added."""
    queue = deque(sources)
    added = 0
    while queue:
        f = queue.popleft()
        for g in adjacency[f]:
            if labels[g] >= 0:
                continue
            if float(normals[g] @ reference) >= cos_threshold:
                labels[g] = label
                added += 1
                queue.append(g)
    return added


def _seed_unassigned(
    labels: np.ndarray,
    next_label: int,
    adjacency: list[list[int]],
    normals: np.ndarray,
    cos_threshold: float,
) -> int:
    for seed in range(len(labels)):
        if labels[seed] >= 0:
            continue
        labels[seed] = next_label
        _grow([seed], next_label, normals[seed], labels, adjacency, normals, cos_threshold)
        next_label += 1
    return next_label


def _canonical(labels: np.ndarray) -> np.ndarray:
    """Renumber labels by each cluster's first face, so partitions compare by value."""
    _, first, inverse = np.unique(labels, return_index=True, return_inverse=True)
    rank = np.empty(len(first), dtype=np.int64)
    rank[np.argsort(first, kind="stable")] = np.arange(len(first))
    return rank[np.asarray(inverse).reshape(-1)]


def _widest_deviation(cluster_map: ClusterMap, normals: np.ndarray) -> float:
    """Largest angle in degrees between a face normal and its cluster normal."""
    if cluster_map.num_faces == 0:
        return 0.0
    references = np.stack([c.normal for c in cluster_map])
    return float(angle_deg(normals, references[cluster_map.face_labels]).max())


def _prepare(mesh: MeshTopology, face_normals: np.ndarray | None, normal_threshold: float):
    normals = mesh.face_normals() if face_normals is None else np.asarray(face_normals, dtype=np.float64)
    if len(normals) != mesh.num_faces:
        raise ValueError(f"{len(normals)} face normals for {mesh.num_faces} faces")
    cos_threshold = float(np.cos(np.radians(normal_threshold)))
    return normals, cos_threshold


def grow_clusters(
    mesh: MeshTopology,
    face_normals: np.ndarray | None = None,
    normal_threshold: float = 30.0,
) -> ClusterMap:
    """Single-pass region growing against each cluster's seed normal.

    Args:
        mesh: Extracted mesh.
        face_normals: (F, 3) unit normals; computed from the mesh if omitted.
        normal_threshold: Max angle in degrees between a face and its seed.

    Returns:
        ClusterMap covering every face exactly once.
    """
    normals, cos_threshold = _prepare(mesh, face_normals, normal_threshold)
    labels = np.full(mesh.num_faces, -1, dtype=np.int64)
    count = _seed_unassigned(labels, 0, mesh.face_adjacency(), normals, cos_threshold)
    cluster_map = ClusterMap(labels, normals, mesh.face_areas())
    logger.info(
        f"Grew {count} clusters over {mesh.num_faces} faces "
        f"(threshold={normal_threshold}°, widest deviation={_widest_deviation(cluster_map, normals):.1f}°)"
    )
    return cluster_map


def grow_clusters_iterative(
    mesh: MeshTopology,
    face_normals: np.ndarray | None = None,
    normal_threshold: float = 30.0,
    max_iterations: int = 3,
    min_cluster_size: int = 7,
) -> ClusterMap:
    """Region growing repeated to fold small fragments into larger planes.

    Each iteration releases clusters with fewer than ``min_cluster_size``
    faces, regrows the surviving clusters (in id order) into the released
    faces against their area-weighted normal, then seeds new clusters from
    whatever remains. Stops early once an iteration leaves the partition
    unchanged.
    """
    normals, cos_threshold = _prepare(mesh, face_normals, normal_threshold)
    adjacency = mesh.face_adjacency()
    areas = mesh.face_areas()

    labels = np.full(mesh.num_faces, -1, dtype=np.int64)
    _seed_unassigned(labels, 0, adjacency, normals, cos_threshold)
    labels = _canonical(labels) if len(labels) else labels

    for iteration in range(max_iterations):
        sizes = np.bincount(labels) if len(labels) else np.zeros(0, dtype=np.int64)
        small = sizes < min_cluster_size
        released = small[labels] if len(labels) else np.zeros(0, dtype=bool)
        if not released.any():
            logger.debug(f"Iteration {iteration}: no undersized clusters")
            break

        kept = np.where(~small)[0]
        regrown = np.full_like(labels, -1)
        weighted = normals * areas[:, None]
        references, _ = normalize_rows(
            np.stack([weighted[labels == c].sum(axis=0) for c in kept]) if len(kept) else np.zeros((0, 3))
        )
        for new_id, old_id in enumerate(kept):
            members = np.where(labels == old_id)[0]
            regrown[members] = new_id
        for new_id, old_id in enumerate(kept):
            members = np.where(labels == old_id)[0].tolist()
            _grow(members, new_id, references[new_id], regrown, adjacency, normals, cos_threshold)
        _seed_unassigned(regrown, len(kept), adjacency, normals, cos_threshold)

        regrown = _canonical(regrown)
        changed = int(np.sum(regrown != labels))
        logger.debug(
            f"Iteration {iteration}: released {int(released.sum())} faces, {changed} reassigned"
        )
        labels = regrown
        if changed == 0:
            break

    cluster_map = ClusterMap(labels, normals, areas)
    logger.info(
        f"Iterative growing: {len(cluster_map)} clusters over {mesh.num_faces} faces "
        f"(threshold={normal_threshold}°, min size={min_cluster_size}, "
        f"widest deviation={_widest_deviation(cluster_map, normals):.1f}°)"
    )
    return cluster_map
