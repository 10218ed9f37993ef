"""Partition of mesh faces into disjoint planar clusters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np

from .errors import InternalInvariantViolation


@dataclass(frozen=True)
class Cluster:
    id: int
    faces: np.ndarray  # ascending face handles
    normal: np.ndarray  # area-weighted average unit normal

    @property
    def size(self) -> int:
        return len(self.faces)


class ClusterMap:
    """Face → cluster assignment with per-cluster normal and size.

    Cluster ids are contiguous and ordered by each cluster's smallest face
    handle, so they are stable for a fixed mesh and threshold.
    """

    def __init__(self, face_labels: np.ndarray, face_normals: np.ndarray, face_areas: np.ndarray):
        labels = np.asarray(face_labels, dtype=np.int64)
        if len(labels) and labels.min() < 0:
            missing = int(np.sum(labels < 0))
            raise InternalInvariantViolation(f"{missing} faces left without a cluster")

        # Renumber so cluster ids follow the first face of each cluster.
        _, first_index, inverse = np.unique(labels, return_index=True, return_inverse=True)
        order = np.argsort(first_index, kind="stable")
        rank = np.empty_like(order)
        rank[order] = np.arange(len(order))
        self._labels = rank[inverse].astype(np.int64).ravel()
        self._labels.setflags(write=False)

        self._clusters: list[Cluster] = []
        if len(self._labels) == 0:
            return
        members = np.argsort(self._labels, kind="stable")
        bounds = np.searchsorted(self._labels[members], np.arange(len(order) + 1))
        normals = np.asarray(face_normals, dtype=np.float64)
        weighted = normals * np.asarray(face_areas, dtype=np.float64)[:, None]
        for cid in range(len(order)):
            faces = members[bounds[cid]:bounds[cid + 1]]
            faces.setflags(write=False)
            self._clusters.append(
                Cluster(id=cid, faces=faces, normal=_unit(weighted[faces].sum(axis=0), normals[faces]))
            )

    @property
    def face_labels(self) -> np.ndarray:
        return self._labels

    @property
    def num_faces(self) -> int:
        return len(self._labels)

    @property
    def sizes(self) -> np.ndarray:
        return np.array([c.size for c in self._clusters], dtype=np.int64)

    def cluster_of(self, face: int) -> int:
        return int(self._labels[face])

    def largest(self) -> Cluster | None:
        if not self._clusters:
            return None
        return max(self._clusters, key=lambda c: (c.size, -c.id))

    def validate(self, num_faces: int) -> None:
        """Check the partition invariant against the mesh face count."""
        if self.num_faces != num_faces:
            raise InternalInvariantViolation(
                f"Cluster map covers {self.num_faces} faces, mesh has {num_faces}"
            )
        if int(self.sizes.sum()) != num_faces:
            raise InternalInvariantViolation("Cluster sizes do not sum to the face count")

    def __len__(self) -> int:
        return len(self._clusters)

    def __getitem__(self, cluster_id: int) -> Cluster:
        return self._clusters[cluster_id]

    def __iter__(self) -> Iterator[Cluster]:
        return iter(self._clusters)


def _unit(vector: np.ndarray, fallback: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm > 1e-12:
        return vector / norm
    # Zero-area clusters: plain average of the member normals.
    mean = np.asarray(fallback).mean(axis=0) if len(fallback) else np.zeros(3)
    norm = np.linalg.norm(mean)
    return mean / norm if norm > 1e-12 else np.array([0.0, 0.0, 1.0])
