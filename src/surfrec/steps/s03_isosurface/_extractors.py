"""Isosurface extraction strategies over a ScalarFieldGrid.

All strategies share the marching-cubes case tables and the vertex
welding scheme; they differ only in where a vertex is placed along a
crossed edge:

- ``MC``: linear interpolation of the two corner values
- ``PMC``: intersection of the edge with the local tangent plane of the
  point-set surface, falling back to linear placement when the plane is
  parallel to the edge or meets it outside the edge

Crossing vertices are keyed by edge identity (the pair of global corner
ids), so a vertex is created once and reused by every cell sharing that
edge. A crossing that lands on a corner is keyed by the corner instead,
which welds the vertices of all edges meeting there.
Cycles that the case tables fan around their center get one extra vertex
per cell at the mean of the cycle's crossing vertices.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import ClassVar

import numpy as np

from surfrec.core.errors import UnsupportedConfiguration
from surfrec.core.mesh import MeshTopology
from surfrec.utils.cube import EDGE_CORNERS

from ._case_tables import CENTER, CENTER_TABLE, CYCLE_TABLE, TRI_TABLE

logger = logging.getLogger(__name__)

# Parameter tolerance for snapping a crossing onto an edge endpoint.
_SNAP_EPS = 1e-9
_CASE_WEIGHTS = 1 << np.arange(8)


class IsosurfaceExtractor(ABC):
    """Turns the sign-change cells of a grid into a welded triangle mesh."""

    name: ClassVar[str] = ""

    def __init__(self, surface=None):
        self.surface = surface
        self.last_stats: dict[str, int] = {}

    @abstractmethod
    def edge_parameters(
        self, p0: np.ndarray, p1: np.ndarray, v0: np.ndarray, v1: np.ndarray
    ) -> np.ndarray:
        """Crossing parameter t in [0, 1] along each edge p0 → p1 with corner values v0, v1."""
        ...

    def extract(self, grid) -> MeshTopology:
        mesh = MeshTopology()
        mask = grid.sign_change_mask()
        cell_corners = grid.cell_corners[mask]  # (M, 8)
        if len(cell_corners) == 0:
            self.last_stats = {"cells": 0, "vertices": 0, "faces": 0, "degenerate": 0, "centers": 0}
            return mesh

        values = grid.corner_values
        inside = values[cell_corners] < 0
        cases = inside.astype(np.int64) @ _CASE_WEIGHTS

        # Crossed edges of every cell, as (low, high) global corner ids.
        ga = cell_corners[:, EDGE_CORNERS[:, 0]]
        gb = cell_corners[:, EDGE_CORNERS[:, 1]]
        crossed = inside[:, EDGE_CORNERS[:, 0]] != inside[:, EDGE_CORNERS[:, 1]]
        lo = np.minimum(ga, gb)[crossed]
        hi = np.maximum(ga, gb)[crossed]
        edges, inverse = np.unique(np.stack([lo, hi], axis=1), axis=0, return_inverse=True)

        positions = grid.corner_positions
        p0, p1 = positions[edges[:, 0]], positions[edges[:, 1]]
        t = self.edge_parameters(p0, p1, values[edges[:, 0]], values[edges[:, 1]])
        edge_vertex = self._weld(mesh, edges, p0, p1, t)

        cell_edge_vertex = np.full(crossed.shape, -1, dtype=np.int64)
        cell_edge_vertex[crossed] = edge_vertex[np.asarray(inverse).reshape(-1)]

        crossing_positions = mesh.vertices
        degenerate = 0
        centers = 0
        for case, row in zip(cases.tolist(), cell_edge_vertex.tolist()):
            if CENTER_TABLE[case]:
                row = row + [-1] * len(CYCLE_TABLE[case])
                for c in CENTER_TABLE[case]:
                    ids = [row[e] for e in CYCLE_TABLE[case][c]]
                    row[CENTER + c] = mesh.add_vertex(crossing_positions[ids].mean(axis=0))
                    centers += 1
            for e0, e1, e2 in TRI_TABLE[case]:
                a, b, c = row[e0], row[e1], row[e2]
                if a == b or b == c or a == c:
                    degenerate += 1
                    continue
                mesh.add_face(a, b, c)

        self.last_stats = {
            "cells": len(cell_corners),
            "vertices": mesh.num_vertices,
            "faces": mesh.num_faces,
            "degenerate": degenerate,
            "centers": centers,
        }
        logger.info(
            f"[{self.name}] {len(cell_corners)} cells → {mesh.num_vertices} vertices, "
            f"{mesh.num_faces} faces ({degenerate} collapsed triangles dropped)"
        )
        return mesh

    @staticmethod
    def _weld(
        mesh: MeshTopology, edges: np.ndarray, p0: np.ndarray, p1: np.ndarray, t: np.ndarray
    ) -> np.ndarray:
        """Create one vertex per crossed edge, sharing vertices that land on a corner."""
        corner_vertex: dict[int, int] = {}
        result = np.empty(len(edges), dtype=np.int64)
        points = p0 + t[:, None] * (p1 - p0)
        for i, (a, b) in enumerate(edges.tolist()):
            if t[i] <= _SNAP_EPS or t[i] >= 1.0 - _SNAP_EPS:
                corner, position = (a, p0[i]) if t[i] <= _SNAP_EPS else (b, p1[i])
                if corner not in corner_vertex:
                    corner_vertex[corner] = mesh.add_vertex(position)
                result[i] = corner_vertex[corner]
            else:
                result[i] = mesh.add_vertex(points[i])
        return result


def _linear_parameters(v0: np.ndarray, v1: np.ndarray) -> np.ndarray:
    # Corner signs differ, so v0 != v1.
    return np.clip(v0 / (v0 - v1), 0.0, 1.0)


class LinearEdgeExtractor(IsosurfaceExtractor):
    """Classic marching cubes: vertex at the linear zero of the corner values."""

    name = "MC"

    def edge_parameters(self, p0, p1, v0, v1):
        return _linear_parameters(v0, v1)


class TangentPlaneExtractor(IsosurfaceExtractor):
    """Vertex where the edge meets the surface's local tangent plane."""

    name = "PMC"

    def __init__(self, surface=None):
        if surface is None:
            raise UnsupportedConfiguration("PMC extraction needs a point-set surface")
        super().__init__(surface)

    def edge_parameters(self, p0, p1, v0, v1):
        linear = _linear_parameters(v0, v1)
        if len(p0) == 0:
            return linear
        direction = p1 - p0
        guess = p0 + linear[:, None] * direction
        centroids, normals, valid = self.surface.tangent_plane(guess)

        denom = np.einsum("ij,ij->i", normals, direction)
        length = np.linalg.norm(direction, axis=1)
        usable = valid & (np.abs(denom) > 1e-9 * length)
        t = np.divide(
            np.einsum("ij,ij->i", normals, centroids - p0),
            denom,
            out=linear.copy(),
            where=usable,
        )
        usable &= (t >= -_SNAP_EPS) & (t <= 1.0 + _SNAP_EPS)
        fallback = int(np.sum(~usable))
        if fallback:
            logger.debug(f"[PMC] {fallback}/{len(t)} edges fell back to linear placement")
        return np.where(usable, np.clip(t, 0.0, 1.0), linear)


EXTRACTORS: dict[str, type[IsosurfaceExtractor]] = {
    LinearEdgeExtractor.name: LinearEdgeExtractor,
    TangentPlaneExtractor.name: TangentPlaneExtractor,
}


def extractor_class(name: str) -> type[IsosurfaceExtractor]:
    """Resolve a decomposition name to its strategy class."""
    key = name.upper()
    if key not in EXTRACTORS:
        raise UnsupportedConfiguration(
            f"Unknown decomposition '{name}'. Available: {', '.join(sorted(EXTRACTORS))}"
        )
    return EXTRACTORS[key]


def create_extractor(name: str, surface=None) -> IsosurfaceExtractor:
    """Instantiate the extraction strategy for ``name``."""
    return extractor_class(name)(surface)
