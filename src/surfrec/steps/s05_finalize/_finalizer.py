"""Module C: Flat mesh buffer assembly.

Combines vertex normals, optional colors and cluster ids with the mesh
faces into the terminal FinalMeshBuffer: unreferenced vertices are dropped,
the rest are renumbered contiguously, and face winding is preserved.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from surfrec.core.cluster_map import ClusterMap
from surfrec.core.contracts import FinalMeshBuffer
from surfrec.core.errors import EmptyMeshError, InternalInvariantViolation
from surfrec.core.mesh import MeshTopology
from surfrec.utils.conversions import remove_duplicates

from ._painter import colors_from_clusters, colors_from_points
from ._vertex_normals import compute_vertex_normals
from .config import FinalizeConfig

logger = logging.getLogger(__name__)


class MeshFinalizer:
    """Turns a clustered MeshTopology into a FinalMeshBuffer."""

    def __init__(self, config: FinalizeConfig, surface=None, workers: int = -1):
        self.config = config
        self.surface = surface
        self.workers = workers

    def vertex_normals(self, mesh: MeshTopology) -> np.ndarray:
        return compute_vertex_normals(
            mesh,
            weighting=self.config.normal_weighting,
            surface=self.surface,
            reorient=self.config.reorient_normals,
            chunk_size=self.config.chunk_size,
            workers=self.workers,
        )

    def vertex_colors(self, mesh: MeshTopology, clusters: Optional[ClusterMap]) -> Optional[np.ndarray]:
        source = self.config.color_source
        if source == "points":
            if self.surface is None:
                logger.warning("Point colors requested but no surface available")
                return None
            return colors_from_points(mesh, self.surface)
        if source == "clusters":
            if clusters is None:
                logger.warning("Cluster colors requested but no clusters available")
                return None
            return colors_from_clusters(mesh, clusters)
        return None

    def apply(
        self,
        mesh: MeshTopology,
        vertex_normals: np.ndarray,
        color_map: Optional[np.ndarray] = None,
        face_clusters: Optional[np.ndarray] = None,
    ) -> FinalMeshBuffer:
        """Assemble the flat buffer.

        Raises:
            EmptyMeshError: The mesh has no faces.
            InternalInvariantViolation: A face references a missing vertex or
                the attribute arrays do not match the mesh.
        """
        if mesh.num_faces == 0:
            raise EmptyMeshError(
                "Reconstruction produced no faces (input too sparse or grid too coarse)"
            )
        mesh.validate()
        vertex_normals = np.asarray(vertex_normals, dtype=np.float64)
        if len(vertex_normals) != mesh.num_vertices:
            raise InternalInvariantViolation(
                f"{len(vertex_normals)} vertex normals for {mesh.num_vertices} vertices"
            )
        if color_map is not None and len(color_map) != mesh.num_vertices:
            raise InternalInvariantViolation(
                f"{len(color_map)} vertex colors for {mesh.num_vertices} vertices"
            )

        faces = mesh.faces
        referenced = np.unique(faces)
        remap = np.full(mesh.num_vertices, -1, dtype=np.int64)
        remap[referenced] = np.arange(len(referenced))
        dropped = mesh.num_vertices - len(referenced)
        if dropped:
            logger.debug(f"Dropped {dropped} unreferenced vertices")

        return FinalMeshBuffer(
            vertices=mesh.vertices[referenced],
            normals=vertex_normals[referenced],
            faces=remap[faces],
            colors=np.asarray(color_map, dtype=np.uint8)[referenced] if color_map is not None else None,
            face_clusters=face_clusters,
        )

    def finalize(self, mesh: MeshTopology, clusters: Optional[ClusterMap] = None) -> FinalMeshBuffer:
        """Vertex normals, colors, assembly and optional deduplication in one call."""
        if mesh.num_faces == 0:
            raise EmptyMeshError(
                "Reconstruction produced no faces (input too sparse or grid too coarse)"
            )
        normals = self.vertex_normals(mesh)
        colors = self.vertex_colors(mesh, clusters)
        labels = clusters.face_labels if clusters is not None else None
        buffer = self.apply(mesh, normals, colors, labels)

        if self.config.deduplicate:
            before = buffer.num_vertices
            buffer = remove_duplicates(buffer, include_colors=self.config.dedupe_include_colors)
            logger.info(f"Deduplicated vertices: {before} → {buffer.num_vertices}")

        meta = {
            "num_vertices": buffer.num_vertices,
            "num_faces": buffer.num_faces,
            "num_clusters": len(clusters) if clusters is not None else 0,
            "color_source": self.config.color_source if buffer.has_colors else "none",
        }
        return FinalMeshBuffer(
            vertices=buffer.vertices,
            normals=buffer.normals,
            faces=buffer.faces,
            colors=buffer.colors,
            face_clusters=buffer.face_clusters,
            meta=meta,
        )
