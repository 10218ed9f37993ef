"""Module A: Vertex normals from incident face normals.

Each vertex normal is the area- or corner-angle-weighted sum of its
incident face normals, accumulated in parallel over vertex chunks and then
(optionally) flipped to agree with the nearest input point normal.
"""

from __future__ import annotations

import logging

import numpy as np

from surfrec.core.mesh import MeshTopology
from surfrec.utils.geometry import normalize_rows
from surfrec.utils.parallel import map_chunks

logger = logging.getLogger(__name__)

_UP = np.array([0.0, 0.0, 1.0])


def _corner_weights(mesh: MeshTopology, weighting: str) -> np.ndarray:
    if weighting == "area":
        return np.repeat(mesh.face_areas()[:, None], 3, axis=1)
    if weighting == "angle":
        return mesh.corner_angles()
    raise ValueError(f"Unknown normal weighting '{weighting}'")


def compute_vertex_normals(
    mesh: MeshTopology,
    face_normals: np.ndarray | None = None,
    weighting: str = "area",
    surface=None,
    reorient: bool = True,
    chunk_size: int = 8192,
    workers: int = -1,
) -> np.ndarray:
    """(V, 3) unit vertex normals.

    Vertices without usable incident faces take the nearest point normal
    when a surface is given, +Z otherwise.
    """
    nv = mesh.num_vertices
    if nv == 0:
        return np.zeros((0, 3))
    normals = mesh.face_normals() if face_normals is None else np.asarray(face_normals, dtype=np.float64)

    # Corners sorted by vertex: vertex v owns corners[offsets[v]:offsets[v + 1]].
    corner_vertex = mesh.faces.reshape(-1)
    corner_face = np.repeat(np.arange(mesh.num_faces), 3)
    contribution = normals[corner_face] * _corner_weights(mesh, weighting).reshape(-1)[:, None]
    order = np.argsort(corner_vertex, kind="stable")
    corner_vertex, contribution = corner_vertex[order], contribution[order]
    offsets = np.zeros(nv + 1, dtype=np.int64)
    np.cumsum(np.bincount(corner_vertex, minlength=nv), out=offsets[1:])

    def accumulate(vertex_ids: np.ndarray) -> np.ndarray:
        start, stop = int(vertex_ids[0]), int(vertex_ids[-1]) + 1
        lo, hi = offsets[start], offsets[stop]
        acc = np.zeros((stop - start, 3))
        np.add.at(acc, corner_vertex[lo:hi] - start, contribution[lo:hi])
        return acc

    summed = map_chunks(accumulate, np.arange(nv), chunk_size, workers)
    unit, valid = normalize_rows(summed)

    nearest = None
    if surface is not None and surface.has_normals and (reorient or not valid.all()):
        nearest, _ = surface.nearest(mesh.vertices)

    if not valid.all():
        missing = ~valid
        unit[missing] = surface.normals[nearest[missing]] if nearest is not None else _UP
        logger.debug(f"{int(missing.sum())} vertices without usable faces took a fallback normal")

    if reorient and nearest is not None:
        flip = np.einsum("ij,ij->i", unit, surface.normals[nearest]) < 0
        unit[flip] *= -1.0
        logger.info(f"Reoriented {int(flip.sum())}/{nv} vertex normals against the point normals")
    return unit
