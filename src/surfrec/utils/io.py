"""I/O utilities: PLY point-cloud reader and PLY mesh writer."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from surfrec.core.contracts import FinalMeshBuffer, PointBuffer

logger = logging.getLogger(__name__)


def read_point_buffer(path: Path) -> PointBuffer:
    """Read a PLY point cloud (x/y/z, optional nx/ny/nz, red/green/blue, intensity)."""
    from plyfile import PlyData

    path = Path(path)
    plydata = PlyData.read(str(path))
    vertex = plydata["vertex"]
    prop_names = {p.name for p in vertex.properties}

    points = np.column_stack([vertex[c].astype(np.float64) for c in ("x", "y", "z")])
    normals = colors = intensities = None
    if {"nx", "ny", "nz"}.issubset(prop_names):
        normals = np.column_stack([vertex[c].astype(np.float64) for c in ("nx", "ny", "nz")])
    if {"red", "green", "blue"}.issubset(prop_names):
        colors = np.column_stack([vertex[c] for c in ("red", "green", "blue")]).astype(np.uint8)
    for name in ("intensity", "scalar_intensity"):
        if name in prop_names:
            intensities = vertex[name].astype(np.float64)
            break

    logger.info(
        f"Loaded {len(points)} points from {path.name} "
        f"(normals={normals is not None}, colors={colors is not None}, "
        f"intensity={intensities is not None})"
    )
    return PointBuffer(points=points, normals=normals, colors=colors, intensities=intensities)


def write_point_buffer(path: Path, buffer: PointBuffer) -> None:
    """Write a PointBuffer as binary PLY with whichever attributes it carries."""
    from plyfile import PlyData, PlyElement

    fields = [("x", "f8"), ("y", "f8"), ("z", "f8")]
    if buffer.has_normals:
        fields += [("nx", "f8"), ("ny", "f8"), ("nz", "f8")]
    if buffer.has_colors:
        fields += [("red", "u1"), ("green", "u1"), ("blue", "u1")]
    if buffer.has_intensities:
        fields += [("intensity", "f8")]

    data = np.empty(len(buffer), dtype=fields)
    data["x"], data["y"], data["z"] = buffer.points.T
    if buffer.has_normals:
        data["nx"], data["ny"], data["nz"] = buffer.normals.T
    if buffer.has_colors:
        data["red"], data["green"], data["blue"] = buffer.colors.T
    if buffer.has_intensities:
        data["intensity"] = buffer.intensities

    PlyData([PlyElement.describe(data, "vertex")]).write(str(path))


def write_mesh_ply(path: Path, mesh: FinalMeshBuffer, binary: bool = True) -> Path:
    """Write a FinalMeshBuffer as PLY (vertex normals, optional colors, faces)."""
    from plyfile import PlyData, PlyElement

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fields = [("x", "f4"), ("y", "f4"), ("z", "f4"), ("nx", "f4"), ("ny", "f4"), ("nz", "f4")]
    if mesh.has_colors:
        fields += [("red", "u1"), ("green", "u1"), ("blue", "u1")]
    vertex = np.empty(mesh.num_vertices, dtype=fields)
    vertex["x"], vertex["y"], vertex["z"] = mesh.vertices.T
    vertex["nx"], vertex["ny"], vertex["nz"] = mesh.normals.T
    if mesh.has_colors:
        vertex["red"], vertex["green"], vertex["blue"] = mesh.colors.T

    face = np.empty(mesh.num_faces, dtype=[("vertex_indices", "i4", (3,))])
    face["vertex_indices"] = mesh.faces.astype(np.int32)

    PlyData(
        [PlyElement.describe(vertex, "vertex"), PlyElement.describe(face, "face")],
        text=not binary,
    ).write(str(path))
    logger.info(f"Wrote mesh ({mesh.num_vertices} vertices, {mesh.num_faces} faces) to {path}")
    return path


def read_mesh_ply(path: Path) -> tuple[np.ndarray, np.ndarray]:
    """Read (vertices, faces) back from a PLY mesh."""
    from plyfile import PlyData

    plydata = PlyData.read(str(path))
    vertex = plydata["vertex"]
    vertices = np.column_stack([vertex[c].astype(np.float64) for c in ("x", "y", "z")])
    face = plydata["face"]
    if face.count == 0:
        return vertices, np.zeros((0, 3), dtype=np.int64)
    faces = np.vstack(face["vertex_indices"]).astype(np.int64)
    return vertices, faces
