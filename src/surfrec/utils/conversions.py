"""Conversions between pipeline buffers and flat message representations.

Besides plain field-by-field copies this covers vertex deduplication,
intensity → rainbow color ramps and the cluster/material partition
round trip (per-cluster color or texture index ↔ flat color arrays).
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from surfrec.core.contracts import FinalMeshBuffer, PointBuffer

logger = logging.getLogger(__name__)

# Distinct colors for cluster visualization (RGB, 0-255)
CLUSTER_PALETTE = np.array(
    [
        [230, 77, 77],  # red
        [77, 179, 230],  # sky blue
        [102, 217, 89],  # green
        [242, 179, 51],  # orange
        [153, 89, 217],  # purple
        [217, 217, 64],  # yellow
        [77, 217, 191],  # teal
        [230, 115, 179],  # pink
    ],
    dtype=np.uint8,
)
DEFAULT_COLOR = (153, 153, 153)


# ── deduplication ────────────────────────────────────────────────────

def remove_duplicates(buffer: FinalMeshBuffer, include_colors: bool = True) -> FinalMeshBuffer:
    """Merge vertices that share position and normal (and color, if included).

    The first occurrence of each vertex survives and keeps its attributes;
    surviving vertices keep their relative order. Faces that collapse onto a
    repeated vertex are dropped together with their cluster id.
    """
    columns = [buffer.vertices, buffer.normals]
    if include_colors and buffer.colors is not None:
        columns.append(buffer.colors.astype(np.float64))
    keys = np.concatenate(columns, axis=1)

    _, first, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    order = np.argsort(first, kind="stable")
    rank = np.empty(len(first), dtype=np.int64)
    rank[order] = np.arange(len(first))
    keep = first[order]
    remap = rank[inverse]

    faces = remap[buffer.faces]
    valid = (faces[:, 0] != faces[:, 1]) & (faces[:, 1] != faces[:, 2]) & (faces[:, 0] != faces[:, 2])
    clusters = buffer.face_clusters[valid] if buffer.face_clusters is not None else None

    removed = buffer.num_vertices - len(keep)
    if removed:
        logger.debug(f"Merged {removed} duplicate vertices, dropped {int((~valid).sum())} faces")
    return FinalMeshBuffer(
        vertices=buffer.vertices[keep],
        normals=buffer.normals[keep],
        faces=faces[valid],
        colors=buffer.colors[keep] if buffer.colors is not None else None,
        face_clusters=clusters,
        meta=dict(buffer.meta),
    )


# ── intensity → rainbow colors ───────────────────────────────────────

def intensity_to_rainbow_colors(
    values: np.ndarray, vmin: Optional[float] = None, vmax: Optional[float] = None
) -> np.ndarray:
    """Map scalars onto a blue → cyan → green → yellow → red ramp.

    Args:
        values: (N,) scalar intensities.
        vmin, vmax: Ramp bounds; taken from the data when omitted. Values
            outside the bounds are clamped.

    Returns:
        (N, 3) uint8 colors.
    """
    v = np.asarray(values, dtype=np.float64).ravel()
    if len(v) == 0:
        return np.zeros((0, 3), dtype=np.uint8)
    lo = float(np.min(v)) if vmin is None else float(vmin)
    hi = float(np.max(v)) if vmax is None else float(vmax)
    span = hi - lo
    t = np.clip((v - lo) / span, 0.0, 1.0) if span > 0 else np.zeros_like(v)

    # Hue runs from 240° (blue) down to 0° (red), full saturation and value.
    h = (1.0 - t) * 4.0
    sector = np.minimum(np.floor(h).astype(np.int64), 3)
    f = h - sector
    rgb = np.empty((len(v), 3))
    rising, falling = f, 1.0 - f
    one, zero = np.ones_like(f), np.zeros_like(f)
    table = [
        (one, rising, zero),  # red → yellow
        (falling, one, zero),  # yellow → green
        (zero, one, rising),  # green → cyan
        (zero, falling, one),  # cyan → blue
    ]
    for s, (r, g, b) in enumerate(table):
        mask = sector == s
        rgb[mask] = np.stack([r[mask], g[mask], b[mask]], axis=1)
    return np.round(rgb * 255).astype(np.uint8)


def intensity_to_vertex_colors(
    buffer: FinalMeshBuffer,
    intensities: np.ndarray,
    vmin: Optional[float] = None,
    vmax: Optional[float] = None,
) -> FinalMeshBuffer:
    """Return a copy of ``buffer`` with per-vertex rainbow colors."""
    intensities = np.asarray(intensities).ravel()
    if len(intensities) != buffer.num_vertices:
        raise ValueError(f"{len(intensities)} intensities for {buffer.num_vertices} vertices")
    return dataclasses.replace(buffer, colors=intensity_to_rainbow_colors(intensities, vmin, vmax))


def intensity_to_face_colors(
    buffer: FinalMeshBuffer,
    intensities: np.ndarray,
    vmin: Optional[float] = None,
    vmax: Optional[float] = None,
) -> np.ndarray:
    """(F, 3) rainbow colors, one per face."""
    intensities = np.asarray(intensities).ravel()
    if len(intensities) != buffer.num_faces:
        raise ValueError(f"{len(intensities)} intensities for {buffer.num_faces} faces")
    return intensity_to_rainbow_colors(intensities, vmin, vmax)


# ── cluster / material partition ─────────────────────────────────────

@dataclass
class MaterialGroup:
    """Faces sharing one material: a flat color or a texture reference."""

    faces: np.ndarray  # face indices, ascending
    color: tuple[int, int, int] = DEFAULT_COLOR
    texture_index: int = -1

    def __post_init__(self) -> None:
        self.faces = np.sort(np.asarray(self.faces, dtype=np.int64).ravel())
        self.color = tuple(int(c) for c in self.color)


def cluster_color(cluster_id: int) -> tuple[int, int, int]:
    return tuple(int(c) for c in CLUSTER_PALETTE[cluster_id % len(CLUSTER_PALETTE)])


def clusters_to_material_groups(buffer: FinalMeshBuffer) -> list[MaterialGroup]:
    """One material group per planar cluster, colored from the palette."""
    if buffer.face_clusters is None:
        raise ValueError("Mesh carries no face clusters")
    labels = buffer.face_clusters
    return [
        MaterialGroup(faces=np.where(labels == cid)[0], color=cluster_color(int(cid)))
        for cid in np.unique(labels)
    ]


def material_groups_to_face_colors(
    groups: list[MaterialGroup], num_faces: int, default: tuple[int, int, int] = DEFAULT_COLOR
) -> np.ndarray:
    """Flatten material groups into (F, 3) face colors.

    Faces outside every group get ``default``; a face listed by two groups
    is an error.
    """
    colors = np.tile(np.asarray(default, dtype=np.uint8), (num_faces, 1))
    seen = np.zeros(num_faces, dtype=bool)
    for group in groups:
        if len(group.faces) and (group.faces.min() < 0 or group.faces.max() >= num_faces):
            raise ValueError(f"Material group references faces outside [0, {num_faces})")
        if seen[group.faces].any():
            raise ValueError("Material groups overlap")
        seen[group.faces] = True
        colors[group.faces] = group.color
    return colors


def material_groups_to_vertex_colors(
    groups: list[MaterialGroup],
    faces: np.ndarray,
    num_vertices: int,
    default: tuple[int, int, int] = DEFAULT_COLOR,
) -> np.ndarray:
    """(V, 3) vertex colors; each vertex takes the color of its lowest incident face."""
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    face_colors = material_groups_to_face_colors(groups, len(faces), default)
    colors = np.tile(np.asarray(default, dtype=np.uint8), (num_vertices, 1))
    # Assign in reverse face order so the lowest face id writes last.
    for f in range(len(faces) - 1, -1, -1):
        colors[faces[f]] = face_colors[f]
    return colors


def material_groups_from_face_colors(face_colors: np.ndarray) -> list[MaterialGroup]:
    """Group faces by identical color, ordered by each color's first face."""
    face_colors = np.asarray(face_colors, dtype=np.uint8).reshape(-1, 3)
    if len(face_colors) == 0:
        return []
    unique, first, inverse = np.unique(face_colors, axis=0, return_index=True, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    return [
        MaterialGroup(faces=np.where(inverse == u)[0], color=tuple(unique[u]))
        for u in np.argsort(first, kind="stable")
    ]


# ── flat messages ────────────────────────────────────────────────────

def mesh_to_message(buffer: FinalMeshBuffer) -> dict[str, Any]:
    """Flat, JSON-serializable representation of a mesh buffer."""
    message: dict[str, Any] = {
        "vertices": buffer.vertices.reshape(-1).tolist(),
        "normals": buffer.normals.reshape(-1).tolist(),
        "faces": buffer.faces.reshape(-1).tolist(),
        "colors": buffer.colors.reshape(-1).tolist() if buffer.colors is not None else None,
        "face_clusters": buffer.face_clusters.tolist() if buffer.face_clusters is not None else None,
        "meta": dict(buffer.meta),
    }
    return message


def mesh_from_message(message: dict[str, Any]) -> FinalMeshBuffer:
    """Inverse of :func:`mesh_to_message`."""
    colors = message.get("colors")
    clusters = message.get("face_clusters")
    return FinalMeshBuffer(
        vertices=np.asarray(message["vertices"], dtype=np.float64).reshape(-1, 3),
        normals=np.asarray(message["normals"], dtype=np.float64).reshape(-1, 3),
        faces=np.asarray(message["faces"], dtype=np.int64).reshape(-1, 3),
        colors=np.asarray(colors, dtype=np.uint8).reshape(-1, 3) if colors is not None else None,
        face_clusters=np.asarray(clusters, dtype=np.int64) if clusters is not None else None,
        meta=dict(message.get("meta") or {}),
    )


def point_buffer_from_arrays(
    points: np.ndarray,
    normals: Optional[np.ndarray] = None,
    colors: Optional[np.ndarray] = None,
    intensities: Optional[np.ndarray] = None,
) -> PointBuffer:
    """Build a PointBuffer, accepting float colors in [0, 1] as well as bytes."""
    if colors is not None:
        colors = np.asarray(colors)
        if np.issubdtype(colors.dtype, np.floating):
            scale = 255.0 if colors.size and colors.max() <= 1.0 else 1.0
            colors = np.clip(np.round(colors * scale), 0, 255).astype(np.uint8)
    return PointBuffer(points=points, normals=normals, colors=colors, intensities=intensities)


def point_buffer_to_message(buffer: PointBuffer) -> dict[str, Any]:
    def flat(arr: Optional[np.ndarray]):
        return arr.reshape(-1).tolist() if arr is not None else None

    return {
        "points": flat(buffer.points),
        "normals": flat(buffer.normals),
        "colors": flat(buffer.colors),
        "intensities": flat(buffer.intensities),
    }


def point_buffer_from_message(message: dict[str, Any]) -> PointBuffer:
    def shaped(key: str, dtype, width: int):
        value = message.get(key)
        if value is None:
            return None
        arr = np.asarray(value, dtype=dtype)
        return arr.reshape(-1, width) if width > 1 else arr.ravel()

    return PointBuffer(
        points=shaped("points", np.float64, 3),
        normals=shaped("normals", np.float64, 3),
        colors=shaped("colors", np.uint8, 3),
        intensities=shaped("intensities", np.float64, 1),
    )
