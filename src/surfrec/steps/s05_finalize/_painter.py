"""Module B: Per-vertex colors from input points or planar clusters."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from surfrec.core.cluster_map import ClusterMap
from surfrec.core.mesh import MeshTopology
from surfrec.utils.conversions import (
    MaterialGroup,
    cluster_color,
    intensity_to_rainbow_colors,
    material_groups_to_vertex_colors,
)

logger = logging.getLogger(__name__)


def colors_from_points(mesh: MeshTopology, surface) -> Optional[np.ndarray]:
    """Nearest input point color, or the rainbow ramp of its intensity."""
    buffer = surface.buffer
    if not buffer.has_colors and not buffer.has_intensities:
        logger.warning("Input points carry neither colors nor intensities; mesh left uncolored")
        return None
    nearest, _ = surface.nearest(mesh.vertices)
    if buffer.has_colors:
        return buffer.colors[nearest].copy()
    # Ramp bounds come from the whole input so colors do not depend on mesh extent.
    values = buffer.intensities
    return intensity_to_rainbow_colors(values[nearest], float(values.min()), float(values.max()))


def colors_from_clusters(mesh: MeshTopology, clusters: ClusterMap) -> np.ndarray:
    """One palette color per cluster; a vertex shows its lowest incident face's cluster."""
    groups = [MaterialGroup(faces=c.faces, color=cluster_color(c.id)) for c in clusters]
    return material_groups_to_vertex_colors(groups, mesh.faces, mesh.num_vertices)
