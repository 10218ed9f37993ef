"""I/O contracts for Step 05: Mesh finalization."""

from typing import Optional

from pydantic import Field, InstanceOf

from surfrec.core.cluster_map import ClusterMap
from surfrec.core.contracts import FinalMeshBuffer
from surfrec.core.mesh import MeshTopology
from surfrec.core.step_base import StepIO
from surfrec.steps.s01_point_surface._surface import PointSetSurface


class FinalizeInput(StepIO):
    mesh: InstanceOf[MeshTopology] = Field(..., description="Welded mesh from s03")
    clusters: Optional[InstanceOf[ClusterMap]] = Field(None, description="Planar clusters from s04")
    surface: Optional[InstanceOf[PointSetSurface]] = Field(
        None, description="Point surface for normal reorientation and point colors"
    )


class FinalizeOutput(StepIO):
    mesh: InstanceOf[FinalMeshBuffer] = Field(..., description="Flat, read-only mesh buffer")
    num_vertices: int = Field(0, description="Vertices in the final buffer")
    num_faces: int = Field(0, description="Faces in the final buffer")
    has_colors: bool = Field(False, description="Whether per-vertex colors were emitted")
