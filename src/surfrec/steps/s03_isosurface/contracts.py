"""I/O contracts for Step 03: Isosurface extraction."""

from typing import Optional

from pydantic import Field, InstanceOf

from surfrec.core.mesh import MeshTopology
from surfrec.core.step_base import StepIO
from surfrec.steps.s01_point_surface._surface import PointSetSurface
from surfrec.steps.s02_scalar_grid._grid import ScalarFieldGrid


class IsosurfaceInput(StepIO):
    grid: InstanceOf[ScalarFieldGrid] = Field(..., description="Grid with corner distances from s02")
    surface: Optional[InstanceOf[PointSetSurface]] = Field(
        None, description="Surface for tangent-plane vertex placement (PMC)"
    )


class IsosurfaceOutput(StepIO):
    mesh: InstanceOf[MeshTopology] = Field(..., description="Welded triangle mesh")
    num_vertices: int = Field(0, description="Mesh vertices")
    num_faces: int = Field(0, description="Mesh faces")
    num_degenerate: int = Field(0, description="Collapsed triangles dropped during extraction")
