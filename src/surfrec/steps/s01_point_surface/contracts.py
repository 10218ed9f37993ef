"""I/O contracts for Step 01: Point-set surface."""

from pydantic import Field, InstanceOf

from surfrec.core.contracts import PointBuffer
from surfrec.core.step_base import StepIO

from ._surface import PointSetSurface


class PointSurfaceInput(StepIO):
    points: InstanceOf[PointBuffer] = Field(
        ..., description="Input point cloud (positions + optional attributes)"
    )


class PointSurfaceOutput(StepIO):
    surface: InstanceOf[PointSetSurface] = Field(..., description="Surface handle with oriented normals")
    num_points: int = Field(0, description="Points in the surface index")
    num_normals_estimated: int = Field(0, description="Normals estimated (not taken from input)")
