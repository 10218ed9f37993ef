"""I/O contracts for Step 02: Scalar field grid."""

from pydantic import Field, InstanceOf

from surfrec.core.step_base import StepIO
from surfrec.steps.s01_point_surface._surface import PointSetSurface

from ._grid import ScalarFieldGrid


class ScalarGridInput(StepIO):
    surface: InstanceOf[PointSetSurface] = Field(..., description="Surface with oriented normals from s01")


class ScalarGridOutput(StepIO):
    grid: InstanceOf[ScalarFieldGrid] = Field(..., description="Grid with evaluated corner distances")
    num_cells: int = Field(0, description="Candidate cells")
    num_corners: int = Field(0, description="Distinct corners evaluated")
    num_sign_change_cells: int = Field(0, description="Cells crossed by the zero level set")
