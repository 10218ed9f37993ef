"""Configuration for Step 02: Scalar field grid."""

from pydantic import BaseModel, Field


class ScalarGridConfig(BaseModel):
    voxel_size: float = Field(0.1, gt=0, description="Voxel edge length (scene units)")
    intersections: int = Field(
        0, ge=0, description="If > 0, target intersections along the bbox diagonal (overrides voxel_size)"
    )
    extrude: bool = Field(True, description="Pad the grid by one voxel beyond the point bounding box")
    chunk_size: int = Field(4096, ge=1, description="Corners per distance-evaluation task")

    @property
    def use_voxel_size(self) -> bool:
        return self.intersections <= 0

    @property
    def resolution(self) -> float:
        return self.voxel_size if self.use_voxel_size else float(self.intersections)
