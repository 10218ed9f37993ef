"""Configuration for Step 04: Planar cluster growing."""

from pydantic import BaseModel, Field


class PlanarClusteringConfig(BaseModel):
    normal_threshold: float = Field(
        30.0, ge=0, le=180, description="Max angle (degrees) between a face normal and its cluster normal"
    )
    iterative: bool = Field(False, description="Repeat growing, folding undersized clusters into neighbors")
    plane_iterations: int = Field(3, ge=1, description="Max regrow iterations (iterative mode)")
    min_plane_size: int = Field(7, ge=1, description="Clusters with fewer faces are released for regrowing")
