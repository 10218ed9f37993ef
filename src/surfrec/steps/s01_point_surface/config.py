"""Configuration for Step 01: Point-set surface (search + normals)."""

from pydantic import BaseModel, Field


class PointSurfaceConfig(BaseModel):
    # Neighborhood sizes
    neighbor_count_normals: int = Field(10, ge=3, description="kn: neighbors for plane fitting")
    neighbor_count_interpolation: int = Field(
        10, ge=1, description="ki: neighbors for normal interpolation (smoothing)"
    )
    neighbor_count_distance: int = Field(
        5, ge=1, description="kd: neighbors forming the local tangent plane in distance queries"
    )

    # Normal estimation
    recalc_normals: bool = Field(False, description="Re-estimate normals even if the input has them")
    use_ransac: bool = Field(False, description="Fit neighborhood planes with RANSAC inlier voting")
    ransac_iterations: int = Field(20, ge=1, description="RANSAC hypotheses per neighborhood")
    ransac_seed: int = Field(0, description="Seed for RANSAC sampling (reproducible normals)")

    # Search structure
    search_tree: str = Field("scipy", description="kNN backend: 'scipy' (cKDTree) or 'open3d'")
