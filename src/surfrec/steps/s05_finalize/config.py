"""Configuration for Step 05: Mesh finalization."""

from typing import Literal

from pydantic import BaseModel, Field


class FinalizeConfig(BaseModel):
    # Vertex normals
    normal_weighting: Literal["area", "angle"] = Field(
        "area", description="Weight incident face normals by face area or corner angle"
    )
    reorient_normals: bool = Field(
        True, description="Flip vertex normals to agree with the nearest input point normal"
    )
    chunk_size: int = Field(8192, ge=1, description="Vertices per normal-averaging task")

    # Colors
    color_source: Literal["none", "points", "clusters"] = Field(
        "none",
        description="'points': nearest input color (or intensity rainbow), "
        "'clusters': one palette color per planar cluster",
    )

    # Deduplication
    deduplicate: bool = Field(False, description="Merge vertices sharing position and normal (and color)")
    dedupe_include_colors: bool = Field(True, description="Treat color as part of vertex identity")
