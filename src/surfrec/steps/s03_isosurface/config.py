"""Configuration for Step 03: Isosurface extraction."""

from pydantic import BaseModel, Field


class IsosurfaceConfig(BaseModel):
    decomposition: str = Field(
        "PMC",
        description="Extraction strategy: 'MC' (linear edge interpolation) or "
        "'PMC' (edge/tangent-plane intersection)",
    )
