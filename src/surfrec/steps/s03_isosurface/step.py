"""Step 03: Isosurface extraction.

Runs marching cubes over the sign-change cells of the scalar grid and
welds crossing vertices shared between neighboring cells.

Pipeline position: s02 (scalar grid) → s03 → s04 (planar clustering)
"""

from __future__ import annotations

import logging
from typing import ClassVar

from surfrec.core.step_base import BaseStep

from ._extractors import create_extractor, extractor_class
from .config import IsosurfaceConfig
from .contracts import IsosurfaceInput, IsosurfaceOutput

logger = logging.getLogger(__name__)


class IsosurfaceStep(BaseStep[IsosurfaceInput, IsosurfaceOutput, IsosurfaceConfig]):
    name: ClassVar[str] = "isosurface"
    input_type: ClassVar = IsosurfaceInput
    output_type: ClassVar = IsosurfaceOutput
    config_type: ClassVar = IsosurfaceConfig

    def __init__(self, config: IsosurfaceConfig, workers: int = -1):
        super().__init__(config, workers)
        # Unknown strategy names fail here, before any stage runs.
        self.extractor_type = extractor_class(config.decomposition)

    def validate_inputs(self, inputs: IsosurfaceInput) -> bool:
        if inputs.grid.corner_values is None:
            logger.error("Grid corner distances have not been evaluated")
            return False
        return True

    def run(self, inputs: IsosurfaceInput) -> IsosurfaceOutput:
        extractor = create_extractor(self.extractor_type.name, inputs.surface or inputs.grid.surface)
        mesh = extractor.extract(inputs.grid)
        mesh.validate()

        return IsosurfaceOutput(
            mesh=mesh,
            num_vertices=mesh.num_vertices,
            num_faces=mesh.num_faces,
            num_degenerate=extractor.last_stats.get("degenerate", 0),
        )
