"""Step 02: Scalar field grid.

Rasterizes candidate voxels around the input points and samples the
surface's signed distance at every distinct voxel corner.

Pipeline position: s01 (point surface) → s02 → s03 (isosurface)
"""

from __future__ import annotations

import logging
from typing import ClassVar

from surfrec.core.step_base import BaseStep

from ._grid import ScalarFieldGrid
from .config import ScalarGridConfig
from .contracts import ScalarGridInput, ScalarGridOutput

logger = logging.getLogger(__name__)


class ScalarGridStep(BaseStep[ScalarGridInput, ScalarGridOutput, ScalarGridConfig]):
    name: ClassVar[str] = "scalar_grid"
    input_type: ClassVar = ScalarGridInput
    output_type: ClassVar = ScalarGridOutput
    config_type: ClassVar = ScalarGridConfig

    def validate_inputs(self, inputs: ScalarGridInput) -> bool:
        if not inputs.surface.has_normals:
            logger.error("Surface has no normals; run point_surface first")
            return False
        return True

    def run(self, inputs: ScalarGridInput) -> ScalarGridOutput:
        cfg = self.config
        if cfg.use_voxel_size:
            logger.info(f"Voxel size: {cfg.voxel_size}")
        else:
            logger.info(f"Intersections along bbox diagonal: {cfg.intersections}")

        grid = ScalarFieldGrid.build(
            inputs.surface,
            cfg.resolution,
            cfg.use_voxel_size,
            cfg.extrude,
            chunk_size=cfg.chunk_size,
            workers=self.workers,
        )
        grid.calc_distance_values()
        crossing = int(grid.sign_change_mask().sum())
        logger.info(f"{crossing}/{len(grid)} cells contain a surface crossing")

        return ScalarGridOutput(
            grid=grid,
            num_cells=len(grid),
            num_corners=len(grid.corner_keys),
            num_sign_change_cells=crossing,
        )
