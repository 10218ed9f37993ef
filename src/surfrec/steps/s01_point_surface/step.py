"""Step 01: Point-set surface.

Builds the kNN index over the input points and makes sure every point
carries an oriented normal, so later steps can query signed distances.

Pipeline position: input → s01 → s02 (scalar grid)
"""

from __future__ import annotations

import logging
from typing import ClassVar

from surfrec.core.step_base import BaseStep

from ._surface import PointSetSurface
from .config import PointSurfaceConfig
from .contracts import PointSurfaceInput, PointSurfaceOutput

logger = logging.getLogger(__name__)


class PointSurfaceStep(BaseStep[PointSurfaceInput, PointSurfaceOutput, PointSurfaceConfig]):
    name: ClassVar[str] = "point_surface"
    input_type: ClassVar = PointSurfaceInput
    output_type: ClassVar = PointSurfaceOutput
    config_type: ClassVar = PointSurfaceConfig

    def validate_inputs(self, inputs: PointSurfaceInput) -> bool:
        if len(inputs.points) == 0:
            logger.error("Point buffer is empty")
            return False
        return True

    def run(self, inputs: PointSurfaceInput) -> PointSurfaceOutput:
        cfg = self.config
        buffer = inputs.points
        logger.info(
            f"Building surface over {len(buffer)} points "
            f"(kn={cfg.neighbor_count_normals}, ki={cfg.neighbor_count_interpolation}, "
            f"kd={cfg.neighbor_count_distance}, tree={cfg.search_tree})"
        )

        surface = PointSetSurface.build(
            buffer,
            cfg.neighbor_count_normals,
            cfg.neighbor_count_interpolation,
            cfg.neighbor_count_distance,
            cfg.use_ransac,
            search_tree=cfg.search_tree,
            workers=self.workers,
            ransac_iterations=cfg.ransac_iterations,
            ransac_seed=cfg.ransac_seed,
        )

        if buffer.has_normals and not cfg.recalc_normals:
            logger.info("Input carries normals; estimating only missing ones")
        estimated = surface.calculate_normals(recalc=cfg.recalc_normals)

        return PointSurfaceOutput(
            surface=surface,
            num_points=surface.num_points,
            num_normals_estimated=estimated,
        )
