"""Step 04: Planar clustering.

Partitions the extracted mesh into regions of near-parallel face normals,
either in a single greedy pass or iteratively folding small fragments into
their larger neighbors.

Pipeline position: s03 (isosurface) → s04 → s05 (finalize)
"""

from __future__ import annotations

import logging
from typing import ClassVar

from surfrec.core.step_base import BaseStep

from ._region_growing import grow_clusters, grow_clusters_iterative
from .config import PlanarClusteringConfig
from .contracts import PlanarClusteringInput, PlanarClusteringOutput

logger = logging.getLogger(__name__)


class PlanarClusteringStep(
    BaseStep[PlanarClusteringInput, PlanarClusteringOutput, PlanarClusteringConfig]
):
    name: ClassVar[str] = "planar_clustering"
    input_type: ClassVar = PlanarClusteringInput
    output_type: ClassVar = PlanarClusteringOutput
    config_type: ClassVar = PlanarClusteringConfig

    def validate_inputs(self, inputs: PlanarClusteringInput) -> bool:
        if inputs.face_normals is not None and len(inputs.face_normals) != inputs.mesh.num_faces:
            logger.error(
                f"{len(inputs.face_normals)} face normals for {inputs.mesh.num_faces} faces"
            )
            return False
        return True

    def run(self, inputs: PlanarClusteringInput) -> PlanarClusteringOutput:
        cfg = self.config
        if cfg.iterative:
            clusters = grow_clusters_iterative(
                inputs.mesh,
                inputs.face_normals,
                cfg.normal_threshold,
                max_iterations=cfg.plane_iterations,
                min_cluster_size=cfg.min_plane_size,
            )
        else:
            clusters = grow_clusters(inputs.mesh, inputs.face_normals, cfg.normal_threshold)
        clusters.validate(inputs.mesh.num_faces)

        largest = clusters.largest()
        return PlanarClusteringOutput(
            clusters=clusters,
            num_clusters=len(clusters),
            largest_cluster_size=largest.size if largest is not None else 0,
        )
