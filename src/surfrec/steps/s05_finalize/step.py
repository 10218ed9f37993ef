"""Step 05: Mesh finalization.

Computes vertex normals (reoriented against the input point normals when
configured), optional vertex colors, and assembles the terminal flat
mesh buffer.

Pipeline position: s04 (planar clustering) → s05 → output
"""

from __future__ import annotations

import logging
from typing import ClassVar

from surfrec.core.step_base import BaseStep

from ._finalizer import MeshFinalizer
from .config import FinalizeConfig
from .contracts import FinalizeInput, FinalizeOutput

logger = logging.getLogger(__name__)


class FinalizeStep(BaseStep[FinalizeInput, FinalizeOutput, FinalizeConfig]):
    name: ClassVar[str] = "finalize"
    input_type: ClassVar = FinalizeInput
    output_type: ClassVar = FinalizeOutput
    config_type: ClassVar = FinalizeConfig

    def validate_inputs(self, inputs: FinalizeInput) -> bool:
        if inputs.clusters is not None and inputs.clusters.num_faces != inputs.mesh.num_faces:
            logger.error(
                f"Cluster map covers {inputs.clusters.num_faces} faces, "
                f"mesh has {inputs.mesh.num_faces}"
            )
            return False
        if self.config.reorient_normals and inputs.surface is None:
            logger.warning("No surface given; vertex normals keep their face-derived orientation")
        return True

    def run(self, inputs: FinalizeInput) -> FinalizeOutput:
        finalizer = MeshFinalizer(self.config, surface=inputs.surface, workers=self.workers)
        mesh = finalizer.finalize(inputs.mesh, inputs.clusters)
        return FinalizeOutput(
            mesh=mesh,
            num_vertices=mesh.num_vertices,
            num_faces=mesh.num_faces,
            has_colors=mesh.has_colors,
        )
