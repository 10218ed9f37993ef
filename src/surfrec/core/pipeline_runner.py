"""Pipeline orchestrator: sequences the reconstruction steps per request.

One ReconstructionPipeline instance runs at most one reconstruction at a
time. Each successful stage advances the state machine

    IDLE → SURFACE_BUILT → GRID_BUILT → MESH_EXTRACTED → CLUSTERED → FINALIZED → DONE

and any failure or observed cancellation ends the run in FAILED without
partial output.
"""

from __future__ import annotations

import importlib
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
import yaml
from pydantic import BaseModel, ConfigDict, Field, InstanceOf

from .contracts import FinalMeshBuffer, PipelineConfig, PointBuffer, ReconstructionConfig, StepMeta
from .errors import CancelledError, InternalInvariantViolation, PipelineBusy, ReconstructionError

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    SURFACE_BUILT = "surface_built"
    GRID_BUILT = "grid_built"
    MESH_EXTRACTED = "mesh_extracted"
    CLUSTERED = "clustered"
    FINALIZED = "finalized"
    DONE = "done"
    FAILED = "failed"


# (step module, config attribute, state reached on success), in execution order
STAGES: tuple[tuple[str, str, PipelineState], ...] = (
    ("surfrec.steps.s01_point_surface", "surface", PipelineState.SURFACE_BUILT),
    ("surfrec.steps.s02_scalar_grid", "grid", PipelineState.GRID_BUILT),
    ("surfrec.steps.s03_isosurface", "isosurface", PipelineState.MESH_EXTRACTED),
    ("surfrec.steps.s04_planar_clustering", "clustering", PipelineState.CLUSTERED),
    ("surfrec.steps.s05_finalize", "finalize", PipelineState.FINALIZED),
)


class ReconstructionResult(BaseModel):
    """Outcome of one reconstruction request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    state: PipelineState
    mesh: Optional[InstanceOf[FinalMeshBuffer]] = None
    error_type: Optional[str] = None
    error: Optional[str] = None
    steps: list[StepMeta] = Field(default_factory=list)

    @property
    def elapsed_seconds(self) -> float:
        return sum(s.elapsed_seconds for s in self.steps)


def load_pipeline_config(config_path: Path) -> PipelineConfig:
    """Load and validate pipeline.yaml."""
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return PipelineConfig(**raw)


def import_step_class(module_path: str):
    """Dynamically import a step class from its module path.

    Expects module_path like 'surfrec.steps.s02_scalar_grid'
    and looks for a class ending in 'Step' in that module's step.py.
    """
    step_module = importlib.import_module(f"{module_path}.step")
    for attr_name in dir(step_module):
        attr = getattr(step_module, attr_name)
        if (
            isinstance(attr, type)
            and hasattr(attr, "run")
            and attr_name.endswith("Step")
            and attr_name != "BaseStep"
        ):
            return attr
    raise ImportError(f"No Step class found in {module_path}.step")


class ReconstructionPipeline:
    """Runs point buffer → surface → grid → mesh → clusters → flat mesh."""

    def __init__(self, config: Optional[ReconstructionConfig] = None):
        self.config = config or ReconstructionConfig()
        # Step construction resolves strategy names, so bad names fail here.
        self._steps = []
        for module_path, attr, state in STAGES:
            step_cls = import_step_class(module_path)
            step = step_cls(config=getattr(self.config, attr), workers=self.config.workers)
            self._steps.append((step, state))
        self._lock = threading.Lock()
        self._state = PipelineState.IDLE
        self.history: list[PipelineState] = [PipelineState.IDLE]

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _transition(self, state: PipelineState) -> None:
        logger.debug(f"State: {self._state.value} → {state.value}")
        self._state = state
        self.history.append(state)

    def reconstruct(
        self,
        points: PointBuffer | np.ndarray,
        cancel_event: Optional[threading.Event] = None,
        wait: bool = False,
    ) -> ReconstructionResult:
        """Run one full reconstruction.

        Args:
            points: Input points (a PointBuffer, or an (N, 3) position array).
            cancel_event: Checked at every stage boundary; once set, the run
                stops with a CancelledError result.
            wait: Block until a concurrent run finishes instead of raising.

        Raises:
            PipelineBusy: Another reconstruction is in flight and ``wait`` is False.
        """
        if not self._lock.acquire(blocking=wait):
            raise PipelineBusy("A reconstruction is already running on this pipeline")
        try:
            return self._run(points, cancel_event)
        finally:
            self._lock.release()

    def _run(self, points, cancel_event: Optional[threading.Event]) -> ReconstructionResult:
        self._state = PipelineState.IDLE
        self.history = [PipelineState.IDLE]
        metas: list[StepMeta] = []

        def check_cancel() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise CancelledError(f"Cancelled after state '{self._state.value}'")

        try:
            buffer = points if isinstance(points, PointBuffer) else PointBuffer(points=points)
            logger.info(f"Reconstruction started: {len(buffer)} points")
            check_cancel()

            outputs = {}
            for step, state in self._steps:
                step_input = self._build_input(step, buffer, outputs)
                outputs[step.name] = step.execute(step_input)
                metas.append(step.last_meta)
                self._transition(state)
                check_cancel()

            mesh = outputs["finalize"].mesh
            self._transition(PipelineState.DONE)
            logger.info(
                f"Reconstruction done: {mesh.num_vertices} vertices, {mesh.num_faces} faces "
                f"in {sum(m.elapsed_seconds for m in metas):.2f}s"
            )
            return ReconstructionResult(success=True, state=self._state, mesh=mesh, steps=metas)

        except InternalInvariantViolation as e:
            logger.exception(f"Internal invariant violated in state '{self._state.value}': {e}")
            return self._failed(e, metas)
        except ReconstructionError as e:
            logger.error(f"Reconstruction failed in state '{self._state.value}': {type(e).__name__}: {e}")
            return self._failed(e, metas)
        except Exception as e:
            logger.exception(f"Unexpected error in state '{self._state.value}': {e}")
            return self._failed(e, metas)

    def _failed(self, error: Exception, metas: list[StepMeta]) -> ReconstructionResult:
        self._transition(PipelineState.FAILED)
        return ReconstructionResult(
            success=False,
            state=self._state,
            error_type=type(error).__name__,
            error=str(error),
            steps=metas,
        )

    @staticmethod
    def _build_input(step, buffer: PointBuffer, outputs: dict[str, BaseModel]) -> BaseModel:
        """Wire previous step outputs into the input model of ``step``."""
        surface = outputs["point_surface"].surface if "point_surface" in outputs else None
        if step.name == "point_surface":
            return step.input_type(points=buffer)
        if step.name == "scalar_grid":
            return step.input_type(surface=surface)
        if step.name == "isosurface":
            return step.input_type(grid=outputs["scalar_grid"].grid, surface=surface)
        if step.name == "planar_clustering":
            return step.input_type(mesh=outputs["isosurface"].mesh)
        if step.name == "finalize":
            return step.input_type(
                mesh=outputs["isosurface"].mesh,
                clusters=outputs["planar_clustering"].clusters,
                surface=surface,
            )
        raise InternalInvariantViolation(f"No input wiring for step '{step.name}'")


def run_pipeline(config_path: Optional[Path], input_path: Path, output_path: Path) -> ReconstructionResult:
    """Reconstruct a PLY point cloud into a PLY mesh using a pipeline config file."""
    from surfrec.utils.io import read_point_buffer, write_mesh_ply

    pipeline_cfg = load_pipeline_config(config_path) if config_path else PipelineConfig()
    logger.info(f"Pipeline '{pipeline_cfg.project_name}': {input_path} → {output_path}")

    buffer = read_point_buffer(input_path)
    result = ReconstructionPipeline(pipeline_cfg.reconstruction).reconstruct(buffer)
    if result.success:
        write_mesh_ply(output_path, result.mesh)
    return result
