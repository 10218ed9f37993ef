"""surfrec core: pipeline runner, base step, mesh containers, shared contracts."""

from .step_base import BaseStep
from .contracts import FinalMeshBuffer, PipelineConfig, PointBuffer, ReconstructionConfig, StepMeta
from .errors import (
    CancelledError,
    EmptyMeshError,
    InsufficientNeighbors,
    InternalInvariantViolation,
    PipelineBusy,
    ReconstructionError,
    UnsupportedConfiguration,
)
from .mesh import MeshTopology
from .cluster_map import Cluster, ClusterMap
from .pipeline_runner import (
    PipelineState,
    ReconstructionPipeline,
    ReconstructionResult,
    load_pipeline_config,
    run_pipeline,
)
from .logging import setup_logging

__all__ = [
    "BaseStep",
    "FinalMeshBuffer",
    "PipelineConfig",
    "PointBuffer",
    "ReconstructionConfig",
    "StepMeta",
    "ReconstructionError",
    "InsufficientNeighbors",
    "UnsupportedConfiguration",
    "EmptyMeshError",
    "CancelledError",
    "InternalInvariantViolation",
    "PipelineBusy",
    "MeshTopology",
    "Cluster",
    "ClusterMap",
    "PipelineState",
    "ReconstructionPipeline",
    "ReconstructionResult",
    "load_pipeline_config",
    "run_pipeline",
    "setup_logging",
]
