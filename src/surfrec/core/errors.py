"""Exception taxonomy for the reconstruction pipeline.

Component-local numeric edge cases (duplicate points, zero corner
distances, undersized clusters) never raise; they are absorbed where they
occur. Everything below aborts the current reconstruction only.
"""

from __future__ import annotations


class ReconstructionError(Exception):
    """Base class for all errors that abort a reconstruction run."""


class InsufficientNeighbors(ReconstructionError):
    """Too few points to estimate a normal or interpolate a surface locally."""


class UnsupportedConfiguration(ReconstructionError):
    """Unknown decomposition strategy or search tree backend name."""


class EmptyMeshError(ReconstructionError):
    """Extraction produced zero faces (input too sparse or grid too coarse)."""


class CancelledError(ReconstructionError):
    """Cancellation was observed at a stage boundary."""


class InternalInvariantViolation(ReconstructionError):
    """A structural invariant was broken (e.g. a face references a missing vertex)."""


class PipelineBusy(ReconstructionError):
    """A reconstruction is already in flight on this pipeline instance."""
