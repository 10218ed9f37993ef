"""Shared data contracts: point and mesh buffers, pipeline configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
from pydantic import BaseModel, Field

from surfrec.steps.s01_point_surface.config import PointSurfaceConfig
from surfrec.steps.s02_scalar_grid.config import ScalarGridConfig
from surfrec.steps.s03_isosurface.config import IsosurfaceConfig
from surfrec.steps.s04_planar_clustering.config import PlanarClusteringConfig
from surfrec.steps.s05_finalize.config import FinalizeConfig


def _as_readonly(array: np.ndarray | None) -> np.ndarray | None:
    if array is not None:
        array.setflags(write=False)
    return array


@dataclass
class PointBuffer:
    """Raw input points with optional per-point attributes.

    The caller owns the buffer for the duration of one reconstruction;
    ``freeze()`` is called when surface construction begins.
    """

    points: np.ndarray  # (N, 3) float64
    normals: Optional[np.ndarray] = None  # (N, 3) float64
    colors: Optional[np.ndarray] = None  # (N, 3) uint8
    intensities: Optional[np.ndarray] = None  # (N,) float64

    def __post_init__(self) -> None:
        self.points = np.array(self.points, dtype=np.float64).reshape(-1, 3)
        n = len(self.points)
        if self.normals is not None:
            self.normals = np.array(self.normals, dtype=np.float64)
            if self.normals.shape != (n, 3):
                raise ValueError(f"normals shape {self.normals.shape} does not match {n} points")
        if self.colors is not None:
            self.colors = np.array(self.colors, dtype=np.uint8)
            if self.colors.shape != (n, 3):
                raise ValueError(f"colors shape {self.colors.shape} does not match {n} points")
        if self.intensities is not None:
            self.intensities = np.array(self.intensities, dtype=np.float64).ravel()
            if len(self.intensities) != n:
                raise ValueError(
                    f"intensities length {len(self.intensities)} does not match {n} points"
                )

    def __len__(self) -> int:
        return len(self.points)

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    @property
    def has_colors(self) -> bool:
        return self.colors is not None

    @property
    def has_intensities(self) -> bool:
        return self.intensities is not None

    def freeze(self) -> "PointBuffer":
        for arr in (self.points, self.normals, self.colors, self.intensities):
            _as_readonly(arr)
        return self


@dataclass(frozen=True)
class FinalMeshBuffer:
    """Terminal, serializable mesh artifact. Arrays are read-only."""

    vertices: np.ndarray  # (V, 3) float64
    normals: np.ndarray  # (V, 3) float64
    faces: np.ndarray  # (F, 3) int64
    colors: Optional[np.ndarray] = None  # (V, 3) uint8
    face_clusters: Optional[np.ndarray] = None  # (F,) int64 cluster id per face
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "vertices", np.array(self.vertices, dtype=np.float64).reshape(-1, 3))
        object.__setattr__(self, "normals", np.array(self.normals, dtype=np.float64).reshape(-1, 3))
        object.__setattr__(self, "faces", np.array(self.faces, dtype=np.int64).reshape(-1, 3))
        if self.colors is not None:
            object.__setattr__(self, "colors", np.array(self.colors, dtype=np.uint8).reshape(-1, 3))
        if self.face_clusters is not None:
            object.__setattr__(self, "face_clusters", np.array(self.face_clusters, dtype=np.int64).ravel())

        nv = len(self.vertices)
        if len(self.normals) != nv:
            raise ValueError(f"{len(self.normals)} normals for {nv} vertices")
        if self.colors is not None and len(self.colors) != nv:
            raise ValueError(f"{len(self.colors)} colors for {nv} vertices")
        if self.face_clusters is not None and len(self.face_clusters) != len(self.faces):
            raise ValueError(f"{len(self.face_clusters)} cluster ids for {len(self.faces)} faces")

        for arr in (self.vertices, self.normals, self.faces, self.colors, self.face_clusters):
            _as_readonly(arr)

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)

    @property
    def num_faces(self) -> int:
        return len(self.faces)

    @property
    def has_colors(self) -> bool:
        return self.colors is not None


class StepMeta(BaseModel):
    """Timing and parameters of one executed stage, attached to run results."""

    step_name: str
    elapsed_seconds: float = 0.0
    params: dict[str, Any] = Field(default_factory=dict)


class ReconstructionConfig(BaseModel):
    """Configuration record threaded through every stage of one pipeline."""

    surface: PointSurfaceConfig = Field(default_factory=PointSurfaceConfig)
    grid: ScalarGridConfig = Field(default_factory=ScalarGridConfig)
    isosurface: IsosurfaceConfig = Field(default_factory=IsosurfaceConfig)
    clustering: PlanarClusteringConfig = Field(default_factory=PlanarClusteringConfig)
    finalize: FinalizeConfig = Field(default_factory=FinalizeConfig)
    workers: int = Field(-1, description="Worker threads for parallel stages (-1 = all cores)")


class PipelineConfig(BaseModel):
    """Top-level configuration loaded from a pipeline YAML file."""

    project_name: str = "surfrec_project"
    log_level: str = "INFO"
    reconstruction: ReconstructionConfig = Field(default_factory=ReconstructionConfig)
