"""Shared pytest fixtures for surfrec tests."""

import numpy as np
import pytest

from surfrec.core.contracts import PointBuffer, ReconstructionConfig


@pytest.fixture
def flat_patch() -> PointBuffer:
    """100 x 100 regular grid on z=0 with 0.01 spacing, all normals +Z."""
    xs = np.arange(100) * 0.01
    gx, gy = np.meshgrid(xs, xs, indexing="ij")
    points = np.column_stack([gx.ravel(), gy.ravel(), np.zeros(gx.size)])
    normals = np.tile([0.0, 0.0, 1.0], (len(points), 1))
    return PointBuffer(points=points, normals=normals)


@pytest.fixture
def sphere_points() -> np.ndarray:
    """1500 points on the unit sphere (Fibonacci lattice), no normals."""
    n = 1500
    i = np.arange(n) + 0.5
    phi = np.arccos(1.0 - 2.0 * i / n)
    theta = np.pi * (1.0 + 5.0 ** 0.5) * i
    return np.column_stack([np.cos(theta) * np.sin(phi), np.sin(theta) * np.sin(phi), np.cos(phi)])


@pytest.fixture
def box_points() -> np.ndarray:
    """Points sampled on the surface of the unit cube [0, 1]^3."""
    t = np.linspace(0.0, 1.0, 16)
    u, v = np.meshgrid(t, t, indexing="ij")
    u, v = u.ravel(), v.ravel()
    zeros, ones = np.zeros_like(u), np.ones_like(u)
    sides = [
        np.column_stack([u, v, zeros]),
        np.column_stack([u, v, ones]),
        np.column_stack([u, zeros, v]),
        np.column_stack([u, ones, v]),
        np.column_stack([zeros, u, v]),
        np.column_stack([ones, u, v]),
    ]
    return np.unique(np.vstack(sides), axis=0)


@pytest.fixture
def tetra_points() -> np.ndarray:
    """Four non-coplanar points."""
    return np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def flat_config() -> ReconstructionConfig:
    """Settings for the flat patch round trip: voxel 0.05, 5° clustering threshold."""
    cfg = ReconstructionConfig()
    return cfg.model_copy(
        update={
            "grid": cfg.grid.model_copy(update={"voxel_size": 0.05}),
            "clustering": cfg.clustering.model_copy(update={"normal_threshold": 5.0}),
            "workers": 2,
        }
    )


@pytest.fixture
def coarse_config() -> ReconstructionConfig:
    """Coarse grid for quick closed-surface reconstructions."""
    cfg = ReconstructionConfig()
    return cfg.model_copy(
        update={"grid": cfg.grid.model_copy(update={"voxel_size": 0.2}), "workers": 2}
    )
