"""Sparse voxel grid sampling the surface's signed distance field.

Cells are addressed by integer keys (i, j, k); cell (i, j, k) spans
``origin + [i, i+1] * voxel`` along x (likewise y, z). Corners are shared
between up to eight cells and carry a global id, so every distinct corner
is evaluated once and edge identities can be derived from corner ids.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from surfrec.core.errors import InsufficientNeighbors, InternalInvariantViolation, UnsupportedConfiguration
from surfrec.utils.cube import CORNER_OFFSETS
from surfrec.utils.parallel import map_chunks

logger = logging.getLogger(__name__)

# 3×3×3 block around a voxel, center included.
_NEIGHBORHOOD = np.stack(
    np.meshgrid([-1, 0, 1], [-1, 0, 1], [-1, 0, 1], indexing="ij"), axis=-1
).reshape(-1, 3)


@dataclass(frozen=True)
class Cell:
    key: tuple[int, int, int]
    corner_ids: np.ndarray  # (8,) global corner ids in cube corner order
    values: np.ndarray  # (8,) signed distances
    has_sign_change: bool

    @property
    def case_index(self) -> int:
        """8-bit marching-cubes case: bit i set when corner i is inside (< 0)."""
        return int(np.dot(self.values < 0, 1 << np.arange(8)))


class ScalarFieldGrid(Mapping):
    """Lazily rasterized cells around the points of a PointSetSurface.

    A cell exists if and only if it lies within one voxel of an input point
    (and inside the grid extent); ``calc_distance_values`` fills the eight
    corner values of all cells at once.
    """

    def __init__(
        self,
        surface,
        resolution: float,
        use_voxel_size: bool = True,
        extrude: bool = True,
        *,
        chunk_size: int = 4096,
        workers: int = -1,
    ):
        if resolution <= 0:
            raise UnsupportedConfiguration(f"Grid resolution must be positive, got {resolution}")
        self.surface = surface
        self.extrude = extrude
        self.chunk_size = chunk_size
        self.workers = workers

        bb_min, bb_max = surface.bounding_box()
        diagonal = float(np.linalg.norm(bb_max - bb_min))
        if use_voxel_size:
            self.voxel_size = float(resolution)
        else:
            if diagonal <= 0:
                raise InsufficientNeighbors("All points coincide; cannot derive a voxel size")
            self.voxel_size = diagonal / float(resolution)

        self.origin = np.asarray(bb_min, dtype=np.float64)
        self.dims = (np.floor((bb_max - bb_min) / self.voxel_size).astype(np.int64) + 1)

        self.cell_keys = np.zeros((0, 3), dtype=np.int64)
        self.corner_keys = np.zeros((0, 3), dtype=np.int64)
        self.cell_corners = np.zeros((0, 8), dtype=np.int64)
        self.corner_values: np.ndarray | None = None
        self._index: dict[tuple[int, int, int], int] = {}

    @classmethod
    def build(
        cls,
        surface,
        resolution: float,
        use_voxel_size: bool = True,
        extrude: bool = True,
        **kwargs,
    ) -> "ScalarFieldGrid":
        """Create the grid and rasterize candidate cells from the surface points."""
        grid = cls(surface, resolution, use_voxel_size, extrude, **kwargs)
        grid.rasterize(surface.points)
        return grid

    # ── construction ──────────────────────────────────────────────────

    def rasterize(self, points: np.ndarray) -> int:
        """Mark the voxel of every point plus its 26 neighbors as candidate cells.

        Returns:
            Number of cells in the grid.
        """
        voxels = np.floor((np.asarray(points) - self.origin) / self.voxel_size).astype(np.int64)
        voxels = np.clip(voxels, 0, self.dims - 1)
        voxels = np.unique(voxels, axis=0)

        candidates = (voxels[:, None, :] + _NEIGHBORHOOD[None, :, :]).reshape(-1, 3)
        lo = -1 if self.extrude else 0
        hi = self.dims + 1 if self.extrude else self.dims
        inside = np.all((candidates >= lo) & (candidates < hi), axis=1)
        # np.unique along axis 0 sorts keys lexicographically.
        self.cell_keys = np.unique(candidates[inside], axis=0)

        corners = (self.cell_keys[:, None, :] + CORNER_OFFSETS[None, :, :]).reshape(-1, 3)
        self.corner_keys, inverse = np.unique(corners, axis=0, return_inverse=True)
        self.cell_corners = np.asarray(inverse, dtype=np.int64).reshape(len(self.cell_keys), 8)
        self.corner_values = None
        self._index = {tuple(k): i for i, k in enumerate(self.cell_keys.tolist())}

        logger.info(
            f"Rasterized {len(self.cell_keys)} cells, {len(self.corner_keys)} distinct corners "
            f"(voxel={self.voxel_size:.4g}, dims={self.dims.tolist()}, extrude={self.extrude})"
        )
        return len(self.cell_keys)

    @property
    def corner_positions(self) -> np.ndarray:
        return self.origin + self.corner_keys * self.voxel_size

    def calc_distance_values(self) -> np.ndarray:
        """Evaluate the signed distance at every distinct corner, in parallel chunks.

        Returns:
            (K,) corner values, indexed by global corner id.
        """
        positions = self.corner_positions
        values = map_chunks(self.surface.distance, positions, self.chunk_size, self.workers)
        values = np.asarray(values, dtype=np.float64).reshape(len(positions))
        values.setflags(write=False)
        self.corner_values = values
        logger.info(
            f"Evaluated {len(values)} corner distances "
            f"({int(np.sum(values < 0))} inside, {int(np.sum(values == 0))} on the surface)"
        )
        return values

    # ── queries ───────────────────────────────────────────────────────

    def cell_values(self) -> np.ndarray:
        """(C, 8) corner values per cell."""
        if self.corner_values is None:
            raise InternalInvariantViolation("calc_distance_values() has not been run")
        return self.corner_values[self.cell_corners]

    def sign_change_mask(self) -> np.ndarray:
        """(C,) cells whose corners are neither all inside nor all outside.

        A value of exactly 0 counts as outside.
        """
        inside = self.cell_values() < 0
        return inside.any(axis=1) & ~inside.all(axis=1)

    def sign_change_cells(self) -> list[Cell]:
        """Cells crossed by the zero level set, in lexicographic key order."""
        mask = self.sign_change_mask()
        return [self._cell(i) for i in np.where(mask)[0]]

    def _cell(self, i: int) -> Cell:
        corner_ids = self.cell_corners[i]
        values = self.corner_values[corner_ids] if self.corner_values is not None else np.zeros(8)
        inside = values < 0
        return Cell(
            key=tuple(int(c) for c in self.cell_keys[i]),
            corner_ids=corner_ids,
            values=values,
            has_sign_change=bool(inside.any() and not inside.all()),
        )

    def __getitem__(self, key) -> Cell:
        return self._cell(self._index[tuple(int(c) for c in key)])

    def __iter__(self) -> Iterator[tuple[int, int, int]]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return (
            f"ScalarFieldGrid(cells={len(self)}, voxel={self.voxel_size:.4g}, "
            f"dims={self.dims.tolist()})"
        )
