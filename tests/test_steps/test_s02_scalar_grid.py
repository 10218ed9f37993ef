"""Tests for Step 02: Scalar field grid."""

import numpy as np
import pytest

from surfrec.core.errors import InsufficientNeighbors, InternalInvariantViolation, UnsupportedConfiguration
from surfrec.steps.s01_point_surface._surface import PointSetSurface
from surfrec.steps.s02_scalar_grid._grid import ScalarFieldGrid
from surfrec.steps.s02_scalar_grid.config import ScalarGridConfig
from surfrec.steps.s02_scalar_grid.contracts import ScalarGridInput
from surfrec.steps.s02_scalar_grid.step import ScalarGridStep


class _PlaneSurface:
    """Minimal surface stand-in: signed distance to z = height, with call accounting."""

    def __init__(self, points, height=0.5):
        self.points = np.asarray(points, dtype=float)
        self.height = height
        self.evaluated: list[np.ndarray] = []

    def bounding_box(self):
        return self.points.min(axis=0), self.points.max(axis=0)

    def distance(self, positions):
        self.evaluated.append(np.array(positions))
        return positions[:, 2] - self.height


def _cube_samples(n: int = 6) -> np.ndarray:
    t = np.linspace(0.0, 1.0, n)
    return np.stack(np.meshgrid(t, t, t, indexing="ij"), axis=-1).reshape(-1, 3)


class TestGridConstruction:
    def test_voxel_size_mode(self):
        grid = ScalarFieldGrid(_PlaneSurface(_cube_samples()), 0.25)
        assert grid.voxel_size == 0.25
        np.testing.assert_array_equal(grid.dims, [5, 5, 5])
        np.testing.assert_array_equal(grid.origin, [0, 0, 0])

    def test_intersection_mode_divides_diagonal(self):
        grid = ScalarFieldGrid(_PlaneSurface(_cube_samples()), 10, use_voxel_size=False)
        assert grid.voxel_size == pytest.approx(np.sqrt(3.0) / 10)

    def test_non_positive_resolution(self):
        with pytest.raises(UnsupportedConfiguration):
            ScalarFieldGrid(_PlaneSurface(_cube_samples()), 0.0)

    def test_coincident_points_in_intersection_mode(self):
        with pytest.raises(InsufficientNeighbors):
            ScalarFieldGrid(_PlaneSurface(np.ones((4, 3))), 10, use_voxel_size=False)

    def test_single_voxel_with_and_without_extrude(self):
        surface = _PlaneSurface(np.zeros((3, 3)))
        padded = ScalarFieldGrid.build(surface, 0.1)
        assert len(padded) == 27
        assert (-1, -1, -1) in padded and (1, 1, 1) in padded
        tight = ScalarFieldGrid.build(surface, 0.1, extrude=False)
        assert list(tight) == [(0, 0, 0)]

    def test_cells_only_near_points(self):
        pts = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]])
        grid = ScalarFieldGrid.build(_PlaneSurface(pts), 0.1, extrude=False)
        keys = np.array(list(grid))
        near_origin = np.all(keys <= 1, axis=1)
        near_far_corner = np.all(keys >= 9, axis=1)
        assert np.all(near_origin | near_far_corner)
        assert (5, 5, 5) not in grid

    def test_cell_keys_sorted(self):
        grid = ScalarFieldGrid.build(_PlaneSurface(_cube_samples()), 0.3)
        keys = [tuple(k) for k in grid.cell_keys.tolist()]
        assert keys == sorted(keys)

    def test_corners_are_shared(self):
        grid = ScalarFieldGrid.build(_PlaneSurface(np.zeros((3, 3))), 0.1)
        # 27 cells in a 3x3x3 block share a 4x4x4 lattice of corners.
        assert len(grid.corner_keys) == 64
        np.testing.assert_array_equal(
            grid.corner_keys[grid.cell_corners[0]], grid.cell_keys[0] + np.array(
                [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0], [0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 1, 1]]
            )
        )


class TestDistanceEvaluation:
    def test_each_corner_evaluated_once(self):
        surface = _PlaneSurface(_cube_samples(), height=0.55)
        grid = ScalarFieldGrid.build(surface, 0.2, chunk_size=7, workers=3)
        grid.calc_distance_values()
        evaluated = np.vstack(surface.evaluated)
        assert len(evaluated) == len(grid.corner_keys)
        assert len(np.unique(evaluated, axis=0)) == len(evaluated)

    def test_values_follow_corner_ids(self):
        surface = _PlaneSurface(_cube_samples(), height=0.55)
        grid = ScalarFieldGrid.build(surface, 0.2, chunk_size=5, workers=4)
        values = grid.calc_distance_values()
        np.testing.assert_allclose(values, grid.corner_positions[:, 2] - 0.55)
        assert not values.flags.writeable

    def test_cell_values_require_evaluation(self):
        grid = ScalarFieldGrid.build(_PlaneSurface(_cube_samples()), 0.2)
        with pytest.raises(InternalInvariantViolation):
            grid.cell_values()

    def test_sign_change_cells(self):
        grid = ScalarFieldGrid.build(_PlaneSurface(_cube_samples(), height=0.55), 0.2, extrude=False)
        grid.calc_distance_values()
        cells = grid.sign_change_cells()
        # The plane z = 0.55 crosses only the k = 2 layer (z in [0.4, 0.6]).
        assert cells and all(c.key[2] == 2 for c in cells)
        assert all(c.has_sign_change for c in cells)
        assert [c.key for c in cells] == sorted(c.key for c in cells)
        # Bottom four corners inside.
        assert {c.case_index for c in cells} == {0b00001111}

    def test_zero_value_counts_as_outside(self):
        grid = ScalarFieldGrid.build(_PlaneSurface(_cube_samples(), height=0.4), 0.2, extrude=False)
        grid.calc_distance_values()
        keys = {c.key[2] for c in grid.sign_change_cells()}
        # Corners exactly on z = 0.4 are outside, so only the layer below changes sign.
        assert keys == {1}

    def test_mapping_access(self):
        grid = ScalarFieldGrid.build(_PlaneSurface(_cube_samples(), height=0.55), 0.2)
        grid.calc_distance_values()
        cell = grid[(0, 0, 0)]
        assert cell.key == (0, 0, 0)
        assert not cell.has_sign_change
        with pytest.raises(KeyError):
            grid[(100, 0, 0)]


class TestScalarGridStep:
    def test_step_on_flat_patch(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        surface.calculate_normals()
        step = ScalarGridStep(config=ScalarGridConfig(voxel_size=0.05), workers=2)
        output = step.execute(ScalarGridInput(surface=surface))

        assert output.num_cells == len(output.grid)
        assert output.num_corners == len(output.grid.corner_keys)
        # Cells below the patch (k = -1) straddle z = 0.
        assert output.num_sign_change_cells == 22 * 22

    def test_step_requires_normals(self, flat_patch):
        surface = PointSetSurface.build(flat_patch)
        step = ScalarGridStep(config=ScalarGridConfig())
        with pytest.raises(ValueError):
            step.execute(ScalarGridInput(surface=surface))

    def test_intersections_override_voxel_size(self):
        cfg = ScalarGridConfig(voxel_size=0.3, intersections=20)
        assert not cfg.use_voxel_size
        assert cfg.resolution == 20.0
