"""Tests for Step 01: Point-set surface (search tree, normals, distance queries)."""

import numpy as np
import pytest

from surfrec.core.contracts import PointBuffer
from surfrec.core.errors import InsufficientNeighbors, InternalInvariantViolation, UnsupportedConfiguration
from surfrec.steps.s01_point_surface._normals import (
    fill_undetermined,
    fit_neighborhood_planes,
    orient_to_reference,
)
from surfrec.steps.s01_point_surface._search_tree import ScipySearchTree, create_search_tree
from surfrec.steps.s01_point_surface._surface import PointSetSurface
from surfrec.steps.s01_point_surface.config import PointSurfaceConfig
from surfrec.steps.s01_point_surface.contracts import PointSurfaceInput
from surfrec.steps.s01_point_surface.step import PointSurfaceStep


def _has_open3d() -> bool:
    try:
        import open3d  # noqa: F401
        return True
    except ImportError:
        return False


needs_open3d = pytest.mark.skipif(not _has_open3d(), reason="open3d not installed")


def _line_points(n: int = 6) -> np.ndarray:
    return np.column_stack([np.arange(n, dtype=float), np.zeros(n), np.zeros(n)])


class TestSearchTree:
    def test_knn_sorted_nearest_first(self):
        rng = np.random.default_rng(0)
        pts = rng.random((200, 3))
        tree = create_search_tree("scipy", pts)
        dist, idx = tree.knn(pts[:10], 5)
        assert dist.shape == (10, 5) and idx.shape == (10, 5)
        np.testing.assert_array_equal(idx[:, 0], np.arange(10))
        assert np.all(np.diff(dist, axis=1) >= 0)

    def test_k_clamped_to_point_count(self):
        tree = ScipySearchTree(np.eye(3))
        dist, idx = tree.knn(np.zeros((1, 3)), 10)
        assert idx.shape == (1, 3)

    def test_unknown_backend(self):
        with pytest.raises(UnsupportedConfiguration):
            create_search_tree("balltree", np.eye(3))

    @needs_open3d
    def test_open3d_matches_scipy(self):
        rng = np.random.default_rng(1)
        pts = rng.random((300, 3))
        queries = rng.random((20, 3))
        d_scipy, i_scipy = create_search_tree("scipy", pts).knn(queries, 4)
        d_o3d, i_o3d = create_search_tree("open3d", pts).knn(queries, 4)
        np.testing.assert_allclose(d_o3d, d_scipy, atol=1e-9)
        np.testing.assert_array_equal(i_o3d, i_scipy)


class TestPlaneFitting:
    def test_flat_neighborhoods(self, flat_patch):
        tree = ScipySearchTree(flat_patch.points)
        _, nbr = tree.knn(flat_patch.points[:50], 10)
        normals, valid = fit_neighborhood_planes(flat_patch.points, nbr)
        assert valid.all()
        np.testing.assert_allclose(np.abs(normals[:, 2]), 1.0, atol=1e-9)

    def test_collinear_neighborhood_is_invalid(self):
        pts = _line_points()
        nbr = np.tile(np.arange(6), (6, 1))
        normals, valid = fit_neighborhood_planes(pts, nbr)
        assert not valid.any()
        np.testing.assert_array_equal(normals, 0.0)

    def test_ransac_ignores_outlier(self):
        rng = np.random.default_rng(2)
        plane = np.column_stack([rng.random(11), rng.random(11), np.zeros(11)])
        pts = np.vstack([plane, [[0.5, 0.5, 0.4]]])
        nbr = np.arange(12)[None, :]
        plain, _ = fit_neighborhood_planes(pts, nbr)
        robust, valid = fit_neighborhood_planes(pts, nbr, use_ransac=True, iterations=50, seed=0)
        assert valid.all()
        assert abs(robust[0, 2]) > abs(plain[0, 2])
        assert abs(robust[0, 2]) == pytest.approx(1.0, abs=1e-9)

    def test_fill_undetermined_uses_nearest_determined(self):
        normals = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
        valid = np.array([False, True, True])
        nbr = np.array([[0, 2, 1], [1, 0, 2], [2, 0, 1]])
        out, filled = fill_undetermined(normals, valid, np.arange(3), nbr)
        assert filled.all()
        np.testing.assert_array_equal(out[0], [1.0, 0.0, 0.0])

    def test_orient_to_reference_flips_disagreeing(self):
        normals = np.array([[0.0, 0.0, -1.0], [0.0, 0.0, 1.0]])
        out = orient_to_reference(normals, np.array([0, 1]), np.array([[0.0, 0.0, 1.0]]), np.array([0, 0]))
        np.testing.assert_array_equal(out[:, 2], [1.0, 1.0])


class TestPointSetSurface:
    def test_too_few_points(self):
        with pytest.raises(InsufficientNeighbors):
            PointSetSurface.build(np.zeros((2, 3)))

    def test_build_freezes_buffer(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        assert surface.num_points == 10000
        with pytest.raises(ValueError):
            flat_patch.points[0, 0] = 1.0

    def test_given_normals_are_kept(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        assert surface.calculate_normals() == 0
        np.testing.assert_allclose(surface.normals, np.tile([0.0, 0.0, 1.0], (10000, 1)))

    def test_given_normals_are_normalized(self):
        pts = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0]], dtype=float)
        surface = PointSetSurface.build(PointBuffer(points=pts, normals=np.tile([0, 0, 3.0], (4, 1))))
        surface.calculate_normals()
        np.testing.assert_allclose(np.linalg.norm(surface.normals, axis=1), 1.0)

    def test_recalc_on_flat_patch_points_up(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        assert surface.calculate_normals(recalc=True) == 10000
        np.testing.assert_allclose(surface.normals[:, 2], 1.0, atol=1e-9)

    def test_missing_normals_follow_given_ones(self, flat_patch):
        normals = flat_patch.normals.copy()
        normals[::2] = 0.0
        buffer = PointBuffer(points=flat_patch.points, normals=normals)
        surface = PointSetSurface.build(buffer, workers=2)
        assert surface.calculate_normals() == 5000
        assert np.all(surface.normals[:, 2] > 0.999)

    def test_sphere_normals_point_outward(self, sphere_points):
        surface = PointSetSurface.build(sphere_points, workers=2)
        surface.calculate_normals()
        np.testing.assert_allclose(np.linalg.norm(surface.normals, axis=1), 1.0)
        outward = np.einsum("ij,ij->i", surface.normals, sphere_points)
        assert np.all(outward > 0.9)

    def test_ransac_normals_on_plane(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, use_ransac=True, workers=2, ransac_seed=3)
        surface.calculate_normals(recalc=True)
        np.testing.assert_allclose(np.abs(surface.normals[:, 2]), 1.0, atol=1e-6)

    def test_collinear_input_has_no_normals(self):
        surface = PointSetSurface.build(_line_points(8))
        with pytest.raises(InsufficientNeighbors):
            surface.calculate_normals()

    def test_normals_before_calculation(self, flat_patch):
        surface = PointSetSurface.build(flat_patch)
        assert not surface.has_normals
        with pytest.raises(InternalInvariantViolation):
            _ = surface.normals

    def test_rebuild_index_invalidates_derived_state(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        surface.calculate_normals()
        revision = surface.revision
        surface.rebuild_index()
        assert surface.revision == revision + 1
        assert not surface.has_normals

    def test_nearest_and_bbox(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        idx, dist = surface.nearest(np.array([[0.0, 0.0, 0.5], [0.99, 0.99, 0.0]]))
        np.testing.assert_array_equal(idx, [0, 9999])
        np.testing.assert_allclose(dist, [0.5, 0.0])
        lo, hi = surface.bounding_box()
        np.testing.assert_allclose(lo, [0, 0, 0])
        np.testing.assert_allclose(hi, [0.99, 0.99, 0])

    def test_signed_distance_to_flat_patch(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        surface.calculate_normals()
        queries = np.array([[0.5, 0.5, 0.2], [0.3, 0.7, -0.1], [0.25, 0.25, 0.0]])
        np.testing.assert_allclose(surface.distance(queries), [0.2, -0.1, 0.0], atol=1e-12)

    def test_distance_on_sphere_is_radial_offset(self, sphere_points):
        buffer = PointBuffer(points=sphere_points, normals=sphere_points)
        surface = PointSetSurface.build(buffer, workers=2)
        surface.calculate_normals()
        queries = np.array([[0.0, 0.0, 1.1], [0.0, 0.9, 0.0], [-1.05, 0.0, 0.0]])
        np.testing.assert_allclose(surface.distance(queries), [0.1, -0.1, 0.05], atol=0.01)

    @pytest.mark.parametrize("scale", [0.01, 1.0, 100.0])
    def test_sparse_cloud_changes_sign_at_each_sample(self, tetra_points, scale):
        """The local plane stays at the nearest sample even when kd spans the whole cloud."""
        surface = PointSetSurface.build(tetra_points * scale, workers=1)
        surface.calculate_normals()
        sample = np.array([1.0, 0.0, 0.0]) * scale
        step = 0.05 * np.ones(3) / np.sqrt(3.0)
        above, below = surface.distance(np.array([sample + step, sample - step]))
        assert above * below < 0

    def test_parallel_queries_match_serial(self, sphere_points):
        serial = PointSetSurface.build(sphere_points, workers=1)
        threaded = PointSetSurface.build(sphere_points, workers=4)
        queries = np.random.default_rng(4).normal(size=(10000, 3))
        np.testing.assert_array_equal(serial.knn(queries, 3)[1], threaded.knn(queries, 3)[1])


class TestPointSurfaceStep:
    def test_step_builds_surface(self, flat_patch):
        step = PointSurfaceStep(config=PointSurfaceConfig(), workers=2)
        output = step.execute(PointSurfaceInput(points=flat_patch))
        assert output.num_points == 10000
        assert output.num_normals_estimated == 0
        assert output.surface.has_normals
        assert step.last_meta.step_name == "point_surface"

    def test_step_recalculates_on_request(self, flat_patch):
        step = PointSurfaceStep(config=PointSurfaceConfig(recalc_normals=True), workers=2)
        output = step.execute(PointSurfaceInput(points=flat_patch))
        assert output.num_normals_estimated == 10000

    def test_empty_buffer_fails_validation(self):
        step = PointSurfaceStep(config=PointSurfaceConfig())
        with pytest.raises(ValueError):
            step.execute(PointSurfaceInput(points=PointBuffer(points=np.zeros((0, 3)))))
