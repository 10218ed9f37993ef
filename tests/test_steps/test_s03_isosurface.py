"""Tests for Step 03: Isosurface extraction (case tables, welding, MC/PMC)."""

from collections import Counter

import numpy as np
import pytest

from surfrec.core.contracts import PointBuffer
from surfrec.core.errors import UnsupportedConfiguration
from surfrec.steps.s01_point_surface._surface import PointSetSurface
from surfrec.steps.s02_scalar_grid._grid import ScalarFieldGrid
from surfrec.steps.s03_isosurface._case_tables import CENTER, CYCLE_TABLE, EDGE_TABLE, TRI_TABLE
from surfrec.steps.s03_isosurface._extractors import (
    EXTRACTORS,
    LinearEdgeExtractor,
    TangentPlaneExtractor,
    create_extractor,
    extractor_class,
)
from surfrec.steps.s03_isosurface.config import IsosurfaceConfig
from surfrec.steps.s03_isosurface.contracts import IsosurfaceInput
from surfrec.steps.s03_isosurface.step import IsosurfaceStep
from surfrec.utils.cube import CORNER_OFFSETS, EDGE_CORNERS

EDGE_MIDPOINTS = (CORNER_OFFSETS[EDGE_CORNERS[:, 0]] + CORNER_OFFSETS[EDGE_CORNERS[:, 1]]) / 2.0


class _FieldSurface:
    """Surface stand-in with an analytic signed distance."""

    def __init__(self, points, field):
        self.points = np.asarray(points, dtype=float)
        self.field = field

    def bounding_box(self):
        return self.points.min(axis=0), self.points.max(axis=0)

    def distance(self, positions):
        return self.field(positions)


def _sphere_field(radius):
    return lambda q: np.linalg.norm(q, axis=1) - radius


def _wavy_field(q):
    x, y, z = q[:, 0], q[:, 1], q[:, 2]
    values = np.sin(13.1 * x) * np.cos(11.7 * y) * np.sin(9.3 * z + 0.4) - 0.1
    interior = np.all((q > 0.15) & (q < 0.85), axis=1)
    return np.where(interior, values, 1.0)


def _evaluated_grid(surface, voxel):
    grid = ScalarFieldGrid.build(surface, voxel, workers=2)
    grid.calc_distance_values()
    return grid


def _lattice(n):
    t = np.linspace(0.0, 1.0, n)
    return np.stack(np.meshgrid(t, t, t, indexing="ij"), axis=-1).reshape(-1, 3)


def _signed_volume(mesh):
    v = mesh.vertices[mesh.faces]
    return float(np.einsum("ij,ij->i", v[:, 0], np.cross(v[:, 1], v[:, 2])).sum() / 6.0)


def _directed_edge_counts(mesh):
    origin, target = mesh.half_edges()
    return Counter(zip(origin.tolist(), target.tolist()))


class TestCaseTables:
    def test_uniform_cases_are_empty(self):
        assert EDGE_TABLE[0] == 0 and EDGE_TABLE[255] == 0
        assert TRI_TABLE[0] == () and TRI_TABLE[255] == ()

    def test_known_triangle_counts(self):
        assert len(TRI_TABLE[0b00000001]) == 1
        assert len(TRI_TABLE[0b00000011]) == 2
        assert len(TRI_TABLE[0b00001111]) == 2
        # Two opposite corners: two separate triangles.
        assert len(TRI_TABLE[0b01000001]) == 2

    def test_complement_cases_cross_same_edges(self):
        for case in range(256):
            assert EDGE_TABLE[case] == EDGE_TABLE[255 - case]

    def test_edge_mask_matches_corner_signs(self):
        for case in range(256):
            inside = [(case >> i) & 1 for i in range(8)]
            expected = 0
            for e, (a, b) in enumerate(EDGE_CORNERS.tolist()):
                if inside[a] != inside[b]:
                    expected |= 1 << e
            assert EDGE_TABLE[case] == expected

    def test_triangles_use_crossed_edges_only(self):
        for case in range(256):
            used = 0
            for tri in TRI_TABLE[case]:
                assert len(set(tri)) == 3
                for e in tri:
                    if e < CENTER:
                        used |= 1 << e
            assert used == EDGE_TABLE[case]

    def test_single_corner_triangles_face_away_from_corner(self):
        for corner in range(8):
            (tri,) = TRI_TABLE[1 << corner]
            p = EDGE_MIDPOINTS[list(tri)]
            normal = np.cross(p[1] - p[0], p[2] - p[0])
            assert normal @ (p.mean(axis=0) - CORNER_OFFSETS[corner]) > 0

    def test_single_cube_surface_is_closed_within_cube(self):
        # Each case's triangles, closed up by the cube faces, bound the inside region:
        # directed boundary edges of the patch only run along cube faces.
        for case in range(1, 255):
            counts = Counter()
            for a, b, c in TRI_TABLE[case]:
                for u, v in ((a, b), (b, c), (c, a)):
                    counts[(u, v)] += 1
            for (u, v), n in counts.items():
                if counts.get((v, u), 0) == n:
                    continue
                shared_face = set(EDGE_CORNERS[u].tolist()) | set(EDGE_CORNERS[v].tolist())
                coords = CORNER_OFFSETS[list(shared_face)]
                assert np.any(np.all(coords == coords[0], axis=0)), (case, u, v)

    def test_interior_edges_never_lie_in_a_cube_face(self):
        """Only cycle segments may join two crossings on the same cube face."""
        for case in range(256):
            segments = set()
            for loop in CYCLE_TABLE[case]:
                for i, e in enumerate(loop):
                    segments.add(frozenset((e, loop[(i + 1) % len(loop)])))
            for tri in TRI_TABLE[case]:
                for u, v in ((tri[0], tri[1]), (tri[1], tri[2]), (tri[2], tri[0])):
                    if u >= CENTER or v >= CENTER or frozenset((u, v)) in segments:
                        continue
                    corners = set(EDGE_CORNERS[u].tolist()) | set(EDGE_CORNERS[v].tolist())
                    coords = CORNER_OFFSETS[list(corners)]
                    assert not np.any(np.all(coords == coords[0], axis=0)), (case, u, v)

    def test_every_cycle_is_fully_triangulated(self):
        for case in range(256):
            expected = 0
            for c, loop in enumerate(CYCLE_TABLE[case]):
                uses_center = any(CENTER + c in tri for tri in TRI_TABLE[case])
                expected += len(loop) if uses_center else len(loop) - 2
            assert len(TRI_TABLE[case]) == expected

    def test_fan_kept_for_plain_cycles(self):
        (loop,) = CYCLE_TABLE[0b00001111]
        assert TRI_TABLE[0b00001111] == ((loop[0], loop[1], loop[2]), (loop[0], loop[2], loop[3]))


class TestExtraction:
    def test_sphere_is_closed_and_outward(self, sphere_points):
        radius = 0.83
        surface = _FieldSurface(sphere_points * radius, _sphere_field(radius))
        mesh = LinearEdgeExtractor().extract(_evaluated_grid(surface, 0.1))

        assert mesh.num_faces > 0
        assert mesh.boundary_edges() == []
        assert len(mesh.connected_components()) == 1
        assert _signed_volume(mesh) == pytest.approx(4.0 / 3.0 * np.pi * radius ** 3, rel=0.05)

    def test_vertices_lie_on_crossed_edges(self, sphere_points):
        radius = 0.83
        surface = _FieldSurface(sphere_points * radius, _sphere_field(radius))
        mesh = LinearEdgeExtractor().extract(_evaluated_grid(surface, 0.1))
        np.testing.assert_allclose(np.linalg.norm(mesh.vertices, axis=1), radius, atol=0.01)

    def test_random_field_is_watertight(self):
        surface = _FieldSurface(_lattice(11), _wavy_field)
        grid = _evaluated_grid(surface, 0.1)
        extractor = LinearEdgeExtractor()
        mesh = extractor.extract(grid)

        assert mesh.num_faces > 0
        counts = _directed_edge_counts(mesh)
        for (a, b), n in counts.items():
            assert counts.get((b, a), 0) == n
        assert mesh.boundary_edges() == []
        assert max(len(faces) for faces in mesh.edge_faces().values()) == 2
        assert _signed_volume(mesh) > 0
        assert extractor.last_stats["faces"] == mesh.num_faces
        assert extractor.last_stats["degenerate"] == 0

    def test_each_crossed_edge_gets_one_vertex(self):
        surface = _FieldSurface(_lattice(11), _wavy_field)
        grid = _evaluated_grid(surface, 0.1)
        extractor = LinearEdgeExtractor()
        mesh = extractor.extract(grid)

        inside = grid.cell_values() < 0
        ga = grid.cell_corners[:, EDGE_CORNERS[:, 0]]
        gb = grid.cell_corners[:, EDGE_CORNERS[:, 1]]
        crossed = inside[:, EDGE_CORNERS[:, 0]] != inside[:, EDGE_CORNERS[:, 1]]
        pairs = {(min(a, b), max(a, b)) for a, b in zip(ga[crossed].tolist(), gb[crossed].tolist())}

        assert mesh.num_vertices == len(pairs) + extractor.last_stats["centers"]
        assert len(np.unique(mesh.vertices, axis=0)) == mesh.num_vertices

    def test_no_crossing_gives_empty_mesh(self):
        surface = _FieldSurface(_lattice(4), lambda q: np.ones(len(q)))
        extractor = LinearEdgeExtractor()
        mesh = extractor.extract(_evaluated_grid(surface, 0.5))
        assert mesh.num_faces == 0 and mesh.num_vertices == 0
        assert extractor.last_stats == {"cells": 0, "vertices": 0, "faces": 0, "degenerate": 0, "centers": 0}

    def test_crossings_on_corners_are_welded(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        surface.calculate_normals()
        mesh = LinearEdgeExtractor().extract(_evaluated_grid(surface, 0.05))

        assert mesh.num_vertices == 23 * 23
        assert mesh.num_faces == 2 * 22 * 22
        np.testing.assert_array_equal(mesh.vertices[:, 2], 0.0)
        np.testing.assert_allclose(mesh.face_normals(), np.tile([0.0, 0.0, 1.0], (mesh.num_faces, 1)))


class TestTangentPlaneExtractor:
    class _PlaneStub:
        def __init__(self, height, valid=True):
            self.height = height
            self.valid = valid

        def tangent_plane(self, positions):
            n = len(positions)
            centroids = np.tile([0.0, 0.0, self.height], (n, 1))
            normals = np.tile([0.0, 0.0, 1.0], (n, 1))
            return centroids, normals, np.full(n, self.valid)

    def _edge(self):
        p0 = np.array([[0.0, 0.0, 0.0]])
        p1 = np.array([[0.0, 0.0, 1.0]])
        return p0, p1, np.array([-1.0]), np.array([1.0])

    def test_intersects_tangent_plane(self):
        t = TangentPlaneExtractor(self._PlaneStub(0.3)).edge_parameters(*self._edge())
        np.testing.assert_allclose(t, [0.3])

    def test_invalid_plane_falls_back_to_linear(self):
        t = TangentPlaneExtractor(self._PlaneStub(0.3, valid=False)).edge_parameters(*self._edge())
        np.testing.assert_allclose(t, [0.5])

    def test_plane_off_edge_falls_back_to_linear(self):
        t = TangentPlaneExtractor(self._PlaneStub(1.7)).edge_parameters(*self._edge())
        np.testing.assert_allclose(t, [0.5])

    def test_parallel_plane_falls_back_to_linear(self):
        p0 = np.array([[0.0, 0.0, 0.3]])
        p1 = np.array([[1.0, 0.0, 0.3]])
        t = TangentPlaneExtractor(self._PlaneStub(0.3)).edge_parameters(
            p0, p1, np.array([-1.0]), np.array([3.0])
        )
        np.testing.assert_allclose(t, [0.25])

    def test_requires_surface(self):
        with pytest.raises(UnsupportedConfiguration):
            TangentPlaneExtractor()

    def test_pmc_vertices_on_sphere(self, sphere_points):
        surface = PointSetSurface.build(PointBuffer(points=sphere_points, normals=sphere_points), workers=2)
        surface.calculate_normals()
        grid = _evaluated_grid(surface, 0.1)
        mesh = TangentPlaneExtractor(surface).extract(grid)

        assert mesh.boundary_edges() == []
        radii = np.linalg.norm(mesh.vertices, axis=1)
        np.testing.assert_allclose(radii, 1.0, atol=0.03)
        assert _signed_volume(mesh) > 0


class TestStrategyRegistry:
    def test_registered_strategies(self):
        assert set(EXTRACTORS) == {"MC", "PMC"}
        assert extractor_class("pmc") is TangentPlaneExtractor
        assert isinstance(create_extractor("MC"), LinearEdgeExtractor)

    def test_unknown_strategy(self):
        with pytest.raises(UnsupportedConfiguration):
            extractor_class("SF")


class TestIsosurfaceStep:
    def test_unknown_decomposition_rejected_on_construction(self):
        with pytest.raises(UnsupportedConfiguration):
            IsosurfaceStep(config=IsosurfaceConfig(decomposition="SF"))

    def test_step_extracts_mesh(self, flat_patch):
        surface = PointSetSurface.build(flat_patch, workers=2)
        surface.calculate_normals()
        grid = _evaluated_grid(surface, 0.05)
        step = IsosurfaceStep(config=IsosurfaceConfig(decomposition="PMC"), workers=2)
        output = step.execute(IsosurfaceInput(grid=grid, surface=surface))
        assert output.num_faces == 2 * 22 * 22
        assert output.num_vertices == 23 * 23
        assert output.num_degenerate == 0

    def test_step_uses_grid_surface_when_none_given(self):
        surface = _FieldSurface(_lattice(11), _wavy_field)
        grid = _evaluated_grid(surface, 0.1)
        output = IsosurfaceStep(config=IsosurfaceConfig(decomposition="MC")).execute(IsosurfaceInput(grid=grid))
        assert output.num_faces > 0

    def test_step_requires_evaluated_grid(self):
        grid = ScalarFieldGrid.build(_FieldSurface(_lattice(4), _wavy_field), 0.5)
        with pytest.raises(ValueError):
            IsosurfaceStep(config=IsosurfaceConfig(decomposition="MC")).execute(IsosurfaceInput(grid=grid))
