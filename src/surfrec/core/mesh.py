"""Indexed triangle mesh with derived half-edge adjacency.

Vertices and faces live in arenas addressed by stable integer handles.
Adjacency (half-edges, twins, vertex→face incidence) is never stored as
references between elements; it is derived from the face array on demand
and cached until the next mutation.

Half-edge ``h`` belongs to face ``h // 3`` and runs from corner ``h % 3``
to the next corner of that face, so ``next(h) = 3 * (h // 3) + (h + 1) % 3``.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import Iterator

import numpy as np

from .errors import InternalInvariantViolation

logger = logging.getLogger(__name__)


class MeshTopology:
    """Welded triangle mesh produced by isosurface extraction."""

    def __init__(self) -> None:
        self._positions: list[tuple[float, float, float]] = []
        self._faces: list[tuple[int, int, int]] = []
        self._cache: dict[str, object] = {}

    # ── construction ──────────────────────────────────────────────────

    @classmethod
    def from_arrays(cls, vertices: np.ndarray, faces: np.ndarray) -> "MeshTopology":
        mesh = cls()
        for v in np.asarray(vertices, dtype=np.float64).reshape(-1, 3):
            mesh.add_vertex(v)
        for f in np.asarray(faces, dtype=np.int64).reshape(-1, 3):
            mesh.add_face(int(f[0]), int(f[1]), int(f[2]))
        return mesh

    def add_vertex(self, position) -> int:
        x, y, z = (float(c) for c in position)
        self._positions.append((x, y, z))
        self._cache.clear()
        return len(self._positions) - 1

    def add_face(self, v0: int, v1: int, v2: int) -> int:
        n = len(self._positions)
        for v in (v0, v1, v2):
            if v < 0 or v >= n:
                raise InternalInvariantViolation(
                    f"Face ({v0}, {v1}, {v2}) references vertex {v}; mesh has {n} vertices"
                )
        if v0 == v1 or v1 == v2 or v0 == v2:
            raise InternalInvariantViolation(f"Face ({v0}, {v1}, {v2}) repeats a vertex")
        self._faces.append((v0, v1, v2))
        self._cache.clear()
        return len(self._faces) - 1

    # ── element access ────────────────────────────────────────────────

    @property
    def num_vertices(self) -> int:
        return len(self._positions)

    @property
    def num_faces(self) -> int:
        return len(self._faces)

    @property
    def vertices(self) -> np.ndarray:
        """(V, 3) float64 vertex positions."""
        if "vertices" not in self._cache:
            arr = np.array(self._positions, dtype=np.float64).reshape(-1, 3)
            arr.setflags(write=False)
            self._cache["vertices"] = arr
        return self._cache["vertices"]  # type: ignore[return-value]

    @property
    def faces(self) -> np.ndarray:
        """(F, 3) int64 vertex handles per face, in winding order."""
        if "faces" not in self._cache:
            arr = np.array(self._faces, dtype=np.int64).reshape(-1, 3)
            arr.setflags(write=False)
            self._cache["faces"] = arr
        return self._cache["faces"]  # type: ignore[return-value]

    def face(self, handle: int) -> tuple[int, int, int]:
        if handle < 0 or handle >= len(self._faces):
            raise InternalInvariantViolation(f"Face handle {handle} out of range")
        return self._faces[handle]

    def position(self, handle: int) -> np.ndarray:
        if handle < 0 or handle >= len(self._positions):
            raise InternalInvariantViolation(f"Vertex handle {handle} out of range")
        return np.array(self._positions[handle])

    def validate(self) -> None:
        """Raise InternalInvariantViolation if any face references a missing vertex."""
        faces = self.faces
        if len(faces) == 0:
            return
        if faces.min() < 0 or faces.max() >= self.num_vertices:
            bad = np.where((faces < 0) | (faces >= self.num_vertices))[0]
            raise InternalInvariantViolation(
                f"{len(bad)} faces reference missing vertices (first: {int(bad[0])})"
            )

    # ── half-edge adjacency ───────────────────────────────────────────

    def half_edges(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (origin, target) vertex handles for all 3F half-edges."""
        faces = self.faces
        origin = faces.reshape(-1)
        target = faces[:, [1, 2, 0]].reshape(-1)
        return origin, target

    @staticmethod
    def next_half_edge(h: int) -> int:
        return 3 * (h // 3) + (h + 1) % 3

    def twins(self) -> np.ndarray:
        """(3F,) twin half-edge per half-edge, -1 on boundary or non-manifold edges.

        A half-edge has a twin only when its undirected edge carries exactly
        one half-edge in each direction.
        """
        if "twins" not in self._cache:
            origin, target = self.half_edges()
            directed = list(zip(origin.tolist(), target.tolist()))
            counts = Counter(directed)
            lookup = {edge: h for h, edge in enumerate(directed)}
            twin = np.full(len(origin), -1, dtype=np.int64)
            for h, (a, b) in enumerate(directed):
                if counts[(a, b)] == 1 and counts.get((b, a), 0) == 1:
                    twin[h] = lookup[(b, a)]
            self._cache["twins"] = twin
        return self._cache["twins"]  # type: ignore[return-value]

    def edge_faces(self) -> dict[tuple[int, int], list[int]]:
        """Undirected edge (min, max) → incident face handles, in face order."""
        if "edge_faces" not in self._cache:
            result: dict[tuple[int, int], list[int]] = {}
            for f, (a, b, c) in enumerate(self._faces):
                for u, v in ((a, b), (b, c), (c, a)):
                    key = (u, v) if u < v else (v, u)
                    result.setdefault(key, []).append(f)
            self._cache["edge_faces"] = result
        return self._cache["edge_faces"]  # type: ignore[return-value]

    def face_adjacency(self) -> list[list[int]]:
        """Edge-adjacent faces per face, sorted by handle.

        Non-manifold edges (more than two incident faces) connect all of
        their faces.
        """
        if "face_adjacency" not in self._cache:
            adjacency: list[set[int]] = [set() for _ in range(self.num_faces)]
            for faces in self.edge_faces().values():
                if len(faces) < 2:
                    continue
                for f in faces:
                    adjacency[f].update(g for g in faces if g != f)
            self._cache["face_adjacency"] = [sorted(s) for s in adjacency]
        return self._cache["face_adjacency"]  # type: ignore[return-value]

    def vertex_faces(self) -> tuple[np.ndarray, np.ndarray]:
        """CSR incidence: faces of vertex v are ``indices[offsets[v]:offsets[v+1]]``."""
        if "vertex_faces" not in self._cache:
            faces = self.faces
            flat = faces.reshape(-1)
            face_ids = np.repeat(np.arange(len(faces), dtype=np.int64), 3)
            order = np.argsort(flat, kind="stable")
            counts = np.bincount(flat, minlength=self.num_vertices)
            offsets = np.zeros(self.num_vertices + 1, dtype=np.int64)
            np.cumsum(counts, out=offsets[1:])
            self._cache["vertex_faces"] = (offsets, face_ids[order])
        return self._cache["vertex_faces"]  # type: ignore[return-value]

    def boundary_edges(self) -> list[tuple[int, int]]:
        """Directed half-edges with no twin."""
        origin, target = self.half_edges()
        twin = self.twins()
        return [(int(origin[h]), int(target[h])) for h in np.where(twin < 0)[0]]

    def connected_components(self) -> list[list[int]]:
        """Face handles grouped by edge connectivity, each group in ascending order."""
        adjacency = self.face_adjacency()
        label = np.full(self.num_faces, -1, dtype=np.int64)
        components: list[list[int]] = []
        for seed in range(self.num_faces):
            if label[seed] >= 0:
                continue
            label[seed] = len(components)
            queue = deque([seed])
            members = []
            while queue:
                f = queue.popleft()
                members.append(f)
                for g in adjacency[f]:
                    if label[g] < 0:
                        label[g] = len(components)
                        queue.append(g)
            components.append(sorted(members))
        return components

    # ── geometry ──────────────────────────────────────────────────────

    def face_normals(self) -> np.ndarray:
        """(F, 3) unit face normals following winding order; degenerate faces get zeros."""
        if "face_normals" not in self._cache:
            cross = self._face_cross()
            norms = np.linalg.norm(cross, axis=1, keepdims=True)
            normals = np.divide(cross, norms, out=np.zeros_like(cross), where=norms > 1e-12)
            normals.setflags(write=False)
            self._cache["face_normals"] = normals
        return self._cache["face_normals"]  # type: ignore[return-value]

    def face_areas(self) -> np.ndarray:
        return 0.5 * np.linalg.norm(self._face_cross(), axis=1)

    def corner_angles(self) -> np.ndarray:
        """(F, 3) interior angle (radians) at each face corner."""
        v = self.vertices[self.faces]  # (F, 3, 3)
        angles = np.zeros((len(v), 3))
        for i in range(3):
            a = v[:, (i + 1) % 3] - v[:, i]
            b = v[:, (i + 2) % 3] - v[:, i]
            la = np.linalg.norm(a, axis=1)
            lb = np.linalg.norm(b, axis=1)
            denom = la * lb
            cos = np.divide(
                np.einsum("ij,ij->i", a, b), denom, out=np.ones(len(v)), where=denom > 1e-24
            )
            angles[:, i] = np.arccos(np.clip(cos, -1.0, 1.0))
        return angles

    def _face_cross(self) -> np.ndarray:
        if self.num_faces == 0:
            return np.zeros((0, 3))
        v = self.vertices
        f = self.faces
        return np.cross(v[f[:, 1]] - v[f[:, 0]], v[f[:, 2]] - v[f[:, 0]])

    def __iter__(self) -> Iterator[tuple[int, int, int]]:
        return iter(self._faces)

    def __repr__(self) -> str:
        return f"MeshTopology(vertices={self.num_vertices}, faces={self.num_faces})"
