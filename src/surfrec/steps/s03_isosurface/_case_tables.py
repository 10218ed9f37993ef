"""Marching-cubes case tables, derived from cube face topology at import.

For each of the 256 inside/outside corner patterns, every cube face
contributes directed segments between its crossed edges: walking the face
counter-clockwise (seen from outside), a crossing that enters the inside
region connects to the next crossing along the walk. On faces with four
crossings this separates the two inside corners, and both cells sharing
the face derive the same segments, so neighboring cells never crack.
The segments chain into closed edge cycles, each triangulated with
outward (toward positive values) winding.

A chord between two crossings on the same cube face would lie inside
that face, where the neighboring cell may place triangles too. Cycles are
therefore triangulated with chords that never share a cube face; a fan
from the cycle's first edge is used whenever it qualifies. A cycle with
no such triangulation is fanned around its center instead: triangle
indices from ``CENTER`` upward name the center of cycle
``index - CENTER`` in ``CYCLE_TABLE``.
"""

from __future__ import annotations

from surfrec.utils.cube import EDGE_CORNERS, EDGE_INDEX, FACE_CORNERS

CENTER = len(EDGE_CORNERS)

# Cube faces (indices into FACE_CORNERS) each edge lies on.
EDGE_FACES: tuple[frozenset[int], ...] = tuple(
    frozenset(f for f, face in enumerate(FACE_CORNERS) if a in face and b in face)
    for a, b in EDGE_CORNERS.tolist()
)


def shares_face(e0: int, e1: int) -> bool:
    """True when cube edges ``e0`` and ``e1`` lie on a common cube face."""
    return bool(EDGE_FACES[e0] & EDGE_FACES[e1])


def _edge_cycles(case: int) -> list[list[int]]:
    inside = [(case >> i) & 1 for i in range(8)]
    successor: dict[int, int] = {}
    for cycle in FACE_CORNERS:
        crossings: list[tuple[int, bool]] = []
        for k in range(4):
            u, v = cycle[k], cycle[(k + 1) % 4]
            if inside[u] != inside[v]:
                crossings.append((EDGE_INDEX[(u, v)], bool(inside[v])))
        for k, (edge, entering) in enumerate(crossings):
            if entering:
                successor[edge] = crossings[(k + 1) % len(crossings)][0]

    cycles = []
    remaining = set(successor)
    while remaining:
        start = min(remaining)
        loop = [start]
        remaining.discard(start)
        edge = successor[start]
        while edge != start:
            loop.append(edge)
            remaining.discard(edge)
            edge = successor[edge]
        cycles.append(loop)
    return cycles


def _triangulate(loop: list[int]) -> list[tuple[int, int, int]] | None:
    """Triangulate a cycle without chords between crossings on one cube face.

    Sub-polygons ``loop[i..j]`` are split at the highest usable apex first,
    which yields the plain fan from ``loop[0]`` when all its chords qualify.
    Returns None when no such triangulation exists.
    """
    n = len(loop)

    def usable(i: int, j: int) -> bool:
        return j - i == 1 or (i == 0 and j == n - 1) or not shares_face(loop[i], loop[j])

    memo: dict[tuple[int, int], list[tuple[int, int, int]] | None] = {}

    def solve(i: int, j: int) -> list[tuple[int, int, int]] | None:
        if j - i < 2:
            return []
        if (i, j) not in memo:
            memo[(i, j)] = None
            for k in range(j - 1, i, -1):
                if not (usable(i, k) and usable(k, j)):
                    continue
                left, right = solve(i, k), solve(k, j)
                if left is not None and right is not None:
                    memo[(i, j)] = left + [(loop[i], loop[k], loop[j])] + right
                    break
        return memo[(i, j)]

    return solve(0, n - 1)


def _build_tables():
    edge_table: list[int] = []
    tri_table: list[tuple[tuple[int, int, int], ...]] = []
    cycle_table: list[tuple[tuple[int, ...], ...]] = []
    center_table: list[tuple[int, ...]] = []
    for case in range(256):
        mask = 0
        triangles: list[tuple[int, int, int]] = []
        cycles = _edge_cycles(case)
        centers = []
        for c, loop in enumerate(cycles):
            for edge in loop:
                mask |= 1 << edge
            fan = _triangulate(loop)
            if fan is None:
                centers.append(c)
                fan = [(CENTER + c, loop[i], loop[(i + 1) % len(loop)]) for i in range(len(loop))]
            triangles.extend(fan)
        edge_table.append(mask)
        tri_table.append(tuple(triangles))
        cycle_table.append(tuple(tuple(loop) for loop in cycles))
        center_table.append(tuple(centers))
    return edge_table, tri_table, cycle_table, center_table


EDGE_TABLE, TRI_TABLE, CYCLE_TABLE, CENTER_TABLE = _build_tables()
