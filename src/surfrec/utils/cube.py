"""Unit cube topology shared by the scalar grid and isosurface extraction.

Corner and edge numbering follow the classic marching-cubes convention
(Paul Bourke's tables): corners 0-3 walk the z=0 face counter-clockwise
starting at the origin, corners 4-7 sit above them, edges 0-3 and 4-7
ring the bottom and top faces and edges 8-11 are the vertical ones.
"""

import numpy as np

CORNER_OFFSETS = np.array(
    [
        [0, 0, 0],
        [1, 0, 0],
        [1, 1, 0],
        [0, 1, 0],
        [0, 0, 1],
        [1, 0, 1],
        [1, 1, 1],
        [0, 1, 1],
    ],
    dtype=np.int64,
)

# (corner_a, corner_b) per edge
EDGE_CORNERS = np.array(
    [
        [0, 1], [1, 2], [2, 3], [3, 0],
        [4, 5], [5, 6], [6, 7], [7, 4],
        [0, 4], [1, 5], [2, 6], [3, 7],
    ],
    dtype=np.int64,
)

# Corner cycles of the six faces, counter-clockwise seen from outside the cube.
FACE_CORNERS = (
    (0, 3, 2, 1),  # -z
    (4, 5, 6, 7),  # +z
    (0, 1, 5, 4),  # -y
    (3, 7, 6, 2),  # +y
    (0, 4, 7, 3),  # -x
    (1, 2, 6, 5),  # +x
)

EDGE_INDEX = {}
for _e, (_a, _b) in enumerate(EDGE_CORNERS.tolist()):
    EDGE_INDEX[(_a, _b)] = _e
    EDGE_INDEX[(_b, _a)] = _e
