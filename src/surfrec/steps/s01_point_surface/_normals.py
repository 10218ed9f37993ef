"""Module A: Per-point normal estimation and consistent orientation.

1. Fit a plane to each point's kn neighborhood (PCA, or RANSAC inlier
   voting followed by a PCA refit on the inliers)
2. Orient: align to the nearest given normal if the input had some,
   otherwise propagate signs along the minimum spanning tree of the kNN
   graph, then one neighbor-voting pass
3. Interpolate: average each normal over its ki neighbors
"""

from __future__ import annotations

import logging

import numpy as np

from surfrec.utils.geometry import fit_planes, normalize_rows

logger = logging.getLogger(__name__)

# Relative eigenvalue floor below which a neighborhood is treated as a line or a point.
_RANK_EPS = 1e-10


def fit_neighborhood_planes(
    points: np.ndarray,
    neighbor_idx: np.ndarray,
    use_ransac: bool = False,
    iterations: int = 20,
    seed: int = 0,
) -> tuple[np.ndarray, np.ndarray]:
    """Unoriented plane normal per point from its neighbor indices.

    Args:
        points: (N, 3) positions.
        neighbor_idx: (M, K) neighbor indices for the M points to fit.
        use_ransac: Robust fit via random 3-point hypotheses.
        iterations: RANSAC hypotheses per neighborhood.
        seed: RNG seed for RANSAC sampling.

    Returns:
        (normals (M, 3), valid (M,)). Invalid rows have fewer than three
        distinct, non-collinear neighbors and are zero.
    """
    nbrs = points[neighbor_idx]  # (M, K, 3)
    normals, _, eigvals = fit_planes(nbrs)
    spread = eigvals[:, 2]
    valid = (spread > 1e-20) & (eigvals[:, 1] > _RANK_EPS * spread)

    if use_ransac and neighbor_idx.shape[1] > 3 and valid.any():
        normals = _ransac_refine(nbrs, normals, valid, iterations, seed)

    normals[~valid] = 0.0
    return normals, valid


def _ransac_refine(
    nbrs: np.ndarray, normals: np.ndarray, valid: np.ndarray, iterations: int, seed: int
) -> np.ndarray:
    """RANSAC plane hypotheses per neighborhood, vectorized over points."""
    m, k, _ = nbrs.shape
    rng = np.random.default_rng(seed)

    centroid = nbrs.mean(axis=1)
    spacing = np.linalg.norm(nbrs - centroid[:, None, :], axis=2).mean(axis=1)
    tau = np.maximum(0.1 * spacing, 1e-12)

    best_count = np.full(m, -1, dtype=np.int64)
    best_mask = np.ones((m, k), dtype=bool)
    rows = np.arange(m)[:, None]

    for _ in range(iterations):
        sample = rng.random((m, k)).argsort(axis=1)[:, :3]
        a, b, c = (nbrs[rows[:, 0], sample[:, i]] for i in range(3))
        hyp, ok = normalize_rows(np.cross(b - a, c - a))
        dist = np.abs(np.einsum("mki,mi->mk", nbrs - a[:, None, :], hyp))
        inliers = dist < tau[:, None]
        count = np.where(ok, inliers.sum(axis=1), -1)
        better = count > best_count
        best_count[better] = count[better]
        best_mask[better] = inliers[better]

    refit = valid & (best_count >= 3)
    if refit.any():
        refined, _, eig = fit_planes(nbrs[refit], best_mask[refit].astype(np.float64))
        # Keep the full-neighborhood fit where the inliers are degenerate.
        good = eig[:, 1] > _RANK_EPS * np.maximum(eig[:, 2], 1e-30)
        idx = np.where(refit)[0][good]
        normals[idx] = refined[good]
    logger.debug(f"RANSAC refit {int(refit.sum())}/{m} neighborhoods")
    return normals


def fill_undetermined(
    normals: np.ndarray, valid: np.ndarray, rows: np.ndarray, neighbor_idx: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Copy the nearest determined neighbor's normal into undetermined rows.

    Args:
        normals: (N, 3) normals, zero where undetermined.
        valid: (N,) mask of determined normals.
        rows: (M,) point indices that ``neighbor_idx`` rows belong to.
        neighbor_idx: (M, K) neighbor indices, nearest first.

    Returns:
        (normals, valid) after filling. Rows whose whole neighborhood is
        undetermined stay invalid; the caller decides whether that is fatal.
    """
    out = normals.copy()
    filled = valid.copy()
    for r, i in enumerate(rows):
        if valid[i]:
            continue
        for j in neighbor_idx[r]:
            if valid[j]:
                out[i] = normals[j]
                filled[i] = True
                break
    return out, filled


def orient_to_reference(
    normals: np.ndarray,
    target_rows: np.ndarray,
    reference_normals: np.ndarray,
    nearest_reference: np.ndarray,
) -> np.ndarray:
    """Flip ``normals[target_rows]`` to agree with their nearest reference normal."""
    out = normals.copy()
    ref = reference_normals[nearest_reference]
    flip = np.einsum("ij,ij->i", out[target_rows], ref) < 0
    out[target_rows[flip]] *= -1.0
    return out


def orient_by_propagation(points: np.ndarray, normals: np.ndarray, neighbor_idx: np.ndarray) -> np.ndarray:
    """Consistent orientation via MST propagation over the kNN graph.

    Edge weight ``1 - |n_i · n_j|`` makes propagation prefer near-parallel
    neighbors. Each connected component is seeded at its highest point,
    oriented away from the component centroid (or toward +Z when that is
    ambiguous). A final voting pass flips normals that disagree with the
    sum of their neighbors.
    """
    from scipy.sparse import coo_matrix
    from scipy.sparse.csgraph import breadth_first_order, connected_components, minimum_spanning_tree

    n = len(points)
    out = normals.copy()
    if n < 2:
        return out

    src = np.repeat(np.arange(n), neighbor_idx.shape[1])
    dst = neighbor_idx.reshape(-1)
    keep = src != dst
    lo = np.minimum(src[keep], dst[keep])
    hi = np.maximum(src[keep], dst[keep])
    pairs = np.unique(np.stack([lo, hi], axis=1), axis=0)
    weights = 1.0 - np.abs(np.einsum("ij,ij->i", out[pairs[:, 0]], out[pairs[:, 1]])) + 1e-6
    graph = coo_matrix((weights, (pairs[:, 0], pairs[:, 1])), shape=(n, n)).tocsr()
    mst = minimum_spanning_tree(graph)

    num_components, labels = connected_components(mst, directed=False)
    scale = float(np.ptp(points, axis=0).max()) or 1.0
    for comp in range(num_components):
        members = np.where(labels == comp)[0]
        seed = int(members[np.argmax(points[members, 2])])
        outward = float(out[seed] @ (points[seed] - points[members].mean(axis=0)))
        if abs(outward) > 1e-9 * scale:
            if outward < 0:
                out[seed] *= -1.0
        elif out[seed, 2] < 0:
            out[seed] *= -1.0

        order, predecessors = breadth_first_order(mst, seed, directed=False, return_predecessors=True)
        for node in order[1:]:
            parent = predecessors[node]
            if out[node] @ out[parent] < 0:
                out[node] *= -1.0

    votes = np.einsum("ni,nki->n", out, out[neighbor_idx])
    flipped = votes < 0
    out[flipped] *= -1.0
    logger.debug(f"Orientation: {num_components} components, {int(flipped.sum())} flipped by voting")
    return out


def interpolate_normals(normals: np.ndarray, rows: np.ndarray, neighbor_idx: np.ndarray) -> np.ndarray:
    """Average ``normals[rows]`` over their neighbors; degenerate averages keep the input."""
    summed = normals[neighbor_idx].sum(axis=1)
    unit, ok = normalize_rows(summed)
    return np.where(ok[:, None], unit, normals[rows])
