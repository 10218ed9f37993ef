"""3D geometry utilities: vector normalization, batched plane fitting, angles."""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)


def normalize_rows(vectors: np.ndarray, eps: float = 1e-12) -> tuple[np.ndarray, np.ndarray]:
    """Normalize each row to unit length.

    Returns:
        (unit_vectors, valid_mask). Rows shorter than ``eps`` are returned
        as zeros and flagged invalid.
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    valid = norms[..., 0] > eps
    unit = np.divide(vectors, norms, out=np.zeros_like(vectors), where=norms > eps)
    return unit, valid


def angle_deg(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Angle in degrees between (unit) vectors, row-wise."""
    cos = np.clip(np.sum(np.asarray(a) * np.asarray(b), axis=-1), -1.0, 1.0)
    return np.degrees(np.arccos(cos))


def fit_planes(neighborhoods: np.ndarray, weights: np.ndarray | None = None) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Least-squares plane per neighborhood (batched PCA).

    Args:
        neighborhoods: (N, K, 3) points.
        weights: Optional (N, K) inlier weights (0/1 for RANSAC refits).

    Returns:
        (normals (N, 3), centroids (N, 3), eigenvalues (N, 3) ascending).
        Normals are the eigenvector of the smallest covariance eigenvalue,
        unoriented.
    """
    pts = np.asarray(neighborhoods, dtype=np.float64)
    if weights is None:
        weights = np.ones(pts.shape[:2])
    w = np.asarray(weights, dtype=np.float64)
    wsum = np.maximum(w.sum(axis=1, keepdims=True), 1e-12)
    centroids = np.einsum("nk,nki->ni", w, pts) / wsum
    centered = (pts - centroids[:, None, :]) * np.sqrt(w)[..., None]
    cov = np.einsum("nki,nkj->nij", centered, centered) / wsum[..., None]
    eigvals, eigvecs = np.linalg.eigh(cov)
    return eigvecs[:, :, 0], centroids, eigvals


def bounding_box(points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Axis-aligned (min, max) corners of a point set."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(pts) == 0:
        return np.zeros(3), np.zeros(3)
    return pts.min(axis=0), pts.max(axis=0)
