"""Chunked thread-pool evaluation for the parallel pipeline phases.

numpy and scipy release the GIL inside their kernels, so threads give
real speedups for the vectorized per-chunk work done here. Every call
returns only after all chunks finished (barrier semantics).
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)


def resolve_workers(workers: int) -> int:
    """Map ``-1`` (or any value < 1) to the CPU count."""
    if workers is None or workers < 1:
        return os.cpu_count() or 1
    return workers


def map_chunks(
    fn: Callable[[np.ndarray], np.ndarray],
    items: np.ndarray,
    chunk_size: int,
    workers: int = -1,
) -> np.ndarray:
    """Apply ``fn`` to consecutive chunks of ``items`` and concatenate results in order.

    Args:
        fn: Vectorized function of one chunk (K, ...) → (K, ...).
        items: Work items, split along axis 0.
        chunk_size: Items per task.
        workers: Thread count (-1 = all cores).

    Returns:
        Concatenated results, same order as ``items``.
    """
    n = len(items)
    if n == 0:
        return fn(items)

    starts = list(range(0, n, max(1, chunk_size)))
    chunks = [items[s:s + chunk_size] for s in starts]
    worker_count = min(resolve_workers(workers), len(chunks))

    if worker_count <= 1:
        results = [fn(chunk) for chunk in chunks]
    else:
        with ThreadPoolExecutor(max_workers=worker_count) as executor:
            results = list(executor.map(fn, chunks))

    logger.debug(f"Evaluated {n} items in {len(chunks)} chunks on {worker_count} workers")
    return np.concatenate(results, axis=0)
