"""BLAS thread management for numpy/scipy operations.

The eigendecomposition and the AI-REML solves run in system BLAS/LAPACK and
are scoped with threadpool_limits. The GRM accumulation runs in XLA and is
not affected by these limits.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

import psutil
from loguru import logger
from threadpoolctl import threadpool_limits

BLAS_THREADS_ENV = "KINLMM_BLAS_THREADS"


def get_blas_thread_count() -> int:
    """Determine the number of BLAS threads to use for numpy operations.

    Priority:
    1. KINLMM_BLAS_THREADS env var (explicit override)
    2. Physical core count via psutil (avoids hyperthreading oversubscription)

    Returns:
        Positive integer thread count, capped at os.cpu_count().
    """
    max_threads = os.cpu_count() or 64

    env_override = os.environ.get(BLAS_THREADS_ENV)
    if env_override is not None:
        try:
            n = int(env_override)
        except ValueError:
            logger.warning(
                f"{BLAS_THREADS_ENV}={env_override!r} is not a valid integer, "
                "falling back to physical core count"
            )
        else:
            n = max(1, min(n, max_threads))
            logger.debug(f"BLAS threads from {BLAS_THREADS_ENV}: {n}")
            return n

    n = psutil.cpu_count(logical=False) or max_threads
    return max(1, min(n, max_threads))


@contextmanager
def blas_threads(n_threads: int | None = None) -> Generator[None, None, None]:
    """Context manager for scoped BLAS thread control.

    Args:
        n_threads: Number of BLAS threads. None uses get_blas_thread_count().

    Example:
        >>> with blas_threads(4):
        ...     eigenvalues, eigenvectors = scipy.linalg.eigh(K)
    """
    if n_threads is None:
        n_threads = get_blas_thread_count()

    with threadpool_limits(limits=n_threads, user_api="blas"):
        yield
