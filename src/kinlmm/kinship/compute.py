"""Genetic relationship matrix (GRM) computation.

The kinship matrix is computed from the standardized genotype matrix as

    K = Xs @ Xs.T / (p - 1)

Markers are processed in batches and accumulated with a jitted JAX kernel,
which keeps the O(n^2 p) product inside XLA and bounds the size of the
device copy of Xs. The result is symmetrized exactly before returning.
"""

from __future__ import annotations

import time

import jax.numpy as jnp
import numpy as np
from jax import jit
from loguru import logger

from kinlmm.core.jax_config import ensure_jax_configured
from kinlmm.core.progress import progress_iterator
from kinlmm.errors import InvalidParameterError
from kinlmm.genotype.matrix import (
    AlleleFrequencySummary,
    GenotypeMatrix,
    compute_allele_summary,
)
from kinlmm.genotype.standardize import standardize_genotypes


@jit
def _accumulate_kinship(K: jnp.ndarray, X_batch: jnp.ndarray) -> jnp.ndarray:
    """Accumulate kinship contribution from a standardized marker batch.

    Args:
        K: Current kinship accumulator (n_samples, n_samples)
        X_batch: Standardized genotype batch (n_samples, batch_markers)

    Returns:
        Updated accumulator with the batch contribution added.
    """
    return K + jnp.matmul(X_batch, X_batch.T)


def compute_grm(
    standardized: np.ndarray,
    batch_size: int = 10000,
    show_progress: bool = False,
) -> np.ndarray:
    """Compute the GRM K = Xs @ Xs.T / (p - 1).

    Args:
        standardized: Standardized genotype matrix (n_samples, n_markers),
            missing entries already set to 0.
        batch_size: Markers per accumulation batch.
        show_progress: Show a progress bar when more than one batch runs.

    Returns:
        Symmetric (n_samples, n_samples) float64 kinship matrix.

    Raises:
        InvalidParameterError: If the input is not 2-D, has fewer than two
            markers, contains non-finite values, or batch_size < 1.

    Example:
        >>> import numpy as np
        >>> Xs = np.array([[1.0, -1.0, 0.5], [-1.0, 1.0, -0.5]])
        >>> K = compute_grm(Xs)
        >>> K.shape
        (2, 2)
    """
    ensure_jax_configured()

    Xs = np.asarray(standardized, dtype=np.float64)
    if Xs.ndim != 2:
        raise InvalidParameterError(
            f"Standardized matrix must be 2-D, got shape {Xs.shape}"
        )
    n_samples, n_markers = Xs.shape
    if n_samples < 1 or n_markers < 2:
        raise InvalidParameterError(
            f"GRM needs at least 1 sample and 2 markers, got shape {Xs.shape}"
        )
    if batch_size < 1:
        raise InvalidParameterError(f"batch_size must be >= 1, got {batch_size}")
    if not np.all(np.isfinite(Xs)):
        raise InvalidParameterError(
            "Standardized matrix contains NaN/Inf; standardize genotypes first"
        )

    n_batches = (n_markers + batch_size - 1) // batch_size
    logger.info(
        f"GRM: {n_samples:,} samples x {n_markers:,} markers, "
        f"{n_batches} batch(es) of {batch_size:,}"
    )

    start = time.perf_counter()
    K = jnp.zeros((n_samples, n_samples), dtype=jnp.float64)
    batch_starts = range(0, n_markers, batch_size)
    if show_progress and n_batches > 1:
        batch_starts = progress_iterator(batch_starts, total=n_batches, desc="GRM")

    for b in batch_starts:
        X_batch = jnp.asarray(Xs[:, b : b + batch_size])
        K = _accumulate_kinship(K, X_batch)

    K = np.asarray(K) / (n_markers - 1)
    # Summation order can leave K[i, j] and K[j, i] a few ulps apart
    K = 0.5 * (K + K.T)

    logger.debug(f"GRM computed in {time.perf_counter() - start:.2f}s")
    return K


def compute_grm_from_genotypes(
    genotypes: GenotypeMatrix,
    summary: AlleleFrequencySummary | None = None,
    mode: str = "p",
    batch_size: int = 10000,
    show_progress: bool = False,
) -> np.ndarray:
    """Summarize, standardize and compute the GRM in one call.

    Args:
        genotypes: Genotype matrix with NaN for missing calls.
        summary: Allele summary, computed if None.
        mode: Standardization mode ("p" or "mu_sigma").
        batch_size: Markers per accumulation batch.
        show_progress: Show a progress bar for multi-batch runs.

    Returns:
        Kinship matrix (n_samples, n_samples).

    Raises:
        DegenerateColumnError: If any marker cannot be standardized.
    """
    if summary is None:
        summary = compute_allele_summary(genotypes)
    Xs = standardize_genotypes(genotypes, summary, mode=mode)
    return compute_grm(Xs, batch_size=batch_size, show_progress=show_progress)
