"""Eigendecomposition of the kinship matrix and principal components.

Uses scipy.linalg.eigh (LAPACK) under a scoped BLAS thread limit. The
kinship matrix is positive semi-definite in theory; rounding near the rank
boundary can still produce slightly negative eigenvalues, which are clamped
to zero here so that sqrt(eigenvalue) and 1 / (tau * eigenvalue + sigma2)
stay real downstream.

Eigenpairs are returned in descending eigenvalue order so the leading
columns are the leading principal components.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import numpy as np
import scipy.linalg
from loguru import logger

from kinlmm.core.threading import blas_threads
from kinlmm.errors import InvalidParameterError


@dataclass(frozen=True)
class SpectralDecomposition:
    """Clamped eigendecomposition of a kinship matrix.

    Attributes:
        eigenvalues: (n,) eigenvalues, descending, all >= 0.
        eigenvectors: (n, n) orthonormal eigenvectors as columns, same order.
        n_clamped: Number of eigenvalues that were negative before clamping.
    """

    eigenvalues: np.ndarray
    eigenvectors: np.ndarray
    n_clamped: int = 0

    @property
    def n_samples(self) -> int:
        return self.eigenvalues.shape[0]

    def principal_components(self, n_components: int | None = None) -> np.ndarray:
        """Eigenvectors scaled column-wise by sqrt(eigenvalue).

        Args:
            n_components: Number of leading components to return; all if None.

        Returns:
            (n_samples, n_components) array.
        """
        k = self.n_samples if n_components is None else n_components
        if not 0 < k <= self.n_samples:
            raise InvalidParameterError(
                f"n_components must be in [1, {self.n_samples}], got {k}"
            )
        return self.eigenvectors[:, :k] * np.sqrt(self.eigenvalues[:k])[None, :]

    def reconstruct(self) -> np.ndarray:
        """Return U diag(eigenvalues) U^T, the clamped kinship matrix."""
        U = self.eigenvectors
        return (U * self.eigenvalues[None, :]) @ U.T


def eigendecompose_kinship(
    K: np.ndarray, threshold: float = 1e-10
) -> SpectralDecomposition:
    """Eigendecompose a kinship matrix, clamping negative eigenvalues.

    - Eigenvalues < 0 are set to 0 (a warning is logged if any was below
      -threshold, i.e. more than rounding noise)
    - Eigenvalues with |value| < threshold are set to 0
    - A warning is logged when more than one eigenvalue ends up zero

    Args:
        K: Symmetric kinship matrix (n_samples, n_samples). Not modified.
        threshold: Magnitude below which eigenvalues are zeroed (default: 1e-10)

    Returns:
        SpectralDecomposition with descending eigenvalues.

    Raises:
        InvalidParameterError: If K is not square or contains NaN/Inf.
    """
    K = np.asarray(K, dtype=np.float64)
    if K.ndim != 2 or K.shape[0] != K.shape[1]:
        raise InvalidParameterError(f"Kinship matrix must be square, got shape {K.shape}")
    if not np.all(np.isfinite(K)):
        raise InvalidParameterError("Kinship matrix contains NaN/Inf")

    n_samples = K.shape[0]
    logger.info(f"Eigendecomposing kinship matrix ({n_samples:,} x {n_samples:,})")

    start_time = time.perf_counter()
    with blas_threads():
        eigenvalues, eigenvectors = scipy.linalg.eigh(K, check_finite=False)
    logger.debug(f"Eigendecomposition completed in {time.perf_counter() - start_time:.2f}s")

    # LAPACK returns ascending order
    eigenvalues = eigenvalues[::-1].copy()
    eigenvectors = eigenvectors[:, ::-1].copy()

    n_clamped = int(np.sum(eigenvalues < 0.0))
    n_negative = int(np.sum(eigenvalues < -threshold))
    if n_negative > 0:
        logger.warning(
            f"Kinship matrix has {n_negative} negative eigenvalue(s) below "
            f"-{threshold:g} (min {eigenvalues.min():.3e}); clamped to 0. "
            "Matrix may not be positive semi-definite."
        )
    eigenvalues = np.where(eigenvalues < threshold, 0.0, eigenvalues)

    n_zero = int(np.sum(eigenvalues == 0.0))
    if n_zero > 1:
        logger.warning(
            f"Kinship matrix has {n_zero} eigenvalues close to zero. "
            "Matrix may be rank-deficient."
        )

    return SpectralDecomposition(
        eigenvalues=eigenvalues, eigenvectors=eigenvectors, n_clamped=n_clamped
    )


def compute_principal_components(
    K: np.ndarray, n_components: int | None = None, threshold: float = 1e-10
) -> np.ndarray:
    """Principal components of a kinship matrix.

    Args:
        K: Symmetric kinship matrix.
        n_components: Number of leading components; all if None.
        threshold: Eigenvalue zeroing threshold.

    Returns:
        (n_samples, n_components) matrix of eigenvectors scaled by
        sqrt(eigenvalue).
    """
    return eigendecompose_kinship(K, threshold=threshold).principal_components(
        n_components
    )
