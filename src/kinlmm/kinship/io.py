"""Kinship matrix text I/O.

Matrices are written one row per line, tab separated, with 10 significant
digits and no header, which np.loadtxt reads back directly.
"""

from pathlib import Path

import numpy as np

from kinlmm.errors import InvalidParameterError


def read_kinship_matrix(path: Path, n_samples: int | None = None) -> np.ndarray:
    """Read a kinship matrix written by write_kinship_matrix.

    Args:
        path: Path to kinship matrix file (.cXX.txt)
        n_samples: Expected number of samples (optional validation)

    Returns:
        Kinship matrix as numpy array (n x n)

    Raises:
        InvalidParameterError: If matrix is not square, not symmetric, or
            its dimension does not match n_samples.
    """
    K = np.loadtxt(path, dtype=np.float64, ndmin=2)

    if K.shape[0] != K.shape[1]:
        raise InvalidParameterError(
            f"Kinship matrix must be square, got shape {K.shape}"
        )

    if n_samples is not None and K.shape[0] != n_samples:
        raise InvalidParameterError(
            f"Kinship matrix dimension {K.shape[0]} does not match "
            f"expected n_samples={n_samples}"
        )

    # Values were rounded to 10 significant digits on write
    if not np.allclose(K, K.T, rtol=1e-8, atol=1e-12):
        raise InvalidParameterError("Kinship matrix is not symmetric")

    return 0.5 * (K + K.T)


def write_kinship_matrix(K: np.ndarray, path: Path) -> None:
    """Write a kinship matrix as tab-separated text.

    Args:
        K: Kinship matrix (n x n), should be symmetric.
        path: Output file path (typically .cXX.txt).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(path, K, fmt="%.10g", delimiter="\t")
