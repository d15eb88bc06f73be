"""Genotype simulation.

Each marker draws its allele frequency uniformly (with replacement) from a
list of candidates, then each subject's dosage is Binomial(2, f). A fixed
number of cells is then blanked out uniformly over the whole grid.

All randomness comes from the numpy Generator passed in by the caller.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from loguru import logger

from kinlmm.errors import InvalidParameterError
from kinlmm.genotype.matrix import GenotypeMatrix

DEFAULT_ALLELE_FREQS: tuple[float, ...] = tuple(
    round(0.05 * i, 2) for i in range(1, 11)
)


@dataclass(frozen=True)
class GenotypeSimulation:
    """Simulated genotypes with the allele frequency drawn for each marker."""

    genotypes: GenotypeMatrix
    allele_freqs: np.ndarray


def simulate_genotypes(
    n_samples: int,
    n_markers: int,
    rng: np.random.Generator,
    allele_freqs: Sequence[float] = DEFAULT_ALLELE_FREQS,
    n_missing: int = 0,
) -> GenotypeSimulation:
    """Simulate an n_samples x n_markers dosage matrix with missing calls.

    Args:
        n_samples: Number of subjects (> 0).
        n_markers: Number of markers (> 0).
        rng: Random source, e.g. np.random.default_rng(seed).
        allele_freqs: Candidate alternate allele frequencies in [0, 1].
        n_missing: Number of cells set to missing, in [0, n_samples * n_markers].

    Returns:
        GenotypeSimulation holding the matrix and per-marker frequencies.

    Raises:
        InvalidParameterError: For invalid dimensions, frequencies or
            missing count.
    """
    if n_samples <= 0 or n_markers <= 0:
        raise InvalidParameterError(
            f"n_samples and n_markers must be positive, "
            f"got n_samples={n_samples}, n_markers={n_markers}"
        )
    freqs = np.asarray(allele_freqs, dtype=np.float64)
    if freqs.ndim != 1 or freqs.size == 0:
        raise InvalidParameterError("allele_freqs must be a non-empty 1-D sequence")
    if np.any((freqs < 0.0) | (freqs > 1.0)) or not np.all(np.isfinite(freqs)):
        raise InvalidParameterError("allele_freqs must lie in [0, 1]")
    n_cells = n_samples * n_markers
    if not 0 <= n_missing <= n_cells:
        raise InvalidParameterError(
            f"n_missing must be in [0, {n_cells}], got {n_missing}"
        )

    marker_freqs = rng.choice(freqs, size=n_markers, replace=True)
    dosages = rng.binomial(2, marker_freqs, size=(n_samples, n_markers)).astype(
        np.float64
    )

    if n_missing:
        flat = rng.choice(n_cells, size=n_missing, replace=False)
        dosages.ravel()[flat] = np.nan

    logger.debug(
        f"Simulated genotypes: {n_samples:,} samples x {n_markers:,} markers, "
        f"{n_missing:,} missing calls"
    )
    return GenotypeSimulation(
        genotypes=GenotypeMatrix(dosages), allele_freqs=marker_freqs
    )
