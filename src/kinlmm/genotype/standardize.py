"""Genotype standardization.

Implements the two standardization modes used before GRM computation:

- "p": center by mu = 2*freq and scale by the Hardy-Weinberg standard
  deviation sqrt(2*freq*(1-freq)).
- "mu_sigma": center and scale by the empirical mean and standard deviation.

After standardization missing calls are set to 0, which is the same as
imputing them to the column mean. Markers with zero scale cannot be
standardized and raise DegenerateColumnError instead of leaking NaN/Inf into
the kinship matrix.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
from jax import jit
from loguru import logger

from kinlmm.core.jax_config import ensure_jax_configured
from kinlmm.errors import DegenerateColumnError, InvalidParameterError
from kinlmm.genotype.matrix import (
    AlleleFrequencySummary,
    GenotypeMatrix,
    compute_allele_summary,
)

STANDARDIZE_MODES = ("p", "mu_sigma")


@jit
def _center_scale_impute(
    X: jnp.ndarray, mu: jnp.ndarray, sigma: jnp.ndarray
) -> jnp.ndarray:
    """Standardize columns and zero out missing (NaN) entries.

    Args:
        X: Dosages (n_samples, n_markers), NaN for missing.
        mu: Per-marker centers (n_markers,).
        sigma: Per-marker scales (n_markers,), all strictly positive.

    Returns:
        Standardized matrix with 0 at previously missing positions.
    """
    Z = (X - mu[None, :]) / sigma[None, :]
    return jnp.where(jnp.isnan(X), 0.0, Z)


def _scales_for_mode(
    summary: AlleleFrequencySummary, mode: str
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (mu, sigma, degenerate_columns) for a standardization mode."""
    if mode == "p":
        mu = 2.0 * summary.freq
        sigma = summary.hwe_sigma()
        degenerate = summary.degenerate_columns()
    elif mode == "mu_sigma":
        mu = np.asarray(summary.mu)
        sigma = np.asarray(summary.sigma)
        degenerate = np.flatnonzero(sigma <= 0.0)
    else:
        raise InvalidParameterError(
            f"Unknown standardization mode {mode!r}; expected one of {STANDARDIZE_MODES}"
        )
    return mu, sigma, degenerate


def standardize_genotypes(
    genotypes: GenotypeMatrix,
    summary: AlleleFrequencySummary | None = None,
    mode: str = "p",
) -> np.ndarray:
    """Standardize a genotype matrix column-wise.

    Args:
        genotypes: Genotype matrix with NaN for missing calls.
        summary: Per-marker allele summary. Computed from genotypes if None.
        mode: "p" (Hardy-Weinberg scaling, default) or "mu_sigma".

    Returns:
        Standardized (n_samples, n_markers) float64 matrix.

    Raises:
        DegenerateColumnError: If any marker has zero scale (freq of 0 or 1
            in "p" mode, zero empirical sigma in "mu_sigma" mode).
        InvalidParameterError: If mode is unknown or the summary does not
            match the matrix.
    """
    ensure_jax_configured()

    if summary is None:
        summary = compute_allele_summary(genotypes)
    if summary.n_markers != genotypes.n_markers:
        raise InvalidParameterError(
            f"Allele summary covers {summary.n_markers} markers but genotype "
            f"matrix has {genotypes.n_markers}"
        )

    mu, sigma, degenerate = _scales_for_mode(summary, mode)
    if degenerate.size:
        raise DegenerateColumnError(
            degenerate,
            reason="allele frequency 0 or 1" if mode == "p" else "zero variance",
        )

    Xs = _center_scale_impute(
        jnp.asarray(genotypes.dosages, dtype=jnp.float64),
        jnp.asarray(mu, dtype=jnp.float64),
        jnp.asarray(sigma, dtype=jnp.float64),
    )
    logger.debug(
        f"Standardized {genotypes.n_markers:,} markers (mode={mode}), "
        f"{genotypes.n_missing:,} missing calls set to 0"
    )
    return np.asarray(Xs)


def filter_polymorphic(
    genotypes: GenotypeMatrix,
    summary: AlleleFrequencySummary | None = None,
) -> tuple[GenotypeMatrix, AlleleFrequencySummary, np.ndarray]:
    """Drop markers whose allele frequency is exactly 0 or 1.

    Lets callers opt out of the hard failure in standardize_genotypes.

    Args:
        genotypes: Genotype matrix.
        summary: Matching allele summary, computed if None.

    Returns:
        Tuple of (filtered_genotypes, filtered_summary, kept_indices).

    Raises:
        InvalidParameterError: If no polymorphic marker remains.
    """
    if summary is None:
        summary = compute_allele_summary(genotypes)

    keep = np.ones(summary.n_markers, dtype=bool)
    keep[summary.degenerate_columns()] = False
    kept = np.flatnonzero(keep)
    if kept.size == 0:
        raise InvalidParameterError("No polymorphic markers remain after filtering")

    n_removed = summary.n_markers - kept.size
    if n_removed:
        logger.info(f"Removed {n_removed:,} monomorphic marker(s), {kept.size:,} kept")

    filtered = GenotypeMatrix(genotypes.dosages[:, kept])
    filtered_summary = AlleleFrequencySummary(
        freq=summary.freq[kept],
        mu=summary.mu[kept],
        sigma=summary.sigma[kept],
        n_missing=summary.n_missing[kept],
    )
    return filtered, filtered_summary, kept
