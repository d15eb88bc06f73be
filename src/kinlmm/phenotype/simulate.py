"""Phenotype simulation.

simulate_phenotype() builds a trait from a sparse set of causal markers:

    y* = Xs @ beta,  beta_j ~ Uniform(0.9, 1.1) on n_causal random markers
    Y  = y* + k * e,  e ~ N(0, 1)

with k chosen so that Var(y*) / Var(k * e) equals the target
signal-to-noise ratio.

simulate_lmm_phenotype() draws directly from the mixed model
y = X beta + g + e with g ~ N(0, tau K) and e ~ N(0, sigma2 I), which is
what variance-component recovery checks need.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from loguru import logger

from kinlmm.errors import InvalidParameterError, UndefinedScaleError
from kinlmm.lmm.eigen import SpectralDecomposition, eigendecompose_kinship

CAUSAL_EFFECT_RANGE = (0.9, 1.1)


@dataclass(frozen=True)
class PhenotypeSimulation:
    """Simulated phenotype and the effects that generated it.

    Attributes:
        beta: Causal effect vector (n_markers,), zero outside causal_indices.
        causal_indices: Sorted indices of the causal markers.
        signal: Genetic signal Xs @ beta (n_samples,).
        noise_scale: Factor k applied to the standard-normal noise.
        phenotype: Simulated trait (n_samples,).
    """

    beta: np.ndarray
    causal_indices: np.ndarray
    signal: np.ndarray
    noise_scale: float
    phenotype: np.ndarray


def simulate_phenotype(
    standardized: np.ndarray,
    n_causal: int,
    snr: float,
    rng: np.random.Generator,
) -> PhenotypeSimulation:
    """Simulate a trait from sparse causal effects plus scaled noise.

    Args:
        standardized: Standardized genotype matrix (n_samples, n_markers).
        n_causal: Number of causal markers, in [0, n_markers].
        snr: Target ratio Var(signal) / Var(noise), > 0.
        rng: Random source.

    Returns:
        PhenotypeSimulation.

    Raises:
        InvalidParameterError: If n_causal is out of range or snr <= 0.
        UndefinedScaleError: If the simulated signal has zero variance.
    """
    Xs = np.asarray(standardized, dtype=np.float64)
    if Xs.ndim != 2:
        raise InvalidParameterError(
            f"Standardized matrix must be 2-D, got shape {Xs.shape}"
        )
    n_samples, n_markers = Xs.shape
    if not 0 <= n_causal <= n_markers:
        raise InvalidParameterError(
            f"n_causal must be in [0, {n_markers}], got {n_causal}"
        )
    if not snr > 0:
        raise InvalidParameterError(f"snr must be > 0, got {snr}")

    causal = np.sort(rng.choice(n_markers, size=n_causal, replace=False))
    beta = np.zeros(n_markers)
    beta[causal] = rng.uniform(*CAUSAL_EFFECT_RANGE, size=n_causal)

    signal = Xs @ beta
    noise = rng.standard_normal(n_samples)

    var_signal = float(np.var(signal))
    if var_signal <= 0.0:
        raise UndefinedScaleError(
            "Simulated genetic signal has zero variance "
            f"(n_causal={n_causal}); noise scale is undefined"
        )
    k = float(np.sqrt(var_signal / (snr * np.var(noise))))

    logger.debug(
        f"Simulated phenotype: {n_causal} causal markers, snr={snr}, noise scale={k:.4g}"
    )
    return PhenotypeSimulation(
        beta=beta,
        causal_indices=causal,
        signal=signal,
        noise_scale=k,
        phenotype=signal + k * noise,
    )


def simulate_lmm_phenotype(
    covariance: SpectralDecomposition | np.ndarray,
    tau: float,
    sigma2: float,
    rng: np.random.Generator,
    X: np.ndarray | None = None,
    beta: np.ndarray | None = None,
) -> np.ndarray:
    """Draw y = X beta + g + e from the mixed model.

    Args:
        covariance: Kinship matrix or its SpectralDecomposition.
        tau: Genetic variance (>= 0).
        sigma2: Residual variance (>= 0).
        rng: Random source.
        X: Optional design matrix (n, q); requires beta.
        beta: Optional fixed effects (q,).

    Returns:
        Phenotype vector (n,).

    Raises:
        InvalidParameterError: For negative variances or mismatched X/beta.
    """
    if tau < 0 or sigma2 < 0:
        raise InvalidParameterError(
            f"Variance components must be >= 0, got tau={tau}, sigma2={sigma2}"
        )
    if not isinstance(covariance, SpectralDecomposition):
        covariance = eigendecompose_kinship(covariance)

    n = covariance.n_samples
    # g = U diag(sqrt(s)) z has covariance U diag(s) U^T = K
    g = covariance.principal_components() @ rng.standard_normal(n)
    y = np.sqrt(tau) * g + np.sqrt(sigma2) * rng.standard_normal(n)

    if (X is None) != (beta is None):
        raise InvalidParameterError("X and beta must be given together")
    if X is not None:
        X = np.asarray(X, dtype=np.float64).reshape(n, -1)
        beta = np.asarray(beta, dtype=np.float64).ravel()
        if X.shape[1] != beta.shape[0]:
            raise InvalidParameterError(
                f"X has {X.shape[1]} columns but beta has {beta.shape[0]} entries"
            )
        y = y + X @ beta
    return y
