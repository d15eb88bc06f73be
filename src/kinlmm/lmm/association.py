"""Marker-by-marker association scan with the eigen-form mixed model.

Each marker is tested in its own fit with design [covariates | marker], so
the variance components are re-estimated per marker (GEMMA -lmm style).
The Wald test is always reported; mode "lrt" additionally fits both the
null and the alternative model by maximum likelihood and reports a
chi-squared likelihood ratio test.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from loguru import logger

from kinlmm.core.config import FitConfig
from kinlmm.core.progress import progress_iterator
from kinlmm.errors import InvalidParameterError
from kinlmm.genotype.matrix import AlleleFrequencySummary
from kinlmm.lmm.eigen import SpectralDecomposition
from kinlmm.lmm.fit import EigenREMLStrategy, fit_mle_eigen
from kinlmm.lmm.stats import calc_lrt_test

ASSOC_MODES = ("wald", "lrt")


@dataclass
class AssocResult:
    """Association test result for a single marker.

    l_mle and p_lrt are only filled in "lrt" mode.
    """

    marker: int
    af: float
    n_miss: int
    beta: float
    se: float
    z: float
    p_wald: float
    tau: float
    sigma2: float
    l_remle: float
    logl_H1: float
    status: str
    boundary: bool
    l_mle: float | None = None
    p_lrt: float | None = None


def _covariate_matrix(covariates: np.ndarray | None, n: int) -> np.ndarray:
    if covariates is None:
        return np.ones((n, 1))
    W = np.asarray(covariates, dtype=np.float64)
    if W.ndim == 1:
        W = W[:, None]
    if W.shape[0] != n:
        raise InvalidParameterError(
            f"Covariate matrix has {W.shape[0]} rows but phenotype has {n} samples"
        )
    return W


def run_association(
    y: np.ndarray,
    genotypes_std: np.ndarray,
    decomposition: SpectralDecomposition,
    covariates: np.ndarray | None = None,
    marker_indices: np.ndarray | list[int] | None = None,
    mode: str = "wald",
    config: FitConfig | None = None,
    summary: AlleleFrequencySummary | None = None,
    show_progress: bool = False,
) -> list[AssocResult]:
    """Test each marker for association with the phenotype.

    Args:
        y: Phenotype (n,).
        genotypes_std: Standardized genotypes (n, p).
        decomposition: Eigendecomposition of the kinship matrix.
        covariates: Covariates (n, c). Defaults to an intercept column.
            No intercept is added to user-supplied covariates.
        marker_indices: Markers to test (default: all).
        mode: "wald" or "lrt".
        config: Numerical settings for the variance-component search.
        summary: Allele summary used to fill af and n_miss.
        show_progress: Show a progress bar over markers.

    Returns:
        One AssocResult per tested marker, in marker order. Constant
        marker columns are skipped.

    Raises:
        InvalidParameterError: On an unknown mode or mismatched shapes.
    """
    if mode not in ASSOC_MODES:
        raise InvalidParameterError(f"Unknown test mode {mode!r}; expected one of {ASSOC_MODES}")

    y = np.asarray(y, dtype=np.float64)
    Xs = np.asarray(genotypes_std, dtype=np.float64)
    if Xs.ndim != 2 or Xs.shape[0] != y.shape[0]:
        raise InvalidParameterError(
            f"Genotype matrix shape {Xs.shape} does not match phenotype length {y.shape[0]}"
        )
    n, p = Xs.shape
    W = _covariate_matrix(covariates, n)

    if marker_indices is None:
        markers = np.arange(p)
    else:
        markers = np.asarray(marker_indices, dtype=np.int64)
        if markers.size and (markers.min() < 0 or markers.max() >= p):
            raise InvalidParameterError(f"Marker indices must lie in [0, {p})")

    cfg = config or FitConfig()
    strategy = EigenREMLStrategy(cfg, warn=False)

    logl_H0_mle = None
    if mode == "lrt":
        _, logl_H0_mle, null_converged = fit_mle_eigen(y, W, decomposition, cfg)
        if not null_converged:
            logger.warning("Null model ML fit did not converge; LRT p-values may be unreliable")

    results: list[AssocResult] = []
    n_skipped = 0
    n_nonconv = 0
    n_boundary = 0

    iterator = markers
    if show_progress:
        iterator = progress_iterator(markers, total=len(markers), desc="Association")

    for j in iterator:
        j = int(j)
        x = Xs[:, j]
        if np.ptp(x) == 0.0:
            n_skipped += 1
            continue
        X = np.column_stack([W, x])

        fit = strategy.fit(y, X, decomposition, test_index=-1)
        if not fit.converged:
            n_nonconv += 1
        if fit.boundary:
            n_boundary += 1

        result = AssocResult(
            marker=j,
            af=float(summary.freq[j]) if summary is not None else float("nan"),
            n_miss=int(summary.n_missing[j]) if summary is not None else 0,
            beta=float(fit.beta[-1]),
            se=float(fit.se[-1]),
            z=fit.zstat,
            p_wald=fit.pvalue,
            tau=fit.tau,
            sigma2=fit.sigma2,
            l_remle=fit.lambda_ratio,
            logl_H1=fit.logl,
            status=fit.status.value,
            boundary=fit.boundary,
        )
        if logl_H0_mle is not None:
            l_mle, logl_H1_mle, _ = fit_mle_eigen(y, X, decomposition, cfg)
            result.l_mle = l_mle
            result.p_lrt = calc_lrt_test(logl_H1_mle, logl_H0_mle)
        results.append(result)

    if n_skipped:
        logger.warning(f"Skipped {n_skipped} constant marker column(s)")
    if n_nonconv:
        logger.warning(f"{n_nonconv} of {len(results)} marker fit(s) did not converge")
    if n_boundary:
        logger.info(f"{n_boundary} of {len(results)} marker fit(s) hit the tau/sigma2 boundary")
    logger.info(f"Association ({mode}): tested {len(results)} marker(s)")
    return results
