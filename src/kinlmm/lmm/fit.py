"""Univariate linear mixed model fitting.

Fits

    y = X beta + g + e,   g ~ N(0, tau K),   e ~ N(0, sigma2 I)

by REML with one of two strategies sharing the FittingStrategy interface:

- EigenREMLStrategy takes a SpectralDecomposition of K. y and X are rotated
  once; each likelihood evaluation is then O(n q^2). Preferred whenever the
  decomposition is already available.
- AIREMLStrategy takes K itself and runs average-information REML, O(n^3)
  per iteration, with no decomposition up front.

fit_lmm() picks the eigen strategy when a decomposition is supplied.

Example:
    >>> decomposition = eigendecompose_kinship(K)
    >>> fit = fit_lmm(y, X, decomposition=decomposition, test_index=1)
    >>> fit.zstat, fit.pvalue, fit.status
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from loguru import logger

from kinlmm.core.config import FitConfig
from kinlmm.core.jax_config import ensure_jax_configured
from kinlmm.errors import FitStatus, InvalidParameterError
from kinlmm.lmm.aireml import fit_aireml
from kinlmm.lmm.eigen import SpectralDecomposition
from kinlmm.lmm.likelihood import (
    logdet_xtx,
    mle_log_likelihood,
    mle_log_likelihood_derivative,
    reml_log_likelihood,
    reml_log_likelihood_derivative,
    rotate,
    weighted_terms,
)
from kinlmm.lmm.optimize import optimize_lambda
from kinlmm.lmm.stats import normal_two_sided_pvalue, wald_z


@dataclass(frozen=True)
class MixedModelFit:
    """Result of a mixed-model fit.

    Attributes:
        beta: Fixed-effect estimates (BLUP_beta), shape (q,).
        varbeta: Covariance of beta, shape (q, q).
        tau: Genetic variance component.
        sigma2: Residual variance component.
        logl: Restricted log-likelihood at the estimate.
        se: Standard errors of beta.
        z: Wald z statistics, beta / se.
        p_values: Two-sided normal p-values for z.
        test_index: Index of the coefficient reported by zstat / pvalue.
        status: CONVERGED or NON_CONVERGENCE.
        boundary: A variance component sits on the non-negativity boundary.
        n_iter: Iterations spent by the variance-component search.
        method: "eigen" or "aireml".
        blup_random: BLUP of the random genetic effect g, shape (n,).
    """

    beta: np.ndarray
    varbeta: np.ndarray
    tau: float
    sigma2: float
    logl: float
    se: np.ndarray
    z: np.ndarray
    p_values: np.ndarray
    test_index: int
    status: FitStatus
    boundary: bool
    n_iter: int
    method: str
    blup_random: np.ndarray

    @property
    def converged(self) -> bool:
        return self.status is FitStatus.CONVERGED

    @property
    def zstat(self) -> float:
        return float(self.z[self.test_index])

    @property
    def pvalue(self) -> float:
        return float(self.p_values[self.test_index])

    @property
    def lambda_ratio(self) -> float:
        """tau / sigma2 (inf when sigma2 is zero)."""
        return self.tau / self.sigma2 if self.sigma2 > 0 else float("inf")

    @property
    def heritability(self) -> float:
        """tau / (tau + sigma2)."""
        total = self.tau + self.sigma2
        return self.tau / total if total > 0 else float("nan")

    def summary(self) -> dict[str, float | int | str | bool]:
        """Flat dictionary of the scalar results, for logging and output files."""
        return {
            "method": self.method,
            "status": self.status.value,
            "boundary": self.boundary,
            "n_iter": self.n_iter,
            "tau": self.tau,
            "sigma2": self.sigma2,
            "heritability": self.heritability,
            "logl": self.logl,
            "test_index": self.test_index,
            "beta": float(self.beta[self.test_index]),
            "se": float(self.se[self.test_index]),
            "z": self.zstat,
            "p": self.pvalue,
        }


def _validate_inputs(
    y: np.ndarray, X: np.ndarray, n_cov: int, test_index: int
) -> tuple[np.ndarray, np.ndarray, int]:
    """Check shapes and finiteness; return float arrays and normalized index."""
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, None]
    if y.ndim != 1:
        raise InvalidParameterError(f"Phenotype must be 1-D, got shape {y.shape}")
    if X.ndim != 2 or X.shape[0] != y.shape[0]:
        raise InvalidParameterError(
            f"Design matrix shape {X.shape} does not match phenotype length {y.shape[0]}"
        )
    n, q = X.shape
    if q < 1 or q >= n:
        raise InvalidParameterError(
            f"Design matrix needs 1 <= q < n columns, got q={q}, n={n}"
        )
    if n_cov != n:
        raise InvalidParameterError(
            f"Covariance structure has dimension {n_cov} but phenotype has {n} samples"
        )
    if not (np.all(np.isfinite(y)) and np.all(np.isfinite(X))):
        raise InvalidParameterError("Phenotype and design matrix must be finite")
    if np.linalg.matrix_rank(X) < q:
        raise InvalidParameterError("Design matrix is not full column rank")
    if not -q <= test_index < q:
        raise InvalidParameterError(
            f"test_index {test_index} out of range for {q} fixed effects"
        )
    return y, X, test_index % q


def _range_only_tau(
    eigenvalues: np.ndarray, UtX: np.ndarray, Uty: np.ndarray, beta: np.ndarray
) -> float:
    """REML estimate of tau with sigma2 = 0, where V = tau * K.

    Directions with a zero eigenvalue carry no variance and only pin down
    beta, so the degrees of freedom are rank(K) - q + rank(X restricted to
    the null space of K).
    """
    pos = eigenvalues > 0.0
    resid = Uty[pos] - UtX[pos] @ beta
    null_X = UtX[~pos]
    k = int(np.linalg.matrix_rank(null_X)) if null_X.shape[0] else 0
    df = max(int(pos.sum()) - UtX.shape[1] + k, 1)
    return float(np.sum(resid**2 / eigenvalues[pos])) / df


def _build_fit(
    beta: np.ndarray,
    varbeta: np.ndarray,
    tau: float,
    sigma2: float,
    logl: float,
    test_index: int,
    converged: bool,
    boundary: bool,
    n_iter: int,
    method: str,
    blup_random: np.ndarray,
    warn: bool = True,
) -> MixedModelFit:
    z, se = wald_z(beta, varbeta)
    status = FitStatus.CONVERGED if converged else FitStatus.NON_CONVERGENCE
    if warn and not converged:
        logger.warning(
            f"{method} REML did not converge within {n_iter} iteration(s); "
            "returning the last iterate"
        )
    if warn and boundary:
        logger.warning(
            f"{method} REML boundary solution: tau={tau:.4g}, sigma2={sigma2:.4g}"
        )
    return MixedModelFit(
        beta=beta,
        varbeta=varbeta,
        tau=float(tau),
        sigma2=float(sigma2),
        logl=float(logl),
        se=se,
        z=z,
        p_values=normal_two_sided_pvalue(z),
        test_index=test_index,
        status=status,
        boundary=bool(boundary),
        n_iter=int(n_iter),
        method=method,
        blup_random=blup_random,
    )


class FittingStrategy(ABC):
    """Interface shared by the eigen-form and direct-kinship REML fitters.

    Args:
        config: Numerical settings (defaults to FitConfig()).
        warn: Log a warning for non-converged and boundary fits. Marker
            scans turn this off and report counts instead.
    """

    method: str = ""

    def __init__(self, config: FitConfig | None = None, warn: bool = True) -> None:
        self.config = config or FitConfig()
        self.warn = warn

    @abstractmethod
    def fit(
        self,
        y: np.ndarray,
        X: np.ndarray,
        covariance: SpectralDecomposition | np.ndarray,
        test_index: int = -1,
    ) -> MixedModelFit:
        """Fit the model and report a Wald test for X[:, test_index]."""


class EigenREMLStrategy(FittingStrategy):
    """REML over the variance ratio in the eigenbasis of K."""

    method = "eigen"

    def fit(
        self,
        y: np.ndarray,
        X: np.ndarray,
        covariance: SpectralDecomposition,
        test_index: int = -1,
    ) -> MixedModelFit:
        if not isinstance(covariance, SpectralDecomposition):
            raise InvalidParameterError(
                "EigenREMLStrategy needs a SpectralDecomposition of the kinship matrix"
            )
        ensure_jax_configured()
        y, X, test_index = _validate_inputs(y, X, covariance.n_samples, test_index)
        cfg = self.config
        n, q = X.shape
        df = n - q

        eigenvalues = covariance.eigenvalues
        Uty, UtX = rotate(covariance, y, X)
        ldxtx = logdet_xtx(UtX)

        opt = optimize_lambda(
            lambda lam: reml_log_likelihood(lam, eigenvalues, UtX, Uty, ldxtx),
            lambda lam: reml_log_likelihood_derivative(lam, eigenvalues, UtX, Uty),
            l_min=cfg.l_min,
            l_max=cfg.l_max,
            n_region=cfg.n_region,
            tol=cfg.tol,
            max_iter=cfg.max_iter,
        )

        lam = opt.lambda_opt
        logl = opt.logl
        boundary = opt.converged and (opt.at_lower or opt.at_upper)
        if opt.converged and opt.at_lower:
            # True optimum at or below tau = 0: clamp tau to exactly zero
            lam = 0.0
            logl = reml_log_likelihood(lam, eigenvalues, UtX, Uty, ldxtx)

        t = weighted_terms(lam, eigenvalues, UtX, Uty)
        if opt.converged and opt.at_upper:
            # Optimum at or beyond sigma2 = 0: clamp sigma2, tau from the range of K
            sigma2 = 0.0
            tau = _range_only_tau(eigenvalues, UtX, Uty, t.beta)
            varbeta = (tau / lam) * t.XtHiX_inv
        else:
            sigma2 = t.P_yy / df
            tau = lam * sigma2
            varbeta = sigma2 * t.XtHiX_inv
        blup_random = lam * (covariance.eigenvectors @ (eigenvalues * t.Py))

        logger.debug(
            f"Eigen REML: lambda={lam:.6g}, tau={tau:.6g}, sigma2={sigma2:.6g}, "
            f"logl={logl:.6f}, iterations={opt.n_iter}"
        )
        return _build_fit(
            beta=t.beta,
            varbeta=varbeta,
            tau=tau,
            sigma2=sigma2,
            logl=logl,
            test_index=test_index,
            converged=opt.converged,
            boundary=boundary,
            n_iter=opt.n_iter,
            method=self.method,
            blup_random=blup_random,
            warn=self.warn,
        )


class AIREMLStrategy(FittingStrategy):
    """Average-information REML on (tau, sigma2) using K directly."""

    method = "aireml"

    def fit(
        self,
        y: np.ndarray,
        X: np.ndarray,
        covariance: np.ndarray,
        test_index: int = -1,
    ) -> MixedModelFit:
        K = np.asarray(covariance, dtype=np.float64)
        if K.ndim != 2 or K.shape[0] != K.shape[1]:
            raise InvalidParameterError(f"Kinship matrix must be square, got shape {K.shape}")
        if not np.all(np.isfinite(K)):
            raise InvalidParameterError("Kinship matrix contains NaN/Inf")
        ensure_jax_configured()
        y, X, test_index = _validate_inputs(y, X, K.shape[0], test_index)

        res = fit_aireml(y, X, K, tol=self.config.tol, max_iter=self.config.max_iter)
        state = res.state
        blup_random = res.tau * (K @ state.Py)

        return _build_fit(
            beta=state.beta,
            varbeta=state.XtViX_inv,
            tau=res.tau,
            sigma2=res.sigma2,
            logl=state.logl,
            test_index=test_index,
            converged=res.converged,
            boundary=res.boundary,
            n_iter=res.n_iter,
            method=self.method,
            blup_random=blup_random,
            warn=self.warn,
        )


FIT_METHODS = {
    EigenREMLStrategy.method: EigenREMLStrategy,
    AIREMLStrategy.method: AIREMLStrategy,
}


def get_strategy(method: str, config: FitConfig | None = None) -> FittingStrategy:
    """Instantiate a fitting strategy by name ("eigen" or "aireml")."""
    try:
        return FIT_METHODS[method](config)
    except KeyError:
        raise InvalidParameterError(
            f"Unknown fit method {method!r}; expected one of {sorted(FIT_METHODS)}"
        ) from None


def fit_lmm(
    y: np.ndarray,
    X: np.ndarray,
    kinship: np.ndarray | None = None,
    decomposition: SpectralDecomposition | None = None,
    test_index: int = -1,
    config: FitConfig | None = None,
) -> MixedModelFit:
    """Fit the mixed model with whichever covariance input is available.

    Uses EigenREMLStrategy when a decomposition is given, otherwise
    AIREMLStrategy on the kinship matrix.

    Args:
        y: Phenotype (n,).
        X: Design matrix (n, q); first column is normally the intercept.
        kinship: Kinship matrix (n, n), used when no decomposition is given.
        decomposition: Eigendecomposition of the kinship matrix.
        test_index: Coefficient reported by fit.zstat / fit.pvalue
            (default: last column).
        config: Numerical settings.

    Returns:
        MixedModelFit.

    Raises:
        InvalidParameterError: If neither kinship nor decomposition is given,
            or inputs are malformed.
    """
    if decomposition is not None:
        return EigenREMLStrategy(config).fit(y, X, decomposition, test_index)
    if kinship is not None:
        return AIREMLStrategy(config).fit(y, X, kinship, test_index)
    raise InvalidParameterError("fit_lmm needs a kinship matrix or its decomposition")


def fit_mle_eigen(
    y: np.ndarray,
    X: np.ndarray,
    decomposition: SpectralDecomposition,
    config: FitConfig | None = None,
) -> tuple[float, float, bool]:
    """Maximum-likelihood variance ratio in the eigenbasis.

    Used for likelihood ratio tests, which need ML rather than REML
    log-likelihoods of nested fixed-effect models.

    Returns:
        Tuple of (lambda_mle, logl_mle, converged).
    """
    cfg = config or FitConfig()
    y, X, _ = _validate_inputs(y, X, decomposition.n_samples, -1)
    eigenvalues = decomposition.eigenvalues
    Uty, UtX = rotate(decomposition, y, X)
    opt = optimize_lambda(
        lambda lam: mle_log_likelihood(lam, eigenvalues, UtX, Uty),
        lambda lam: mle_log_likelihood_derivative(lam, eigenvalues, UtX, Uty),
        l_min=cfg.l_min,
        l_max=cfg.l_max,
        n_region=cfg.n_region,
        tol=cfg.tol,
        max_iter=cfg.max_iter,
    )
    lam, logl = opt.lambda_opt, opt.logl
    if opt.converged and opt.at_lower:
        lam = 0.0
        logl = mle_log_likelihood(lam, eigenvalues, UtX, Uty)
    return lam, logl, opt.converged
