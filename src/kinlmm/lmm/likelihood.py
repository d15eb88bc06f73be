"""REML and ML log-likelihoods in the eigenbasis of the kinship matrix.

With K = U diag(s) U^T, rotating y and X by U^T makes the phenotype
covariance diagonal:

    Var(U^T y) = sigma2 * diag(lambda * s + 1),   lambda = tau / sigma2

so generalized least squares reduces to weighted least squares with weights
Hi_eval = 1 / (lambda * s + 1). With sigma2 profiled out, the restricted
log-likelihood of the variance ratio is

    f(lambda) = c - 0.5 * logdet_h - 0.5 * logdet_hiw - 0.5 * df * log(P_yy)

where
    c          = 0.5 * df * (log(df) - log(2*pi) - 1)
    logdet_h   = sum(log(lambda * s + 1))
    logdet_hiw = log|X^T H^-1 X| - log|X^T X|
    P_yy       = y^T P y,  P = H^-1 - H^-1 X (X^T H^-1 X)^-1 X^T H^-1
    df         = n - q

and sigma2_hat = P_yy / df. Each evaluation is O(n q^2) once y and X are
rotated. The derivative with respect to lambda is

    f'(lambda) = -0.5 * tr(P S) + 0.5 * df * (y^T P S P y) / P_yy

with S = diag(s).

Reference: Zhou & Stephens (2012) Nature Genetics, Supplementary Information
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import scipy.linalg

from kinlmm.lmm.eigen import SpectralDecomposition

P_YY_MIN = 1e-8


@dataclass(frozen=True)
class WeightedTerms:
    """Weighted least-squares quantities at a fixed variance ratio.

    Attributes:
        Hi_eval: 1 / (lambda * s + 1), shape (n,).
        beta: GLS fixed-effect estimate, shape (q,).
        XtHiX_inv: (X^T H^-1 X)^-1, shape (q, q). Multiply by sigma2 to get
            the covariance of beta.
        P_yy: y^T P y, clamped below at P_YY_MIN.
        Py: P y in the rotated basis, shape (n,).
        logdet_h: sum(log(lambda * s + 1)).
        logdet_XtHiX: log|X^T H^-1 X|.
    """

    Hi_eval: np.ndarray
    beta: np.ndarray
    XtHiX_inv: np.ndarray
    P_yy: float
    Py: np.ndarray
    logdet_h: float
    logdet_XtHiX: float


def rotate(
    decomposition: SpectralDecomposition, y: np.ndarray, X: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Rotate phenotype and design matrix into the kinship eigenbasis.

    Returns:
        Tuple of (Uty, UtX) with shapes (n,) and (n, q).
    """
    Ut = decomposition.eigenvectors.T
    return Ut @ y, Ut @ X


def weighted_terms(
    lambda_val: float,
    eigenvalues: np.ndarray,
    UtX: np.ndarray,
    Uty: np.ndarray,
) -> WeightedTerms:
    """Compute the weighted least-squares terms at one variance ratio.

    Args:
        lambda_val: Variance ratio tau / sigma2 (>= 0).
        eigenvalues: Kinship eigenvalues (n,), >= 0.
        UtX: Rotated design matrix (n, q), full column rank.
        Uty: Rotated phenotype (n,).

    Returns:
        WeightedTerms at lambda_val.
    """
    v = lambda_val * eigenvalues + 1.0
    Hi_eval = 1.0 / v
    HiX = Hi_eval[:, None] * UtX
    XtHiX = UtX.T @ HiX
    XtHiy = HiX.T @ Uty

    cho = scipy.linalg.cho_factor(XtHiX, lower=True, check_finite=False)
    beta = scipy.linalg.cho_solve(cho, XtHiy, check_finite=False)
    XtHiX_inv = scipy.linalg.cho_solve(cho, np.eye(XtHiX.shape[0]), check_finite=False)
    logdet_XtHiX = 2.0 * float(np.sum(np.log(np.diag(cho[0]))))

    Py = Hi_eval * (Uty - UtX @ beta)
    # Rounding can leave P_yy at or slightly below zero for a noise-free fit
    P_yy = max(float(Uty @ Py), P_YY_MIN)

    return WeightedTerms(
        Hi_eval=Hi_eval,
        beta=beta,
        XtHiX_inv=XtHiX_inv,
        P_yy=P_yy,
        Py=Py,
        logdet_h=float(np.sum(np.log(v))),
        logdet_XtHiX=logdet_XtHiX,
    )


def logdet_xtx(UtX: np.ndarray) -> float:
    """log|X^T X|, constant in lambda; rotation by U^T leaves it unchanged."""
    sign, logdet = np.linalg.slogdet(UtX.T @ UtX)
    return float(logdet) if sign > 0 else 0.0


def reml_log_likelihood(
    lambda_val: float,
    eigenvalues: np.ndarray,
    UtX: np.ndarray,
    Uty: np.ndarray,
    logdet_XtX: float | None = None,
) -> float:
    """Profiled REML log-likelihood of the variance ratio.

    Args:
        lambda_val: Variance ratio tau / sigma2.
        eigenvalues: Kinship eigenvalues (n,).
        UtX: Rotated design matrix (n, q).
        Uty: Rotated phenotype (n,).
        logdet_XtX: Precomputed log|X^T X|; computed if None.

    Returns:
        Log-likelihood value (positive for maximization)
    """
    n, q = UtX.shape
    df = n - q
    if logdet_XtX is None:
        logdet_XtX = logdet_xtx(UtX)

    t = weighted_terms(lambda_val, eigenvalues, UtX, Uty)
    logdet_hiw = t.logdet_XtHiX - logdet_XtX

    c = 0.5 * df * (np.log(df) - np.log(2.0 * np.pi) - 1.0)
    return float(c - 0.5 * t.logdet_h - 0.5 * logdet_hiw - 0.5 * df * np.log(t.P_yy))


def reml_log_likelihood_derivative(
    lambda_val: float,
    eigenvalues: np.ndarray,
    UtX: np.ndarray,
    Uty: np.ndarray,
) -> float:
    """Derivative of the profiled REML log-likelihood with respect to lambda.

    tr(P S) = tr(H^-1 S) - tr((X^T H^-1 X)^-1 X^T H^-1 S H^-1 X).
    """
    n, q = UtX.shape
    df = n - q
    t = weighted_terms(lambda_val, eigenvalues, UtX, Uty)

    HiX = t.Hi_eval[:, None] * UtX
    XtHiSHiX = HiX.T @ (eigenvalues[:, None] * HiX)
    trace_PS = float(np.sum(t.Hi_eval * eigenvalues)) - float(
        np.sum(t.XtHiX_inv * XtHiSHiX)
    )
    yPSPy = float(np.sum(eigenvalues * t.Py * t.Py))

    return -0.5 * trace_PS + 0.5 * df * yPSPy / t.P_yy


def mle_log_likelihood(
    lambda_val: float,
    eigenvalues: np.ndarray,
    UtX: np.ndarray,
    Uty: np.ndarray,
) -> float:
    """Profiled ML log-likelihood of the variance ratio.

    Differences from REML: uses n instead of df and drops logdet_hiw.
    Used for likelihood ratio tests between nested fixed-effect models.
    """
    n = UtX.shape[0]
    t = weighted_terms(lambda_val, eigenvalues, UtX, Uty)
    c = 0.5 * n * (np.log(n) - np.log(2.0 * np.pi) - 1.0)
    return float(c - 0.5 * t.logdet_h - 0.5 * n * np.log(t.P_yy))


def mle_log_likelihood_derivative(
    lambda_val: float,
    eigenvalues: np.ndarray,
    UtX: np.ndarray,
    Uty: np.ndarray,
) -> float:
    """Derivative of the profiled ML log-likelihood with respect to lambda."""
    n = UtX.shape[0]
    t = weighted_terms(lambda_val, eigenvalues, UtX, Uty)
    trace_HiS = float(np.sum(t.Hi_eval * eigenvalues))
    yPSPy = float(np.sum(eigenvalues * t.Py * t.Py))
    return -0.5 * trace_HiS + 0.5 * n * yPSPy / t.P_yy
