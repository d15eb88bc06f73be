"""Average-information REML on the kinship matrix directly.

Estimates theta = (tau, sigma2) for V = tau * K + sigma2 * I without an
eigendecomposition. Each iteration forms

    P      = V^-1 - V^-1 X (X^T V^-1 X)^-1 X^T V^-1
    score  = -0.5 * tr(P V_k) + 0.5 * y^T P V_k P y
    AI_kl  =  0.5 * y^T P V_k P V_l P y

with V_1 = K and V_2 = I, and updates theta <- theta + AI^-1 score. This is
O(n^3) per iteration. Following GCTA, the search starts from Var(y)/2 for
both components followed by one EM step.

Variance components are constrained non-negative: a step that would make a
component negative sets it to 0, the step for the remaining components is
re-solved on their block of AI, and the fit is flagged as a boundary
solution.

Reference: Gilmour, Thompson & Cullis (1995) Biometrics 51:1440-1450;
Yang et al. (2011) GCTA, Am J Hum Genet 88:76-82.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import scipy.linalg
from loguru import logger

from kinlmm.core.threading import blas_threads


@dataclass(frozen=True)
class AIREMLState:
    """Quantities of the REML problem at one value of theta."""

    P: np.ndarray
    Py: np.ndarray
    beta: np.ndarray
    XtViX_inv: np.ndarray
    logl: float


@dataclass(frozen=True)
class AIREMLResult:
    """Outcome of the AI-REML iteration.

    Attributes:
        tau: Genetic variance component.
        sigma2: Residual variance component.
        state: REML quantities at the returned (tau, sigma2).
        n_iter: Number of AI updates performed.
        converged: True if the tolerance was met within the budget.
        boundary: True if a component was clamped to zero.
    """

    tau: float
    sigma2: float
    state: AIREMLState
    n_iter: int
    converged: bool
    boundary: bool


def _effective_sigma2(sigma2: float, var_y: float) -> float:
    # V = tau * K alone is singular when K is rank deficient
    return max(sigma2, 1e-10 * var_y)


def reml_state(
    tau: float,
    sigma2: float,
    K: np.ndarray,
    y: np.ndarray,
    X: np.ndarray,
    logdet_XtX: float,
) -> AIREMLState:
    """Compute P, P y, the GLS estimate and the REML log-likelihood at theta.

    Args:
        tau: Genetic variance component (>= 0).
        sigma2: Residual variance component (> 0).
        K: Kinship matrix (n, n).
        y: Phenotype (n,).
        X: Design matrix (n, q).
        logdet_XtX: log|X^T X|.

    Returns:
        AIREMLState at (tau, sigma2).
    """
    n, q = X.shape
    V = tau * K
    V[np.diag_indices(n)] += sigma2

    cho = scipy.linalg.cho_factor(V, lower=True, check_finite=False)
    logdet_V = 2.0 * float(np.sum(np.log(np.diag(cho[0]))))
    ViX = scipy.linalg.cho_solve(cho, X, check_finite=False)
    Viy = scipy.linalg.cho_solve(cho, y, check_finite=False)

    XtViX = X.T @ ViX
    cho_x = scipy.linalg.cho_factor(XtViX, lower=True, check_finite=False)
    XtViX_inv = scipy.linalg.cho_solve(cho_x, np.eye(q), check_finite=False)
    logdet_XtViX = 2.0 * float(np.sum(np.log(np.diag(cho_x[0]))))

    beta = XtViX_inv @ (X.T @ Viy)
    Vi = scipy.linalg.cho_solve(cho, np.eye(n), check_finite=False)
    P = Vi - ViX @ XtViX_inv @ ViX.T
    P = 0.5 * (P + P.T)
    Py = Viy - ViX @ beta
    yPy = float(y @ Py)

    logl = -0.5 * (
        (n - q) * np.log(2.0 * np.pi)
        + logdet_V
        + logdet_XtViX
        - logdet_XtX
        + yPy
    )
    return AIREMLState(P=P, Py=Py, beta=beta, XtViX_inv=XtViX_inv, logl=float(logl))


def _score_and_ai(
    state: AIREMLState, K: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Score vector and average-information matrix for (tau, sigma2)."""
    P, Py = state.P, state.Py
    KPy = K @ Py
    PKPy = P @ KPy
    PPy = P @ Py

    score = np.array(
        [
            -0.5 * float(np.sum(P * K)) + 0.5 * float(Py @ KPy),
            -0.5 * float(np.trace(P)) + 0.5 * float(Py @ Py),
        ]
    )
    ai_12 = 0.5 * float(KPy @ PPy)
    AI = np.array(
        [
            [0.5 * float(KPy @ PKPy), ai_12],
            [ai_12, 0.5 * float(Py @ PPy)],
        ]
    )
    return score, AI


def _ai_step(
    theta: np.ndarray, score: np.ndarray, AI: np.ndarray, n: int
) -> np.ndarray:
    """AI update AI^-1 score, or an EM step when AI is singular."""
    try:
        return np.linalg.solve(AI, score)
    except np.linalg.LinAlgError:
        logger.debug("Singular AI matrix, taking an EM step")
        return theta**2 * 2.0 * score / n


def fit_aireml(
    y: np.ndarray,
    X: np.ndarray,
    K: np.ndarray,
    tol: float = 1e-8,
    max_iter: int = 100,
) -> AIREMLResult:
    """Run AI-REML for y = X beta + g + e, g ~ N(0, tau K), e ~ N(0, sigma2 I).

    Args:
        y: Phenotype (n,).
        X: Design matrix (n, q), full column rank.
        K: Kinship matrix (n, n), symmetric.
        tol: Stop when max |delta theta| < tol * Var(y).
        max_iter: Maximum number of AI updates. Zero returns the starting
            values unconverged.

    Returns:
        AIREMLResult with the final variance components and status flags.
    """
    n, q = X.shape
    var_y = float(np.var(y, ddof=1)) if n > 1 else 1.0
    if var_y <= 0.0:
        var_y = 1.0
    logdet_XtX = float(np.linalg.slogdet(X.T @ X)[1])

    theta = np.array([0.5 * var_y, 0.5 * var_y])
    boundary = False

    with blas_threads():
        state = reml_state(theta[0], theta[1], K, y, X, logdet_XtX)

        if max_iter <= 0:
            return AIREMLResult(
                tau=float(theta[0]),
                sigma2=float(theta[1]),
                state=state,
                n_iter=0,
                converged=False,
                boundary=False,
            )

        # One EM step from the starting point
        score, _ = _score_and_ai(state, K)
        theta = theta + theta**2 * 2.0 * score / n
        if np.any(theta < 0.0):
            theta = np.maximum(theta, 0.0)
            boundary = True
        state = reml_state(
            theta[0], _effective_sigma2(theta[1], var_y), K, y, X, logdet_XtX
        )

        converged = False
        n_iter = 0
        for n_iter in range(1, max_iter + 1):
            score, AI = _score_and_ai(state, K)
            new_theta = theta + _ai_step(theta, score, AI, n)
            clamped = new_theta < 0.0
            if np.any(clamped):
                # Hold clamped components at 0 and re-solve for the others
                boundary = True
                free = ~clamped
                new_theta = np.where(clamped, 0.0, theta)
                if np.any(free):
                    sub = _ai_step(theta[free], score[free], AI[np.ix_(free, free)], n)
                    new_theta[free] = np.maximum(theta[free] + sub, 0.0)

            delta = np.max(np.abs(new_theta - theta))
            theta = new_theta
            state = reml_state(
                theta[0], _effective_sigma2(theta[1], var_y), K, y, X, logdet_XtX
            )
            logger.debug(
                f"AI-REML iter {n_iter}: tau={theta[0]:.6g}, "
                f"sigma2={theta[1]:.6g}, logl={state.logl:.6f}"
            )
            if delta < tol * var_y:
                converged = True
                break

    boundary = boundary and bool(np.any(theta == 0.0))
    return AIREMLResult(
        tau=float(theta[0]),
        sigma2=float(theta[1]),
        state=state,
        n_iter=n_iter,
        converged=converged,
        boundary=boundary,
    )
