"""Variance-ratio optimization for the eigen-form REML fit.

Follows the derivative-based approach of GEMMA's CalcLambda:
1. Scan log-spaced regions of [l_min, l_max] for sign changes of the
   log-likelihood derivative
2. Refine each bracketed stationary point with Brent's root finder
3. Keep the candidate (boundaries included) with the highest log-likelihood

The search works in t = log(lambda), where the derivative is
lambda * f'(lambda). Every root refinement has an explicit iteration
budget, and the result records whether the tolerance was met so callers can
tell a converged optimum from an exhausted budget.

Reference: Brent, R.P. (1973) "Algorithms for Minimization without Derivatives"
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class RootResult:
    """Outcome of a bracketed root search."""

    root: float
    n_iter: int
    converged: bool


@dataclass(frozen=True)
class LambdaOptimum:
    """Outcome of the variance-ratio search.

    Attributes:
        lambda_opt: Optimal variance ratio tau / sigma2.
        logl: Log-likelihood at lambda_opt.
        n_iter: Root-finding iterations spent on the chosen candidate.
        converged: True if the derivative tolerance was met, or the optimum
            is a boundary with the derivative pointing outward.
        at_lower: Optimum is at the lower bound (tau on the boundary).
        at_upper: Optimum is at the upper bound (sigma2 on the boundary).
    """

    lambda_opt: float
    logl: float
    n_iter: int
    converged: bool
    at_lower: bool = False
    at_upper: bool = False


def brent_root(
    func: Callable[[float], float],
    a: float,
    b: float,
    tol: float = 1e-8,
    maxiter: int = 100,
) -> RootResult:
    """Find a root of func in [a, b] using Brent's method.

    Combines inverse quadratic interpolation, the secant method and
    bisection. Stops when |func| < tol or the bracket is narrower than tol.

    Args:
        func: Scalar function with a sign change over [a, b].
        a: Lower bound of search interval
        b: Upper bound of search interval
        tol: Convergence tolerance on |func| and bracket width.
        maxiter: Maximum iterations. With maxiter=0 no iteration runs and
            the better endpoint is returned unconverged.

    Returns:
        RootResult with the root estimate, iterations used and convergence flag.
    """
    fa = func(a)
    fb = func(b)

    if fa * fb > 0:
        # No sign change - return the endpoint with smaller |f|
        x = a if abs(fa) < abs(fb) else b
        return RootResult(root=x, n_iter=0, converged=False)

    # Ensure |f(b)| <= |f(a)|
    if abs(fa) < abs(fb):
        a, b = b, a
        fa, fb = fb, fa

    c = a
    fc = fa
    mflag = True
    d = 0.0

    for it in range(maxiter):
        if abs(fb) < tol or abs(b - a) < tol:
            return RootResult(root=b, n_iter=it, converged=True)

        if fa != fc and fb != fc:
            # Inverse quadratic interpolation
            s = (
                a * fb * fc / ((fa - fb) * (fa - fc))
                + b * fa * fc / ((fb - fa) * (fb - fc))
                + c * fa * fb / ((fc - fa) * (fc - fb))
            )
        else:
            s = b - fb * (b - a) / (fb - fa)

        cond1 = not ((3 * a + b) / 4 < s < b or b < s < (3 * a + b) / 4)
        cond2 = mflag and abs(s - b) >= abs(b - c) / 2
        cond3 = not mflag and abs(s - b) >= abs(c - d) / 2
        cond4 = mflag and abs(b - c) < tol
        cond5 = not mflag and abs(c - d) < tol

        if cond1 or cond2 or cond3 or cond4 or cond5:
            s = (a + b) / 2
            mflag = True
        else:
            mflag = False

        fs = func(s)
        d = c
        c = b
        fc = fb

        if fa * fs < 0:
            b = s
            fb = fs
        else:
            a = s
            fa = fs

        if abs(fa) < abs(fb):
            a, b = b, a
            fa, fb = fb, fa

    converged = maxiter > 0 and (abs(fb) < tol or abs(b - a) < tol)
    return RootResult(root=b, n_iter=maxiter, converged=converged)


def optimize_lambda(
    logl_func: Callable[[float], float],
    deriv_func: Callable[[float], float],
    l_min: float = 1e-5,
    l_max: float = 1e5,
    n_region: int = 50,
    tol: float = 1e-8,
    max_iter: int = 100,
) -> LambdaOptimum:
    """Maximize a log-likelihood of the variance ratio over [l_min, l_max].

    Args:
        logl_func: Log-likelihood as a function of lambda.
        deriv_func: Its derivative with respect to lambda.
        l_min: Lower bound for lambda search (GEMMA default 1e-5).
        l_max: Upper bound for lambda search (GEMMA default 1e5).
        n_region: Number of log-spaced regions scanned for sign changes.
        tol: Tolerance on the log-scale derivative and bracket width.
        max_iter: Root-finding budget per bracket. Zero skips the search and
            returns lambda = 1 (clipped to the bounds) unconverged.

    Returns:
        LambdaOptimum describing the best candidate.
    """
    if max_iter <= 0:
        lam = min(max(1.0, l_min), l_max)
        return LambdaOptimum(
            lambda_opt=lam, logl=logl_func(lam), n_iter=0, converged=False
        )

    log_min = math.log(l_min)
    log_max = math.log(l_max)

    def log_deriv(t: float) -> float:
        lam = math.exp(t)
        return lam * deriv_func(lam)

    grid = np.linspace(log_min, log_max, n_region + 1)
    dgrid = [log_deriv(float(t)) for t in grid]

    # (lambda, logl, n_iter, converged, at_lower, at_upper)
    candidates = [
        (l_min, logl_func(l_min), 0, dgrid[0] <= tol, True, False),
        (l_max, logl_func(l_max), 0, dgrid[-1] >= -tol, False, True),
    ]

    for i in range(n_region):
        # Maximum: derivative goes from positive to negative
        if dgrid[i] > 0.0 and dgrid[i + 1] <= 0.0:
            res = brent_root(
                log_deriv, float(grid[i]), float(grid[i + 1]), tol=tol, maxiter=max_iter
            )
            t_root = min(max(res.root, log_min), log_max)
            lam = math.exp(t_root)
            candidates.append((lam, logl_func(lam), res.n_iter, res.converged, False, False))

    best = max(candidates, key=lambda c: c[1])
    lam, logl, n_iter, converged, at_lower, at_upper = best
    return LambdaOptimum(
        lambda_opt=lam,
        logl=logl,
        n_iter=n_iter,
        converged=bool(converged),
        at_lower=at_lower,
        at_upper=at_upper,
    )
