"""Test statistics for fixed effects of a fitted mixed model.

Wald z statistics use the normal upper tail via JAX's ndtr; likelihood ratio
tests use the chi-squared survival function from jax.scipy.stats.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
from jax.scipy.special import ndtr
from jax.scipy.stats import chi2


def _safe_sqrt(d: float) -> float:
    """Square root tolerating tiny negative values from rounding.

    Values with |d| < 1e-12 are treated as zero; larger negatives give NaN.
    """
    if abs(d) < 1e-12:
        d = abs(d)
    if d < 0.0:
        return float("nan")
    return float(np.sqrt(d))


def wald_z(beta: np.ndarray, varbeta: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Wald z statistics and standard errors for every coefficient.

    Args:
        beta: Fixed-effect estimates (q,).
        varbeta: Covariance of the estimates (q, q).

    Returns:
        Tuple of (z, se), each of shape (q,). A coefficient with zero or
        negative variance gets NaN.
    """
    se = np.array([_safe_sqrt(v) for v in np.diag(varbeta)])
    with np.errstate(divide="ignore", invalid="ignore"):
        z = np.where(se > 0.0, beta / se, np.nan)
    return z, se


def normal_two_sided_pvalue(z: np.ndarray | float) -> np.ndarray:
    """Two-sided p-value 2 * P(Z > |z|) for standard-normal Z.

    NaN statistics give NaN p-values.
    """
    z = np.asarray(z, dtype=np.float64)
    p = 2.0 * np.asarray(ndtr(-jnp.abs(jnp.asarray(z))), dtype=np.float64)
    return np.minimum(p, 1.0)


def calc_lrt_test(logl_H1: float, logl_H0: float, df: int = 1) -> float:
    """Likelihood ratio test p-value.

    LRT statistic: 2 * (logl_H1 - logl_H0), chi-squared with df degrees of
    freedom under H0.

    Args:
        logl_H1: ML log-likelihood under the alternative.
        logl_H0: ML log-likelihood under the null.
        df: Number of extra parameters in the alternative.

    Returns:
        p_lrt: Survival function of the statistic.
    """
    lrt_stat = 2.0 * (logl_H1 - logl_H0)

    # Negative statistic is a numerical artifact
    if lrt_stat < 0:
        return 1.0

    return float(chi2.sf(lrt_stat, df=df))
