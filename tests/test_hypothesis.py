"""Property-based tests using Hypothesis for numerical accuracy verification.

These tests verify:
1. Mathematical properties that must hold (GRM symmetry, clamped spectrum)
2. Standardization invariants across random genotype matrices
3. Analytic REML and ML derivatives against finite differences
"""

from __future__ import annotations

import numpy as np
import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from kinlmm.genotype import GenotypeMatrix, compute_allele_summary, standardize_genotypes
from kinlmm.kinship import compute_grm
from kinlmm.lmm import eigendecompose_kinship, normal_two_sided_pvalue
from kinlmm.lmm.likelihood import (
    mle_log_likelihood,
    mle_log_likelihood_derivative,
    reml_log_likelihood,
    reml_log_likelihood_derivative,
)

pytestmark = pytest.mark.tier0

# -----------------------------------------------------------------------------
# Custom Strategies for Genetic Data
# -----------------------------------------------------------------------------


@st.composite
def genotype_matrix(draw, min_samples=8, max_samples=60, min_snps=3, max_snps=40):
    """Generate polymorphic genotype matrices with scattered missing calls.

    Every marker carries at least one 0 and one 1 call so no column is
    monomorphic after missing cells are blanked.
    """
    n_samples = draw(st.integers(min_value=min_samples, max_value=max_samples))
    n_snps = draw(st.integers(min_value=min_snps, max_value=max_snps))
    seed = draw(st.integers(min_value=0, max_value=2**32 - 1))
    missing_rate = draw(st.floats(min_value=0.0, max_value=0.2))

    rng = np.random.default_rng(seed)
    freqs = rng.uniform(0.1, 0.5, n_snps)
    dosages = rng.binomial(2, freqs, size=(n_samples, n_snps)).astype(np.float64)
    dosages[rng.random((n_samples, n_snps)) < missing_rate] = np.nan
    dosages[0, :] = 0.0
    dosages[1, :] = 1.0
    return GenotypeMatrix(dosages)


@st.composite
def lambda_value(draw):
    """Generate lambda (variance ratio) in realistic REML range."""
    log_lambda = draw(st.floats(min_value=-3.0, max_value=3.0))
    return 10.0**log_lambda


@st.composite
def reml_inputs(draw, min_samples=20, max_samples=50):
    """Generate a clamped kinship spectrum with rotated intercept and phenotype."""
    n = draw(st.integers(min_value=min_samples, max_value=max_samples))
    rng = np.random.default_rng(draw(st.integers(min_value=0, max_value=2**32 - 1)))

    G = rng.standard_normal((n, 2 * n))
    d = eigendecompose_kinship(G @ G.T / G.shape[1])
    y = rng.standard_normal(n)
    Uty = d.eigenvectors.T @ y
    UtX = d.eigenvectors.T @ np.ones((n, 1))
    return d.eigenvalues, UtX, Uty


# -----------------------------------------------------------------------------
# Property Tests
# -----------------------------------------------------------------------------


@given(G=genotype_matrix())
@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
def test_standardized_columns_centered(G):
    """Observed calls are centered on 2f and missing calls become 0."""
    Xs = standardize_genotypes(G)

    assert Xs.shape == G.dosages.shape
    assert np.all(np.isfinite(Xs))
    np.testing.assert_allclose(Xs.mean(axis=0), 0.0, atol=1e-10)
    assert np.all(Xs[G.missing_mask] == 0.0)

    summary = compute_allele_summary(G)
    expected = (np.nan_to_num(G.dosages, nan=0.0) - 2.0 * summary.freq) / summary.hwe_sigma()
    np.testing.assert_allclose(Xs[~G.missing_mask], expected[~G.missing_mask], rtol=1e-10)


@given(G=genotype_matrix())
@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
def test_grm_symmetric_with_nonnegative_spectrum(G):
    """K is exactly symmetric and its decomposition is clamped and sorted."""
    K = compute_grm(standardize_genotypes(G), batch_size=7)
    assert np.array_equal(K, K.T)

    d = eigendecompose_kinship(K)
    assert np.all(d.eigenvalues >= 0.0)
    assert np.all(np.diff(d.eigenvalues) <= 0.0)

    pcs = d.principal_components()
    assert pcs.shape == K.shape
    np.testing.assert_allclose(pcs @ pcs.T, K, atol=1e-8 * max(1.0, np.abs(K).max()))


@given(inputs=reml_inputs(), lam=lambda_value())
@settings(max_examples=30, deadline=None)
def test_reml_derivative_matches_finite_difference(inputs, lam):
    """Analytic dl/dlambda agrees with a central difference."""
    ev, UtX, Uty = inputs
    h = lam * 1e-5

    fd = (
        reml_log_likelihood(lam + h, ev, UtX, Uty)
        - reml_log_likelihood(lam - h, ev, UtX, Uty)
    ) / (2.0 * h)
    analytic = reml_log_likelihood_derivative(lam, ev, UtX, Uty)

    assert analytic == pytest.approx(fd, rel=1e-4, abs=1e-6 / lam)


@given(z=st.lists(st.floats(min_value=-50.0, max_value=50.0), min_size=1, max_size=20))
@settings(max_examples=50, deadline=None)
def test_pvalues_in_unit_interval(z):
    """Two-sided normal p-values lie in [0, 1] and are symmetric in z."""
    z = np.asarray(z)
    p = normal_two_sided_pvalue(z)
    assert np.all((p >= 0.0) & (p <= 1.0))
    np.testing.assert_allclose(p, normal_two_sided_pvalue(-z), rtol=1e-12)


@given(inputs=reml_inputs(), lam=lambda_value())
@settings(max_examples=30, deadline=None)
def test_ml_derivative_matches_finite_difference(inputs, lam):
    """Same check for the ML log-likelihood used by likelihood ratio tests."""
    ev, UtX, Uty = inputs
    h = lam * 1e-5

    fd = (
        mle_log_likelihood(lam + h, ev, UtX, Uty)
        - mle_log_likelihood(lam - h, ev, UtX, Uty)
    ) / (2.0 * h)
    analytic = mle_log_likelihood_derivative(lam, ev, UtX, Uty)

    assert analytic == pytest.approx(fd, rel=1e-4, abs=1e-6 / lam)
