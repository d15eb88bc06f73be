"""Tests for the mixed-model fitting strategies.

Variance-component recovery is checked on phenotypes drawn directly from
the model y = X beta + g + e with g ~ N(0, tau K), using the same kinship
matrix for simulation and fitting.
"""

import numpy as np
import pytest
from scipy import stats

from kinlmm.core import FitConfig
from kinlmm.errors import FitStatus, InvalidParameterError
from kinlmm.genotype import simulate_genotypes, standardize_genotypes
from kinlmm.kinship import compute_grm
from kinlmm.lmm import (
    AIREMLStrategy,
    EigenREMLStrategy,
    FittingStrategy,
    MixedModelFit,
    eigendecompose_kinship,
    fit_lmm,
    get_strategy,
)
from kinlmm.phenotype import simulate_lmm_phenotype


def _lmm_data(seed: int, n: int = 300, p: int = 200, tau: float = 1.0, sigma2: float = 1.0):
    rng = np.random.default_rng(seed)
    sim = simulate_genotypes(n, p, rng)
    K = compute_grm(standardize_genotypes(sim.genotypes))
    d = eigendecompose_kinship(K)
    X = np.column_stack([np.ones(n), rng.standard_normal(n)])
    y = simulate_lmm_phenotype(d, tau, sigma2, rng, X=X, beta=[1.0, 0.5])
    return y, X, K, d


def _boundary_data(seed: int = 0, n: int = 40):
    """Phenotype with almost no variance along the kinship eigenvectors.

    The intercept is an eigenvector with eigenvalue 0, 19 eigenvectors have
    eigenvalue 2, and the phenotype lives almost entirely in the null space,
    so the REML optimum of tau is negative and gets clamped to 0.
    """
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((n, n))
    A[:, 0] = 1.0
    Q, _ = np.linalg.qr(A)
    s = np.zeros(n)
    s[1:20] = 2.0
    K = (Q * s) @ Q.T
    K = 0.5 * (K + K.T)
    y = (
        3.0
        + Q[:, 20:] @ rng.standard_normal(n - 20)
        + 0.05 * Q[:, 1:20] @ rng.standard_normal(19)
    )
    return y, np.ones((n, 1)), K


@pytest.mark.tier0
class TestMixedModelFit:
    """Tests for MixedModelFit fields and derived statistics."""

    def test_wald_statistics(self):
        y, X, _, d = _lmm_data(1)
        fit = EigenREMLStrategy().fit(y, X, d, test_index=1)

        assert isinstance(fit, MixedModelFit)
        np.testing.assert_allclose(fit.se, np.sqrt(np.diag(fit.varbeta)))
        np.testing.assert_allclose(fit.z, fit.beta / fit.se)
        np.testing.assert_allclose(
            fit.p_values, 2 * stats.norm.sf(np.abs(fit.z)), rtol=1e-8
        )
        assert fit.zstat == fit.z[1]
        assert fit.pvalue == fit.p_values[1]

    def test_derived_quantities(self):
        y, X, _, d = _lmm_data(2)
        fit = fit_lmm(y, X, decomposition=d)
        assert fit.lambda_ratio == pytest.approx(fit.tau / fit.sigma2)
        assert fit.heritability == pytest.approx(fit.tau / (fit.tau + fit.sigma2))
        summary = fit.summary()
        assert summary["status"] == "converged"
        assert summary["method"] == "eigen"
        assert summary["z"] == fit.zstat

    def test_negative_test_index(self):
        y, X, _, d = _lmm_data(3)
        fit = fit_lmm(y, X, decomposition=d, test_index=-1)
        assert fit.test_index == 1


@pytest.mark.tier1
class TestVarianceComponentRecovery:
    """REML estimates recover the simulated variance components."""

    @pytest.mark.parametrize("strategy_cls", [EigenREMLStrategy, AIREMLStrategy])
    def test_heritability_recovered_across_seeds(self, strategy_cls):
        h2 = []
        for seed in range(5):
            y, X, K, d = _lmm_data(seed)
            covariance = d if strategy_cls is EigenREMLStrategy else K
            fit = strategy_cls().fit(y, X, covariance)
            assert fit.status is FitStatus.CONVERGED
            assert fit.tau >= 0.0 and fit.sigma2 > 0.0
            h2.append(fit.heritability)
        assert abs(np.mean(h2) - 0.5) < 0.15

    def test_fixed_effects_recovered(self):
        betas = [fit_lmm(y, X, decomposition=d).beta for y, X, _, d in map(_lmm_data, range(5))]
        mean_beta = np.mean(betas, axis=0)
        assert abs(mean_beta[1] - 0.5) < 0.2

    @pytest.mark.parametrize("seed", [0, 7, 11])
    def test_eigen_and_aireml_agree(self, seed):
        y, X, K, d = _lmm_data(seed)
        eig = EigenREMLStrategy().fit(y, X, d)
        ai = AIREMLStrategy().fit(y, X, K)

        assert eig.converged and ai.converged
        assert ai.tau == pytest.approx(eig.tau, rel=1e-4, abs=1e-6)
        assert ai.sigma2 == pytest.approx(eig.sigma2, rel=1e-4)
        np.testing.assert_allclose(ai.beta, eig.beta, rtol=1e-4, atol=1e-6)
        np.testing.assert_allclose(ai.se, eig.se, rtol=1e-3)
        assert ai.logl == pytest.approx(eig.logl, abs=1e-5)
        np.testing.assert_allclose(ai.blup_random, eig.blup_random, atol=1e-4)


@pytest.mark.tier0
class TestConvergencePolicy:
    """Iteration budget and boundary handling."""

    @pytest.mark.parametrize("strategy_cls", [EigenREMLStrategy, AIREMLStrategy])
    def test_zero_iterations_is_non_convergence(self, strategy_cls):
        y, X, K, d = _lmm_data(4, n=120, p=150)
        covariance = d if strategy_cls is EigenREMLStrategy else K
        fit = strategy_cls(FitConfig(max_iter=0)).fit(y, X, covariance)
        assert fit.status is FitStatus.NON_CONVERGENCE
        assert not fit.converged
        assert fit.n_iter == 0
        assert np.all(np.isfinite(fit.beta))

    def test_aireml_budget_exhausted(self):
        y, X, K, _ = _lmm_data(5, n=120, p=150)
        fit = AIREMLStrategy(FitConfig(max_iter=1, tol=1e-14)).fit(y, X, K)
        assert fit.status is FitStatus.NON_CONVERGENCE
        assert fit.n_iter == 1

    def test_eigen_boundary_at_lower_bound(self):
        y, X, K = _boundary_data()
        fit = EigenREMLStrategy().fit(y, X, eigendecompose_kinship(K))
        assert fit.converged
        assert fit.boundary
        assert fit.tau == 0.0
        assert fit.sigma2 > 0.0
        np.testing.assert_allclose(fit.blup_random, 0.0)

    def test_aireml_boundary_clamped(self):
        y, X, K = _boundary_data()
        fit = AIREMLStrategy().fit(y, X, K)
        assert fit.converged
        assert fit.boundary
        assert fit.tau == 0.0
        assert fit.sigma2 > 0.0

    def test_boundary_fits_agree(self):
        y, X, K = _boundary_data(seed=3)
        eig = EigenREMLStrategy().fit(y, X, eigendecompose_kinship(K))
        ai = AIREMLStrategy().fit(y, X, K)
        assert eig.sigma2 == pytest.approx(ai.sigma2, rel=1e-4)
        np.testing.assert_allclose(eig.beta, ai.beta, rtol=1e-6)

    @pytest.mark.parametrize("p", [40, 60])
    def test_eigen_boundary_at_upper_bound(self, p):
        # sigma2 = 0 and p < n: the residual vanishes along the null space of K
        y, X, K, d = _lmm_data(9, n=150, p=p, tau=1.0, sigma2=0.0)
        eig = EigenREMLStrategy().fit(y, X, d)
        ai = AIREMLStrategy().fit(y, X, K)

        assert eig.converged and eig.boundary
        assert ai.converged and ai.boundary
        assert eig.sigma2 == 0.0
        assert ai.sigma2 == 0.0
        assert eig.lambda_ratio == float("inf")
        assert eig.tau == pytest.approx(ai.tau, rel=1e-4)
        assert 0.3 < eig.tau < 3.0

    def test_no_boundary_for_interior_optimum(self):
        y, X, _, d = _lmm_data(6)
        fit = EigenREMLStrategy().fit(y, X, d)
        assert not fit.boundary


@pytest.mark.tier0
class TestStrategySelection:
    """Tests for fit_lmm() dispatch and get_strategy()."""

    def test_fit_lmm_prefers_decomposition(self):
        y, X, K, d = _lmm_data(8, n=100, p=120)
        assert fit_lmm(y, X, kinship=K, decomposition=d).method == "eigen"
        assert fit_lmm(y, X, kinship=K).method == "aireml"

    def test_fit_lmm_needs_covariance(self):
        with pytest.raises(InvalidParameterError):
            fit_lmm(np.zeros(5), np.ones((5, 1)))

    def test_get_strategy(self):
        assert isinstance(get_strategy("eigen"), EigenREMLStrategy)
        assert isinstance(get_strategy("aireml"), AIREMLStrategy)
        assert isinstance(get_strategy("aireml"), FittingStrategy)
        with pytest.raises(InvalidParameterError, match="Unknown fit method"):
            get_strategy("newton")


@pytest.mark.tier0
class TestInputValidation:
    """Malformed inputs raise InvalidParameterError."""

    @pytest.fixture
    def data(self):
        return _lmm_data(9, n=60, p=80)

    def test_phenotype_not_1d(self, data):
        y, X, _, d = data
        with pytest.raises(InvalidParameterError):
            fit_lmm(y[:, None], X, decomposition=d)

    def test_design_rows_mismatch(self, data):
        y, X, _, d = data
        with pytest.raises(InvalidParameterError):
            fit_lmm(y, X[:-1], decomposition=d)

    def test_too_many_columns(self, data):
        y, _, _, d = data
        X = np.random.default_rng(0).standard_normal((y.shape[0], y.shape[0]))
        with pytest.raises(InvalidParameterError, match="1 <= q < n"):
            fit_lmm(y, X, decomposition=d)

    def test_non_finite_phenotype(self, data):
        y, X, _, d = data
        y = y.copy()
        y[3] = np.nan
        with pytest.raises(InvalidParameterError, match="finite"):
            fit_lmm(y, X, decomposition=d)

    def test_rank_deficient_design(self, data):
        y, X, _, d = data
        X = np.column_stack([X, X[:, 1]])
        with pytest.raises(InvalidParameterError, match="full column rank"):
            fit_lmm(y, X, decomposition=d)

    def test_test_index_out_of_range(self, data):
        y, X, _, d = data
        with pytest.raises(InvalidParameterError):
            fit_lmm(y, X, decomposition=d, test_index=2)

    def test_covariance_dimension_mismatch(self, data):
        y, X, K, _ = data
        with pytest.raises(InvalidParameterError):
            fit_lmm(y, X, kinship=K[:-1, :-1])

    def test_eigen_strategy_needs_decomposition(self, data):
        y, X, K, _ = data
        with pytest.raises(InvalidParameterError, match="SpectralDecomposition"):
            EigenREMLStrategy().fit(y, X, K)

    def test_aireml_rejects_non_square(self, data):
        y, X, K, _ = data
        with pytest.raises(InvalidParameterError, match="square"):
            AIREMLStrategy().fit(y, X, K[:, :-1])
