"""Tests for genotype simulation, allele summaries and standardization."""

import numpy as np
import pytest

from kinlmm.errors import DegenerateColumnError, InvalidParameterError
from kinlmm.genotype import (
    DEFAULT_ALLELE_FREQS,
    GenotypeMatrix,
    compute_allele_summary,
    filter_polymorphic,
    simulate_genotypes,
    standardize_genotypes,
)

pytestmark = pytest.mark.tier0


class TestSimulateGenotypes:
    """Tests for simulate_genotypes()."""

    def test_shape_and_values(self, rng):
        sim = simulate_genotypes(50, 80, rng)
        G = sim.genotypes.dosages
        assert G.shape == (50, 80)
        assert np.isin(G, (0.0, 1.0, 2.0)).all()
        assert sim.allele_freqs.shape == (80,)

    def test_frequencies_drawn_from_candidates(self, rng):
        sim = simulate_genotypes(20, 200, rng)
        assert np.isin(sim.allele_freqs, DEFAULT_ALLELE_FREQS).all()

    def test_exact_missing_count(self, rng):
        sim = simulate_genotypes(30, 40, rng, n_missing=123)
        assert sim.genotypes.n_missing == 123
        observed = sim.genotypes.dosages[~sim.genotypes.missing_mask]
        assert np.isin(observed, (0.0, 1.0, 2.0)).all()

    def test_all_cells_missing_allowed(self, rng):
        sim = simulate_genotypes(3, 4, rng, n_missing=12)
        assert sim.genotypes.n_missing == 12

    def test_reproducible_with_seed(self):
        a = simulate_genotypes(10, 10, np.random.default_rng(7), n_missing=5)
        b = simulate_genotypes(10, 10, np.random.default_rng(7), n_missing=5)
        np.testing.assert_array_equal(a.genotypes.dosages, b.genotypes.dosages)

    def test_allele_frequency_close_to_target(self, rng):
        sim = simulate_genotypes(4000, 20, rng, allele_freqs=[0.3])
        summary = compute_allele_summary(sim.genotypes)
        np.testing.assert_allclose(summary.freq, 0.3, atol=0.03)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"n_samples": 0, "n_markers": 5},
            {"n_samples": 5, "n_markers": -1},
            {"n_samples": 5, "n_markers": 5, "allele_freqs": []},
            {"n_samples": 5, "n_markers": 5, "allele_freqs": [0.2, 1.5]},
            {"n_samples": 5, "n_markers": 5, "n_missing": 26},
            {"n_samples": 5, "n_markers": 5, "n_missing": -1},
        ],
    )
    def test_invalid_parameters(self, rng, kwargs):
        n = kwargs.pop("n_samples")
        p = kwargs.pop("n_markers")
        with pytest.raises(InvalidParameterError):
            simulate_genotypes(n, p, rng, **kwargs)


class TestGenotypeMatrix:
    """Tests for the GenotypeMatrix value type."""

    def test_rejects_invalid_dosage(self):
        with pytest.raises(InvalidParameterError):
            GenotypeMatrix(np.array([[0.0, 3.0], [1.0, 2.0]]))

    def test_rejects_1d(self):
        with pytest.raises(InvalidParameterError):
            GenotypeMatrix(np.array([0.0, 1.0]))

    def test_is_read_only_copy(self):
        src = np.array([[0.0, 1.0], [2.0, np.nan]])
        G = GenotypeMatrix(src)
        src[0, 0] = 2.0
        assert G.dosages[0, 0] == 0.0
        with pytest.raises(ValueError):
            G.dosages[0, 0] = 1.0
        assert G.n_missing == 1


class TestAlleleSummary:
    """Tests for compute_allele_summary()."""

    def test_known_values(self):
        G = GenotypeMatrix(
            np.array(
                [
                    [0.0, 2.0, 1.0],
                    [1.0, 2.0, np.nan],
                    [2.0, 2.0, 1.0],
                    [1.0, 2.0, 1.0],
                ]
            )
        )
        s = compute_allele_summary(G)
        np.testing.assert_allclose(s.freq, [0.5, 1.0, 0.5])
        np.testing.assert_allclose(s.mu, [1.0, 2.0, 1.0])
        np.testing.assert_allclose(s.sigma, [np.sqrt(0.5), 0.0, 0.0])
        np.testing.assert_array_equal(s.n_missing, [0, 0, 1])
        np.testing.assert_array_equal(s.degenerate_columns(), [1])

    def test_hwe_deviation_near_one_under_hwe(self, rng):
        sim = simulate_genotypes(5000, 10, rng, allele_freqs=[0.2, 0.4])
        s = compute_allele_summary(sim.genotypes)
        np.testing.assert_allclose(s.hwe_deviation(), 1.0, atol=0.05)

    def test_hwe_deviation_nan_for_monomorphic(self):
        s = compute_allele_summary(GenotypeMatrix(np.zeros((4, 2))))
        assert np.isnan(s.hwe_deviation()).all()


class TestStandardize:
    """Tests for standardize_genotypes() and filter_polymorphic()."""

    def test_p_mode_formula(self):
        G = GenotypeMatrix(np.array([[0.0, 1.0], [1.0, 1.0], [2.0, 0.0], [1.0, 2.0]]))
        Xs = standardize_genotypes(G)
        s = compute_allele_summary(G)
        expected = (G.dosages - 2 * s.freq) / np.sqrt(2 * s.freq * (1 - s.freq))
        np.testing.assert_allclose(Xs, expected)

    def test_missing_set_to_zero_and_columns_centered(self, rng):
        sim = simulate_genotypes(100, 60, rng, n_missing=400)
        Xs = standardize_genotypes(sim.genotypes)
        assert np.all(Xs[sim.genotypes.missing_mask] == 0.0)
        assert np.all(np.isfinite(Xs))
        np.testing.assert_allclose(Xs.mean(axis=0), 0.0, atol=1e-10)

    def test_mu_sigma_mode_unit_variance(self, rng):
        sim = simulate_genotypes(200, 30, rng)
        Xs = standardize_genotypes(sim.genotypes, mode="mu_sigma")
        np.testing.assert_allclose(Xs.mean(axis=0), 0.0, atol=1e-10)
        np.testing.assert_allclose(Xs.std(axis=0), 1.0, atol=1e-10)

    def test_degenerate_column_raises(self):
        G = GenotypeMatrix(np.array([[0.0, 2.0, 0.0], [1.0, 2.0, 0.0], [2.0, 2.0, 0.0]]))
        with pytest.raises(DegenerateColumnError) as exc_info:
            standardize_genotypes(G)
        np.testing.assert_array_equal(exc_info.value.columns, [1, 2])

    def test_degenerate_mu_sigma_mode(self):
        G = GenotypeMatrix(np.array([[1.0, 0.0], [1.0, 1.0]]))
        with pytest.raises(DegenerateColumnError) as exc_info:
            standardize_genotypes(G, mode="mu_sigma")
        np.testing.assert_array_equal(exc_info.value.columns, [0])

    def test_unknown_mode(self, rng):
        sim = simulate_genotypes(10, 5, rng)
        with pytest.raises(InvalidParameterError, match="Unknown standardization mode"):
            standardize_genotypes(sim.genotypes, mode="zscore")

    def test_summary_mismatch(self, rng):
        a = simulate_genotypes(10, 5, rng)
        b = simulate_genotypes(10, 6, rng)
        with pytest.raises(InvalidParameterError):
            standardize_genotypes(a.genotypes, compute_allele_summary(b.genotypes))

    def test_filter_polymorphic(self):
        G = GenotypeMatrix(np.array([[0.0, 2.0, 1.0], [1.0, 2.0, 0.0], [2.0, 2.0, 0.0]]))
        filtered, summary, kept = filter_polymorphic(G)
        np.testing.assert_array_equal(kept, [0, 2])
        assert filtered.n_markers == 2
        assert summary.n_markers == 2
        Xs = standardize_genotypes(filtered, summary)
        assert Xs.shape == (3, 2)

    def test_filter_polymorphic_nothing_left(self):
        with pytest.raises(InvalidParameterError):
            filter_polymorphic(GenotypeMatrix(np.full((3, 2), 2.0)))
