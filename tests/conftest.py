"""Pytest fixtures for the kinlmm test suite."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from kinlmm.core import configure_jax
from kinlmm.genotype import simulate_genotypes, standardize_genotypes
from kinlmm.kinship import compute_grm
from kinlmm.lmm import eigendecompose_kinship

# =============================================================================
# Test Tier System
# =============================================================================
#
# tier0 - Fast unit tests (<5s each)
#   - Pure computation on small synthetic arrays
#   - Run: pytest -m tier0
#
# tier1 - Small end-to-end runs (<60s each)
#   - Pipeline, CLI and repeated-seed statistical checks
#   - Run: pytest -m tier1
#
# tier2 - Reference scenario (n=1000, p=10000)
#   - Run manually or in nightly CI
#   - Run: pytest -m tier2
#
# @pytest.mark.slow is an alias for tier2.
#
#   pytest -m "not slow"      # Everything except the reference scenario
# =============================================================================


@pytest.fixture(autouse=True)
def setup_jax():
    """Configure JAX with 64-bit precision before each test."""
    configure_jax(enable_x64=True)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240131)


@pytest.fixture
def small_study(rng):
    """Standardized genotypes, kinship and decomposition for 150 x 400 data."""
    sim = simulate_genotypes(150, 400, rng, n_missing=300)
    Xs = standardize_genotypes(sim.genotypes)
    K = compute_grm(Xs)
    return {
        "genotypes": sim.genotypes,
        "standardized": Xs,
        "kinship": K,
        "decomposition": eigendecompose_kinship(K),
    }


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Create temporary output directory for test results."""
    out = tmp_path / "output"
    out.mkdir()
    return out
