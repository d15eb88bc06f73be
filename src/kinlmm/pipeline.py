"""Pipeline orchestration for a kinlmm simulation study.

Provides a single PipelineRunner service class that runs the whole chain:
simulate genotypes, summarize and standardize them, build the kinship
matrix, eigendecompose it, simulate a phenotype, and fit the mixed model
for one marker. Both the CLI (cli.py) and the Python API
(simulate_and_fit) delegate to this runner.

Example:
    >>> from kinlmm.pipeline import PipelineConfig, PipelineRunner
    >>> config = PipelineConfig(n_samples=200, n_markers=1000, n_causal=10)
    >>> result = PipelineRunner(config).run()
    >>> print(f"z = {result.fit.zstat:.3f}, tau = {result.fit.tau:.3f}")
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from loguru import logger

from kinlmm.core.config import FitConfig, OutputConfig
from kinlmm.errors import InvalidParameterError
from kinlmm.genotype import (
    DEFAULT_ALLELE_FREQS,
    AlleleFrequencySummary,
    GenotypeSimulation,
    compute_allele_summary,
    filter_polymorphic,
    simulate_genotypes,
    standardize_genotypes,
)
from kinlmm.io.covariate import write_matrix
from kinlmm.kinship import compute_grm, write_kinship_matrix
from kinlmm.lmm import (
    FIT_METHODS,
    MixedModelFit,
    SpectralDecomposition,
    eigendecompose_kinship,
    get_strategy,
    write_fit_summary,
)
from kinlmm.phenotype import PhenotypeSimulation, simulate_phenotype
from kinlmm.utils.logging import log_rss_memory


@dataclass
class PipelineConfig:
    """Configuration for a simulate-and-fit run.

    Defaults reproduce the reference scenario: 1000 subjects, 10000
    markers, 50 causal markers, signal-to-noise ratio 2, 1% missing calls.

    Attributes:
        n_samples: Number of subjects.
        n_markers: Number of markers.
        n_causal: Number of causal markers in the simulated phenotype.
        snr: Signal-to-noise ratio of the simulated phenotype.
        allele_freqs: Candidate alternate allele frequencies.
        seed: Seed for np.random.default_rng.
        missing_rate: Fraction of genotype calls set to missing.
        test_marker: Marker whose fixed effect is tested. None picks the
            first non-causal marker, so the test is under the null.
        n_pcs: Number of leading principal components added as covariates.
        fit_method: "eigen" or "aireml".
        standardize_mode: "p" or "mu_sigma".
        drop_monomorphic: Drop markers with frequency 0 or 1 instead of
            failing in standardization.
        fit_config: Numerical settings for the fitter.
        output: Output location; None keeps everything in memory.
        show_progress: Show progress bars for long loops.
    """

    n_samples: int = 1000
    n_markers: int = 10000
    n_causal: int = 50
    snr: float = 2.0
    allele_freqs: tuple[float, ...] = DEFAULT_ALLELE_FREQS
    seed: int = 345321
    missing_rate: float = 0.01
    test_marker: int | None = None
    n_pcs: int = 0
    fit_method: str = "eigen"
    standardize_mode: str = "p"
    drop_monomorphic: bool = True
    fit_config: FitConfig = field(default_factory=FitConfig)
    output: OutputConfig | None = None
    show_progress: bool = False


@dataclass
class PipelineResult:
    """Result of a pipeline run.

    Attributes:
        genotypes: Simulated genotypes and per-marker frequencies.
        summary: Allele summary of the markers kept for analysis.
        kept_markers: Indices (into the simulated matrix) of kept markers.
        standardized: Standardized genotype matrix of the kept markers.
        kinship: Kinship matrix.
        decomposition: Clamped eigendecomposition of the kinship matrix.
        pcs: Leading principal components (n_samples, n_pcs); empty when
            n_pcs is 0.
        phenotype: Simulated phenotype and its causal effects.
        test_marker: Index (into kept markers) of the tested marker.
        fit: Mixed-model fit.
        timing: Step timings in seconds.
        output_paths: Files written, keyed by kind.
    """

    genotypes: GenotypeSimulation
    summary: AlleleFrequencySummary
    kept_markers: np.ndarray
    standardized: np.ndarray
    kinship: np.ndarray
    decomposition: SpectralDecomposition
    pcs: np.ndarray
    phenotype: PhenotypeSimulation
    test_marker: int
    fit: MixedModelFit
    timing: dict[str, float] = field(default_factory=dict)
    output_paths: dict[str, Path] = field(default_factory=dict)

    def summary_params(self) -> dict:
        """Scalar description of the run for the run log."""
        params = {
            "n_samples": self.kinship.shape[0],
            "n_markers": int(self.kept_markers.size),
            "n_missing": self.genotypes.genotypes.n_missing,
            "n_causal": int(self.phenotype.causal_indices.size),
            "n_clamped_eigenvalues": self.decomposition.n_clamped,
            "mean_kinship_diagonal": float(np.mean(np.diag(self.kinship))),
            "test_marker": self.test_marker,
            "n_pcs": self.pcs.shape[1],
        }
        params.update(self.fit.summary())
        return params


class PipelineRunner:
    """Runs the simulate / kinship / decompose / fit chain.

    Raises exceptions (InvalidParameterError, DegenerateColumnError,
    UndefinedScaleError) rather than calling sys.exit or typer.Exit. The
    CLI wrapper catches these and converts to user-friendly error messages.

    Args:
        config: Pipeline configuration.
    """

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config

    def validate_config(self) -> None:
        """Check parameters that are not validated further down the chain.

        Raises:
            InvalidParameterError: If missing_rate, n_pcs, fit_method or
                test_marker is invalid.
        """
        cfg = self.config
        if not 0.0 <= cfg.missing_rate < 1.0:
            raise InvalidParameterError(
                f"missing_rate must be in [0, 1), got {cfg.missing_rate}"
            )
        if cfg.n_pcs < 0 or (cfg.n_pcs > 0 and cfg.n_pcs >= cfg.n_samples - 2):
            raise InvalidParameterError(
                f"n_pcs must be in [0, n_samples - 2), got {cfg.n_pcs}"
            )
        if cfg.fit_method not in FIT_METHODS:
            raise InvalidParameterError(
                f"Unknown fit method {cfg.fit_method!r}; expected one of {sorted(FIT_METHODS)}"
            )
        if cfg.test_marker is not None and not 0 <= cfg.test_marker < cfg.n_markers:
            raise InvalidParameterError(
                f"test_marker must be in [0, {cfg.n_markers}), got {cfg.test_marker}"
            )

    def select_test_marker(self, n_kept: int, causal: np.ndarray) -> int:
        """Pick the tested marker among the kept markers.

        Raises:
            InvalidParameterError: If the configured marker was dropped or
                every kept marker is causal.
        """
        if self.config.test_marker is not None:
            return self.config.test_marker
        non_causal = np.setdiff1d(np.arange(n_kept), causal)
        if non_causal.size == 0:
            raise InvalidParameterError("Every marker is causal; no null marker to test")
        return int(non_causal[0])

    def design_matrix(self, test_column: np.ndarray, pcs: np.ndarray) -> np.ndarray:
        """Intercept, principal components, then the tested marker (last)."""
        n = test_column.shape[0]
        return np.column_stack([np.ones(n), pcs, test_column])

    def write_outputs(self, result: PipelineResult) -> dict[str, Path]:
        """Write kinship, PCs and fit summary under the output config."""
        out = self.config.output
        out.ensure_outdir()
        paths = {
            "kinship": out.output_path("cXX.txt"),
            "pcs": out.output_path("pcs.txt"),
            "fit": out.output_path("fit.txt"),
        }
        write_kinship_matrix(result.kinship, paths["kinship"])
        pcs = result.pcs
        if pcs.shape[1] == 0:
            pcs = result.decomposition.principal_components(min(10, result.kinship.shape[0]))
        write_matrix(pcs, paths["pcs"])
        write_fit_summary(result.fit, paths["fit"])
        for kind, path in paths.items():
            logger.info(f"Wrote {kind} to {path}")
        return paths

    def run(self) -> PipelineResult:
        """Execute the full pipeline.

        Pipeline steps:
        1. Simulate genotypes
        2. Summarize and standardize
        3. Kinship matrix
        4. Eigendecomposition and principal components
        5. Simulate phenotype
        6. Fit the mixed model for the tested marker

        Returns:
            PipelineResult with every intermediate product and timings.
        """
        cfg = self.config
        self.validate_config()
        rng = np.random.default_rng(cfg.seed)
        timing: dict[str, float] = {}
        t_start = time.perf_counter()

        # 1. Genotypes
        t = time.perf_counter()
        n_missing = int(round(cfg.missing_rate * cfg.n_samples * cfg.n_markers))
        sim = simulate_genotypes(
            cfg.n_samples,
            cfg.n_markers,
            rng,
            allele_freqs=cfg.allele_freqs,
            n_missing=n_missing,
        )
        timing["genotype"] = time.perf_counter() - t
        logger.info(
            f"Simulated {cfg.n_samples:,} samples x {cfg.n_markers:,} markers "
            f"({n_missing:,} missing calls)"
        )

        # 2. Standardize
        t = time.perf_counter()
        genotypes = sim.genotypes
        summary = compute_allele_summary(genotypes)
        if cfg.drop_monomorphic:
            genotypes, summary, kept = filter_polymorphic(genotypes, summary)
        else:
            kept = np.arange(cfg.n_markers)
        if cfg.test_marker is not None and cfg.test_marker not in set(kept.tolist()):
            raise InvalidParameterError(
                f"test_marker {cfg.test_marker} is monomorphic and was dropped"
            )
        Xs = standardize_genotypes(genotypes, summary, mode=cfg.standardize_mode)
        timing["standardize"] = time.perf_counter() - t

        # 3. Kinship
        t = time.perf_counter()
        log_rss_memory("kinship", "start")
        K = compute_grm(Xs, show_progress=cfg.show_progress)
        timing["kinship"] = time.perf_counter() - t
        logger.info(f"Kinship matrix: mean diagonal {np.mean(np.diag(K)):.4f}")

        # 4. Eigendecomposition
        t = time.perf_counter()
        decomposition = eigendecompose_kinship(K, threshold=cfg.fit_config.eigen_threshold)
        if cfg.n_pcs:
            pcs = decomposition.principal_components(cfg.n_pcs)
        else:
            pcs = np.empty((cfg.n_samples, 0))
        timing["eigendecomp"] = time.perf_counter() - t

        # 5. Phenotype
        t = time.perf_counter()
        phenotype = simulate_phenotype(Xs, cfg.n_causal, cfg.snr, rng)
        timing["phenotype"] = time.perf_counter() - t

        # 6. Fit
        t = time.perf_counter()
        if cfg.test_marker is not None:
            test_marker = int(np.searchsorted(kept, cfg.test_marker))
        else:
            test_marker = self.select_test_marker(kept.size, phenotype.causal_indices)
        X = self.design_matrix(Xs[:, test_marker], pcs)
        strategy = get_strategy(cfg.fit_method, cfg.fit_config)
        covariance = decomposition if cfg.fit_method == "eigen" else K
        fit = strategy.fit(phenotype.phenotype, X, covariance, test_index=-1)
        timing["fit"] = time.perf_counter() - t
        log_rss_memory("fit", "end")

        timing["total"] = time.perf_counter() - t_start
        logger.info(
            f"Fit ({fit.method}): tau={fit.tau:.4g}, sigma2={fit.sigma2:.4g}, "
            f"z={fit.zstat:.4f}, p={fit.pvalue:.4g}, status={fit.status.value}"
        )

        result = PipelineResult(
            genotypes=sim,
            summary=summary,
            kept_markers=kept,
            standardized=Xs,
            kinship=K,
            decomposition=decomposition,
            pcs=pcs,
            phenotype=phenotype,
            test_marker=test_marker,
            fit=fit,
            timing=timing,
        )
        if cfg.output is not None:
            result.output_paths = self.write_outputs(result)
        return result


def simulate_and_fit(**kwargs) -> PipelineResult:
    """Run the pipeline with PipelineConfig(**kwargs).

    Example:
        >>> result = simulate_and_fit(n_samples=300, n_markers=2000, seed=1)
        >>> result.fit.zstat
    """
    return PipelineRunner(PipelineConfig(**kwargs)).run()
