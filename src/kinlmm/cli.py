"""kinlmm command-line interface.

This module provides a Typer-based CLI with GEMMA-style global flags
(-outdir, -o, -v) and two commands:

- run: simulate genotypes and a phenotype, build the kinship matrix and
  fit the mixed model for one marker
- fit: fit the mixed model to a kinship file and phenotype/covariate files
"""

import sys
import time
from pathlib import Path
from typing import Annotated

import numpy as np
import typer
from loguru import logger

import kinlmm
from kinlmm.core import FitConfig, OutputConfig, get_jax_info, verify_jax_installation
from kinlmm.errors import KinlmmError
from kinlmm.io import read_covariate_file, read_phenotype_file
from kinlmm.kinship import read_kinship_matrix
from kinlmm.lmm import FIT_METHODS, eigendecompose_kinship, get_strategy, write_fit_summary
from kinlmm.pipeline import PipelineConfig, PipelineRunner
from kinlmm.utils import setup_logging, write_run_log

app = typer.Typer(
    name="kinlmm",
    help="kinlmm: kinship-based linear mixed models.",
    add_completion=False,
)

# Store global options set by callback
_global_config: OutputConfig | None = None


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"kinlmm version {kinlmm.__version__}")
        info = get_jax_info()
        try:
            verify_jax_installation()
            status = "verified"
        except RuntimeError as e:
            status = f"not working: {e}"
        typer.echo(f"JAX {info['version']} ({info['backend']}, {status})")
        raise typer.Exit()


def _output_config() -> OutputConfig:
    global _global_config
    if _global_config is None:
        _global_config = OutputConfig()
    return _global_config


def _check_method(method: str) -> None:
    if method not in FIT_METHODS:
        typer.echo(
            f"Error: --method must be one of {sorted(FIT_METHODS)}, got {method!r}",
            err=True,
        )
        raise typer.Exit(code=1)


@app.callback()
def main(
    outdir: Annotated[
        Path,
        typer.Option("-outdir", help="Output directory"),
    ] = Path("output"),
    output: Annotated[
        str,
        typer.Option("-o", help="Output file prefix"),
    ] = "result",
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Verbose output"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = None,
) -> None:
    """kinlmm: kinship-based linear mixed models.

    Genomic relationship matrices, principal components and REML
    variance-component estimation for simulated or supplied data.
    """
    global _global_config
    _global_config = OutputConfig(outdir=outdir, prefix=output, verbose=verbose)
    setup_logging(verbose=verbose)


@app.command("run")
def run_command(
    n_samples: Annotated[
        int, typer.Option("-n", "--n-samples", help="Number of subjects")
    ] = 1000,
    n_markers: Annotated[
        int, typer.Option("-p", "--n-markers", help="Number of markers")
    ] = 10000,
    n_causal: Annotated[
        int, typer.Option("--n-causal", help="Number of causal markers")
    ] = 50,
    snr: Annotated[float, typer.Option("--snr", help="Signal-to-noise ratio")] = 2.0,
    seed: Annotated[int, typer.Option("--seed", help="Random seed")] = 345321,
    missing_rate: Annotated[
        float, typer.Option("--missing-rate", help="Fraction of missing calls")
    ] = 0.01,
    test_marker: Annotated[
        int | None,
        typer.Option("--test-marker", help="Marker to test (default: first non-causal)"),
    ] = None,
    n_pcs: Annotated[
        int, typer.Option("--n-pcs", help="Principal components used as covariates")
    ] = 0,
    method: Annotated[
        str, typer.Option("--method", help="Fitting method: eigen or aireml")
    ] = "eigen",
    max_iter: Annotated[
        int, typer.Option("--max-iter", help="Variance-component iteration budget")
    ] = 100,
) -> None:
    """Simulate data and fit the mixed model for one marker.

    Writes <prefix>.cXX.txt, <prefix>.pcs.txt, <prefix>.fit.txt and
    <prefix>.log.txt to the output directory.
    """
    out = _output_config()
    command_line = " ".join(sys.argv)
    _check_method(method)

    config = PipelineConfig(
        n_samples=n_samples,
        n_markers=n_markers,
        n_causal=n_causal,
        snr=snr,
        seed=seed,
        missing_rate=missing_rate,
        test_marker=test_marker,
        n_pcs=n_pcs,
        fit_method=method,
        fit_config=FitConfig(max_iter=max_iter),
        output=out,
        show_progress=True,
    )
    try:
        result = PipelineRunner(config).run()
    except (KinlmmError, ValueError) as e:
        logger.error(str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None

    fit = result.fit
    typer.echo(
        f"tau = {fit.tau:.6g}, sigma2 = {fit.sigma2:.6g}, "
        f"z = {fit.zstat:.6g}, p = {fit.pvalue:.6g} ({fit.status.value})"
    )
    log_path = write_run_log(out, result.summary_params(), result.timing, command_line)
    typer.echo(f"Log written to {log_path}")


@app.command("fit")
def fit_command(
    kinship_file: Annotated[
        Path,
        typer.Option("-k", help="Kinship matrix file (.cXX.txt)"),
    ],
    phenotype_file: Annotated[
        Path,
        typer.Option("-p", help="Phenotype file (whitespace-delimited, no header)"),
    ],
    covariate_file: Annotated[
        Path | None,
        typer.Option("-c", help="Covariate file; include a column of 1s for an intercept"),
    ] = None,
    phenotype_column: Annotated[
        int, typer.Option("-n", help="Phenotype column (1-based)")
    ] = 1,
    method: Annotated[
        str, typer.Option("--method", help="Fitting method: eigen or aireml")
    ] = "eigen",
    max_iter: Annotated[
        int, typer.Option("--max-iter", help="Variance-component iteration budget")
    ] = 100,
) -> None:
    """Fit the mixed model to supplied kinship and phenotype files.

    Without -c the design is an intercept only. The last covariate column
    is the tested fixed effect.
    """
    start_time = time.perf_counter()
    out = _output_config()
    out.ensure_outdir()
    command_line = " ".join(sys.argv)
    _check_method(method)

    for label, path in (("Kinship", kinship_file), ("Phenotype", phenotype_file)):
        if not path.exists():
            typer.echo(f"Error: {label} file not found: {path}", err=True)
            raise typer.Exit(code=1)
    if covariate_file is not None and not covariate_file.exists():
        typer.echo(f"Error: Covariate file not found: {covariate_file}", err=True)
        raise typer.Exit(code=1)

    try:
        y = read_phenotype_file(phenotype_file, column=phenotype_column)
        K = read_kinship_matrix(kinship_file, n_samples=y.shape[0])
        if covariate_file is not None:
            X, indicator = read_covariate_file(covariate_file)
            if not np.all(indicator):
                raise KinlmmError(
                    f"Covariate file has {int((indicator == 0).sum())} row(s) with NA"
                )
        else:
            X = np.ones((y.shape[0], 1))

        config = FitConfig(max_iter=max_iter)
        fit_start = time.perf_counter()
        strategy = get_strategy(method, config)
        if method == "eigen":
            covariance = eigendecompose_kinship(K, threshold=config.eigen_threshold)
        else:
            covariance = K
        fit = strategy.fit(y, X, covariance, test_index=-1)
        fit_time = time.perf_counter() - fit_start
    except (KinlmmError, ValueError) as e:
        logger.error(str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None

    fit_path = write_fit_summary(fit, out.output_path("fit.txt"))
    typer.echo(
        f"tau = {fit.tau:.6g}, sigma2 = {fit.sigma2:.6g}, "
        f"z = {fit.zstat:.6g}, p = {fit.pvalue:.6g} ({fit.status.value})"
    )
    typer.echo(f"Fit written to {fit_path}")

    params = {
        "n_samples": y.shape[0],
        "n_covariates": X.shape[1],
        "kinship_file": str(kinship_file),
        "phenotype_file": str(phenotype_file),
        "covariate_file": str(covariate_file) if covariate_file else "none",
    }
    params.update(fit.summary())
    timing = {"total": time.perf_counter() - start_time, "fit": fit_time}
    log_path = write_run_log(out, params, timing, command_line)
    typer.echo(f"Log written to {log_path}")
