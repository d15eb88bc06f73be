"""Configuration dataclasses for kinlmm.

This module contains dataclasses that configure output locations and the
numerical tolerances of the mixed-model fitters.
"""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class OutputConfig:
    """Configuration for output files and directories.

    Attributes:
        outdir: Output directory for result files. Created if it doesn't exist.
        prefix: Prefix for output filenames (e.g., "result" produces "result.log.txt").
        verbose: Enable verbose/debug output to console.
    """

    outdir: Path = field(default_factory=lambda: Path("output"))
    prefix: str = "result"
    verbose: bool = False

    @property
    def log_path(self) -> Path:
        """Path to the run log file.

        Returns:
            Path to {outdir}/{prefix}.log.txt
        """
        return self.outdir / f"{self.prefix}.log.txt"

    def output_path(self, suffix: str) -> Path:
        """Path for an output file with the given suffix (e.g. "cXX.txt")."""
        return self.outdir / f"{self.prefix}.{suffix}"

    def ensure_outdir(self) -> None:
        """Create output directory if it doesn't exist."""
        self.outdir.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class FitConfig:
    """Numerical settings for variance-component estimation.

    Attributes:
        l_min: Lower bound of the variance ratio (tau / sigma2) search.
        l_max: Upper bound of the variance ratio search.
        n_region: Number of log-spaced intervals scanned for derivative sign
            changes before root refinement.
        tol: Convergence tolerance. For the eigen form this bounds the
            relative REML derivative and the Brent bracket width; for
            AI-REML it bounds the change in variance components relative to
            Var(y).
        max_iter: Iteration budget of the variance-component search. Zero
            means no search is run and the fit is reported as not converged.
        eigen_threshold: Eigenvalues with magnitude below this are zeroed.
    """

    l_min: float = 1e-5
    l_max: float = 1e5
    n_region: int = 50
    tol: float = 1e-8
    max_iter: int = 100
    eigen_threshold: float = 1e-10
