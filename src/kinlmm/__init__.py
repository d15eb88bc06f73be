"""kinlmm: kinship-based linear mixed models.

kinlmm simulates genotype data, builds genomic relationship matrices and
their principal components, and fits univariate linear mixed models by
REML, either in the eigenbasis of the kinship matrix or by
average-information REML on the matrix itself.

Example:
    >>> from kinlmm import simulate_and_fit
    >>> result = simulate_and_fit(n_samples=500, n_markers=5000, seed=1)
    >>> print(f"tau={result.fit.tau:.3f} z={result.fit.zstat:.3f}")
"""

import sys
from importlib.metadata import version

from loguru import logger

__version__ = version("kinlmm")

# Configure loguru with sensible defaults on import
# Users can override by calling logger.remove()/add()
logger.remove()
logger.add(
    sys.stdout,
    level="INFO",
    format="{time:HH:mm:ss} | <level>{level: <8}</level> | {message}",
    colorize=True,
)

from kinlmm.lmm import MixedModelFit, fit_lmm  # noqa: E402
from kinlmm.pipeline import (  # noqa: E402
    PipelineConfig,
    PipelineResult,
    PipelineRunner,
    simulate_and_fit,
)

__all__ = [
    "MixedModelFit",
    "PipelineConfig",
    "PipelineResult",
    "PipelineRunner",
    "__version__",
    "fit_lmm",
    "simulate_and_fit",
]
