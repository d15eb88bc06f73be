"""Linear mixed model (LMM) fitting.

Fits y = X beta + g + e with g ~ N(0, tau K) and e ~ N(0, sigma2 I) by
REML, either in the eigenbasis of K (Zhou & Stephens 2012, GEMMA) or by
average-information REML on K directly (Gilmour et al. 1995, GCTA).

Key components:
- eigendecompose_kinship: Eigendecomposition with negative-eigenvalue clamping
- reml_log_likelihood: Profiled REML log-likelihood over lambda = tau / sigma2
- optimize_lambda: Grid scan plus Brent root finding for lambda
- fit_aireml: Average-information iteration on (tau, sigma2)
- fit_lmm: Single fit returning a MixedModelFit
- run_association: Per-marker Wald / LRT scan
"""

from kinlmm.lmm.aireml import AIREMLResult, fit_aireml
from kinlmm.lmm.association import ASSOC_MODES, AssocResult, run_association
from kinlmm.lmm.eigen import (
    SpectralDecomposition,
    compute_principal_components,
    eigendecompose_kinship,
)
from kinlmm.lmm.fit import (
    FIT_METHODS,
    AIREMLStrategy,
    EigenREMLStrategy,
    FittingStrategy,
    MixedModelFit,
    fit_lmm,
    fit_mle_eigen,
    get_strategy,
)
from kinlmm.lmm.io import write_assoc_results, write_fit_summary
from kinlmm.lmm.likelihood import reml_log_likelihood
from kinlmm.lmm.optimize import brent_root, optimize_lambda
from kinlmm.lmm.stats import calc_lrt_test, normal_two_sided_pvalue, wald_z

__all__ = [
    "AIREMLResult",
    "AIREMLStrategy",
    "ASSOC_MODES",
    "AssocResult",
    "EigenREMLStrategy",
    "FIT_METHODS",
    "FittingStrategy",
    "MixedModelFit",
    "SpectralDecomposition",
    "brent_root",
    "calc_lrt_test",
    "compute_principal_components",
    "eigendecompose_kinship",
    "fit_aireml",
    "fit_lmm",
    "fit_mle_eigen",
    "get_strategy",
    "normal_two_sided_pvalue",
    "optimize_lambda",
    "reml_log_likelihood",
    "run_association",
    "wald_z",
    "write_assoc_results",
    "write_fit_summary",
]
