"""Genotype simulation, summaries and standardization."""

from kinlmm.genotype.matrix import (
    AlleleFrequencySummary,
    GenotypeMatrix,
    compute_allele_summary,
)
from kinlmm.genotype.simulate import (
    DEFAULT_ALLELE_FREQS,
    GenotypeSimulation,
    simulate_genotypes,
)
from kinlmm.genotype.standardize import (
    STANDARDIZE_MODES,
    filter_polymorphic,
    standardize_genotypes,
)

__all__ = [
    "AlleleFrequencySummary",
    "DEFAULT_ALLELE_FREQS",
    "GenotypeMatrix",
    "GenotypeSimulation",
    "STANDARDIZE_MODES",
    "compute_allele_summary",
    "filter_polymorphic",
    "simulate_genotypes",
    "standardize_genotypes",
]
