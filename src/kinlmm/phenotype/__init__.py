"""Phenotype simulation from causal markers or directly from the mixed model."""

from kinlmm.phenotype.simulate import (
    CAUSAL_EFFECT_RANGE,
    PhenotypeSimulation,
    simulate_lmm_phenotype,
    simulate_phenotype,
)

__all__ = [
    "CAUSAL_EFFECT_RANGE",
    "PhenotypeSimulation",
    "simulate_lmm_phenotype",
    "simulate_phenotype",
]
