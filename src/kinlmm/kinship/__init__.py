"""Kinship (genetic relationship) matrix computation and I/O.

Key functions:
- compute_grm: K = Xs @ Xs.T / (p - 1) from standardized genotypes
- compute_grm_from_genotypes: summary -> standardize -> GRM in one call
- read_kinship_matrix / write_kinship_matrix: tab-separated text format
"""

from kinlmm.kinship.compute import compute_grm, compute_grm_from_genotypes
from kinlmm.kinship.io import read_kinship_matrix, write_kinship_matrix

__all__ = [
    "compute_grm",
    "compute_grm_from_genotypes",
    "read_kinship_matrix",
    "write_kinship_matrix",
]
