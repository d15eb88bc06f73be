"""Tabular input/output for phenotypes, covariates and derived matrices."""

from kinlmm.io.covariate import read_covariate_file, read_phenotype_file, write_matrix

__all__ = ["read_covariate_file", "read_phenotype_file", "write_matrix"]
