"""Genotype value types: dosage matrix and per-marker allele summaries.

Dosages are stored as float64 with NaN marking a missing call, the same
convention the kinship and standardization kernels consume. Both types are
frozen and their arrays are flagged read-only on construction, so a matrix
built once can be shared by every downstream stage.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from kinlmm.errors import InvalidParameterError


def _readonly(a: np.ndarray, dtype=np.float64) -> np.ndarray:
    a = np.array(a, dtype=dtype, copy=True)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class GenotypeMatrix:
    """Allele dosages for n subjects x p markers.

    Attributes:
        dosages: (n_samples, n_markers) float64 array with entries in
            {0, 1, 2} and NaN for missing calls.
    """

    dosages: np.ndarray

    def __post_init__(self) -> None:
        d = np.asarray(self.dosages)
        if d.ndim != 2:
            raise InvalidParameterError(
                f"Genotype matrix must be 2-D (samples x markers), got shape {d.shape}"
            )
        observed = d[~np.isnan(d)] if np.issubdtype(d.dtype, np.floating) else d
        if observed.size and not np.isin(observed, (0, 1, 2)).all():
            raise InvalidParameterError("Genotype dosages must be 0, 1, 2 or missing")
        object.__setattr__(self, "dosages", _readonly(d))

    @property
    def n_samples(self) -> int:
        return self.dosages.shape[0]

    @property
    def n_markers(self) -> int:
        return self.dosages.shape[1]

    @property
    def missing_mask(self) -> np.ndarray:
        """Boolean (n_samples, n_markers) mask, True where the call is missing."""
        return np.isnan(self.dosages)

    @property
    def n_missing(self) -> int:
        return int(self.missing_mask.sum())


@dataclass(frozen=True)
class AlleleFrequencySummary:
    """Per-marker allele frequency statistics over observed calls.

    Attributes:
        freq: Alternate allele frequency, mean dosage / 2.
        mu: Expected dosage, 2 * freq.
        sigma: Empirical dosage standard deviation.
        n_missing: Missing call count per marker.
    """

    freq: np.ndarray
    mu: np.ndarray
    sigma: np.ndarray
    n_missing: np.ndarray

    def __post_init__(self) -> None:
        for name in ("freq", "mu", "sigma"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))
        object.__setattr__(
            self, "n_missing", _readonly(self.n_missing, dtype=np.int64)
        )

    @property
    def n_markers(self) -> int:
        return self.freq.shape[0]

    def hwe_sigma(self) -> np.ndarray:
        """Dosage standard deviation implied by Hardy-Weinberg equilibrium."""
        return np.sqrt(2.0 * self.freq * (1.0 - self.freq))

    def hwe_deviation(self) -> np.ndarray:
        """Ratio of empirical to Hardy-Weinberg sigma (NaN for monomorphic markers).

        Values far from 1 point at population structure or genotyping artifacts.
        """
        expected = self.hwe_sigma()
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(expected > 0, self.sigma / expected, np.nan)

    def degenerate_columns(self) -> np.ndarray:
        """Indices of markers with frequency exactly 0 or 1."""
        return np.flatnonzero((self.freq == 0.0) | (self.freq == 1.0))


def compute_allele_summary(genotypes: GenotypeMatrix) -> AlleleFrequencySummary:
    """Compute frequency, expected dosage and empirical sigma per marker.

    All-missing markers get freq 0 and sigma 0, and therefore show up as
    degenerate during standardization.

    Args:
        genotypes: Genotype matrix with NaN for missing calls.

    Returns:
        AlleleFrequencySummary with one entry per marker.
    """
    G = genotypes.dosages
    n_missing = np.sum(np.isnan(G), axis=0)
    with np.errstate(invalid="ignore"):
        col_means = np.nanmean(G, axis=0)
        col_sd = np.nanstd(G, axis=0)
    col_means = np.nan_to_num(col_means, nan=0.0)
    col_sd = np.nan_to_num(col_sd, nan=0.0)

    freq = col_means / 2.0
    return AlleleFrequencySummary(
        freq=freq, mu=2.0 * freq, sigma=col_sd, n_missing=n_missing
    )
