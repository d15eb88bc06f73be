"""Exception types and fit status flags for kinlmm.

Fatal conditions (bad parameters, degenerate markers, undefined noise scale)
are raised immediately. Non-convergence and boundary solutions are not
exceptions: they are reported on the returned MixedModelFit so callers can
still inspect a best-effort estimate.
"""

from __future__ import annotations

from enum import Enum

import numpy as np


class KinlmmError(Exception):
    """Base class for all kinlmm errors."""


class InvalidParameterError(KinlmmError, ValueError):
    """Raised for non-positive dimensions, out-of-range counts or ratios,
    malformed array shapes, and unknown modes."""


class DegenerateColumnError(KinlmmError, ValueError):
    """Raised when a marker has zero standardization variance.

    Attributes:
        columns: Indices of the offending marker columns.
    """

    def __init__(self, columns: np.ndarray | list[int], reason: str = "") -> None:
        self.columns = np.asarray(columns, dtype=np.int64)
        shown = ", ".join(str(c) for c in self.columns[:10])
        if len(self.columns) > 10:
            shown += ", ..."
        msg = (
            f"{len(self.columns)} degenerate marker column(s) with zero "
            f"standardization variance: [{shown}]"
        )
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class UndefinedScaleError(KinlmmError, ValueError):
    """Raised when the simulated genetic signal has zero variance, so the
    noise scale for a target signal-to-noise ratio cannot be computed."""


class FitStatus(str, Enum):
    """Outcome of the variance-component search."""

    CONVERGED = "converged"
    NON_CONVERGENCE = "non_convergence"
