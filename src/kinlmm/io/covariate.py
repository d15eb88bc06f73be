"""Whitespace-delimited numeric table I/O for phenotypes and covariates.

File format:
- Whitespace delimited, no header row
- One row per sample, in the same order as the kinship matrix
- Missing values encoded as "NA" (case-sensitive)
- No intercept is added: include a column of 1s to fit one
"""

from pathlib import Path

import numpy as np

from kinlmm.errors import InvalidParameterError


def read_covariate_file(path: Path) -> tuple[np.ndarray, np.ndarray]:
    """Read a covariate (or phenotype) table.

    Args:
        path: Path to the file.

    Returns:
        Tuple of (values, indicator):
        - values: (n_samples, n_cols) float64 array with NaN for missing values
        - indicator: (n_samples,) int32 array, 0 for rows containing any NA

    Raises:
        InvalidParameterError: If the file is empty, rows have inconsistent
            column counts, or a value is not numeric (other than "NA").

    Example:
        ```
        1  35.0  0
        1  42.0  1
        1  NA    1
        ```

        >>> values, indicator = read_covariate_file(Path("covariates.txt"))
        >>> indicator
        array([1, 1, 0], dtype=int32)
    """
    rows: list[list[str]] = []

    with open(path) as f:
        for line in f:
            stripped = line.strip()
            if not stripped:
                continue
            rows.append(stripped.split())

    if not rows:
        raise InvalidParameterError(f"File is empty: {path}")

    n_samples = len(rows)
    n_cols = len(rows[0])

    for i, row in enumerate(rows):
        if len(row) != n_cols:
            raise InvalidParameterError(
                f"{path} row {i + 1} has {len(row)} columns "
                f"but expected {n_cols} (based on first row)"
            )

    values = np.zeros((n_samples, n_cols), dtype=np.float64)
    indicator = np.ones(n_samples, dtype=np.int32)

    for i, row in enumerate(rows):
        for j, val in enumerate(row):
            if val == "NA":
                values[i, j] = np.nan
                indicator[i] = 0
            else:
                try:
                    values[i, j] = float(val)
                except ValueError as e:
                    raise InvalidParameterError(
                        f"{path} row {i + 1}, column {j + 1}: "
                        f"cannot parse '{val}' as numeric (use 'NA' for missing)"
                    ) from e

    return values, indicator


def read_phenotype_file(path: Path, column: int = 1) -> np.ndarray:
    """Read one phenotype column (1-based) from a covariate-format table.

    Raises:
        InvalidParameterError: If the column is out of range or contains NA.
    """
    values, indicator = read_covariate_file(path)
    if not 1 <= column <= values.shape[1]:
        raise InvalidParameterError(
            f"Phenotype column {column} out of range; {path} has {values.shape[1]} column(s)"
        )
    y = values[:, column - 1]
    if np.any(np.isnan(y)):
        raise InvalidParameterError(
            f"Phenotype column {column} of {path} has {int(np.isnan(y).sum())} missing value(s)"
        )
    return y


def write_matrix(values: np.ndarray, path: Path) -> Path:
    """Write a 1-D or 2-D float array as a tab-separated table (%.10g)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr[:, None]
    np.savetxt(path, arr, fmt="%.10g", delimiter="\t")
    return path
