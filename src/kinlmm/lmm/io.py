"""I/O for mixed-model results.

Association tables are tab-separated with one header row. Statistics use
scientific notation with 6 significant digits; allele frequency uses 3
fixed decimals. Single-fit summaries are written as key/value lines.
"""

from pathlib import Path

from kinlmm.lmm.association import AssocResult
from kinlmm.lmm.fit import MixedModelFit

HEADER_WALD = (
    "marker\tn_miss\taf\tbeta\tse\tz\ttau\tsigma2\tlogl_H1\tl_remle\tp_wald\tstatus\tboundary"
)
HEADER_LRT = HEADER_WALD + "\tl_mle\tp_lrt"


def format_assoc_line(result: AssocResult) -> str:
    """Format a single result as a tab-separated line (no newline).

    LRT columns are appended when the result carries them.
    """
    fields = [
        str(result.marker),
        str(result.n_miss),
        f"{result.af:.3f}",
        f"{result.beta:.6e}",
        f"{result.se:.6e}",
        f"{result.z:.6e}",
        f"{result.tau:.6e}",
        f"{result.sigma2:.6e}",
        f"{result.logl_H1:.6e}",
        f"{result.l_remle:.6e}",
        f"{result.p_wald:.6e}",
        result.status,
        str(int(result.boundary)),
    ]
    if result.p_lrt is not None:
        fields.extend([f"{result.l_mle:.6e}", f"{result.p_lrt:.6e}"])
    return "\t".join(fields)


def write_assoc_results(results: list[AssocResult], path: Path) -> Path:
    """Write association results as a tab-separated table.

    Args:
        results: AssocResult instances, all from the same mode.
        path: Output file path (parent directories created if needed).

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    lrt = bool(results) and results[0].p_lrt is not None
    with open(path, "w") as f:
        f.write((HEADER_LRT if lrt else HEADER_WALD) + "\n")
        for result in results:
            f.write(format_assoc_line(result) + "\n")
    return path


def write_fit_summary(fit: MixedModelFit, path: Path) -> Path:
    """Write a MixedModelFit as "key<TAB>value" lines plus all coefficients."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        for key, value in fit.summary().items():
            if isinstance(value, float):
                f.write(f"{key}\t{value:.6e}\n")
            else:
                f.write(f"{key}\t{value}\n")
        f.write("coef\tbeta\tse\tz\tp\n")
        for i in range(len(fit.beta)):
            f.write(
                f"{i}\t{fit.beta[i]:.6e}\t{fit.se[i]:.6e}\t"
                f"{fit.z[i]:.6e}\t{fit.p_values[i]:.6e}\n"
            )
    return path
