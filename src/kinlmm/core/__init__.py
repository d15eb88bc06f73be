"""Core configuration and runtime helpers for kinlmm.

- config: Configuration dataclasses
- jax_config: JAX configuration and verification
- threading: Scoped BLAS thread limits
- progress: Progress bar iterator
"""

from kinlmm.core.config import FitConfig, OutputConfig
from kinlmm.core.jax_config import (
    configure_jax,
    ensure_jax_configured,
    get_jax_info,
    verify_jax_installation,
)
from kinlmm.core.progress import progress_iterator
from kinlmm.core.threading import blas_threads, get_blas_thread_count

__all__ = [
    "FitConfig",
    "OutputConfig",
    "blas_threads",
    "configure_jax",
    "ensure_jax_configured",
    "get_blas_thread_count",
    "get_jax_info",
    "progress_iterator",
    "verify_jax_installation",
]
