"""JAX configuration utilities for kinlmm.

JAX runs the standardization and GRM accumulation kernels. Default JAX uses
32-bit floats, which is not enough for kinship matrices whose eigenvalues are
later thresholded at 1e-10, so configure_jax() enables x64 mode before any
JAX computation.
"""

from __future__ import annotations

from typing import Any

import jax
import jax.numpy as jnp
from loguru import logger

_configured = False


def configure_jax(
    enable_x64: bool = True,
    platform: str | None = None,
) -> None:
    """Configure JAX for kinlmm computations.

    Args:
        enable_x64: Enable 64-bit floating point precision. Defaults to True.
        platform: Optional platform name ("cpu", "gpu", "tpu"). If None,
            JAX auto-selects the best available platform.

    Example:
        >>> configure_jax()  # Enable x64, auto-select platform
        >>> configure_jax(platform="cpu")  # Force CPU backend
    """
    global _configured

    if enable_x64:
        jax.config.update("jax_enable_x64", True)
        logger.debug("JAX 64-bit precision enabled")

    if platform is not None:
        jax.config.update("jax_platform_name", platform)
        logger.debug(f"JAX platform set to: {platform}")

    _configured = True
    info = get_jax_info()
    logger.debug(
        f"JAX configured: version={info['version']}, "
        f"backend={info['backend']}, devices={len(info['devices'])}"
    )


def ensure_jax_configured() -> None:
    """Configure JAX with defaults unless configure_jax() already ran."""
    if not _configured:
        configure_jax()


def get_jax_info() -> dict[str, Any]:
    """Get information about the current JAX configuration.

    Returns:
        Dictionary with keys:
            - version: JAX version string
            - backend: Current default backend name (cpu/gpu/tpu)
            - devices: List of available device descriptions
            - x64_enabled: Whether 64-bit precision is enabled
    """
    return {
        "version": jax.__version__,
        "backend": jax.default_backend(),
        "devices": [str(d) for d in jax.devices()],
        "x64_enabled": bool(jax.config.jax_enable_x64),
    }


def verify_jax_installation() -> bool:
    """Verify that JAX can JIT-compile and run a float64 matrix product.

    Returns:
        True if verification succeeds.

    Raises:
        RuntimeError: If JAX verification fails, with details about the failure.
    """
    try:

        @jax.jit
        def _gram(a: jnp.ndarray) -> jnp.ndarray:
            return jnp.matmul(a, a.T)

        a = jnp.array([[1.0, 2.0], [3.0, 4.0]])
        result = _gram(a)
        expected = jnp.array([[5.0, 11.0], [11.0, 25.0]])

        if result.shape != (2, 2):
            raise RuntimeError(f"Unexpected result shape: {result.shape}")
        if not jnp.allclose(result, expected):
            raise RuntimeError(f"Incorrect matmul result: {result}")

        logger.debug("JAX installation verified: JIT compilation and matmul working")
        return True

    except Exception as e:
        error_msg = f"JAX verification failed: {type(e).__name__}: {e}"
        logger.error(error_msg)
        raise RuntimeError(error_msg) from e
