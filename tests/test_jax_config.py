"""Tests for JAX configuration and verification."""

import jax.numpy as jnp

from kinlmm.core import get_jax_info, verify_jax_installation


class TestJaxConfig:
    """configure_jax() runs before every test via the autouse fixture."""

    def test_x64_enabled(self):
        assert jnp.array([1.0]).dtype == jnp.float64
        assert get_jax_info()["x64_enabled"]

    def test_info_keys(self):
        info = get_jax_info()
        assert set(info) == {"version", "backend", "devices", "x64_enabled"}
        assert info["backend"] in ("cpu", "gpu", "tpu")
        assert len(info["devices"]) >= 1

    def test_verify_installation(self):
        assert verify_jax_installation() is True
