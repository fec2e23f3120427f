"""Pytest configuration and shared fixtures."""

import jax
import pytest

# Ensure float64 is enabled for all tests
jax.config.update("jax_enable_x64", True)


@pytest.fixture
def key():
    """Fixed PRNG key for reproducible draws."""
    return jax.random.PRNGKey(0)
