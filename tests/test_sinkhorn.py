"""Tests for Sinkhorn balancing."""

import jax.numpy as jnp
import pytest

from bvn_mcmc.exceptions import BalancingError
from bvn_mcmc.matrix import identity, random_matrix, uniform_bistoc
from bvn_mcmc.sinkhorn import balance, is_bistochastic


class TestBalance:
    """Test balance()."""

    def test_random_positive_matrix(self, key):
        """A strictly positive matrix balances to bistochastic."""
        m = random_matrix(key, 6) + 0.01
        P = balance(m)

        assert jnp.allclose(jnp.sum(P, axis=1), 1.0, atol=1e-9)
        assert jnp.allclose(jnp.sum(P, axis=0), 1.0, atol=1e-9)
        assert jnp.all(P >= 0)

    def test_input_not_modified(self, key):
        """Balancing returns a new array."""
        m = random_matrix(key, 4) + 0.01
        before = jnp.array(m)
        balance(m)
        assert jnp.array_equal(m, before)

    def test_already_bistochastic(self):
        """Bistochastic input comes back unchanged."""
        m = uniform_bistoc(5)
        assert jnp.allclose(balance(m), m)

    def test_preserves_zero_pattern(self):
        """Zeros stay zero."""
        m = jnp.array([[0.0, 2.0, 1.0], [1.0, 0.0, 3.0], [2.0, 1.0, 0.0]])
        P = balance(m)
        assert jnp.all(jnp.diag(P) == 0.0)
        assert is_bistochastic(P, tol=1e-9)

    def test_zero_row(self):
        """An all-zero row can never be balanced."""
        m = jnp.array([[1.0, 1.0], [0.0, 0.0]])
        with pytest.raises(BalancingError):
            balance(m)

    def test_negative_entries(self):
        """Negative entries are rejected."""
        with pytest.raises(BalancingError):
            balance(jnp.array([[1.0, -0.5], [0.5, 1.0]]))

    def test_non_square(self):
        """Non-square input is rejected."""
        with pytest.raises(BalancingError):
            balance(jnp.ones((2, 3)))

    def test_no_convergence(self):
        """Support without total support converges too slowly."""
        m = jnp.array([[1.0, 1.0], [0.0, 1.0]])
        with pytest.raises(BalancingError):
            balance(m, max_iters=50)


class TestIsBistochastic:
    """Test is_bistochastic()."""

    def test_identity(self):
        """Identity is bistochastic."""
        assert is_bistochastic(identity(4))

    def test_row_sum_off(self):
        """Row sums away from 1 are rejected."""
        assert not is_bistochastic(jnp.array([[0.5, 0.4], [0.5, 0.6]]))

    def test_negative(self):
        """Negative entries are rejected."""
        assert not is_bistochastic(jnp.array([[1.5, -0.5], [-0.5, 1.5]]))

    def test_non_square(self):
        """Non-square matrices are rejected."""
        assert not is_bistochastic(jnp.ones((2, 3)) / 3)
