"""Tests for Birkhoff-von Neumann decomposition and sampling."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from bvn_mcmc.decomposition import BVNDecomposer, reconstruct
from bvn_mcmc.exceptions import DecompositionError
from bvn_mcmc.matrix import (
    from_sparse,
    is_permutation,
    preconditioned_bistoch,
    random_matrix,
    random_permutation,
)
from bvn_mcmc.sinkhorn import balance
from bvn_mcmc.types import SamplingAlgorithm, WeightedPermutation

SPARSE_BISTOC = jnp.array(
    [
        [0.7, 0.3, 0.0],
        [0.0, 0.6, 0.4],
        [0.3, 0.1, 0.6],
    ]
)


@pytest.fixture
def random_bistoc(key):
    """Dense 5x5 bistochastic matrix."""
    return balance(random_matrix(key, 5) + 0.05)


class TestDecompose:
    """Test decompose()."""

    def test_returns_weighted_permutations(self):
        """Every term is a WeightedPermutation over a permutation matrix."""
        terms = BVNDecomposer().decompose(SPARSE_BISTOC)

        assert len(terms) > 0
        for term in terms:
            assert isinstance(term, WeightedPermutation)
            assert is_permutation(term.matrix)
            assert term.coeff > 0

    def test_coefficients_sum_to_one(self, random_bistoc):
        """Coefficients form a convex combination."""
        terms = BVNDecomposer().decompose(random_bistoc)
        assert sum(t.coeff for t in terms) == pytest.approx(1.0)

    def test_reconstruction_sparse(self):
        """Weighted sum reproduces a matrix with zeros."""
        terms = BVNDecomposer().decompose(SPARSE_BISTOC)
        assert jnp.allclose(reconstruct(terms), SPARSE_BISTOC, atol=1e-8)

    def test_reconstruction_dense(self, random_bistoc):
        """Weighted sum reproduces a dense matrix."""
        terms = BVNDecomposer().decompose(random_bistoc)
        assert jnp.allclose(reconstruct(terms), random_bistoc, atol=1e-6)

    def test_term_count_bound(self, random_bistoc):
        """Each greedy step zeroes an entry, so at most n^2 terms."""
        terms = BVNDecomposer().decompose(random_bistoc)
        assert len(terms) <= 25

    def test_permutation_matrix(self, key):
        """A permutation decomposes into itself."""
        p = random_permutation(key, 6)
        terms = BVNDecomposer().decompose(p)

        assert len(terms) == 1
        assert terms[0].coeff == pytest.approx(1.0)
        assert jnp.array_equal(terms[0].matrix, p)

    def test_not_bistochastic(self):
        """Row sums away from 1 are rejected."""
        with pytest.raises(DecompositionError):
            BVNDecomposer().decompose(jnp.array([[0.5, 0.4], [0.5, 0.6]]))

    def test_negative_entries(self):
        """Negative entries are rejected."""
        with pytest.raises(DecompositionError):
            BVNDecomposer().decompose(jnp.array([[1.5, -0.5], [-0.5, 1.5]]))

    def test_non_square(self):
        """Non-square input is rejected."""
        with pytest.raises(DecompositionError):
            BVNDecomposer().decompose(jnp.ones((2, 3)) / 2)


class TestReconstruct:
    """Test reconstruct()."""

    def test_weighted_sum(self):
        """Reconstruct is the coefficient-weighted sum."""
        eye = jnp.eye(2)
        swap = jnp.array([[0.0, 1.0], [1.0, 0.0]])
        terms = [WeightedPermutation(0.25, eye), WeightedPermutation(0.75, swap)]
        assert jnp.allclose(reconstruct(terms), jnp.array([[0.25, 0.75], [0.75, 0.25]]))

    def test_empty(self):
        """Nothing to reconstruct from."""
        with pytest.raises(ValueError):
            reconstruct([])


class TestMeanPermutation:
    """Test mean_permutation()."""

    def test_preconditioned(self):
        """The dominant permutation of a biased matrix is the bias."""
        perm = jnp.array([3, 1, 0, 2])
        m = preconditioned_bistoch(perm, 0.1)
        assert jnp.array_equal(BVNDecomposer().mean_permutation(m), from_sparse(perm))

    def test_deterministic(self, random_bistoc):
        """Mean permutation does not depend on any random state."""
        decomposer = BVNDecomposer(SamplingAlgorithm.GIBBS)
        first = decomposer.mean_permutation(random_bistoc)
        second = decomposer.mean_permutation(random_bistoc)
        assert is_permutation(first)
        assert jnp.array_equal(first, second)

    def test_highest_coefficient(self, random_bistoc):
        """Mean permutation is the largest term of the decomposition."""
        decomposer = BVNDecomposer()
        terms = decomposer.decompose(random_bistoc)
        heaviest = max(terms, key=lambda t: t.coeff)
        assert jnp.array_equal(decomposer.mean_permutation(random_bistoc), heaviest.matrix)


class TestSample:
    """Test sample() for every sampling algorithm."""

    @pytest.mark.parametrize("algorithm", ["exact", "gibbs"])
    def test_samples_are_supported_permutations(self, algorithm):
        """Samples are permutations using only positive entries."""
        decomposer = BVNDecomposer(algorithm)
        for k in jax.random.split(jax.random.PRNGKey(7), 20):
            p = decomposer.sample(k, SPARSE_BISTOC)
            assert is_permutation(p)
            assert jnp.all(SPARSE_BISTOC[p == 1.0] > 0)

    @pytest.mark.parametrize("algorithm", list(SamplingAlgorithm))
    def test_reproducible(self, algorithm, random_bistoc, key):
        """Same key gives same sample."""
        decomposer = BVNDecomposer(algorithm)
        assert jnp.array_equal(
            decomposer.sample(key, random_bistoc), decomposer.sample(key, random_bistoc)
        )

    def test_exact_frequencies(self):
        """Exact sampling follows the decomposition weights."""
        m = jnp.array([[0.2, 0.8], [0.8, 0.2]])
        decomposer = BVNDecomposer(SamplingAlgorithm.EXACT)
        keys = jax.random.split(jax.random.PRNGKey(3), 400)
        swaps = sum(float(decomposer.sample(k, m)[0, 1]) for k in keys)
        assert 0.65 < swaps / 400 < 0.95

    def test_gibbs_reaches_cycle_related_terms(self):
        """Permutations one 3-cycle apart are both drawn, at their equal weights."""
        cycle = jnp.array([1, 2, 0])
        m = (jnp.eye(3) + from_sparse(cycle)) / 2
        decomposer = BVNDecomposer(SamplingAlgorithm.GIBBS)
        keys = jax.random.split(jax.random.PRNGKey(5), 200)

        draws = [decomposer.sample(k, m) for k in keys]
        n_identity = sum(bool(jnp.array_equal(p, jnp.eye(3))) for p in draws)
        n_cycle = sum(bool(jnp.array_equal(p, from_sparse(cycle))) for p in draws)

        assert n_identity + n_cycle == 200
        assert 60 <= n_identity <= 140
        assert 60 <= n_cycle <= 140

    def test_gibbs_single_element(self):
        """1x1 matrices have a single permutation."""
        p = BVNDecomposer("gibbs").sample(jax.random.PRNGKey(0), jnp.ones((1, 1)))
        assert jnp.array_equal(p, jnp.ones((1, 1)))

    def test_not_bistochastic(self, key):
        """Sampling validates its input."""
        with pytest.raises(DecompositionError):
            BVNDecomposer().sample(key, np.full((3, 3), 0.5))

    def test_unknown_algorithm(self):
        """Unknown algorithm names are rejected at construction."""
        with pytest.raises(ValueError):
            BVNDecomposer("annealing")
