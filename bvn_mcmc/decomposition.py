"""
Birkhoff-von Neumann decomposition and permutation sampling.

Uses NumPy and SciPy for the combinatorial search (data-dependent loops,
not differentiable). Results are returned as JAX arrays.
"""

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array
from scipy.optimize import linear_sum_assignment

from .exceptions import DecompositionError
from .matrix import from_sparse
from .types import SamplingAlgorithm, WeightedPermutation

# Assignment cost of an entry treated as zero; dwarfs any sum of -log(entry)
_UNSUPPORTED_COST = 1e6


def _max_product_assignment(work: np.ndarray, tol: float) -> np.ndarray:
    """
    Permutation maximizing the product of entries above ``tol``.

    Returns the column chosen for each row. If the entries above ``tol``
    admit no perfect matching, some chosen entry will be <= tol.
    """
    supported = work > tol
    cost = np.full(work.shape, _UNSUPPORTED_COST)
    cost[supported] = -np.log(work[supported])
    _, cols = linear_sum_assignment(cost)
    return cols


def reconstruct(weighted: list[WeightedPermutation]) -> Array:
    """Coefficient-weighted sum of the permutation matrices."""
    if not weighted:
        raise ValueError("Cannot reconstruct from an empty decomposition")
    total = jnp.zeros_like(weighted[0].matrix)
    for term in weighted:
        total = total + term.coeff * term.matrix
    return total


class BVNDecomposer:
    """
    Decompose bistochastic matrices and draw permutations from them.

    Parameters
    ----------
    sampling_algorithm : SamplingAlgorithm or str
        Strategy used by :meth:`sample`: 'exact' or 'gibbs'.
    tolerance : float
        Entries at or below this are treated as zero; row and column sums
        must be within this of 1.
    gibbs_sweeps : int
        Number of sweeps for the Gibbs sampler. Each sweep is n steps of one
        pair update plus one cycle proposal.
    """

    def __init__(
        self,
        sampling_algorithm: SamplingAlgorithm | str = SamplingAlgorithm.EXACT,
        tolerance: float = 1e-8,
        gibbs_sweeps: int = 10,
    ):
        self.sampling_algorithm = SamplingAlgorithm(sampling_algorithm)
        self.tolerance = tolerance
        self.gibbs_sweeps = gibbs_sweeps

    def _validate(self, matrix) -> np.ndarray:
        m = np.array(matrix, dtype=float)
        if m.ndim != 2 or m.shape[0] != m.shape[1]:
            raise DecompositionError(f"Expected a square matrix, got shape {m.shape}")
        if m.size == 0:
            raise DecompositionError("Cannot decompose an empty matrix")
        if np.any(m < -self.tolerance):
            raise DecompositionError("Matrix has negative entries")

        row_err = np.max(np.abs(m.sum(axis=1) - 1.0))
        col_err = np.max(np.abs(m.sum(axis=0) - 1.0))
        if max(row_err, col_err) > self.tolerance:
            raise DecompositionError(
                f"Matrix is not bistochastic (marginal error {max(row_err, col_err):.3e})"
            )
        return m

    def _decompose_sparse(self, m: np.ndarray) -> list[tuple[float, np.ndarray]]:
        """Greedy decomposition into (coefficient, column-per-row) pairs."""
        n = m.shape[0]
        rows = np.arange(n)
        tol = self.tolerance

        work = m.copy()
        work[work <= tol] = 0.0
        terms = []

        # Each step zeroes at least one entry
        for _ in range(n * n):
            if work.max() <= tol:
                break
            cols = _max_product_assignment(work, tol)
            coeff = float(work[rows, cols].min())
            if coeff <= tol:
                break
            terms.append((coeff, cols))
            work[rows, cols] -= coeff
            work[work <= tol] = 0.0

        total = sum(coeff for coeff, _ in terms)
        if total < 1.0 - n * n * tol - 1e-12:
            raise DecompositionError(
                f"Could not find a supported permutation; {1.0 - total:.3e} of the mass is left"
            )
        return [(coeff / total, cols) for coeff, cols in terms]

    def decompose(self, matrix) -> list[WeightedPermutation]:
        """
        Birkhoff-von Neumann decomposition.

        Parameters
        ----------
        matrix : Array
            Bistochastic matrix, shape (n, n).

        Returns
        -------
        list[WeightedPermutation]
            Terms whose coefficients sum to 1 and whose weighted sum
            reconstructs ``matrix`` within tolerance.

        Raises
        ------
        DecompositionError
            If ``matrix`` is not bistochastic within tolerance.
        """
        terms = self._decompose_sparse(self._validate(matrix))
        return [WeightedPermutation(coeff, from_sparse(cols)) for coeff, cols in terms]

    def mean_permutation(self, matrix) -> Array:
        """The highest-coefficient permutation of the decomposition."""
        terms = self._decompose_sparse(self._validate(matrix))
        _, cols = max(terms, key=lambda term: term[0])
        return from_sparse(cols)

    def sample(self, key: Array, matrix) -> Array:
        """
        Draw one permutation matrix from a bistochastic matrix.

        Dispatches on ``sampling_algorithm``.

        Raises
        ------
        DecompositionError
            If ``matrix`` is not bistochastic within tolerance.
        """
        m = self._validate(matrix)

        if self.sampling_algorithm == SamplingAlgorithm.EXACT:
            return self._sample_exact(key, m)
        elif self.sampling_algorithm == SamplingAlgorithm.GIBBS:
            return self._sample_gibbs(key, m)
        else:
            raise ValueError(f"Unknown sampling algorithm: {self.sampling_algorithm}")

    def _draw_term(self, key: Array, m: np.ndarray) -> np.ndarray:
        """Column-per-row of one decomposition term, drawn by coefficient."""
        terms = self._decompose_sparse(m)
        probs = jnp.asarray([coeff for coeff, _ in terms])
        idx = int(jax.random.choice(key, len(terms), p=probs))
        return np.array(terms[idx][1])

    def _sample_exact(self, key: Array, m: np.ndarray) -> Array:
        return from_sparse(self._draw_term(key, m))

    def _sample_gibbs(self, key: Array, m: np.ndarray) -> Array:
        """
        Markov chain of row-pair heat-bath updates and row-triple cycle moves.

        The stationary distribution is proportional to prod_i m[i, sigma(i)].
        The chain starts from an exact decomposition draw, so it never leaves
        the support of ``m`` and every decomposition term is a possible start.
        Each step resamples a random row pair by heat bath, then (for n >= 3)
        proposes rotating the columns of a random row triple and accepts with
        probability min(1, w' / w). Cycle moves connect supported
        permutations that no single transposition joins, such as the
        identity and a 3-cycle.
        """
        n = m.shape[0]
        start_key, order_key, u_key = jax.random.split(key, 3)
        sigma = self._draw_term(start_key, m)
        if n < 2:
            return from_sparse(sigma)

        steps = self.gibbs_sweeps * n
        # Leading entries of a uniform random row order: distinct rows, every
        # ordering equally likely, so the cycle proposal is symmetric
        orders = np.argsort(np.asarray(jax.random.uniform(order_key, (steps, n))), axis=1)
        uniforms = np.asarray(jax.random.uniform(u_key, (steps, 2)))

        for order, (u_pair, u_cycle) in zip(orders, uniforms):
            i, j = order[0], order[1]
            keep = m[i, sigma[i]] * m[j, sigma[j]]
            swap = m[i, sigma[j]] * m[j, sigma[i]]
            if u_pair * (keep + swap) < swap:
                sigma[i], sigma[j] = sigma[j], sigma[i]

            if n < 3:
                continue
            k = order[2]
            current = m[i, sigma[i]] * m[j, sigma[j]] * m[k, sigma[k]]
            rotated = m[i, sigma[j]] * m[j, sigma[k]] * m[k, sigma[i]]
            if u_cycle * current < rotated:
                sigma[i], sigma[j], sigma[k] = sigma[j], sigma[k], sigma[i]

        return from_sparse(sigma)
