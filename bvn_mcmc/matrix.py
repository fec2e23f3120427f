"""
Dense-matrix primitives.

Elementwise arithmetic, the Ryser permanent, permutation helpers and random
draws. Every function is pure: results are new arrays, inputs are never
modified.
"""

import math

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from .exceptions import DimensionError
from .sinkhorn import balance


def _check_same_shape(a: Array, b: Array) -> None:
    if a.shape != b.shape:
        raise DimensionError(f"Shape mismatch: {a.shape} vs {b.shape}")


def _unflatten(vector: Array, n: int | None = None) -> Array:
    """Reshape a row-major vector of length n**2 back to (n, n)."""
    if n is None:
        n = math.isqrt(vector.size)
    if vector.ndim != 1 or vector.size != n * n:
        raise DimensionError(
            f"Vector of shape {vector.shape} cannot be reshaped to ({n}, {n})"
        )
    return vector.reshape(n, n)


def _as_operand(a: Array, b) -> Array | float:
    """
    Validate the right-hand operand of an elementwise operation.

    Scalars pass through; a flattened vector is reshaped to ``a.shape``;
    anything else must already match ``a.shape``.
    """
    if jnp.ndim(b) == 0:
        return b
    b = jnp.asarray(b)
    if b.ndim == 1 and a.ndim == 2:
        if b.size != a.size:
            raise DimensionError(
                f"Vector of length {b.size} does not match matrix {a.shape}"
            )
        return b.reshape(a.shape)
    _check_same_shape(a, b)
    return b


def multiply(a, b, n: int | None = None) -> Array:
    """
    Elementwise product.

    Parameters
    ----------
    a : Array
        Matrix, or a row-major flattened square matrix.
    b : Array or float
        Matrix of the same shape, or a scalar.
    n : int, optional
        Side length used to reshape a flattened ``a``. Inferred if omitted.

    Returns
    -------
    Array
        Product, shape (n, n) when ``a`` was flattened.
    """
    a = jnp.asarray(a)
    if a.ndim == 1:
        a = _unflatten(a, n)
    return a * _as_operand(a, b)


def add(a, b) -> Array:
    """Elementwise sum with a matrix, scalar, or flattened vector."""
    a = jnp.asarray(a)
    return a + _as_operand(a, b)


def subtract(a, b) -> Array:
    """Elementwise difference with a matrix, scalar, or flattened vector."""
    a = jnp.asarray(a)
    return a - _as_operand(a, b)


def apply(a, f) -> Array:
    """
    Apply a scalar function to every entry.

    ``f`` is called once per entry with a float, so any Python callable
    works (``math.exp`` as well as ``jnp.exp``). The result is a JAX array
    of the same shape as ``a``.
    """
    values = np.asarray(a, dtype=float)
    return jnp.asarray(np.vectorize(f, otypes=[float])(values))


def dot(a, b) -> Array:
    """Inner product over the overlapping prefix of two vectors."""
    a = jnp.asarray(a)
    b = jnp.asarray(b)
    k = min(a.shape[0], b.shape[0])
    return jnp.dot(a[:k], b[:k])


def flatten(matrix) -> Array:
    """Row-major linearization."""
    return jnp.ravel(jnp.asarray(matrix))


def permanent(matrix, block_bits: int = 12) -> float:
    """
    Matrix permanent via Ryser's inclusion-exclusion formula.

    perm(A) = (-1)^n * sum_{S} (-1)^|S| * prod_i sum_{j in S} A[i, j]

    where S ranges over the non-empty subsets of column indices.

    Parameters
    ----------
    matrix : Array
        Square matrix, shape (n, n).
    block_bits : int
        Column subsets are enumerated in blocks of 2^block_bits.

    Returns
    -------
    float
        The permanent. The empty 0x0 matrix has permanent 1.

    Notes
    -----
    Time is O(2^n * n^2). Subsets are visited block by block inside a
    ``jax.lax.fori_loop`` with a running sum, so memory is
    O(2^block_bits * n) whatever the size of n.
    """
    m = jnp.asarray(matrix, dtype=jnp.float64)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise DimensionError(f"Permanent needs a square matrix, got {m.shape}")
    if block_bits < 0:
        raise ValueError(f"block_bits must be non-negative, got {block_bits}")

    n = m.shape[0]
    if n == 0:
        return 1.0

    bits = min(n, block_bits)
    block = 2**bits
    offsets = jnp.arange(block, dtype=jnp.int64)
    cols = jnp.arange(n, dtype=jnp.int64)

    def add_block(b, total):
        subsets = jnp.asarray(b, dtype=jnp.int64) * block + offsets
        masks = (subsets[:, None] >> cols[None, :]) & 1  # (block, n)

        # restricted_sums[s, i] = sum of row i over the columns in subset s
        restricted_sums = masks.astype(m.dtype) @ m.T
        signs = jnp.where(jnp.sum(masks, axis=1) % 2 == 0, 1.0, -1.0)
        terms = jnp.where(subsets > 0, signs * jnp.prod(restricted_sums, axis=1), 0.0)
        return total + jnp.sum(terms)

    total = jax.lax.fori_loop(0, 2 ** (n - bits), add_block, jnp.zeros((), dtype=m.dtype))
    return float((-1) ** n * total)


def normalize(vector) -> Array:
    """Scale a vector to unit Euclidean norm."""
    vector = jnp.asarray(vector)
    norm = jnp.linalg.norm(vector)
    if norm == 0:
        raise ValueError("Cannot normalize a zero vector")
    return vector / norm


def random_direction_in_nd_space(key: Array, n: int) -> Array:
    """Uniformly random direction on the unit sphere in R^n."""
    return normalize(jax.random.normal(key, (n,)))


def identity(n: int) -> Array:
    return jnp.eye(n)


def uniform_bistoc(n: int) -> Array:
    """The barycenter of the Birkhoff polytope: every entry 1/n."""
    return jnp.full((n, n), 1.0 / n)


def random_matrix(key: Array, n: int) -> Array:
    """i.i.d. Uniform[0, 1) entries, not normalized."""
    return jax.random.uniform(key, (n, n))


def from_sparse(perm) -> Array:
    """Dense 0/1 matrix with a one at (i, perm[i]) for every row i."""
    perm = jnp.asarray(perm)
    n = perm.shape[0]
    return jnp.zeros((n, n)).at[jnp.arange(n), perm].set(1.0)


def to_sparse(matrix) -> Array:
    """Column index of the one in each row of a permutation matrix."""
    if not is_permutation(matrix):
        raise ValueError("Matrix is not a permutation matrix")
    return jnp.argmax(jnp.asarray(matrix), axis=1)


def random_permutation_sparse(key: Array, n: int) -> Array:
    """Uniformly random permutation of 0..n-1."""
    return jax.random.permutation(key, n)


def random_permutation(key: Array, n: int) -> Array:
    return from_sparse(random_permutation_sparse(key, n))


def is_permutation(matrix) -> bool:
    """True iff entries are exactly 0 or 1 with a single 1 per row and column."""
    m = jnp.asarray(matrix)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        return False

    ones = m == 1.0
    binary = jnp.all(ones | (m == 0.0))
    one_per_row = jnp.all(jnp.sum(ones, axis=1) == 1)
    one_per_col = jnp.all(jnp.sum(ones, axis=0) == 1)
    return bool(binary & one_per_row & one_per_col)


def preconditioned_bistoch(perm, alpha: float) -> Array:
    """
    Bistochastic matrix biased toward a permutation.

    Parameters
    ----------
    perm : Array
        Sparse permutation, shape (n,).
    alpha : float
        Weight given to every entry off the permutation before balancing.
        The permutation entries start at 1.0.

    Returns
    -------
    Array
        Sinkhorn-balanced matrix, shape (n, n).

    Raises
    ------
    BalancingError
        If balancing does not converge.
    """
    perm = jnp.asarray(perm)
    if perm.ndim != 1:
        raise DimensionError(f"Expected a sparse permutation, got shape {perm.shape}")

    n = perm.shape[0]
    seed = jnp.full((n, n), float(alpha)).at[jnp.arange(n), perm].set(1.0)
    return balance(seed)
