"""
Sinkhorn-Knopp balancing onto the Birkhoff polytope.

Alternates row and column normalization of a non-negative matrix until
every row and column sums to one.
"""

import logging

import jax
import jax.numpy as jnp
from jax import Array

from .exceptions import BalancingError

logger = logging.getLogger(__name__)


def _marginal_error(P: Array) -> Array:
    """Largest deviation of any row or column sum from 1."""
    row_err = jnp.max(jnp.abs(jnp.sum(P, axis=1) - 1.0))
    col_err = jnp.max(jnp.abs(jnp.sum(P, axis=0) - 1.0))
    return jnp.maximum(row_err, col_err)


def balance(matrix, tol: float = 1e-10, max_iters: int = 1000) -> Array:
    """
    Balance a non-negative square matrix into a bistochastic one.

    Parameters
    ----------
    matrix : Array
        Non-negative matrix, shape (n, n).
    tol : float
        Convergence threshold on the largest marginal deviation.
    max_iters : int
        Maximum number of row/column sweeps.

    Returns
    -------
    Array
        Bistochastic matrix, shape (n, n). The input is not modified.

    Raises
    ------
    BalancingError
        If the input is not square, has negative entries or an all-zero
        row or column, or does not converge within ``max_iters`` sweeps
        (e.g. its support admits no perfect matching covering every entry).
    """
    P = jnp.asarray(matrix, dtype=jnp.float64)
    if P.ndim != 2 or P.shape[0] != P.shape[1]:
        raise BalancingError(f"Expected a square matrix, got shape {P.shape}")
    if P.size == 0:
        return P
    if jnp.any(P < 0):
        raise BalancingError("Matrix has negative entries")
    if jnp.any(jnp.sum(P, axis=1) == 0) or jnp.any(jnp.sum(P, axis=0) == 0):
        raise BalancingError("Matrix has an all-zero row or column")

    def not_converged(carry: tuple) -> Array:
        _, i, err = carry
        return (i < max_iters) & (err > tol)

    def sweep(carry: tuple) -> tuple:
        P, i, _ = carry
        P = P / jnp.sum(P, axis=1, keepdims=True)
        P = P / jnp.sum(P, axis=0, keepdims=True)
        return P, i + 1, _marginal_error(P)

    P, iters, err = jax.lax.while_loop(
        not_converged, sweep, (P, 0, _marginal_error(P))
    )

    if err > tol:
        raise BalancingError(
            f"Sinkhorn did not converge in {max_iters} iterations "
            f"(marginal error {float(err):.3e})"
        )

    logger.debug("Sinkhorn converged after %d iterations", int(iters))
    return P


def is_bistochastic(matrix, tol: float = 1e-6) -> bool:
    """True iff square, non-negative and every marginal is within tol of 1."""
    P = jnp.asarray(matrix)
    if P.ndim != 2 or P.shape[0] != P.shape[1]:
        return False
    if P.size == 0:
        return True
    return bool(jnp.all(P >= -tol) & (_marginal_error(P) <= tol))
