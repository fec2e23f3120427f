"""
Random walks on the Birkhoff polytope.

A polytope object owns one bistochastic "current point" and proposes
feasible directions to move it along.
"""

from abc import ABC, abstractmethod

import jax
import jax.numpy as jnp
from jax import Array

from .exceptions import DimensionError, StepSizeError
from .matrix import add, flatten, multiply, random_permutation_sparse, uniform_bistoc


class BirkhoffPolytope(ABC):
    """Capability set of a random-walk strategy over n x n bistochastic matrices."""

    n: int

    @property
    @abstractmethod
    def current_point(self) -> Array:
        """The current bistochastic matrix, shape (n, n)."""

    @abstractmethod
    def set_current_point(self, matrix) -> None:
        """Replace the current point."""

    @abstractmethod
    def random_direction(self, key: Array) -> Array:
        """A flattened direction, shape (n * n,), feasible for a unit move."""

    @abstractmethod
    def move_point(self, direction, inc: float) -> None:
        """Move the current point by ``inc`` along ``direction``."""


class VertexCurvePolytope(BirkhoffPolytope):
    """
    Walk along edges of the polytope's 1-skeleton.

    A direction is the difference of two random permutation matrices, scaled
    so that a full unit step keeps every entry non-negative. Row and column
    sums are unchanged by any move.

    Parameters
    ----------
    n : int
        Matrix dimension. The walk starts at the uniform matrix (all 1/n).
    """

    def __init__(self, n: int):
        self.n = n
        self._point = uniform_bistoc(n)

    @property
    def current_point(self) -> Array:
        return self._point

    def set_current_point(self, matrix) -> None:
        """
        Replace the current point with a copy of ``matrix``.

        Only the shape is checked; the caller is trusted to pass a
        bistochastic matrix.

        Raises
        ------
        DimensionError
            If ``matrix`` is not (n, n).
        """
        matrix = jnp.array(matrix, dtype=jnp.float64)
        if matrix.shape != (self.n, self.n):
            raise DimensionError(
                f"Dimension of matrix for this polytope must be {self.n} "
                f"but was {matrix.shape}"
            )
        self._point = matrix

    def random_direction(self, key: Array) -> Array:
        n = self.n
        key1, key2 = jax.random.split(key)
        p1 = random_permutation_sparse(key1, n)
        p2 = random_permutation_sparse(key2, n)
        rows = jnp.arange(n)

        # Smallest entry under each permutation bounds how far it can be
        # added (alpha) or removed (beta).
        alpha = jnp.min(self._point[rows, p1])
        beta = jnp.min(self._point[rows, p2])
        u = jnp.minimum(1.0 - alpha, beta)

        direction = jnp.zeros((n, n)).at[rows, p1].add(u).at[rows, p2].add(-u)
        return flatten(direction)

    def move_point(self, direction, inc: float) -> None:
        """
        Move the current point by ``inc`` along ``direction``.

        Raises
        ------
        StepSizeError
            If ``inc`` is not in [0, 1). The point is left untouched.
        DimensionError
            If ``direction`` does not have n * n entries.
        """
        if not 0 <= inc < 1:
            raise StepSizeError(f"Increment inc must be 0 <= inc < 1, got {inc}")

        step = multiply(direction, inc, self.n)
        self._point = add(self._point, step)

    def __str__(self) -> str:
        return "vertex-curve"
