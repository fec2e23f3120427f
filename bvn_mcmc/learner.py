"""
Joint Metropolis-Hastings learner over several bistochastic matrices.

Each schedule owns one polytope. A proposal moves points along polytope
edges; the loss of a configuration is estimated by averaging the caller's
loss over permutations sampled from the current points.
"""

import logging
import math
from collections.abc import Callable, Iterable, Sequence

import jax
from jax import Array
from tqdm import tqdm

from .decomposition import BVNDecomposer
from .exceptions import BVNError, BVNStateError, DecompositionError
from .polytope import BirkhoffPolytope, VertexCurvePolytope
from .types import AcceptanceRule, LearnerConfig

logger = logging.getLogger(__name__)

LossFn = Callable[[list[Array]], float]


def _mass(loss: float) -> float:
    """MCMC potential of a loss value, with 1/0 taken as infinity."""
    if loss == 0.0:
        return math.inf
    return 1.0 / loss


class JointPermutationLearner:
    """
    Search one bistochastic matrix per schedule to minimize a sampled loss.

    Parameters
    ----------
    dims : Sequence[int]
        Dimension of each schedule's matrix.
    loss : callable
        Maps a list of permutation matrices, one per schedule, to a
        non-negative float. May be stochastic.
    config : LearnerConfig
        Sampling and acceptance settings, including the seed.
    decomposer : BVNDecomposer, optional
        Engine providing ``mean_permutation`` and ``sample``. Defaults to a
        ``BVNDecomposer`` using ``config.sampling_algorithm``.
    """

    def __init__(
        self,
        dims: Sequence[int],
        loss: LossFn,
        config: LearnerConfig = LearnerConfig(),
        decomposer: BVNDecomposer | None = None,
    ):
        if config.samples_per_matrix < 1:
            raise ValueError(
                f"samples_per_matrix must be positive, got {config.samples_per_matrix}"
            )

        self.dims = tuple(int(d) for d in dims)
        self.config = config
        self._loss = loss
        self._decomposer = decomposer or BVNDecomposer(config.sampling_algorithm)
        self._polytopes: list[BirkhoffPolytope] = [
            VertexCurvePolytope(n) for n in self.dims
        ]
        self._key = jax.random.PRNGKey(config.seed)

        self._best_loss = math.inf
        self._best: list[Array] | None = None
        self._current_mass = _mass(self.modified_loss())

    @property
    def best_loss(self) -> float:
        return self._best_loss

    @property
    def current_mass(self) -> float:
        return self._current_mass

    @property
    def points(self) -> list[Array]:
        """Current point of every schedule."""
        return [p.current_point for p in self._polytopes]

    def _next_key(self) -> Array:
        self._key, subkey = jax.random.split(self._key)
        return subkey

    def _test_samples(self, samples: list[Array]) -> float:
        sample_loss = float(self._loss(samples))

        if self._best is None or sample_loss < self._best_loss:
            logger.info("Found new best: %s", sample_loss)
            self._best_loss = sample_loss
            self._best = samples

        return sample_loss

    def modified_loss(self) -> float:
        """
        Estimate the loss at the current points.

        Averages the loss over ``samples_per_matrix`` joint samples. The
        first joint sample is always the mean permutation of every point;
        the rest are drawn with the decomposer's sampler. Any single sample
        beating the best loss so far is recorded immediately.

        Returns
        -------
        float
            The average loss, or +inf if a point could not be decomposed.
        """
        points = self.points
        n_samples = self.config.samples_per_matrix

        try:
            samples = [self._decomposer.mean_permutation(p) for p in points]
            collector = self._test_samples(samples)

            for _ in range(n_samples - 1):
                samples = [self._decomposer.sample(self._next_key(), p) for p in points]
                collector += self._test_samples(samples)
        except DecompositionError:
            logger.warning("Loss estimation failed, treating as +inf", exc_info=True)
            return math.inf

        return collector / n_samples

    def _resolve_indices(self, indices: int | Iterable[int] | None) -> set[int]:
        n_schedules = len(self._polytopes)
        if indices is None:
            return set(range(n_schedules))
        if isinstance(indices, int):
            indices = [indices]

        selected = set(indices)
        for i in selected:
            if not 0 <= i < n_schedules:
                raise IndexError(f"Schedule index {i} out of range for {n_schedules} schedules")
        return selected

    def _accepts(self, u: float, ratio: float) -> bool:
        if self.config.acceptance == AcceptanceRule.INVERTED:
            return u > ratio
        return u < ratio

    def iterate(self, indices: int | Iterable[int] | None = None) -> bool:
        """
        Run one Metropolis-Hastings step.

        Parameters
        ----------
        indices : int or iterable of int, optional
            Schedules to move. ``None`` moves every schedule.

        Returns
        -------
        bool
            True if the proposal was accepted.

        Raises
        ------
        BVNStateError
            If a pre-proposal snapshot can no longer be restored.
        """
        selected = self._resolve_indices(indices)
        n_schedules = len(self._polytopes)

        directions = [p.random_direction(self._next_key()) for p in self._polytopes]
        snapshots = self.points
        steps = jax.random.uniform(self._next_key(), (n_schedules,))

        for i in sorted(selected):
            self._polytopes[i].move_point(directions[i], float(steps[i]))

        proposed_mass = _mass(self.modified_loss())

        if proposed_mass >= self._current_mass:
            logger.debug("Accepted: mass %s -> %s", self._current_mass, proposed_mass)
            self._current_mass = proposed_mass
            return True

        ratio = proposed_mass / self._current_mass
        u = float(jax.random.uniform(self._next_key()))
        if self._accepts(u, ratio):
            logger.debug("Accepted worse proposal: ratio %.4f, u %.4f", ratio, u)
            self._current_mass = proposed_mass
            return True

        logger.debug("Rejected: ratio %.4f, u %.4f", ratio, u)
        try:
            for polytope, snapshot in zip(self._polytopes, snapshots):
                polytope.set_current_point(snapshot)
        except BVNError as e:
            raise BVNStateError("Matrix that was bistochastic is no longer accepted") from e
        return False

    def run(
        self,
        n_iterations: int,
        indices: int | Iterable[int] | None = None,
        target_loss: float | None = None,
        verbose: bool = True,
    ) -> float:
        """
        Call :meth:`iterate` repeatedly.

        Parameters
        ----------
        n_iterations : int
            Maximum number of steps.
        indices : int or iterable of int, optional
            Schedules to move on every step. ``None`` moves all of them.
        target_loss : float, optional
            Stop early once the best loss is at or below this value.
        verbose : bool
            Show progress bar.

        Returns
        -------
        float
            The best loss found.
        """
        iterator = tqdm(range(n_iterations), desc="MH iterations") if verbose else range(n_iterations)
        for _ in iterator:
            if target_loss is not None and self._best_loss <= target_loss:
                break
            self.iterate(indices)
            if verbose:
                iterator.set_postfix(best_loss=self._best_loss)

        return self._best_loss

    def precondition(self, idx: int, matrix) -> None:
        """
        Force schedule ``idx`` to a given bistochastic matrix.

        Raises
        ------
        IndexError
            If ``idx`` is not a schedule index; negative indices included.
        DimensionError
            If ``matrix`` does not match the schedule's dimension.
        """
        (idx,) = self._resolve_indices(idx)
        self._polytopes[idx].set_current_point(matrix)

    def get_best(self) -> list[Array]:
        """Best sample set found so far, one permutation matrix per schedule."""
        return list(self._best)
