"""
Data structures for bvn_mcmc.

Value types are NamedTuples, matching the immutable JAX array contents they
carry.
"""

from enum import Enum
from typing import NamedTuple

from jax import Array


class SamplingAlgorithm(str, Enum):
    """Strategies for drawing a permutation from a bistochastic matrix."""

    EXACT = "exact"  # Pick a decomposition term with probability = coefficient
    GIBBS = "gibbs"  # Heat-bath chain over row-pair swaps


class AcceptanceRule(str, Enum):
    """
    How a proposal with lower mass than the current state is judged.

    With ``ratio = proposed_mass / current_mass < 1`` and ``u ~ U(0, 1)``:

    - INVERTED accepts when ``u > ratio``, i.e. with probability
      ``1 - ratio``. Worse proposals are accepted *more* often the worse
      they are. This reproduces the historical behaviour of the learner and
      is kept as the default for compatibility; it is not the Metropolis
      rule.
    - METROPOLIS accepts when ``u < ratio``, the textbook rule.
    """

    INVERTED = "inverted"
    METROPOLIS = "metropolis"


class WeightedPermutation(NamedTuple):
    """One term of a Birkhoff-von Neumann decomposition."""

    coeff: float
    matrix: Array  # Dense permutation matrix (n, n)


class LearnerConfig(NamedTuple):
    """Immutable learner configuration."""

    samples_per_matrix: int = 20  # Joint samples averaged per loss estimate
    seed: int = 42
    sampling_algorithm: SamplingAlgorithm = SamplingAlgorithm.GIBBS
    acceptance: AcceptanceRule = AcceptanceRule.INVERTED
