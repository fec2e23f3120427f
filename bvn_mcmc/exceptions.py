"""
Error types for bvn_mcmc.

Domain errors derive from BVNError and are always raised to the direct
caller. BVNStateError marks an internal inconsistency and is never caught
inside the package.
"""


class BVNError(Exception):
    """Base class for recoverable domain errors."""


class DimensionError(BVNError, ValueError):
    """Matrix or vector shape does not match what the operation requires."""


class StepSizeError(BVNError, ValueError):
    """Step increment outside the half-open interval [0, 1)."""


class DecompositionError(BVNError):
    """Input cannot be decomposed into a convex combination of permutations."""


class BalancingError(BVNError):
    """Sinkhorn balancing could not produce a bistochastic matrix."""


class BVNStateError(RuntimeError):
    """A matrix that was valid is no longer accepted by its owner."""
