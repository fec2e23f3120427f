"""
bvn_mcmc: Birkhoff-von Neumann sampling and joint MCMC permutation search.

A JAX-based implementation of:
- Dense-matrix primitives, including the Ryser permanent
- Birkhoff-von Neumann decomposition and permutation sampling
- Random walks confined to the Birkhoff polytope
- A Metropolis-Hastings learner over several bistochastic matrices

Usage
-----
>>> import bvn_mcmc
>>> import jax.numpy as jnp
>>>
>>> target = bvn_mcmc.from_sparse(jnp.array([2, 0, 1]))
>>> loss = lambda samples: float(jnp.sum(jnp.abs(samples[0] - target)))
>>>
>>> learner = bvn_mcmc.JointPermutationLearner([3], loss)
>>> learner.run(100, target_loss=0.0)
>>> best = learner.get_best()
"""

import jax

# Enable float64 so bistochastic invariants hold to ~1e-15 over long walks
jax.config.update("jax_enable_x64", True)

from .decomposition import BVNDecomposer, reconstruct
from .exceptions import (
    BalancingError,
    BVNError,
    BVNStateError,
    DecompositionError,
    DimensionError,
    StepSizeError,
)
from .learner import JointPermutationLearner
from .matrix import (
    from_sparse,
    identity,
    is_permutation,
    permanent,
    preconditioned_bistoch,
    random_permutation,
    random_permutation_sparse,
    to_sparse,
    uniform_bistoc,
)
from .polytope import BirkhoffPolytope, VertexCurvePolytope
from .sinkhorn import balance, is_bistochastic
from .types import AcceptanceRule, LearnerConfig, SamplingAlgorithm, WeightedPermutation

try:
    from importlib.metadata import version

    __version__ = version("bvn_mcmc")
except Exception:
    __version__ = "unknown"

__all__ = [
    # Learner
    "JointPermutationLearner",
    # Polytope
    "BirkhoffPolytope",
    "VertexCurvePolytope",
    # Decomposition and balancing
    "BVNDecomposer",
    "reconstruct",
    "balance",
    "is_bistochastic",
    # Matrix primitives
    "from_sparse",
    "to_sparse",
    "identity",
    "uniform_bistoc",
    "is_permutation",
    "permanent",
    "preconditioned_bistoch",
    "random_permutation",
    "random_permutation_sparse",
    # Types
    "AcceptanceRule",
    "LearnerConfig",
    "SamplingAlgorithm",
    "WeightedPermutation",
    # Errors
    "BVNError",
    "BVNStateError",
    "BalancingError",
    "DecompositionError",
    "DimensionError",
    "StepSizeError",
]
