"""
Joint Schedule Learning

Demonstrates searching two permutation "schedules" at once with the
Metropolis-Hastings learner.

Problem: a set of jobs is run on two machines. Each machine's schedule is a
permutation assigning jobs to time slots. The cost of a pair of schedules is
the total lateness of every job against its due slot, plus a penalty when
the same job occupies the same slot on both machines.

The loss is only ever evaluated at permutations sampled from the learner's
bistochastic matrices, so no gradient or relaxation of the cost is needed.
"""

import logging
import time

import jax
import jax.numpy as jnp
import numpy as np

import bvn_mcmc

N_JOBS = 6
CLASH_PENALTY = 3.0

# Due slot of each job on each machine
DUE = np.array(
    [
        [0, 1, 2, 3, 4, 5],
        [5, 4, 3, 2, 1, 0],
    ]
)


def lateness(schedule, due):
    """Total slots by which jobs finish after their due slot."""
    slots = np.argmax(np.asarray(schedule), axis=1)  # slot of job i
    return float(np.sum(np.maximum(slots - due, 0)))


def schedule_cost(schedules):
    cost = sum(lateness(s, d) for s, d in zip(schedules, DUE))
    clashes = float(jnp.sum(schedules[0] * schedules[1]))
    return cost + CLASH_PENALTY * clashes


def run_search():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    config = bvn_mcmc.LearnerConfig(samples_per_matrix=20, seed=42)
    learner = bvn_mcmc.JointPermutationLearner([N_JOBS, N_JOBS], schedule_cost, config)
    print(f"Initial best cost: {learner.best_loss}")

    # Bias machine 0 toward the identity schedule before searching
    learner.precondition(0, bvn_mcmc.preconditioned_bistoch(jnp.arange(N_JOBS), 0.5))

    start = time.time()
    best_cost = learner.run(200)
    print(f"Search took {time.time() - start:.1f} sec")

    print(f"Best cost: {best_cost}")
    for i, schedule in enumerate(learner.get_best()):
        print(f"Machine {i} slots: {np.asarray(bvn_mcmc.to_sparse(schedule))}")

    # How concentrated the learned matrices are
    for i, point in enumerate(learner.points):
        terms = bvn_mcmc.BVNDecomposer().decompose(point)
        heaviest = max(t.coeff for t in terms)
        print(f"Machine {i}: {len(terms)} permutations, heaviest weight {heaviest:.3f}")

    # Permanent of a learned matrix relates to how spread its Gibbs distribution is
    print(f"Permanent of machine 0 matrix: {bvn_mcmc.permanent(learner.points[0]):.4e}")


if __name__ == "__main__":
    jax.config.update("jax_default_device", jax.devices("cpu")[0])
    run_search()
