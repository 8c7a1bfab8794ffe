# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

"""Storage of the individuals.

An individual is a 1d array of size nvars + 1: the nvars parameters
followed by the fitness (criterion value) of these parameters.
"""

import logging
import numpy as np
import diffevo.common.typing as tp

logger = logging.getLogger(__name__)


def fitness(individual: np.ndarray) -> float:
    return float(individual[-1])


def parameters(individual: np.ndarray) -> np.ndarray:
    """View on the parameters of the individual"""
    return individual[:-1]


def worst_slot(population: np.ndarray) -> int:
    """Returns the slot of the worst individual, the first one in case of ties.
    This is a plain linear scan, recomputed at each call.
    """
    slot = 0
    worst = population[0, -1]
    for ind in range(1, population.shape[0]):
        if population[ind, -1] < worst:
            worst = population[ind, -1]
            slot = ind
    return slot


def best_slot(population: np.ndarray) -> int:
    """Returns the slot of the best individual, the first one in case of ties"""
    slot = 0
    best = population[0, -1]
    for ind in range(1, population.shape[0]):
        if population[ind, -1] > best:
            best = population[ind, -1]
            slot = ind
    return slot


class GenerationBuffers:
    """Two fixed-capacity populations alternating the roles of
    "current parents" and "next children" at each generation.

    Parameters
    ----------
    popsize: int
        number of individuals in each population
    nvars: int
        number of parameters of each individual
    """

    def __init__(self, popsize: int, nvars: int) -> None:
        # (buffer, slot, parameters + fitness)
        self._data = np.zeros((2, popsize, nvars + 1), dtype=float)
        self._parents = 0

    @property
    def popsize(self) -> int:
        return self._data.shape[1]

    @property
    def nvars(self) -> int:
        return self._data.shape[2] - 1

    @property
    def parents(self) -> np.ndarray:
        return self._data[self._parents]

    @property
    def children(self) -> np.ndarray:
        return self._data[1 - self._parents]

    @property
    def parents_index(self) -> int:
        return self._parents

    def flip(self) -> None:
        """Children become the parents of the next generation"""
        self._parents = 1 - self._parents

    def __repr__(self) -> str:
        return f"GenerationBuffers(popsize={self.popsize}, nvars={self.nvars}, parents={self._parents})"


class GrandBest:
    """Best individual ever observed during a run, along with the
    bookkeeping of the elite slot used by the hill-climbing refinement.

    Parameters
    ----------
    nvars: int
        number of parameters of the individuals

    Note
    ----
    The fitness never decreases once seeded: the first evaluated individual
    seeds it unconditionally, then only strictly better individuals replace it.
    """

    def __init__(self, nvars: int) -> None:
        self.individual = np.zeros(nvars + 1, dtype=float)
        self.seeded = False
        self.slot = 0  # slot of the elite in the population
        self.num_tweaked = 0  # coordinates of the current elite refined since it last improved
        self.improved = False  # improved during the current generation
        self.num_improvements = 0

    @property
    def fitness(self) -> float:
        return fitness(self.individual) if self.seeded else -float("inf")

    def seed(self, individual: np.ndarray) -> None:
        self.individual[:] = individual
        self.seeded = True

    def update(self, individual: np.ndarray, slot: tp.Optional[int] = None) -> bool:
        """Copies the individual if it is strictly better than the grand best

        Parameters
        ----------
        individual: np.ndarray
            the candidate individual (parameters + fitness)
        slot: int or None
            slot of the individual in the population. If provided, the slot
            is recorded as the elite slot, the tweak counter is reset and the
            current generation is flagged as improved.

        Returns
        -------
        bool
            whether the grand best was replaced
        """
        if self.seeded and not fitness(individual) > self.fitness:
            return False
        self.seed(individual)
        self.num_improvements += 1
        if slot is not None:
            self.slot = slot
            self.num_tweaked = 0
            self.improved = True
        logger.debug("New grand best %s in slot %s", self.fitness, slot)
        return True

    def locate(self, population: np.ndarray) -> None:
        """Records the slot of the best individual of the population as the elite slot"""
        self.slot = best_slot(population)
        self.num_tweaked = 0

    def start_generation(self) -> None:
        self.improved = False

    def export(self, out: np.ndarray) -> None:
        """Copies parameters and fitness into the caller's buffer"""
        out[: self.individual.size] = self.individual


class StagnationMonitor:
    """Counts the contiguous generations without improvement of the grand best

    Parameters
    ----------
    max_bad_gen: int
        the run stops once this number of contiguous non-improving generations is exceeded
    """

    def __init__(self, max_bad_gen: int) -> None:
        self.max_bad_gen = max_bad_gen
        self.bad_generations = 0

    def end_generation(self, improved: bool) -> bool:
        """Registers a completed generation and returns whether to stop"""
        if improved:
            self.bad_generations = 0
            return False
        self.bad_generations += 1
        return self.bad_generations > self.max_bad_gen
