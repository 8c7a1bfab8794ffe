# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import warnings
import numpy as np
import diffevo.common.typing as tp
from diffevo.common import errors
from . import callbacks
from .bounds import Bounds
from .population import GenerationBuffers, GrandBest, parameters, worst_slot

logger = logging.getLogger(__name__)

# contiguous unusable evaluations before relaxing the trial threshold
MAX_FAILURES = 500


def relax_threshold(mintrades: int) -> int:
    """Lowers the minimum trial threshold by 10% (integer arithmetic), never below 1"""
    return max(1, mintrades * 9 // 10)


class InitializationOutcome(tp.NamedTuple):
    num_evals: int
    escaped: bool
    mintrades: int


class Initializer:
    """Fills the parent buffer with random legal evaluated individuals.

    The first popsize accepted candidates are written in the population slots.
    The overinit next ones are drawn in a scratch slot (first slot of the children
    buffer) and replace the current worst individual of the population if strictly
    better. Candidates with a fitness <= 0 are discarded and redrawn.

    Parameters
    ----------
    bounds: Bounds
        box constraints of the problem
    overinit: int
        number of additional candidates competing with the worst individual
    mintrades: int
        initial minimum trial threshold provided to the criterion. It is relaxed
        by 10% (never below 1) every 500 contiguous unusable candidates.
    max_evals: int
        the initialization aborts once more than max_evals evaluations were
        performed and the latest one was unusable
    random_state: UniformSource
        uniform [0, 1) random source
    emit: callable or None
        function called as emit("individual", record) for each accepted individual
    """

    def __init__(
        self,
        bounds: Bounds,
        overinit: int,
        mintrades: int,
        max_evals: int,
        random_state: tp.UniformSource,
        emit: tp.Optional[tp.Callable[[str, callbacks.Record], None]] = None,
    ) -> None:
        self.bounds = bounds
        self.overinit = overinit
        self.mintrades = mintrades
        self.max_evals = max_evals
        self.random_state = random_state
        self._emit = emit
        self.num_evals = 0
        self.escaped = False

    def __call__(
        self,
        criterion: tp.Criterion,
        buffers: GenerationBuffers,
        grand_best: GrandBest,
        stats: tp.StatisticsChannel,
    ) -> InitializationOutcome:
        stats.enable()
        try:
            self._fill(criterion, buffers, grand_best)
        finally:
            stats.disable()
        return InitializationOutcome(num_evals=self.num_evals, escaped=self.escaped, mintrades=self.mintrades)

    def _fill(self, criterion: tp.Criterion, buffers: GenerationBuffers, grand_best: GrandBest) -> None:
        # pylint: disable=too-many-branches
        population = buffers.parents
        scratch = buffers.children[0]
        popsize = buffers.popsize
        failures = 0
        ind = 0
        while ind < popsize + self.overinit:
            individual = population[ind] if ind < popsize else scratch
            self.bounds.sample(self.random_state, individual)
            value = float(criterion(parameters(individual).copy(), self.mintrades))
            individual[-1] = value
            self.num_evals += 1
            if not grand_best.seeded:  # the first evaluation seeds the grand best, whatever its value
                grand_best.seed(individual)
            else:
                grand_best.update(individual)
            if value <= 0.0:  # unusable, draw again
                if self.num_evals > self.max_evals:
                    self.escaped = True
                    message = f"Initialization aborted after {self.num_evals} evaluations ({ind} usable individuals)"
                    logger.warning(message)
                    warnings.warn(message, errors.EvaluationEscapeWarning)
                    return
                failures += 1
                if failures >= MAX_FAILURES:
                    failures = 0
                    self.mintrades = relax_threshold(self.mintrades)
                    logger.debug("Relaxed trial threshold to %s after %s failures", self.mintrades, MAX_FAILURES)
                continue
            failures = 0
            if ind >= popsize:
                slot = worst_slot(population)
                worst = population[slot, -1]
                if value > worst:
                    logger.debug("Overinit candidate %s (%s) replaces slot %s (%s)", ind, value, slot, worst)
                    population[slot] = individual
            current = population[: min(ind + 1, popsize), -1]
            record = callbacks.IndividualRecord(
                index=ind,
                value=value,
                grand_best=grand_best.fitness,
                worst=float(np.min(current)),
                average=float(np.mean(current)),
                fail_rate=self.num_evals / (ind + 1.0),
                parameters=parameters(individual).copy(),
            )
            logger.debug("%s", callbacks.format_record(record))
            if self._emit is not None:
                self._emit("individual", record)
            ind += 1
