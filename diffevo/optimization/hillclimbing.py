# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import numpy as np
import diffevo.common.typing as tp
from . import callbacks
from . import univariate
from .bounds import Bounds
from .population import GrandBest, fitness, parameters

logger = logging.getLogger(__name__)

# half width of the continuous search window, as a fraction of the variable range
WINDOW_HALF_WIDTH = 0.1


def search_window(low: float, high: float, center: float) -> tp.Tuple[float, float]:
    """Interval of width 0.2 * (high - low) centered on center, slid inside
    the bounds if it would exceed one of them.
    """
    span = high - low
    lower = center - WINDOW_HALF_WIDTH * span
    upper = center + WINDOW_HALF_WIDTH * span
    if lower < low:
        lower = low
        upper = low + 2 * WINDOW_HALF_WIDTH * span
    if upper > high:
        upper = high
        lower = high - 2 * WINDOW_HALF_WIDTH * span
    return lower, upper


class CoordinateObjective:
    """Criterion as a function of a single coordinate, the other ones being fixed.
    Values probed out of the bounds are legalized and penalized by the
    bound violation penalty, so that the univariate searches are driven back
    inside the bounds.

    Parameters
    ----------
    criterion: callable
        the criterion, called as criterion(params, mintrades)
    params: np.ndarray
        working copy of the parameters, modified in place at each call
    index: int
        index of the coordinate to vary
    bounds: Bounds
        box constraints of the problem
    mintrades: int
        minimum trial threshold provided to the criterion
    """

    def __init__(
        self, criterion: tp.Criterion, params: np.ndarray, index: int, bounds: Bounds, mintrades: int
    ) -> None:
        self.criterion = criterion
        self.params = params
        self.index = index
        self.bounds = bounds
        self.mintrades = mintrades
        self.num_calls = 0

    def __call__(self, value: float) -> float:
        self.params[self.index] = value
        penalty = self.bounds.legalize(self.params)
        self.num_calls += 1
        return float(self.criterion(self.params.copy(), self.mintrades)) - penalty


class HillClimber:
    """Single coordinate refinement of individuals.

    Integer coordinates use a unit-step coordinate ascent, upward first then
    downward if upward did not improve. Continuous coordinates use a global
    bracketing search on a window around the current value followed by a local
    refinement, and the result is kept only if it strictly improves the fitness.

    Parameters
    ----------
    bounds: Bounds
        box constraints of the problem
    pclimb: float
        probability of refining a non-elite individual. 0 disables refinement entirely.
    random_state: UniformSource
        uniform [0, 1) random source
    bracket_search: BracketSearch
        global univariate search, defaults to a 7 points grid search
    local_refiner: LocalRefiner
        local univariate refinement, defaults to Brent's method
    emit: callable or None
        function called as emit("climb", record) after each refinement attempt
    """

    def __init__(
        self,
        bounds: Bounds,
        pclimb: float,
        random_state: tp.UniformSource,
        bracket_search: tp.Optional[univariate.BracketSearch] = None,
        local_refiner: tp.Optional[univariate.LocalRefiner] = None,
        emit: tp.Optional[tp.Callable[[str, callbacks.Record], None]] = None,
    ) -> None:
        self.bounds = bounds
        self.pclimb = pclimb
        self.random_state = random_state
        self.bracket_search = univariate.GridBracketSearch() if bracket_search is None else bracket_search
        self.local_refiner = univariate.BrentRefiner() if local_refiner is None else local_refiner
        self._emit = emit
        self.num_climbs = 0

    def select_variable(self, slot: int, generation: int, grand_best: GrandBest) -> tp.Optional[int]:
        """Returns the coordinate to refine for the individual of this slot, or None
        if it must not be refined. The elite cycles through its coordinates, one per
        generation, until all were refined; other individuals are refined with probability
        pclimb, on a random coordinate.
        """
        if not self.pclimb > 0:
            return None
        nvars = self.bounds.nvars
        is_elite = slot == grand_best.slot
        if not ((is_elite and grand_best.num_tweaked < nvars) or self.random_state.uniform() < self.pclimb):
            return None
        if is_elite:
            grand_best.num_tweaked += 1
            return generation % nvars
        return min(int(self.random_state.uniform() * nvars), nvars - 1)

    def __call__(
        self,
        criterion: tp.Criterion,
        individual: np.ndarray,
        slot: int,
        generation: int,
        grand_best: GrandBest,
        mintrades: int,
    ) -> bool:
        """Possibly refines the individual in place (parameters and fitness)

        Returns
        -------
        bool
            whether a refinement was attempted
        """
        k = self.select_variable(slot, generation, grand_best)
        if k is None:
            return False
        self.num_climbs += 1
        start, start_value = float(individual[k]), fitness(individual)
        if self.bounds.is_integer(k):
            self._climb_integer(criterion, individual, k, mintrades)
        else:
            self._climb_real(criterion, individual, k, mintrades)
        grand_best.update(individual, slot)
        record = callbacks.ClimbRecord(
            slot=slot,
            variable=k,
            integer=self.bounds.is_integer(k),
            start=start,
            start_value=start_value,
            end=float(individual[k]),
            end_value=fitness(individual),
        )
        logger.debug("%s", callbacks.format_record(record))
        if self._emit is not None:
            self._emit("climb", record)
        return True

    def _climb_integer(self, criterion: tp.Criterion, individual: np.ndarray, k: int, mintrades: int) -> None:
        params = parameters(individual)
        value = fitness(individual)
        base = int(params[k])
        success = False
        for step, limit in ((1, int(self.bounds.high[k])), (-1, int(self.bounds.low[k]))):
            trial = base + step
            while (trial <= limit) if step > 0 else (trial >= limit):
                params[k] = trial
                test_value = float(criterion(params.copy(), mintrades))
                if not test_value > value:
                    params[k] = base
                    break
                value = test_value
                base = trial
                success = True
                trial += step
            if success:  # downward is tried only if upward failed
                break
        individual[-1] = value

    def _climb_real(self, criterion: tp.Criterion, individual: np.ndarray, k: int, mintrades: int) -> None:
        params = parameters(individual)
        old_value = fitness(individual)
        base = float(params[k])
        lower, upper = search_window(self.bounds.low[k], self.bounds.high[k], base)
        objective = CoordinateObjective(criterion, params.copy(), k, self.bounds, mintrades)
        bracket = self.bracket_search(objective, lower, upper)
        x, _ = self.local_refiner(objective, bracket)
        params[k] = x
        self.bounds.legalize(params)
        value = float(criterion(params.copy(), mintrades))
        if value > old_value:
            individual[-1] = value
        else:
            params[k] = base
