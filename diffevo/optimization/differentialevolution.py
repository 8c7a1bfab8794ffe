# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import numpy as np
import diffevo.common.typing as tp
from diffevo.common import errors
from . import base
from . import callbacks
from . import correlation
from . import univariate
from .bounds import Bounds
from .hillclimbing import HillClimber
from .initialization import Initializer
from .population import GenerationBuffers, GrandBest, StagnationMonitor, fitness, parameters

logger = logging.getLogger(__name__)

_Reporter = tp.Callable[[np.ndarray], tp.Optional[correlation.CorrelationReport]]
_Callback = tp.Callable[[tp.Any, str, callbacks.Record], None]


def _randint(random_state: tp.UniformSource, upper: int) -> int:
    """Uniform integer in [0, upper) from a single uniform draw"""
    return min(int(random_state.uniform() * upper), upper - 1)


class DifferentialMutation:
    """Differential mutation and crossover of a child against its pure parent.

    Parameters
    ----------
    random_state: UniformSource
        uniform [0, 1) random source
    mutate_dev: float
        weight of the difference vector
    pcross: float
        probability for each variable to be taken from the mutated vector rather
        than from the pure parent
    """

    def __init__(self, random_state: tp.UniformSource, mutate_dev: float, pcross: float) -> None:
        self.random_state = random_state
        self.mutate_dev = mutate_dev
        self.pcross = pcross

    def select_partners(self, target: int, popsize: int) -> tp.Tuple[int, int, int]:
        """Draws three distinct slots, all different from the target slot (rejection sampling)"""
        chosen: tp.List[int] = []
        while len(chosen) < 3:
            slot = int(self.random_state.uniform() * popsize)
            if slot < popsize and slot != target and slot not in chosen:
                chosen.append(slot)
        return chosen[0], chosen[1], chosen[2]

    def apply(
        self,
        child: np.ndarray,
        parent1: np.ndarray,
        parent2: np.ndarray,
        diff1: np.ndarray,
        diff2: np.ndarray,
    ) -> None:
        """Writes the parameters of the child in place.
        Variables are visited cyclically from a random start. Each of them is
        taken from the mutated vector parent2 + mutate_dev * (diff1 - diff2)
        with probability pcross, otherwise from parent1. The last visited variable
        is forced to the mutated vector if none was so far.
        """
        nvars = child.size - 1
        j = _randint(self.random_state, nvars)
        used_mutated = False
        for remaining in range(nvars - 1, -1, -1):
            if (remaining == 0 and not used_mutated) or self.random_state.uniform() < self.pcross:
                child[j] = parent2[j] + self.mutate_dev * (diff1[j] - diff2[j])
                used_mutated = True
            else:
                child[j] = parent1[j]
            j = (j + 1) % nvars


class _DiffEv:
    """Differential evolution with over-initialization and hill-climbing refinement,
    maximizing a criterion over box constrained mixed integer/continuous parameters.
    Instances are created through a DifferentialEvolution configuration, and can only
    run once.

    Parameters
    ----------
    bounds: Bounds
        box constraints of the problem
    config: DifferentialEvolution
        the configuration of the algorithm
    random_state: RandomState, int or None
        uniform [0, 1) random source, or seed to create one
    stats: StatisticsChannel or None
        observational side channel enabled during the initialization only
    bracket_search: BracketSearch or None
        global univariate search for the hill climbing of continuous variables
    local_refiner: LocalRefiner or None
        local univariate refinement for the hill climbing of continuous variables
    reporter: callable or None
        called once on the final generation buffer, defaults to ParameterCorrelation
    """

    # pylint: disable=too-many-instance-attributes

    def __init__(
        self,
        bounds: Bounds,
        config: "DifferentialEvolution",
        random_state: tp.RandomStateLike = None,
        stats: tp.Optional[tp.StatisticsChannel] = None,
        bracket_search: tp.Optional[univariate.BracketSearch] = None,
        local_refiner: tp.Optional[univariate.LocalRefiner] = None,
        reporter: tp.Optional[_Reporter] = None,
    ) -> None:
        self.bounds = bounds
        self._config = config
        self.name = self.__class__.__name__  # printed name in repr
        self._rng = base.as_random_state(random_state)
        self.popsize = config.popsize
        self.overinit = config.popsize if config.overinit == "popsize" else int(config.overinit)
        self.stats: tp.StatisticsChannel = callbacks.NoStatistics() if stats is None else stats
        self.reporter: _Reporter = correlation.ParameterCorrelation() if reporter is None else reporter
        self._mutation = DifferentialMutation(self._rng, config.mutate_dev, config.pcross)
        self._climber = HillClimber(
            bounds,
            config.pclimb,
            self._rng,
            bracket_search=bracket_search,
            local_refiner=local_refiner,
            emit=self._emit,
        )
        self._callbacks: tp.Dict[str, tp.List[_Callback]] = {}
        self.mintrades = config.mintrades
        self.num_evals = 0
        self.num_generations = 0
        self._done = False

    @property
    def dimension(self) -> int:
        return self.bounds.nvars

    def __repr__(self) -> str:
        return f"Instance of {self.name}(bounds={self.bounds})"

    def register_callback(self, name: str, callback: _Callback) -> None:
        """Add a callback called as callback(optimizer, name, record) at each event

        Parameters
        ----------
        name: str
            name of the event among "individual" (accepted individual of the initialization),
            "generation" (completed generation) and "climb" (hill-climbing attempt)
        callback: callable
            a callable taking the optimizer, the event name and the record
        """
        assert name in callbacks.EVENTS, f"Callbacks can only be registered on {callbacks.EVENTS} (not {name})"
        self._callbacks.setdefault(name, []).append(callback)

    def remove_all_callbacks(self) -> None:
        """Removes all registered callables"""
        self._callbacks = {}

    def _emit(self, event: str, record: callbacks.Record) -> None:
        for callback in self._callbacks.get(event, []):
            callback(self, event, record)

    def maximize(self, criterion: tp.Criterion) -> base.OptimizationResult:
        """Runs the optimization until stagnation

        Parameters
        ----------
        criterion: callable
            function called as criterion(params, mintrades) with params the nvars parameters and
            mintrades the current minimum trial threshold, returning the fitness to maximize.
            Fitness <= 0 marks an unusable candidate during the initialization.

        Returns
        -------
        OptimizationResult
            grand best individual and run information
        """
        if self._done:
            raise errors.DiffEvoRuntimeError(f"{self.name} instances can only run once")
        self._done = True
        nvars = self.dimension
        try:
            buffers = GenerationBuffers(self.popsize, nvars)
            grand_best = GrandBest(nvars)
        except MemoryError:
            logger.error("Could not allocate populations of %s individuals of size %s", self.popsize, nvars + 1)
            return base.OptimizationResult(
                status=base.ALLOCATION_FAILURE,
                parameters=np.full(nvars, np.nan),
                fitness=float("nan"),
                num_generations=0,
                num_evals=0,
                escaped=False,
                mintrades=self.mintrades,
            )

        def counted(params: np.ndarray, mintrades: int) -> float:
            self.num_evals += 1
            return criterion(params, mintrades)

        logger.info("Starting %s with popsize %s on %s", self.name, self.popsize, self.bounds)
        initializer = Initializer(
            self.bounds, self.overinit, self.mintrades, self._config.max_evals, self._rng, emit=self._emit
        )
        outcome = initializer(counted, buffers, grand_best, self.stats)
        self.mintrades = outcome.mintrades
        if outcome.escaped:
            return self._result(base.SUCCESS, grand_best, escaped=True)
        grand_best.locate(buffers.parents)
        self._evolve(counted, buffers, grand_best)
        status = base.SUCCESS
        report: tp.Optional[correlation.CorrelationReport] = None
        try:
            report = self.reporter(buffers.children.copy())
        except (errors.CorrelationReportError, np.linalg.LinAlgError) as e:
            logger.warning("Parameter correlation report failed: %s", e)
            status = base.REPORT_FAILURE
        return self._result(status, grand_best, report=report)

    def _result(
        self,
        status: int,
        grand_best: GrandBest,
        escaped: bool = False,
        report: tp.Optional[correlation.CorrelationReport] = None,
    ) -> base.OptimizationResult:
        logger.info(
            "%s finished after %s generations and %s evaluations, best fitness %s",
            self.name,
            self.num_generations,
            self.num_evals,
            grand_best.fitness,
        )
        return base.OptimizationResult(
            status=status,
            parameters=parameters(grand_best.individual).copy(),
            fitness=fitness(grand_best.individual),
            num_generations=self.num_generations,
            num_evals=self.num_evals,
            escaped=escaped,
            mintrades=self.mintrades,
            report=report,
        )

    def _evolve(self, criterion: tp.Criterion, buffers: GenerationBuffers, grand_best: GrandBest) -> None:
        """Runs generations until more than max_bad_gen contiguous generations
        did not improve the grand best. The children buffer of the last generation
        is left as the most recent population (buffers are not flipped after it).
        """
        monitor = StagnationMonitor(self._config.max_bad_gen)
        generation = 1
        while True:
            self._generation(criterion, buffers, grand_best, generation)
            self.num_generations = generation
            stop = monitor.end_generation(grand_best.improved)
            values = buffers.children[:, -1]
            record = callbacks.GenerationRecord(
                generation=generation,
                grand_best=grand_best.fitness,
                worst=float(np.min(values)),
                average=float(np.mean(values)),
                best_parameters=parameters(grand_best.individual).copy(),
                bad_generations=monitor.bad_generations,
            )
            logger.debug("%s", callbacks.format_record(record))
            self._emit("generation", record)
            if stop:
                logger.info("Stopping after %s generations without improvement", monitor.bad_generations)
                break
            buffers.flip()
            generation += 1

    def _generation(
        self, criterion: tp.Criterion, buffers: GenerationBuffers, grand_best: GrandBest, generation: int
    ) -> None:
        """Creates one child per parent slot, each slot ending with the better of
        the child and its parent, possibly refined by hill climbing
        """
        parents, children = buffers.parents, buffers.children
        popsize = buffers.popsize
        grand_best.start_generation()
        for ind in range(popsize):
            parent1 = parents[ind]
            dest = children[ind]
            i, j, k = self._mutation.select_partners(ind, popsize)
            self._mutation.apply(dest, parent1, parents[i], parents[j], parents[k])
            self.bounds.legalize(dest)
            value = float(criterion(parameters(dest).copy(), self.mintrades))
            if value > fitness(parent1):
                dest[-1] = value
                grand_best.update(dest, ind)
            else:  # ties and losses revert to the parent
                dest[:] = parent1
            self._climber(criterion, dest, ind, generation, grand_best, self.mintrades)


# pylint: disable=too-many-arguments, too-many-instance-attributes
class DifferentialEvolution(base.ConfiguredOptimizer):
    """Differential evolution for the maximization of expensive, possibly noisy,
    criteria of mixed integer/continuous parameters under box constraints.

    The initial population is drawn uniformly in the bounds (unusable candidates with
    fitness <= 0 are redrawn) and can be improved by over-initialization. Each generation
    creates one child per parent by differential mutation and crossover, and keeps it
    only if it is strictly better than its parent. Individuals, and in priority the best
    one, can be refined one coordinate at a time by hill climbing. The run stops when the
    best fitness did not improve for more than max_bad_gen generations.

    Parameters
    ----------
    popsize: int
        size of the population, at least 4. 5 to 10 times the number of variables
        is advised, more for a more global search.
    overinit: int or "popsize"
        number of additional initial candidates, each replacing the worst individual
        of the population if better. 0 for simple problems, "popsize" for hard ones.
    mintrades: int
        initial minimum trial threshold provided to the criterion, relaxed by 10%
        every 500 contiguous unusable initial candidates.
    max_evals: int
        safety escape: the initialization stops once it performed more than max_evals
        evaluations. Should be very large.
    max_bad_gen: int
        maximum number of contiguous generations without improvement of the best
    mutate_dev: float
        weight of the differential mutation, about 0.4 to 1.2, larger values giving a more
        global search
    pcross: float
        probability for each variable to be taken from the mutated vector rather than
        from the pure parent
    pclimb: float
        probability of hill climbing a random coordinate of each child (in [0, 1]).
        If strictly positive, the best individual also gets each of its coordinates
        refined in turn. 0 disables hill climbing.
    """

    def __init__(
        self,
        *,
        popsize: int = 50,
        overinit: tp.Union[int, str] = 0,
        mintrades: int = 1,
        max_evals: int = 1_000_000,
        max_bad_gen: int = 50,
        mutate_dev: float = 0.8,
        pcross: float = 0.5,
        pclimb: float = 0.0,
    ) -> None:
        super().__init__(_DiffEv, locals())
        assert isinstance(overinit, int) or overinit == "popsize", f'Unknown overinit "{overinit}"'
        checks = [
            (popsize >= 4, f"popsize must be at least 4 (got {popsize})"),
            (overinit == "popsize" or overinit >= 0, f"overinit must be non-negative (got {overinit})"),  # type: ignore
            (mintrades >= 1, f"mintrades must be at least 1 (got {mintrades})"),
            (max_evals >= 0, f"max_evals must be non-negative (got {max_evals})"),
            (max_bad_gen >= 0, f"max_bad_gen must be non-negative (got {max_bad_gen})"),
            (0.0 <= pclimb <= 1.0, f"pclimb must be in [0, 1] (got {pclimb})"),
        ]
        for ok, message in checks:
            if not ok:
                raise errors.DiffEvoValueError(message)
        self.popsize = int(popsize)
        self.overinit = overinit
        self.mintrades = int(mintrades)
        self.max_evals = int(max_evals)
        self.max_bad_gen = int(max_bad_gen)
        self.mutate_dev = float(mutate_dev)
        self.pcross = float(pcross)
        self.pclimb = float(pclimb)


DiffEv = DifferentialEvolution().set_name("DiffEv", register=True)
HillClimbingDiffEv = DifferentialEvolution(pclimb=0.005).set_name("HillClimbingDiffEv", register=True)
OverinitDiffEv = DifferentialEvolution(overinit="popsize").set_name("OverinitDiffEv", register=True)


def diff_ev(
    criterion: tp.Criterion,
    nvars: int,
    nints: int,
    popsize: int,
    overinit: int,
    mintrades: int,
    max_evals: int,
    max_bad_gen: int,
    mutate_dev: float,
    pcross: float,
    pclimb: float,
    low_bounds: tp.ArrayLike,
    high_bounds: tp.ArrayLike,
    params: np.ndarray,
    print_progress: bool = False,
    stats: tp.Optional[tp.StatisticsChannel] = None,
    *,
    random_state: tp.RandomStateLike = None,
    bracket_search: tp.Optional[univariate.BracketSearch] = None,
    local_refiner: tp.Optional[univariate.LocalRefiner] = None,
    reporter: tp.Optional[_Reporter] = None,
) -> int:
    """Maximizes the criterion by differential evolution, see DifferentialEvolution
    for the description of the algorithm and its parameters.

    Parameters
    ----------
    criterion: callable
        criterion(params, mintrades) -> fitness, to be maximized
    nvars: int
        number of variables
    nints: int
        number of leading integer variables
    low_bounds, high_bounds: array-like
        bounds of the variables
    params: np.ndarray
        output buffer of size at least nvars + 1, receiving the parameters of the best
        individual followed by its fitness
    print_progress: bool
        whether to print the progress of the run
    stats: StatisticsChannel
        observational side channel, enabled during the initialization only

    Returns
    -------
    int
        0 on success, 1 if the populations could not be allocated, -1 if the
        final parameter correlation report failed (the result is still valid)
    """
    if len(params) < nvars + 1:
        raise errors.DiffEvoValueError(f"Output buffer must have at least {nvars + 1} elements (got {len(params)})")
    bounds = Bounds(np.asarray(low_bounds)[:nvars], np.asarray(high_bounds)[:nvars], nints=nints)
    if bounds.nvars != nvars:
        raise errors.DiffEvoValueError(f"Expected {nvars} bounds, got {bounds.nvars}")
    config = DifferentialEvolution(
        popsize=popsize,
        overinit=overinit,
        mintrades=mintrades,
        max_evals=max_evals,
        max_bad_gen=max_bad_gen,
        mutate_dev=mutate_dev,
        pcross=pcross,
        pclimb=pclimb,
    )
    optimizer = config(
        bounds,
        random_state=random_state,
        stats=stats,
        bracket_search=bracket_search,
        local_refiner=local_refiner,
        reporter=reporter,
    )
    if print_progress:
        printer = callbacks.OptimizationPrinter()
        for event in callbacks.EVENTS:
            optimizer.register_callback(event, printer)
    result = optimizer.maximize(criterion)
    if result.status != base.ALLOCATION_FAILURE:
        params[: nvars + 1] = result.as_array()
    return result.status
