# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import numpy as np
import diffevo.common.typing as tp

global_logger = logging.getLogger(__name__)


# %% records sent to the callbacks


class IndividualRecord(tp.NamedTuple):
    """Sent after each accepted individual of the initialization"""

    index: int
    value: float
    grand_best: float
    worst: float
    average: float
    fail_rate: float
    parameters: np.ndarray


class GenerationRecord(tp.NamedTuple):
    """Sent after each completed generation"""

    generation: int
    grand_best: float
    worst: float
    average: float
    best_parameters: np.ndarray
    bad_generations: int


class ClimbRecord(tp.NamedTuple):
    """Sent after each hill-climbing attempt"""

    slot: int
    variable: int
    integer: bool
    start: float
    start_value: float
    end: float
    end_value: float

    @property
    def success(self) -> bool:
        return self.end_value > self.start_value


Record = tp.Union[IndividualRecord, GenerationRecord, ClimbRecord]
EVENTS = ("individual", "generation", "climb")


def _format_params(params: np.ndarray, precision: int = 4) -> str:
    return " ".join(f"{x:.{precision}f}" for x in params)


def format_record(record: Record) -> str:
    """Human readable one-line description of a record"""
    if isinstance(record, IndividualRecord):
        return (
            f"{record.index}: Val={record.value:.4f} Best={record.grand_best:.4f} Worst={record.worst:.4f} "
            f"Avg={record.average:.4f}  (fail rate={record.fail_rate:.1f}) {_format_params(record.parameters)}"
        )
    if isinstance(record, GenerationRecord):
        return (
            f"Gen {record.generation} Best={record.grand_best:.4f} Worst={record.worst:.4f} "
            f"Avg={record.average:.4f} {_format_params(record.best_parameters)}"
        )
    kind = "integer" if record.integer else "real"
    start = f"{record.start:.0f}" if record.integer else f"{record.start:.5f}"
    end = f"{record.end:.0f}" if record.integer else f"{record.end:.5f}"
    outcome = "Success" if record.success else "No success"
    return (
        f"Criterion maximization of individual {record.slot} {kind} variable {record.variable} "
        f"from {start} = {record.start_value:.6f}: {outcome} at {end} = {record.end_value:.6f}"
    )


# -------------------------------------------------------------------------------------


class OptimizationPrinter:
    """Printer to register as callback in an optimizer, for printing
    the progress of the run.

    Parameters
    ----------
    events: sequence of str
        events to print, among "individual", "generation" and "climb"
    """

    def __init__(self, events: tp.Sequence[str] = EVENTS) -> None:
        assert all(e in EVENTS for e in events), f"Unknown events in {events}"
        self._events = set(events)

    def __call__(self, optimizer: tp.Any, event: str, record: Record) -> None:
        if event in self._events:
            print(format_record(record))


# -------------------------------------------------------------------------------------


class OptimizationLogger:
    """Logger to register as callback in an optimizer, for logging
    the progress of the run.

    Parameters
    ----------
    logger:
        given logger that callback will use to log
    log_level:
        log level that logger will write to
    log_interval_generations: int
        number of generations between two logs of the generation summary
    """

    def __init__(
        self,
        *,
        logger: logging.Logger = global_logger,
        log_level: int = logging.INFO,
        log_interval_generations: int = 1,
    ) -> None:
        assert log_interval_generations > 0
        self._logger = logger
        self._log_level = log_level
        self._log_interval_generations = int(log_interval_generations)

    def __call__(self, optimizer: tp.Any, event: str, record: Record) -> None:
        if isinstance(record, GenerationRecord) and record.generation % self._log_interval_generations:
            return
        self._logger.log(self._log_level, "%s", format_record(record))


# -------------------------------------------------------------------------------------


class NoStatistics:
    """Statistics side channel which does nothing"""

    def enable(self) -> None:
        pass

    def disable(self) -> None:
        pass


class EvaluationStatistics:
    """Observational side channel collecting statistics on criterion values
    while enabled. The optimizer enables it during the initialization only.

    Example
    -------

    .. code-block:: python

        stats = EvaluationStatistics()
        criterion = stats.observe(criterion)
        diff_ev(criterion, ..., stats=stats)
        print(stats.count, stats.mean)
    """

    def __init__(self) -> None:
        self.enabled = False
        self.num_enable = 0
        self.num_disable = 0
        self.values: tp.List[float] = []

    def enable(self) -> None:
        self.enabled = True
        self.num_enable += 1

    def disable(self) -> None:
        self.enabled = False
        self.num_disable += 1

    def record(self, value: float) -> None:
        if self.enabled:
            self.values.append(float(value))

    def observe(self, criterion: tp.Criterion) -> tp.Criterion:
        """Wraps the criterion so that its values are recorded while enabled"""

        def observed(params: np.ndarray, mintrades: int) -> float:
            value = criterion(params, mintrades)
            self.record(value)
            return value

        return observed

    @property
    def count(self) -> int:
        return len(self.values)

    @property
    def num_unusable(self) -> int:
        return sum(v <= 0 for v in self.values)

    @property
    def mean(self) -> float:
        return float(np.mean(self.values)) if self.values else float("nan")

    @property
    def minimum(self) -> float:
        return min(self.values) if self.values else float("nan")

    @property
    def maximum(self) -> float:
        return max(self.values) if self.values else float("nan")

    def __repr__(self) -> str:
        return (
            f"EvaluationStatistics<count: {self.count}, unusable: {self.num_unusable}, "
            f"mean: {self.mean}, min: {self.minimum}, max: {self.maximum}>"
        )
