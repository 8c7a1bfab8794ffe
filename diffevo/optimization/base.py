# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import inspect
import numpy as np
import diffevo.common.typing as tp
from diffevo.common import errors
from diffevo.common.decorators import Registry
from . import correlation
from .bounds import Bounds

# status codes of a run
SUCCESS = 0
ALLOCATION_FAILURE = 1
REPORT_FAILURE = -1

registry: Registry["ConfiguredOptimizer"] = Registry()


def non_default_values(OptimizerConfig: tp.Type[tp.Any], config: tp.Dict[str, tp.Any]) -> tp.Dict[str, tp.Any]:
    """Returns the configuration values which differ from the defaults of the
    configuration class, checking that all of them are keyword arguments with defaults
    """
    defaults = {
        name: param.default
        for name, param in inspect.signature(OptimizerConfig.__init__).parameters.items()
        if param.default is not inspect.Parameter.empty
    }
    mismatch = set(defaults).symmetric_difference(config)
    if mismatch:
        raise errors.DiffEvoRuntimeError(
            f"Mismatch between configuration and arguments of {OptimizerConfig}: {mismatch}"
        )
    return {name: value for name, value in config.items() if defaults[name] != value}


def as_random_state(random_state: tp.Any) -> tp.UniformSource:
    """Converts a seed (or None) to a numpy RandomState.
    Any object providing a uniform() method returning floats in [0, 1) is used as is.
    """
    if hasattr(random_state, "uniform"):
        return random_state  # type: ignore
    return np.random.RandomState(random_state)


class OptimizationResult(tp.NamedTuple):
    """Outcome of a run

    Attributes
    ----------
    status: int
        SUCCESS (0), ALLOCATION_FAILURE (1) or REPORT_FAILURE (-1)
    parameters: np.ndarray
        parameters of the grand best individual
    fitness: float
        fitness of the grand best individual
    num_generations: int
        number of completed generations (0 if the initialization was aborted)
    num_evals: int
        total number of criterion evaluations
    escaped: bool
        whether the initialization was aborted after too many unusable evaluations
    mintrades: int
        final (possibly relaxed) minimum trial threshold
    report: CorrelationReport or None
        parameter correlation report on the final population, if it succeeded
    """

    status: int
    parameters: np.ndarray
    fitness: float
    num_generations: int
    num_evals: int
    escaped: bool
    mintrades: int
    report: tp.Optional[correlation.CorrelationReport] = None

    def as_array(self) -> np.ndarray:
        """Parameters followed by the fitness"""
        return np.concatenate([self.parameters, [self.fitness]])


class ConfiguredOptimizer:
    """Creates optimizer instances with configuration.

    Parameters
    ----------
    OptimizerClass: type
        class of the optimizer to configure, instantiated with a config kwarg referencing self.
    config: dict
        dictionnary of all the configurations

    Note
    ----
    This provides a default repr which can be bypassed through set_name
    """

    def __init__(self, OptimizerClass: tp.Type[tp.Any], config: tp.Dict[str, tp.Any]) -> None:
        self._OptimizerClass = OptimizerClass
        config.pop("self", None)  # self and __class__ come from "locals()"
        config.pop("__class__", None)
        self._config = config
        diff = non_default_values(self.__class__, config)
        params = ", ".join(f"{x}={y!r}" for x, y in sorted(diff.items()))
        self.name = f"{self.__class__.__name__}({params})"

    def config(self) -> tp.Dict[str, tp.Any]:
        return dict(self._config)

    def __call__(
        self,
        low_bounds: tp.Union[Bounds, tp.ArrayLike],
        high_bounds: tp.Optional[tp.ArrayLike] = None,
        nints: int = 0,
        **kwargs: tp.Any,
    ) -> tp.Any:
        """Creates an optimizer for the given box constraints

        Parameters
        ----------
        low_bounds: Bounds or array-like
            either the full Bounds of the problem, or the lower bounds
        high_bounds: array-like
            upper bounds, if low_bounds is not a Bounds instance
        nints: int
            number of leading integer variables, if low_bounds is not a Bounds instance
        **kwargs:
            collaborators of the optimizer (random_state, stats, bracket_search, local_refiner, reporter)
        """
        if isinstance(low_bounds, Bounds):
            assert high_bounds is None, "Bounds instance was provided, high_bounds must not be"
            bounds = low_bounds
        else:
            assert high_bounds is not None, "high_bounds must be provided"
            bounds = Bounds(low_bounds, high_bounds, nints=nints)
        run = self._OptimizerClass(bounds=bounds, config=self, **kwargs)
        run.name = self.name
        return run

    def __repr__(self) -> str:
        return self.name

    def set_name(self, name: str, register: bool = False) -> "ConfiguredOptimizer":
        """Set a new representation for the instance"""
        self.name = name
        if register:
            registry.register_name(name, self)
        return self

    def __eq__(self, other: tp.Any) -> tp.Any:
        if self.__class__ == other.__class__:
            if self._config == other._config:
                return True
        return False
