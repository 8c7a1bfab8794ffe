# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import inspect
import typing as tp
import pytest
import numpy as np


class parametrized:
    """Simplified decorator API for specifying named parametrized test with pytests
    See example of use in test_testing

    Parameters
    ----------
    **kwargs:
        name of the argument is used as id of the case, and the provided tuple
        contains a value for each of the arguments of the underlying function (in the definition order).
    """

    def __init__(self, **kwargs: tp.Tuple[tp.Any, ...]):
        self.ids = sorted(kwargs)
        self.params = tuple(kwargs[name] for name in self.ids)
        assert self.params
        self.num_params = len(self.params[0])
        assert all(isinstance(p, (tuple, list)) for p in self.params)
        assert all(self.num_params == len(p) for p in self.params[1:])

    def __call__(self, func: tp.Callable[..., None]) -> tp.Any:
        names = list(inspect.signature(func).parameters.keys())
        assert len(names) == self.num_params, f"Parameter names: {names}"
        return pytest.mark.parametrize(
            ",".join(names), self.params if self.num_params > 1 else [p[0] for p in self.params], ids=self.ids
        )(func)


class CriterionRecorder:
    """Wraps a criterion and records the parameters and trial thresholds of all its calls

    Parameters
    ----------
    criterion: callable
        criterion(params, mintrades) -> fitness
    """

    def __init__(self, criterion: tp.Callable[[np.ndarray, int], float]) -> None:
        self.criterion = criterion
        self.params: tp.List[np.ndarray] = []
        self.thresholds: tp.List[int] = []

    def __call__(self, x: np.ndarray, mintrades: int) -> float:
        self.params.append(np.array(x, copy=True))
        self.thresholds.append(mintrades)
        return self.criterion(x, mintrades)

    @property
    def num_calls(self) -> int:
        return len(self.params)


def assert_legal(params: tp.Any, low: tp.Any, high: tp.Any, nints: int = 0) -> None:
    """Checks that all rows of params lie in the bounds, with integral values for the first nints columns"""
    params = np.atleast_2d(params)
    low, high = np.asarray(low), np.asarray(high)
    assert params.shape[1] == low.size, f"Expected {low.size} parameters, got {params.shape[1]}"
    outside = np.logical_or(params < low, params > high)
    assert not np.any(outside), f"Out of bounds values: {params[outside]}"
    ints = params[:, :nints]
    np.testing.assert_array_equal(ints, np.round(ints), err_msg="Integer variables must be integral")
