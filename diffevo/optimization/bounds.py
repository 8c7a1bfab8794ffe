# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np
import diffevo.common.typing as tp
from diffevo.common import errors

# price of one unit of bound violation, large enough to dominate any criterion
PENALTY_FACTOR = 1.0e10


def round_half_away_from_zero(values: np.ndarray) -> np.ndarray:
    """Rounds to the nearest integer, halves being rounded away from zero
    (numpy's default rounding is half-to-even)
    """
    # adding 0.0 turns -0.0 into 0.0
    return np.sign(values) * np.floor(np.abs(values) + 0.5) + 0.0


class Bounds:
    """Box constraints of a mixed integer/continuous problem.

    Parameters
    ----------
    low_bounds: array-like
        lower bound of each variable
    high_bounds: array-like
        upper bound of each variable
    nints: int
        the first nints variables are integers, the others are continuous

    Note
    ----
    Bounds are immutable for the whole run.
    """

    def __init__(self, low_bounds: tp.ArrayLike, high_bounds: tp.ArrayLike, nints: int = 0) -> None:
        low = np.array(low_bounds, dtype=float, ndmin=1)
        high = np.array(high_bounds, dtype=float, ndmin=1)
        if low.ndim != 1 or low.shape != high.shape:
            raise errors.DiffEvoValueError(
                f"Bounds must be 1d arrays of same length (got shapes {low.shape} and {high.shape})"
            )
        if not low.size:
            raise errors.DiffEvoValueError("No variable to optimize.")
        if not 0 <= nints <= low.size:
            raise errors.DiffEvoValueError(f"nints must be in [0, {low.size}] (got {nints})")
        if not np.all(np.isfinite(low)) or not np.all(np.isfinite(high)):
            raise errors.DiffEvoValueError("Bounds must be finite.")
        wrong = np.nonzero(low > high)[0]
        if wrong.size:
            raise errors.DiffEvoValueError(f"Lower bound is above upper bound for variable(s) {wrong.tolist()}")
        ints = np.concatenate([low[:nints], high[:nints]])
        if np.any(ints != np.round(ints)):
            raise errors.DiffEvoValueError("Integer variables must have integer bounds.")
        low.flags.writeable = False
        high.flags.writeable = False
        self.low = low
        self.high = high
        self.nints = int(nints)

    @property
    def nvars(self) -> int:
        return self.low.size

    def is_integer(self, index: int) -> bool:
        return index < self.nints

    def legalize(self, params: np.ndarray) -> float:
        """Clamps the first nvars entries of params into the bounds (in place),
        rounding integer variables first.

        Returns
        -------
        float
            the penalty, 1e10 times the summed amount of bound violation,
            0 when the values were already within bounds.
        """
        values = params[: self.nvars]
        if self.nints:
            values[: self.nints] = round_half_away_from_zero(values[: self.nints])
        excess = np.maximum(values - self.high, 0.0) + np.maximum(self.low - values, 0.0)
        np.clip(values, self.low, self.high, out=values)
        return PENALTY_FACTOR * float(np.sum(excess))

    def sample(self, random_state: tp.UniformSource, out: np.ndarray) -> None:
        """Fills the first nvars entries of out with uniformly drawn legal values,
        one uniform draw per variable, in variable order.
        """
        for i in range(self.nvars):
            low, high = self.low[i], self.high[i]
            if i < self.nints:
                value = low + int(random_state.uniform() * (high - low + 1.0))
                out[i] = min(value, high)  # only possible with u ~ 1 and rounding
            else:
                out[i] = low + random_state.uniform() * (high - low)

    def __repr__(self) -> str:
        return f"Bounds(low={self.low.tolist()}, high={self.high.tolist()}, nints={self.nints})"


def ensure_legal(
    nvars: int, nints: int, low_bounds: tp.ArrayLike, high_bounds: tp.ArrayLike, params: np.ndarray
) -> float:
    """Functional version of Bounds.legalize, see its documentation"""
    bounds = Bounds(np.asarray(low_bounds)[:nvars], np.asarray(high_bounds)[:nvars], nints=nints)
    return bounds.legalize(params)
