# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

"""Univariate maximization primitives used by the hill-climbing refinement
of continuous coordinates: a coarse global search providing a bracket,
then a Brent refinement of this bracket.
"""

import logging
import numpy as np
from scipy import optimize as scipyoptimize
import diffevo.common.typing as tp

logger = logging.getLogger(__name__)


class Bracket(tp.NamedTuple):
    """Three points x1 < x2 < x3 with y2 >= y1 and y2 >= y3
    (degenerate brackets have x1 == x2 == x3)
    """

    x1: float
    y1: float
    x2: float
    y2: float
    x3: float
    y3: float

    @property
    def strict(self) -> bool:
        return self.x1 < self.x2 < self.x3 and self.y2 > self.y1 and self.y2 > self.y3


class BracketSearch(tp.Protocol):
    # pylint: disable=pointless-statement

    def __call__(self, func: tp.UnivariateFunction, lower: float, upper: float) -> Bracket:
        ...


class LocalRefiner(tp.Protocol):
    # pylint: disable=pointless-statement

    def __call__(self, func: tp.UnivariateFunction, bracket: Bracket) -> tp.Tuple[float, float]:
        ...


def _point(func: tp.UnivariateFunction, x: float) -> Bracket:
    y = func(x)
    return Bracket(x, y, x, y, x, y)


class GridBracketSearch:
    """Global search of the maximum of a univariate function on an interval,
    returning a bracket around the best point.

    The function is evaluated on npts equispaced points. If the best of them
    (first one in case of ties) is inside the interval, its neighbors form
    the bracket. If it is an end point, the search walks outward
    (scipy.optimize.bracket) until the function decreases.

    Parameters
    ----------
    npts: int
        number of points of the initial grid (at least 3)
    """

    def __init__(self, npts: int = 7) -> None:
        assert npts >= 3, "At least 3 points are required to bracket a maximum"
        self.npts = npts

    def __call__(self, func: tp.UnivariateFunction, lower: float, upper: float) -> Bracket:
        if not upper > lower:
            return _point(func, lower)
        xs = np.linspace(lower, upper, self.npts)
        ys = [func(float(x)) for x in xs]
        ibest = int(np.argmax(ys))
        if 0 < ibest < self.npts - 1:
            return Bracket(
                float(xs[ibest - 1]), ys[ibest - 1], float(xs[ibest]), ys[ibest], float(xs[ibest + 1]), ys[ibest + 1]
            )
        # best on an end point, walk outward
        inner = 1 if ibest == 0 else self.npts - 2
        try:
            xa, xb, xc, fa, fb, fc, _ = scipyoptimize.bracket(
                lambda x: -func(float(x)), xa=float(xs[inner]), xb=float(xs[ibest])
            )
        except RuntimeError as e:
            logger.debug("Could not extend bracket from %s: %s", xs[ibest], e)
            return Bracket(float(xs[ibest]), ys[ibest], float(xs[ibest]), ys[ibest], float(xs[ibest]), ys[ibest])
        points = sorted([(float(xa), -float(fa)), (float(xb), -float(fb)), (float(xc), -float(fc))])
        (x1, y1), (x2, y2), (x3, y3) = points
        return Bracket(x1, y1, x2, y2, x3, y3)

    def __repr__(self) -> str:
        return f"GridBracketSearch(npts={self.npts})"


class BrentRefiner:
    """Refines a bracketed maximum with Brent's method (scipy.optimize.minimize_scalar)

    Parameters
    ----------
    maxiter: int
        maximum number of iterations
    tol: float
        relative tolerance on the abscissa
    """

    def __init__(self, maxiter: int = 5, tol: float = 1e-4) -> None:
        assert maxiter > 0
        assert tol > 0
        self.maxiter = maxiter
        self.tol = tol

    def __call__(self, func: tp.UnivariateFunction, bracket: Bracket) -> tp.Tuple[float, float]:
        """Returns the best abscissa and value found, never worse than the bracket center"""
        if not bracket.strict:  # flat or degenerate, nothing to refine
            return bracket.x2, bracket.y2
        try:
            result = scipyoptimize.minimize_scalar(
                lambda x: -func(float(x)),
                bracket=(bracket.x1, bracket.x2, bracket.x3),
                method="brent",
                options={"xtol": self.tol, "maxiter": self.maxiter},
            )
        except ValueError as e:  # noisy criterion may not reproduce the bracket
            logger.debug("Brent refinement failed on %s: %s", bracket, e)
            return bracket.x2, bracket.y2
        x, y = float(result.x), -float(result.fun)
        if y > bracket.y2:
            return x, y
        return bracket.x2, bracket.y2

    def __repr__(self) -> str:
        return f"BrentRefiner(maxiter={self.maxiter}, tol={self.tol})"
