# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

"""Classical test criteria, adapted to maximization.
They all take the parameters and the minimum trial threshold (ignored here).
Each of them is registered with its maximum value, and whether it is strictly
positive (otherwise the initialization cannot find usable individuals).
"""

import numpy as np
import diffevo.common.typing as tp
from diffevo.common.decorators import Registry


registry: Registry[tp.Criterion] = Registry()


# pylint: disable=unused-argument


@registry.register_with_info(maximum=0.0, positive=False)
def neg_sphere(x: np.ndarray, mintrades: int = 1) -> float:
    """Negated sphere, maximal (0) at the origin. Never usable for initialization (always <= 0)."""
    return -float(np.sum(np.asarray(x) ** 2))


@registry.register_with_info(maximum=0.0, positive=False)
def neg_rastrigin(x: np.ndarray, mintrades: int = 1) -> float:
    """Negated Rastrigin function, highly multimodal, maximal (0) at the origin"""
    x = np.asarray(x, dtype=float)
    cosi = float(np.sum(np.cos(2 * np.pi * x)))
    return -float(10 * (len(x) - cosi) + np.sum(x ** 2))


@registry.register_with_info(maximum=0.0, positive=False)
def neg_rosenbrock(x: np.ndarray, mintrades: int = 1) -> float:
    """Negated Rosenbrock function, maximal (0) at (1, 1, ...)"""
    x = np.asarray(x, dtype=float)
    x_m_1 = x[:-1] - 1
    x_diff = x[:-1] ** 2 - x[1:]
    return -float(100 * x_diff.dot(x_diff) + x_m_1.dot(x_m_1))


@registry.register_with_info(maximum=1.0, positive=True)
def positive_sphere(x: np.ndarray, mintrades: int = 1) -> float:
    """Strictly positive sphere-like criterion, maximal (1) at the origin"""
    return 1.0 / (1.0 + float(np.sum(np.asarray(x) ** 2)))


def _integer_target(dimension: int) -> np.ndarray:
    return np.array([3.0 if i % 2 == 0 else -2.0 for i in range(dimension)])


@registry.register_with_info(maximum=1.0, positive=True)
def integer_peak(x: np.ndarray, mintrades: int = 1) -> float:
    """Strictly positive criterion, maximal (1) at the integer point (3, -2, 3, -2, ...)"""
    x = np.asarray(x, dtype=float)
    return 1.0 / (1.0 + float(np.sum(np.abs(x - _integer_target(len(x))))))


@registry.register_with_info(maximum=1.0, positive=True)
def mixed_peak(x: np.ndarray, mintrades: int = 1) -> float:
    """Strictly positive criterion of integer then continuous variables.
    It is maximal (1) at the integer point (3, -2, 3, -2, ...) for the first half
    of the variables (rounded up) and at 0.5 for the others.
    """
    x = np.asarray(x, dtype=float)
    nints = (len(x) + 1) // 2
    dist = np.sum(np.abs(x[:nints] - _integer_target(nints))) + np.sum((x[nints:] - 0.5) ** 2)
    return 1.0 / (1.0 + float(dist))


@registry.register_with_info(maximum=0.0, positive=False)
def zero(x: np.ndarray, mintrades: int = 1) -> float:
    """Always unusable criterion"""
    return 0.0


class ThresholdedSphere:
    """Noisy criterion depending on the minimum trial threshold: it returns 0 (unusable)
    unless the number of simulated trials, which is random, reaches the threshold.

    Parameters
    ----------
    max_trials: int
        maximum number of simulated trials
    noise: float
        standard deviation of the additive noise on the positive sphere value
    seed: int or None
        seed of the internal random state
    """

    def __init__(self, max_trials: int = 100, noise: float = 0.0, seed: tp.Optional[int] = None) -> None:
        self.max_trials = max_trials
        self.noise = noise
        self._rng = np.random.RandomState(seed)
        self.thresholds: tp.List[int] = []

    def __call__(self, x: np.ndarray, mintrades: int) -> float:
        self.thresholds.append(mintrades)
        trials = self._rng.randint(0, self.max_trials + 1)
        if trials < mintrades:
            return 0.0
        value = positive_sphere(x) + self.noise * self._rng.normal()
        return max(value, 0.0)
