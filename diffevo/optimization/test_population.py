# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np
import diffevo.common.typing as tp
from diffevo.common import testing
from . import population as pop


def test_generation_buffers() -> None:
    buffers = pop.GenerationBuffers(popsize=5, nvars=3)
    assert buffers.popsize == 5
    assert buffers.nvars == 3
    assert buffers.parents.shape == (5, 4)
    assert buffers.parents_index == 0
    buffers.children[2] = [1, 2, 3, 4]
    buffers.flip()
    assert buffers.parents_index == 1
    np.testing.assert_array_equal(buffers.parents[2], [1, 2, 3, 4])
    np.testing.assert_array_equal(buffers.children[2], [0, 0, 0, 0])
    buffers.flip()
    np.testing.assert_array_equal(buffers.children[2], [1, 2, 3, 4])
    assert "popsize=5" in repr(buffers)


@testing.parametrized(
    single=([3.0, 1.0, 2.0], 1, 0),
    ties=([1.0, 3.0, 1.0, 3.0], 0, 1),
    constant=([2.0, 2.0], 0, 0),
)
def test_worst_best_slot(values: tp.List[float], worst: int, best: int) -> None:
    population = np.zeros((len(values), 2))
    population[:, -1] = values
    assert pop.worst_slot(population) == worst
    assert pop.best_slot(population) == best


def test_individual_accessors() -> None:
    individual = np.array([1.0, 2.0, 3.0])
    assert pop.fitness(individual) == 3.0
    pop.parameters(individual)[0] = 12  # view
    assert individual[0] == 12


def test_grand_best() -> None:
    best = pop.GrandBest(nvars=2)
    assert best.fitness == -float("inf")
    best.seed(np.array([1.0, 1.0, -3.0]))  # seeding is unconditional
    assert best.fitness == -3.0
    assert not best.improved
    assert best.update(np.array([2.0, 2.0, 1.0]))
    assert not best.improved  # no slot provided
    assert not best.update(np.array([3.0, 3.0, 1.0])), "Ties must not replace"
    best.num_tweaked = 2
    assert best.update(np.array([4.0, 4.0, 5.0]), slot=3)
    assert best.improved
    assert best.slot == 3
    assert best.num_tweaked == 0
    assert not best.update(np.array([5.0, 5.0, 0.0]), slot=1)
    assert best.slot == 3
    assert best.num_improvements == 2
    out = np.zeros(3)
    best.export(out)
    np.testing.assert_array_equal(out, [4, 4, 5])
    best.start_generation()
    assert not best.improved


def test_grand_best_locate() -> None:
    population = np.array([[0.0, 1.0], [0.0, 4.0], [0.0, 4.0], [0.0, 2.0]])
    best = pop.GrandBest(nvars=1)
    best.num_tweaked = 12
    best.locate(population)
    assert best.slot == 1
    assert best.num_tweaked == 0


def test_stagnation_monitor() -> None:
    monitor = pop.StagnationMonitor(max_bad_gen=2)
    stops = [monitor.end_generation(improved) for improved in [False, False, True, False, False]]
    assert stops == [False, False, False, False, False]
    assert monitor.bad_generations == 2
    assert monitor.end_generation(False)
    assert monitor.bad_generations == 3


def test_stagnation_monitor_zero() -> None:
    monitor = pop.StagnationMonitor(max_bad_gen=0)
    assert not monitor.end_generation(True)
    assert monitor.end_generation(False)
