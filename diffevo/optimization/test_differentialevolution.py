# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import typing as tp
import pytest
import numpy as np
from diffevo.common import errors
from diffevo.common import testing
from diffevo.functions import corefuncs
from . import base
from . import callbacks
from . import differentialevolution as de
from .population import GenerationBuffers, GrandBest


def shifted_sphere(x: np.ndarray, mintrades: int) -> float:
    """Same maximizer as the negated sphere, but strictly positive around it"""
    return 51.0 - float(np.sum(x ** 2))


def test_select_partners() -> None:
    mutation = de.DifferentialMutation(np.random.RandomState(12), mutate_dev=0.8, pcross=0.5)
    for target in range(4):
        for _ in range(20):
            partners = mutation.select_partners(target, 4)
            assert len(set(partners)) == 3
            assert set(partners) == set(range(4)) - {target}
    for _ in range(50):
        partners = mutation.select_partners(3, 10)
        assert len(set(partners)) == 3
        assert 3 not in partners
        assert all(0 <= p < 10 for p in partners)


@testing.parametrized(
    no_crossover=(0.0, 1),
    full_crossover=(1.0, 5),
)
def test_mutation_apply(pcross: float, expected_mutated: int) -> None:
    mutation = de.DifferentialMutation(np.random.RandomState(12), mutate_dev=0.5, pcross=pcross)
    parent1 = np.zeros(6)
    parent2 = np.ones(6)
    diff1 = np.full(6, 3.0)
    diff2 = np.full(6, 1.0)
    forced = set()
    for _ in range(100):
        child = np.full(6, -1.0)
        mutation.apply(child, parent1, parent2, diff1, diff2)
        mutated = np.nonzero(child[:-1])[0]
        assert mutated.size == expected_mutated
        np.testing.assert_array_equal(child[mutated], 2.0)  # 1 + 0.5 * (3 - 1)
        assert child[-1] == -1, "Fitness must not be written"
        forced.update(mutated.tolist())
    assert forced == set(range(5)), "Start variable should be random"


def _make_generation(popsize: int = 6, pclimb: float = 0.0) -> tp.Tuple[tp.Any, GenerationBuffers, GrandBest]:
    optimizer = de.DifferentialEvolution(popsize=popsize, pclimb=pclimb)([-1.0] * 3, [1.0] * 3, random_state=1)
    buffers = GenerationBuffers(popsize, 3)
    rng = np.random.RandomState(2)
    buffers.parents[:, :-1] = rng.uniform(-1, 1, size=(popsize, 3))
    grand_best = GrandBest(3)
    return optimizer, buffers, grand_best


def test_generation_ties_revert_to_parents() -> None:
    optimizer, buffers, grand_best = _make_generation()
    buffers.parents[:, -1] = 1.0
    grand_best.seed(buffers.parents[0])
    optimizer._generation(lambda x, m: 1.0, buffers, grand_best, 1)
    np.testing.assert_array_equal(buffers.children, buffers.parents)
    assert not grand_best.improved


def test_generation_keeps_strictly_better() -> None:
    optimizer, buffers, grand_best = _make_generation()

    def criterion(x: np.ndarray, mintrades: int) -> float:
        return 10.0 + float(np.sum(x))

    buffers.parents[:, -1] = [criterion(p, 1) for p in buffers.parents[:, :-1]]
    grand_best.seed(buffers.parents[int(np.argmax(buffers.parents[:, -1]))])
    grand_best.locate(buffers.parents)
    for generation in range(1, 6):
        optimizer._generation(criterion, buffers, grand_best, generation)
        parents, children = buffers.parents, buffers.children
        assert np.all(children[:, -1] >= parents[:, -1])
        for parent, child in zip(parents, children):
            if child[-1] == parent[-1]:
                np.testing.assert_array_equal(child, parent)
            else:
                assert child[-1] == criterion(child[:-1], 1)
        assert np.all(np.abs(children[:, :-1]) <= 1)
        assert grand_best.fitness >= children[:, -1].max()
        buffers.flip()


def test_shifted_sphere_scenario() -> None:
    config = de.DifferentialEvolution(
        popsize=10, overinit=0, mintrades=1, max_evals=10000, max_bad_gen=20, mutate_dev=0.8, pcross=0.5
    )
    optimizer = config([-5, -5], [5, 5], random_state=12)
    bests: tp.List[float] = []
    optimizer.register_callback("generation", lambda opt, event, record: bests.append(record.grand_best))
    result = optimizer.maximize(shifted_sphere)
    assert result.status in (base.SUCCESS, base.REPORT_FAILURE)
    assert not result.escaped
    assert result.fitness > 51 - 1e-2
    assert np.linalg.norm(result.parameters) < 0.1
    assert result.fitness == shifted_sphere(result.parameters, 1)
    assert result.num_generations == len(bests) > 20
    assert np.all(np.diff(bests) >= 0), "Grand best fitness must never decrease"
    assert bests[-1] == result.fitness
    assert result.num_evals == 10 + 10 * result.num_generations


def test_negated_sphere_escapes() -> None:
    config = de.DifferentialEvolution(popsize=10, max_evals=200)
    optimizer = config([-5, -5], [5, 5], random_state=12)
    with pytest.warns(errors.EvaluationEscapeWarning):
        result = optimizer.maximize(corefuncs.neg_sphere)
    assert result.status == base.SUCCESS
    assert result.escaped
    assert result.fitness <= 0
    assert result.num_generations == 0
    assert result.num_evals == 201
    assert result.report is None


def test_diff_ev_zero_criterion() -> None:
    params = np.full(4, 12.0)
    with pytest.warns(errors.EvaluationEscapeWarning):
        status = de.diff_ev(corefuncs.zero, 3, 0, 10, 0, 1, 100, 50, 0.8, 0.5, 0.0, [-1] * 3, [1] * 3, params)
    assert status == base.SUCCESS
    assert params[-1] == 0
    assert np.all(np.abs(params[:3]) <= 1)


def test_diff_ev_output_buffer() -> None:
    params = np.zeros(5)
    status = de.diff_ev(
        shifted_sphere, 2, 0, 10, 5, 1, 10000, 10, 0.8, 0.5, 0.0, [-5, -5], [5, 5], params, random_state=12
    )
    assert status in (base.SUCCESS, base.REPORT_FAILURE)
    assert params[2] == shifted_sphere(params[:2], 1)
    assert params[2] > 50
    assert params[3] == params[4] == 0, "Buffer tail must be untouched"


def test_diff_ev_buffer_too_small() -> None:
    with pytest.raises(errors.DiffEvoValueError):
        de.diff_ev(shifted_sphere, 2, 0, 10, 0, 1, 100, 10, 0.8, 0.5, 0.0, [-5, -5], [5, 5], np.zeros(2))


def test_diff_ev_print_progress(capsys: tp.Any) -> None:
    params = np.zeros(3)
    de.diff_ev(
        corefuncs.positive_sphere,
        2,
        0,
        8,
        0,
        1,
        1000,
        3,
        0.8,
        0.5,
        0.5,
        [-5, -5],
        [5, 5],
        params,
        print_progress=True,
        random_state=12,
    )
    out = capsys.readouterr().out
    assert "0: Val=" in out
    assert "Gen 1 Best=" in out
    assert "Criterion maximization of individual" in out


def test_all_integer_climbing() -> None:
    criterion = testing.CriterionRecorder(corefuncs.integer_peak)
    climbs: tp.List[callbacks.ClimbRecord] = []
    optimizer = de.DifferentialEvolution(popsize=10, max_bad_gen=5, pclimb=1.0)(
        [-5] * 3, [5] * 3, nints=3, random_state=12
    )
    optimizer.register_callback("climb", lambda opt, event, record: climbs.append(record))
    result = optimizer.maximize(criterion)
    all_params = np.array(criterion.params)
    testing.assert_legal(all_params, [-5] * 3, [5] * 3, nints=3)
    assert climbs
    assert all(c.integer for c in climbs)
    assert all(c.end_value >= c.start_value for c in climbs)
    assert result.fitness == corefuncs.integer_peak(result.parameters)
    assert result.fitness == max(corefuncs.integer_peak(p) for p in all_params)


def test_mixed_climbing() -> None:
    criterion = testing.CriterionRecorder(corefuncs.mixed_peak)
    optimizer = de.DifferentialEvolution(popsize=16, max_bad_gen=5, pclimb=0.3)(
        [-5, -5, 0.0, 0.0], [5, 5, 1.0, 1.0], nints=2, random_state=12
    )
    result = optimizer.maximize(criterion)
    testing.assert_legal(criterion.params, [-5, -5, 0.0, 0.0], [5, 5, 1.0, 1.0], nints=2)
    assert optimizer._climber.num_climbs > 0
    assert result.fitness == pytest.approx(corefuncs.mixed_peak(result.parameters))


def test_no_climbing_without_pclimb() -> None:
    climbs: tp.List[callbacks.ClimbRecord] = []
    optimizer = de.DifferentialEvolution(popsize=10, max_bad_gen=5)([-5, -5], [5, 5], random_state=12)
    optimizer.register_callback("climb", lambda opt, event, record: climbs.append(record))
    optimizer.maximize(shifted_sphere)
    assert not climbs
    assert optimizer._climber.num_climbs == 0


def test_reproducibility() -> None:
    config = de.DifferentialEvolution(popsize=10, max_bad_gen=5, pclimb=0.1)
    results = [config([-5, -5], [5, 5], random_state=42).maximize(shifted_sphere) for _ in range(2)]
    np.testing.assert_array_equal(results[0].parameters, results[1].parameters)
    assert results[0].num_evals == results[1].num_evals


def test_single_use() -> None:
    optimizer = de.DifferentialEvolution(popsize=6, max_bad_gen=1)([-1, -1], [1, 1], random_state=12)
    optimizer.maximize(shifted_sphere)
    with pytest.raises(errors.DiffEvoRuntimeError):
        optimizer.maximize(shifted_sphere)


def test_allocation_failure(monkeypatch: tp.Any) -> None:
    def no_memory(popsize: int, nvars: int) -> GenerationBuffers:
        raise MemoryError

    monkeypatch.setattr(de, "GenerationBuffers", no_memory)
    params = np.full(3, 12.0)
    status = de.diff_ev(shifted_sphere, 2, 0, 10, 0, 1, 100, 10, 0.8, 0.5, 0.0, [-5, -5], [5, 5], params)
    assert status == base.ALLOCATION_FAILURE
    np.testing.assert_array_equal(params, [12, 12, 12])


def test_report_failure() -> None:
    def reporter(population: np.ndarray) -> None:
        raise errors.CorrelationReportError("Nope")

    optimizer = de.DifferentialEvolution(popsize=10, max_bad_gen=5)(
        [-5, -5], [5, 5], random_state=12, reporter=reporter
    )
    result = optimizer.maximize(shifted_sphere)
    assert result.status == base.REPORT_FAILURE
    assert result.report is None
    assert result.fitness > 40


def test_reporter_receives_final_population() -> None:
    populations: tp.List[np.ndarray] = []
    optimizer = de.DifferentialEvolution(popsize=12, max_bad_gen=3)(
        [-5, -5], [5, 5], random_state=12, reporter=populations.append
    )
    result = optimizer.maximize(shifted_sphere)
    assert result.status == base.SUCCESS
    assert len(populations) == 1
    population = populations[0]
    assert population.shape == (12, 3)
    assert population[:, -1].max() == result.fitness


def test_statistics_enabled_during_initialization() -> None:
    stats = callbacks.EvaluationStatistics()
    optimizer = de.DifferentialEvolution(popsize=10, overinit=5, max_bad_gen=3)(
        [-5, -5], [5, 5], random_state=12, stats=stats
    )
    result = optimizer.maximize(stats.observe(shifted_sphere))
    assert (stats.num_enable, stats.num_disable) == (1, 1)
    assert stats.count == 15
    assert result.num_evals > stats.count


def test_overinit_popsize() -> None:
    optimizer = de.OverinitDiffEv([-5, -5], [5, 5], random_state=12)
    assert optimizer.overinit == optimizer.popsize == 50


@testing.parametrized(
    popsize=({"popsize": 3},),
    overinit=({"overinit": -1},),
    mintrades=({"mintrades": 0},),
    max_evals=({"max_evals": -1},),
    max_bad_gen=({"max_bad_gen": -1},),
    pclimb_low=({"pclimb": -0.1},),
    pclimb_high=({"pclimb": 1.1},),
)
def test_config_errors(config: tp.Dict[str, tp.Any]) -> None:
    with pytest.raises(errors.DiffEvoValueError):
        de.DifferentialEvolution(**config)


def test_config_repr_and_registry() -> None:
    assert repr(de.DifferentialEvolution(pclimb=0.5)) == "DifferentialEvolution(pclimb=0.5)"
    assert repr(de.DifferentialEvolution()) == "DifferentialEvolution()"
    for name in ["DiffEv", "HillClimbingDiffEv", "OverinitDiffEv"]:
        assert name in base.registry
        assert repr(base.registry[name]) == name
    assert base.registry["HillClimbingDiffEv"].pclimb == 0.005
    assert de.DifferentialEvolution() == base.registry["DiffEv"]
    assert de.DifferentialEvolution(popsize=12) != base.registry["DiffEv"]
    optimizer = base.registry["DiffEv"]([-1], [1])
    assert repr(optimizer).startswith("Instance of DiffEv(bounds=")


def test_unknown_event() -> None:
    optimizer = de.DiffEv([-1], [1])
    with pytest.raises(AssertionError):
        optimizer.register_callback("blublu", lambda *args: None)


def test_escape_returns_best_unusable_individual() -> None:
    values = iter([-1.0])
    criterion = testing.CriterionRecorder(lambda x, m: next(values, -100.0))
    optimizer = de.DifferentialEvolution(popsize=10, max_evals=20)([-5, -5], [5, 5], random_state=12)
    with pytest.warns(errors.EvaluationEscapeWarning):
        result = optimizer.maximize(criterion)
    assert result.escaped
    assert result.num_evals == 21
    assert result.fitness == -1.0
    np.testing.assert_array_equal(result.parameters, criterion.params[0])


def test_thresholded_criterion() -> None:
    # thresholds above max_trials always fail: 150 -> 135 -> 121 -> 108 -> 97 after 4 x 500 failures
    criterion = corefuncs.ThresholdedSphere(max_trials=100, seed=12)
    optimizer = de.DifferentialEvolution(popsize=10, mintrades=150, max_bad_gen=3)(
        [-2, -2], [2, 2], random_state=12
    )
    result = optimizer.maximize(criterion)
    assert not result.escaped
    assert result.mintrades == 97
    assert criterion.thresholds[:500] == [150] * 500
    assert criterion.thresholds[-1] == 97
    assert result.num_evals == len(criterion.thresholds)
    assert 0 < result.fitness <= 1
    np.testing.assert_almost_equal(result.fitness, corefuncs.positive_sphere(result.parameters))
