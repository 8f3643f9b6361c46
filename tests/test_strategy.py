from __future__ import annotations

import json
import threading
import time
from datetime import datetime

import pytest

from wfopt.core.errors import ConfigurationError, InvalidOperationError
from wfopt.core.objectives import Target
from wfopt.core.parameters import resolve_param_space
from wfopt.core.results import SEED, Completed, Failed
from wfopt.experiments.walkforward.processor import WalkforwardResultProcessor
from wfopt.experiments.walkforward.splits import (
    IterationType,
    WalkforwardSettings,
    format_window_date,
    split_iterations,
)
from wfopt.experiments.walkforward.strategy import StrategyState, WalkforwardOptimizationStrategy
from wfopt.optimisers.grid import grid_step


class RecordingProcessor:
    """Stand-in result processor that records what the strategy hands it."""

    def __init__(self, *, delay: float = 0.0):
        self.delay = delay
        self.seen: list[int] = []
        self.windows = []
        self.tracked = []
        self.completed = False
        self.solution = None
        self.active = 0
        self.max_active = 0

    def register_window(self, index, iteration):
        self.windows.append((index, iteration))

    def track(self, parameter_set, index, kind):
        self.tracked.append((parameter_set.id, index, kind))

    def finish_planning(self):
        pass

    def process(self, result):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        if self.delay:
            time.sleep(self.delay)
        self.seen.append(result.id)
        self.active -= 1
        return []


def _settings(iterations=3, pin=80, pout=20) -> WalkforwardSettings:
    return WalkforwardSettings(
        start=datetime(2020, 1, 1),
        end=datetime(2020, 1, 31),
        iterations=iterations,
        percent_in_sample=pin,
        percent_out_of_sample=pout,
    )


def _strategy(processor=None, settings=None, space=None):
    dispatched = []
    strategy = WalkforwardOptimizationStrategy()
    strategy.initialize(
        settings=settings or _settings(),
        parameters=resolve_param_space(space or {"fast": [5, 10, 15], "slow": [50, 100]}),
        dispatch_fn=dispatched.append,
        processor=processor if processor is not None else RecordingProcessor(),
    )
    return strategy, dispatched


@pytest.mark.parametrize("signal", [SEED, Completed(1, '{"x": 1}'), Completed(0, '{"x": 1}'), Failed(3)])
def test_push_before_initialize_raises(signal):
    strategy = WalkforwardOptimizationStrategy()
    assert strategy.state is StrategyState.UNINITIALIZED
    with pytest.raises(InvalidOperationError):
        strategy.push_new_results(signal)
    assert strategy.state is StrategyState.UNINITIALIZED


def test_initialize_twice_raises():
    strategy, _ = _strategy()
    with pytest.raises(InvalidOperationError):
        strategy.initialize(
            settings=_settings(),
            parameters=[],
            dispatch_fn=lambda ps: None,
            processor=RecordingProcessor(),
        )


def test_failed_result_is_dropped_silently():
    processor = RecordingProcessor()
    strategy, dispatched = _strategy(processor)
    strategy.push_new_results(Failed(7))
    assert dispatched == []
    assert processor.seen == []
    assert strategy.failed_jobs == 1
    assert strategy.state is StrategyState.READY


def test_seed_dispatches_every_in_sample_set_with_its_window():
    processor = RecordingProcessor()
    settings = _settings(iterations=3)
    strategy, dispatched = _strategy(processor, settings)
    assert strategy.state is StrategyState.READY

    strategy.push_new_results(SEED)

    assert strategy.state is StrategyState.RUNNING
    assert len(dispatched) == 3 * 6
    assert len({ps.id for ps in dispatched}) == len(dispatched)
    assert processor.seen == []

    in_sample = [it for it in split_iterations(settings) if it.kind is IterationType.IN_SAMPLE]
    for i, window in enumerate(in_sample):
        chunk = dispatched[i * 6:(i + 1) * 6]
        assert {ps.value["start-date"] for ps in chunk} == {format_window_date(window.start)}
        assert {ps.value["end-date"] for ps in chunk} == {format_window_date(window.end)}
        assert [ps.params() for ps in chunk][0] == {"fast": 5, "slow": 50}

    assert [kind for _, _, kind in processor.tracked] == [IterationType.IN_SAMPLE] * 18
    assert len(processor.windows) == 6


def test_seed_is_planned_only_once():
    strategy, dispatched = _strategy()
    strategy.push_new_results(SEED)
    strategy.push_new_results(SEED)
    assert len(dispatched) == 18


def test_configuration_error_surfaces_before_any_dispatch():
    processor = RecordingProcessor()
    strategy, dispatched = _strategy(processor, _settings(pin=60, pout=50))
    with pytest.raises(ConfigurationError):
        strategy.push_new_results(SEED)
    assert dispatched == []
    assert processor.windows == []
    assert strategy.state is StrategyState.READY


def test_job_with_id_zero_is_a_result_not_the_seed():
    processor = RecordingProcessor()
    strategy, dispatched = _strategy(processor)
    strategy.push_new_results(Completed(0, '{"x": 1}'))
    assert processor.seen == [0]
    assert dispatched == []
    assert strategy.state is StrategyState.READY


def test_unsupported_signal_type_raises():
    strategy, _ = _strategy()
    with pytest.raises(TypeError):
        strategy.push_new_results({"id": 1})


def test_total_backtest_estimate_counts_search_and_validation():
    strategy, _ = _strategy(settings=_settings(iterations=3))
    assert strategy.get_total_backtest_estimate() == 3 * (6 + 1)


@pytest.mark.parametrize("run", range(10))
def test_concurrent_results_are_each_processed_once(run):
    k = 32
    processor = RecordingProcessor(delay=0.0005)
    strategy, dispatched = _strategy(processor)
    barrier = threading.Barrier(k)
    errors = []

    def worker(job_id):
        barrier.wait()
        try:
            strategy.push_new_results(Completed(job_id, json.dumps({"score": job_id})))
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(1, k + 1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(processor.seen) == list(range(1, k + 1))
    assert processor.max_active == 1
    assert dispatched == []


def test_concurrent_seeds_plan_once():
    strategy, dispatched = _strategy()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        strategy.push_new_results(SEED)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(dispatched) == 18


def _score(params: dict) -> float:
    return float(params["fast"]) - float(params["slow"]) / 100.0


def test_full_schedule_promotes_winners_and_ends_once():
    settings = _settings(iterations=2)
    processor = WalkforwardResultProcessor(Target("score", "maximize"))
    strategy, queue = _strategy(processor, settings)
    ended = []
    strategy.add_ended_handler(lambda: ended.append(True))

    strategy.push_new_results(SEED)
    assert len(queue) == 12

    validated = []
    while queue:
        ps = queue.pop(0)
        if len(validated) < 2 and ps.params() == {"fast": 15, "slow": 50} and ps.id > 12:
            validated.append(ps)
        strategy.push_new_results(Completed(ps.id, json.dumps({"score": _score(ps.value)})))

    oos = [it for it in split_iterations(settings) if it.kind is IterationType.OUT_OF_SAMPLE]
    assert [ps.value["start-date"] for ps in validated] == [format_window_date(w.start) for w in oos]
    assert processor.completed
    assert ended == [True]
    assert strategy.solution == {"fast": 15, "slow": 50}
    assert [s.wfe_pct for s in processor.states()] == [100.0, 100.0]

    strategy.push_new_results(Completed(999, '{"score": 1}'))
    assert ended == [True]


def test_failed_in_sample_job_stalls_its_iteration():
    processor = WalkforwardResultProcessor(Target("score"))
    strategy, queue = _strategy(processor, _settings(iterations=1), space={"fast": [5, 10], "slow": [50]})
    strategy.push_new_results(SEED)
    first, second = queue
    queue.clear()
    strategy.push_new_results(Completed(first.id, json.dumps({"score": 1.0})))
    strategy.push_new_results(Failed(second.id))
    assert queue == []
    assert not processor.completed
    assert strategy.failed_jobs == 1
    assert processor.states()[0].status == "searching"


def test_empty_schedule_ends_at_seed():
    processor = WalkforwardResultProcessor(Target("score"))
    strategy, queue = _strategy(processor, _settings(iterations=0))
    ended = []
    strategy.add_ended_handler(lambda: ended.append(True))
    strategy.push_new_results(SEED)
    assert queue == []
    assert ended == [True]


class FlakyStepper:
    """Grid stepper whose second search raises partway through."""

    def __init__(self):
        self.calls = 0

    def __call__(self, parameters, index):
        self.calls += 1
        if self.calls == 2:
            return self._broken(parameters)
        return grid_step(parameters)

    def _broken(self, parameters):
        yield from list(grid_step(parameters))[:2]
        raise RuntimeError("sampler failed")


def test_failed_planning_leaves_processor_untouched_and_seed_retryable():
    processor = WalkforwardResultProcessor(Target("score"))
    dispatched = []
    strategy = WalkforwardOptimizationStrategy()
    strategy.initialize(
        settings=_settings(iterations=3),
        parameters=resolve_param_space({"fast": [5, 10, 15], "slow": [50, 100]}),
        dispatch_fn=dispatched.append,
        processor=processor,
        step_fn=FlakyStepper(),
    )

    with pytest.raises(RuntimeError):
        strategy.push_new_results(SEED)
    assert dispatched == []
    assert processor.iteration_count == 0
    assert strategy.state is StrategyState.READY

    strategy.push_new_results(SEED)
    assert len(dispatched) == 18
    assert [s.in_sample_jobs for s in processor.states()] == [6, 6, 6]

    ended = []
    strategy.add_ended_handler(lambda: ended.append(True))
    while dispatched:
        ps = dispatched.pop(0)
        strategy.push_new_results(Completed(ps.id, json.dumps({"score": _score(ps.value)})))
    assert processor.completed
    assert ended == [True]
