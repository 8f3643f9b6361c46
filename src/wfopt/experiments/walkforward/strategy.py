from __future__ import annotations

import enum
import itertools
import threading
from typing import Any, Callable, Iterator

from wfopt.core.errors import InvalidOperationError
from wfopt.core.parameters import Parameter, ParameterSet
from wfopt.core.results import Completed, Failed, Seed
from wfopt.optimisers.grid import grid_size, grid_step

from .processor import WalkforwardResultProcessor
from .splits import Iteration, IterationType, WalkforwardSettings, annotate_parameter_set, split_iterations


class StrategyState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    RUNNING = "running"


class StepBaseOptimizationStrategy:
    """
    Shared plumbing for strategies that step a parameter space: initialization,
    parameter-set id allocation, new-parameter-set / ended handlers and the
    hand-off of job results to the result processor.
    """

    def __init__(self):
        self.settings: WalkforwardSettings | None = None
        self.parameters: list[Parameter] | None = None
        self.processor: WalkforwardResultProcessor | None = None
        self.progress_prefix: str | None = None
        self._step_fn: Callable[..., Any] = grid_step
        self._new_parameter_set_handlers: list[Callable[[ParameterSet], None]] = []
        self._ended_handlers: list[Callable[[], None]] = []
        self._ids = itertools.count(1)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(
        self,
        *,
        settings: WalkforwardSettings,
        parameters: list[Parameter],
        dispatch_fn: Callable[[ParameterSet], None],
        processor: WalkforwardResultProcessor,
        step_fn: Callable[..., Any] | None = None,
        progress_prefix: str | None = None,
    ) -> None:
        if self._initialized:
            raise InvalidOperationError(f"{type(self).__name__}.initialize: strategy already initialized.")
        if dispatch_fn is None:
            raise ValueError("dispatch_fn is required")
        self.settings = settings
        self.parameters = list(parameters)
        self.processor = processor
        if step_fn is not None:
            self._step_fn = step_fn
        self.progress_prefix = progress_prefix
        self._new_parameter_set_handlers.append(dispatch_fn)
        self._initialized = True

    def add_new_parameter_set_handler(self, fn: Callable[[ParameterSet], None]) -> None:
        self._new_parameter_set_handlers.append(fn)

    def add_ended_handler(self, fn: Callable[[], None]) -> None:
        self._ended_handlers.append(fn)

    def step(self, parameters: list[Parameter], index: int = 0) -> Iterator[dict]:
        return iter(self._step_fn(parameters, index))

    def get_total_backtest_estimate(self) -> int:
        if self.settings is None or self.parameters is None:
            return 0
        per_search = getattr(self._step_fn, "n_trials", None)
        if per_search is None:
            per_search = grid_size(self.parameters)
        # one validation job per iteration on top of the search
        return int(self.settings.iterations) * (int(per_search) + 1)

    @property
    def solution(self) -> dict[str, Any] | None:
        if self.processor is None:
            return None
        return self.processor.solution

    def process_new_result(self, result: Completed) -> list[ParameterSet]:
        out = []
        for index, window, params in self.processor.process(result):
            parameter_set = annotate_parameter_set(self._new_parameter_set(params), window)
            self.processor.track(parameter_set, index, window.kind)
            out.append(parameter_set)
        return out

    def _new_parameter_set(self, params: dict) -> ParameterSet:
        return ParameterSet(id=next(self._ids), value=dict(params))

    def _stepped_parameter_set(self, params: dict) -> ParameterSet:
        parameter_set = self._new_parameter_set(params)
        bind = getattr(self._step_fn, "bind", None)
        if bind is not None:
            bind(parameter_set)
        return parameter_set

    def _on_new_parameter_set(self, parameter_set: ParameterSet) -> None:
        for fn in list(self._new_parameter_set_handlers):
            fn(parameter_set)

    def _on_ended(self) -> None:
        for fn in list(self._ended_handlers):
            fn()

    def _log(self, msg: str) -> None:
        if self.progress_prefix is not None:
            print(f"{self.progress_prefix} {msg}", flush=True)


class WalkforwardOptimizationStrategy(StepBaseOptimizationStrategy):
    """
    Walk-forward scheduler.

    `push_new_results(SEED)` plans every iteration and dispatches the in-sample
    search; each `Completed` result goes to the result processor, which may ask
    for the in-sample winner to be validated on its out-of-sample window.
    `Failed` results are dropped: nothing is retried and the iteration the job
    belonged to does not advance (see `WalkforwardResultProcessor`).

    All state changes happen under one lock per instance. Handlers
    (dispatch and ended) run after the lock is released.
    """

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self._seeded = False
        self._ended = False
        self.failed_jobs = 0

    @property
    def state(self) -> StrategyState:
        if not self._initialized:
            return StrategyState.UNINITIALIZED
        if not self._seeded:
            return StrategyState.READY
        return StrategyState.RUNNING

    def push_new_results(self, result: Seed | Completed | Failed) -> None:
        with self._lock:
            if not self._initialized:
                raise InvalidOperationError(
                    "WalkforwardOptimizationStrategy.push_new_results: strategy has not been initialized yet."
                )

            if isinstance(result, Failed):
                # one of the requested jobs failed
                self.failed_jobs += 1
                return

            if isinstance(result, Completed):
                outgoing = self.process_new_result(result)
            elif isinstance(result, Seed):
                if self._seeded:
                    self._log("seed already processed; ignoring")
                    return
                outgoing = self._plan()
                self._seeded = True
            else:
                raise TypeError(f"unsupported signal: {type(result).__name__}")

            fire_ended = self.processor.completed and not self._ended
            if fire_ended:
                self._ended = True

        for parameter_set in outgoing:
            self._on_new_parameter_set(parameter_set)
        if fire_ended:
            self._log("all iterations finished")
            self._on_ended()

    def _plan(self) -> list[ParameterSet]:
        iterations = split_iterations(self.settings)
        self._log(
            f"iterations={len(iterations) // 2} "
            f"in_sample={self.settings.percent_in_sample}% "
            f"out_of_sample={self.settings.percent_out_of_sample}%"
        )

        # step every iteration before touching the processor, so a stepper
        # that raises leaves it empty and the seed can be retried
        windows: list[tuple[int, Iteration]] = []
        planned: list[tuple[ParameterSet, int, IterationType]] = []
        for position, iteration in enumerate(iterations):
            index = position // 2
            windows.append((index, iteration))
            if iteration.kind is IterationType.OUT_OF_SAMPLE:
                # validated later with the in-sample winner only
                continue
            for params in self.step(self.parameters, index):
                parameter_set = annotate_parameter_set(self._stepped_parameter_set(params), iteration)
                planned.append((parameter_set, index, iteration.kind))

        for index, iteration in windows:
            self.processor.register_window(index, iteration)
        for parameter_set, index, kind in planned:
            self.processor.track(parameter_set, index, kind)
        self.processor.finish_planning()

        outgoing = [parameter_set for parameter_set, _, _ in planned]
        self._log(f"dispatching {len(outgoing)} in-sample parameter sets")
        return outgoing
