"""
Result processing for walk-forward optimization.

The processor owns every decision the scheduler does not: how a job result is
scored, when an iteration's in-sample search is finished, which parameter set
is promoted to out-of-sample validation, and when the whole run is complete.

It keeps no lock of its own; `WalkforwardOptimizationStrategy` serializes all
calls into it.

An in-sample job that never reports (a failed job) keeps its iteration in the
"searching" state forever. The processor cannot tell a slow job from a lost
one, so a run with failed in-sample jobs stalls instead of completing.
Callers that need to detect this must watch the strategy's `failed_jobs`
counter or track outstanding jobs themselves (the runner does the latter).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

import pandas as pd

from wfopt.core.objectives import Constraints, Target
from wfopt.core.parameters import ParameterSet
from wfopt.core.results import Completed

from .fitness import walkforward_efficiency_pct, wfe_summary
from .splits import Iteration, IterationType

SEARCHING = "searching"
VALIDATING = "validating"
VALIDATED = "validated"
NO_CANDIDATE = "no_candidate"


@dataclass
class IterationState:
    index: int
    in_sample: Iteration | None = None
    out_of_sample: Iteration | None = None
    status: str = SEARCHING
    pending: set[int] = field(default_factory=set)
    in_sample_jobs: int = 0
    best_job_id: int | None = None
    best_value: float | None = None
    best_params: dict[str, Any] | None = None
    best_summary: dict[str, Any] | None = None
    validation_job_id: int | None = None
    oos_value: float | None = None
    oos_summary: dict[str, Any] | None = None
    wfe_pct: float = float("nan")

    @property
    def done(self) -> bool:
        return self.status in (VALIDATED, NO_CANDIDATE)


def _parse_payload(payload: str) -> dict | None:
    try:
        data = json.loads(payload)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _fmt(v: Any) -> str:
    try:
        x = float(v)
    except (TypeError, ValueError):
        return "nan"
    if pd.isna(x):
        return "nan"
    return f"{x:.4f}"


class WalkforwardResultProcessor:
    def __init__(
        self,
        target: Target,
        constraints: Constraints | None = None,
        *,
        score_fn: Callable[[ParameterSet, float], None] | None = None,
        wfe_min_pct: float = 0.0,
        progress_prefix: str | None = None,
    ):
        self.target = target
        self.constraints = constraints or Constraints()
        self.score_fn = score_fn
        self.wfe_min_pct = float(wfe_min_pct)
        self.progress_prefix = progress_prefix

        self._states: dict[int, IterationState] = {}
        self._jobs: dict[int, tuple[int, IterationType]] = {}
        self._parameter_sets: dict[int, ParameterSet] = {}
        self._rows: list[dict] = []
        self._planned = False

    def _log(self, msg: str) -> None:
        if self.progress_prefix is not None:
            print(f"{self.progress_prefix} {msg}", flush=True)

    # ---- registration (called while the strategy plans) ----

    def register_window(self, index: int, iteration: Iteration) -> None:
        state = self._states.setdefault(index, IterationState(index=index))
        if iteration.kind is IterationType.IN_SAMPLE:
            state.in_sample = iteration
        else:
            state.out_of_sample = iteration

    def track(self, parameter_set: ParameterSet, index: int, kind: IterationType) -> None:
        state = self._states[index]
        self._jobs[parameter_set.id] = (index, kind)
        self._parameter_sets[parameter_set.id] = parameter_set
        if kind is IterationType.IN_SAMPLE:
            state.pending.add(parameter_set.id)
            state.in_sample_jobs += 1
        else:
            state.validation_job_id = parameter_set.id
            state.status = VALIDATING

    def finish_planning(self) -> None:
        self._planned = True
        for state in self._states.values():
            if state.status == SEARCHING and state.in_sample_jobs == 0:
                state.status = NO_CANDIDATE
                self._log(f"iteration {state.index + 1}: search produced no parameter sets")

    # ---- result handling ----

    @property
    def completed(self) -> bool:
        return self._planned and all(s.done for s in self._states.values())

    @property
    def iteration_count(self) -> int:
        return len(self._states)

    def process(self, result: Completed) -> list[tuple[int, Iteration, dict]]:
        """
        Record one job result. Returns the out-of-sample validations to dispatch,
        as (iteration index, out-of-sample window, params) tuples.
        """
        job = self._jobs.get(result.id)
        if job is None:
            self._log(f"ignoring result for unknown job id={result.id}")
            return []

        index, kind = job
        state = self._states[index]
        summary = _parse_payload(result.payload)

        if kind is IterationType.IN_SAMPLE:
            if result.id not in state.pending:
                return []
            state.pending.discard(result.id)
            self._record_in_sample(state, result.id, summary)
            return self._settle(state)

        if state.status != VALIDATING or state.validation_job_id != result.id:
            return []
        self._record_out_of_sample(state, result.id, summary)
        return []

    def _record_in_sample(self, state: IterationState, job_id: int, summary: dict | None) -> None:
        params = self._parameter_sets[job_id].params()
        value = None if summary is None else self.target.value(summary)
        eligible = value is not None and self.constraints.passes(summary)
        self._rows.append(
            {
                "iteration": state.index + 1,
                "phase": IterationType.IN_SAMPLE.value,
                "job_id": job_id,
                "eligible": eligible,
                **params,
                **(summary or {}),
            }
        )
        if not eligible:
            return
        if self.score_fn is not None:
            self.score_fn(self._parameter_sets[job_id], value)
        if self.target.better(value, state.best_value):
            state.best_job_id = job_id
            state.best_value = value
            state.best_params = params
            state.best_summary = summary

    def _settle(self, state: IterationState) -> list[tuple[int, Iteration, dict]]:
        if state.pending:
            return []
        if state.best_params is None:
            state.status = NO_CANDIDATE
            self._log(f"iteration {state.index + 1}: no eligible in-sample result")
            return []
        state.status = VALIDATING
        self._log(
            f"iteration {state.index + 1}: in-sample done "
            f"best_{self.target.objective}={_fmt(state.best_value)} "
            f"params={json.dumps(state.best_params, sort_keys=True, default=str)}"
        )
        return [(state.index, state.out_of_sample, dict(state.best_params))]

    def _record_out_of_sample(self, state: IterationState, job_id: int, summary: dict | None) -> None:
        state.oos_summary = summary or {}
        state.oos_value = None if summary is None else self.target.value(summary)
        state.wfe_pct = walkforward_efficiency_pct(
            state.best_value,
            state.oos_value,
            direction=self.target.direction,
        )
        state.status = VALIDATED
        self._rows.append(
            {
                "iteration": state.index + 1,
                "phase": IterationType.OUT_OF_SAMPLE.value,
                "job_id": job_id,
                "eligible": state.oos_value is not None,
                **self._parameter_sets[job_id].params(),
                **state.oos_summary,
            }
        )
        self._log(
            f"iteration {state.index + 1}: validated "
            f"oos_{self.target.objective}={_fmt(state.oos_value)} "
            f"wfe={_fmt(state.wfe_pct)}%"
        )

    # ---- reporting ----

    @property
    def solution(self) -> dict[str, Any] | None:
        validated = [s for s in self._states.values() if s.status == VALIDATED]
        if not validated:
            return None
        return dict(max(validated, key=lambda s: s.index).best_params)

    def states(self) -> list[IterationState]:
        return [self._states[k] for k in sorted(self._states)]

    def results_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._rows)

    def report_frame(self) -> pd.DataFrame:
        rows = []
        for s in self.states():
            row = {
                "iteration": s.index + 1,
                "status": s.status,
                "is_start_time": None if s.in_sample is None else str(s.in_sample.start),
                "is_end_time_exclusive": None if s.in_sample is None else str(s.in_sample.end),
                "oos_start_time": None if s.out_of_sample is None else str(s.out_of_sample.start),
                "oos_end_time_exclusive": None if s.out_of_sample is None else str(s.out_of_sample.end),
                "is_jobs": s.in_sample_jobs,
                "is_pending": len(s.pending),
                "best_job_id": s.best_job_id,
                "validation_job_id": s.validation_job_id,
                "best_params": None if s.best_params is None else json.dumps(s.best_params, sort_keys=True, default=str),
                "wfe_pct": s.wfe_pct,
                **{f"is_{k}": v for k, v in (s.best_summary or {}).items()},
                **{f"oos_{k}": v for k, v in (s.oos_summary or {}).items()},
            }
            rows.append(row)
        return pd.DataFrame(rows)

    def schedule(self) -> list[dict]:
        return [
            {
                "iteration": s.index + 1,
                "oos_start_time": str(s.out_of_sample.start),
                "oos_end_time_exclusive": str(s.out_of_sample.end),
                "params": s.best_params,
            }
            for s in self.states()
            if s.status == VALIDATED
        ]

    def summary(self) -> dict:
        states = self.states()
        return {
            "completed": self.completed,
            "iteration_count": len(states),
            "validated_count": sum(1 for s in states if s.status == VALIDATED),
            "no_candidate_count": sum(1 for s in states if s.status == NO_CANDIDATE),
            "unfinished_count": sum(1 for s in states if not s.done),
            "objective": self.target.objective,
            "direction": self.target.direction,
            "wfe": wfe_summary(
                [s.wfe_pct for s in states if s.status == VALIDATED],
                min_pct=self.wfe_min_pct,
                iteration_count=len(states),
            ),
            "solution": self.solution,
        }
