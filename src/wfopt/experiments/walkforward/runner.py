from __future__ import annotations

import importlib
import json
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable

from wfopt.core.objectives import Constraints, Target
from wfopt.core.parameters import (
    Parameter,
    ParameterSet,
    has_optimizable_params,
    param_space_to_dict,
    resolve_param_space,
)
from wfopt.core.results import SEED, job_result
from wfopt.experiments.runners import dump_json, make_run_dir, save_frames

from .processor import WalkforwardResultProcessor
from .splits import WalkforwardSettings
from .strategy import WalkforwardOptimizationStrategy


def load_job_fn(job: str) -> Callable[[dict], dict | None]:
    """Resolve "module:function"; short module names are looked up under wfopt.jobs."""
    mod_name, _, fn_name = job.partition(":")
    fn_name = fn_name or "run_once"
    if "." in mod_name:
        mod = importlib.import_module(mod_name)
    else:
        mod = importlib.import_module(f"wfopt.jobs.{mod_name}")

    fn = getattr(mod, fn_name, None)
    if not callable(fn):
        raise ImportError(f"Job '{job}' has no callable '{fn_name}'")
    return fn


class _JobTracker:
    """Counts outstanding jobs; `finished` is set once nothing is left running."""

    def __init__(self):
        self._lock = threading.Lock()
        # the seed call holds one slot until its fan-out has been dispatched
        self._outstanding = 1
        self.submitted = 0
        self.done = 0
        self.finished = threading.Event()

    def start(self) -> None:
        with self._lock:
            self._outstanding += 1
            self.submitted += 1

    def finish(self, *, job: bool = True) -> int:
        with self._lock:
            self._outstanding -= 1
            if job:
                self.done += 1
            done = self.done
            if self._outstanding == 0:
                self.finished.set()
        return done


def _fmt_float(v: Any) -> str:
    try:
        x = float(v)
    except (TypeError, ValueError):
        return "nan"
    if math.isnan(x):
        return "nan"
    return f"{x:.4f}"


def run_walkforward(
    *,
    settings: WalkforwardSettings,
    param_space: dict | str | list[Parameter],
    run_once_fn: Callable[[dict], dict | None],
    objective: str,
    direction: str = "maximize",
    constraints: Constraints | None = None,
    optimizer: str = "grid",
    n_trials: int = 50,
    sampler: str = "tpe",
    seed: int = 42,
    wfe_min_pct: float = 0.0,
    max_workers: int = 4,
    run_base: str | Path = "runs",
    job_name: str = "job",
    label: str | None = None,
    progress_every: int = 20,
) -> Path:
    if max_workers <= 0:
        raise ValueError("max_workers must be > 0")
    if progress_every <= 0:
        raise ValueError("progress_every must be > 0")

    parameters = param_space if isinstance(param_space, list) else resolve_param_space(param_space)
    target = Target(objective, direction)
    constraints = constraints or Constraints()

    if optimizer not in ("grid", "optuna"):
        raise ValueError(f"unsupported optimizer: {optimizer}")
    if optimizer == "optuna" and not has_optimizable_params(parameters):
        print("[WFA] param space has no free parameters; running the single fixed set per iteration", flush=True)
        optimizer = "grid"

    if optimizer == "grid":
        stepper = None
        score_fn = None
    else:
        from wfopt.optimisers.optuna_opt import OptunaStepper

        stepper = OptunaStepper(n_trials=n_trials, sampler=sampler, seed=seed, direction=direction)
        score_fn = stepper.tell

    run_dir = make_run_dir(base=run_base, mode="walkforward", job=job_name, variant=optimizer, label=label)

    processor = WalkforwardResultProcessor(
        target,
        constraints,
        score_fn=score_fn,
        wfe_min_pct=wfe_min_pct,
        progress_prefix="[WFA]",
    )
    strategy = WalkforwardOptimizationStrategy()
    tracker = _JobTracker()
    futures: list[Future] = []
    start_ts = time.time()

    def _run_job(parameter_set: ParameterSet) -> None:
        try:
            try:
                summary = run_once_fn(dict(parameter_set.value))
            except Exception as exc:
                print(f"[WFA] job {parameter_set.id} failed: {type(exc).__name__}: {exc}", flush=True)
                summary = None
            payload = None if summary is None else json.dumps(summary, default=str)
            strategy.push_new_results(job_result(parameter_set.id, payload))
        finally:
            done = tracker.finish()
            if done % progress_every == 0:
                print(
                    f"[WFA] [jobs {done}/{tracker.submitted}] "
                    f"elapsed={time.time() - start_ts:.1f}s failed={strategy.failed_jobs}",
                    flush=True,
                )

    with ThreadPoolExecutor(max_workers=max_workers) as executor:

        def dispatch(parameter_set: ParameterSet) -> None:
            tracker.start()
            futures.append(executor.submit(_run_job, parameter_set))

        strategy.initialize(
            settings=settings,
            parameters=parameters,
            dispatch_fn=dispatch,
            processor=processor,
            step_fn=stepper,
            progress_prefix="[WFA]",
        )

        config = {
            "job": job_name,
            "optimizer": optimizer,
            "objective": objective,
            "direction": direction,
            "constraints": {"mode": constraints.mode, "rules": list(constraints.rules)},
            "settings": settings.to_dict(),
            "param_space": param_space_to_dict(parameters),
            "n_trials": n_trials if optimizer == "optuna" else None,
            "sampler": sampler if optimizer == "optuna" else None,
            "seed": seed,
            "wfe_min_pct": wfe_min_pct,
            "max_workers": max_workers,
            "total_backtest_estimate": strategy.get_total_backtest_estimate(),
        }
        dump_json(run_dir / "config.json", config)
        print(
            f"[WFA] iterations={settings.iterations} optimizer={optimizer} "
            f"objective={objective} direction={direction} workers={max_workers} "
            f"estimate={config['total_backtest_estimate']} jobs",
            flush=True,
        )

        try:
            strategy.push_new_results(SEED)
        finally:
            tracker.finish(job=False)
        tracker.finished.wait()

    for f in futures:
        f.result()

    summary = processor.summary()
    status = "ok" if processor.completed else "stalled"
    save_frames(
        run_dir,
        {
            "iterations": processor.report_frame(),
            "results": processor.results_frame(),
            "optuna_trials": None if stepper is None else stepper.trials_frame(),
        },
    )
    dump_json(run_dir / "walkforward_param_schedule.json", processor.schedule())
    dump_json(
        run_dir / "summary.json",
        {
            "status": status,
            "jobs_submitted": tracker.submitted,
            "jobs_failed": strategy.failed_jobs,
            "elapsed_s": round(time.time() - start_ts, 3),
            **summary,
        },
    )
    print(
        f"[WFA] {'complete' if status == 'ok' else 'stalled'} "
        f"validated={summary['validated_count']}/{summary['iteration_count']} "
        f"failed_jobs={strategy.failed_jobs} "
        f"wfe_pass_rate={_fmt_float(summary['wfe']['pass_rate_pct'])}%",
        flush=True,
    )
    return run_dir
