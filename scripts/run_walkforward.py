"""
Walk-forward CLI examples.

Grid search, 4 iterations, 80/20 in-sample/out-of-sample split:
python3 scripts/run_walkforward.py \
  --job synthetic:run_sma_cross \
  --start 2020-01-01 \
  --end 2021-01-01 \
  --iterations 4 \
  --percent-in 80 \
  --percent-out 20 \
  --param-space '{"fast": {"min": 5, "max": 25, "step": 5}, "slow": [50, 100, 150]}' \
  --objective total_return_% \
  --workers 8

Optuna ask/tell stepping with a minimum-trades constraint:
python3 scripts/run_walkforward.py \
  --job synthetic:run_sma_cross \
  --settings configs/walkforward.json \
  --optimizer optuna \
  --n-trials 40 \
  --param-space '{"fast": {"min": 5, "max": 40, "step": 1}, "slow": {"min": 50, "max": 200, "step": 10}}' \
  --constraints '{"trades": {">=": 10}}' \
  --objective sharpe
"""

from __future__ import annotations

import argparse

from wfopt.core.objectives import parse_constraints
from wfopt.experiments.walkforward.runner import load_job_fn, run_walkforward
from wfopt.experiments.walkforward.splits import WalkforwardSettings, load_settings


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser("Walk-forward optimization scheduler")

    ap.add_argument("--job", required=True, help="Evaluation function as module:function (short module names resolve under wfopt.jobs).")
    ap.add_argument("--run-base", default="runs")
    ap.add_argument("--label", default=None)

    ap.add_argument("--settings", default=None, help="JSON dict (or path) with start, end, iterations, percent_in_sample, percent_out_of_sample.")
    ap.add_argument("--start", default=None)
    ap.add_argument("--end", default=None)
    ap.add_argument("--iterations", type=int, default=None)
    ap.add_argument("--percent-in", default=None, help="In-sample percentage; must sum to 100 with --percent-out.")
    ap.add_argument("--percent-out", default=None)

    ap.add_argument("--param-space", required=True, help="JSON dict (or path) key -> list, scalar or {min, max, step}.")
    ap.add_argument("--optimizer", default="grid", choices=["grid", "optuna"])
    ap.add_argument("--objective", default="total_return_%")
    ap.add_argument("--direction", default="maximize", choices=["maximize", "minimize"])
    ap.add_argument("--constraints", default=None, help="JSON rules (or path) an in-sample result must pass to be eligible.")
    ap.add_argument("--wfe-min-pct", type=float, default=0.0, help="Walk-forward efficiency pass threshold in percent.")

    ap.add_argument("--n-trials", type=int, default=50, help="Optuna trials per in-sample search.")
    ap.add_argument("--sampler", default="tpe", choices=["tpe", "random"])
    ap.add_argument("--seed", type=int, default=42)

    ap.add_argument("--workers", type=int, default=4)
    ap.add_argument("--progress-every", type=int, default=20, help="Print job progress every N finished jobs.")
    return ap


def resolve_settings(args: argparse.Namespace) -> WalkforwardSettings:
    if args.settings is not None:
        return load_settings(args.settings)

    missing = [
        flag
        for flag, val in (
            ("--start", args.start),
            ("--end", args.end),
            ("--iterations", args.iterations),
            ("--percent-in", args.percent_in),
            ("--percent-out", args.percent_out),
        )
        if val is None
    ]
    if missing:
        raise ValueError(f"either --settings or all of {missing} must be given")
    return WalkforwardSettings.from_dict(
        {
            "start": args.start,
            "end": args.end,
            "iterations": args.iterations,
            "percent_in_sample": args.percent_in,
            "percent_out_of_sample": args.percent_out,
        }
    )


def main():
    args = build_parser().parse_args()
    if args.workers <= 0:
        raise ValueError("--workers must be > 0")
    if args.progress_every <= 0:
        raise ValueError("--progress-every must be > 0")

    settings = resolve_settings(args)
    run_dir = run_walkforward(
        settings=settings,
        param_space=args.param_space,
        run_once_fn=load_job_fn(args.job),
        objective=args.objective,
        direction=args.direction,
        constraints=parse_constraints(args.constraints),
        optimizer=args.optimizer,
        n_trials=args.n_trials,
        sampler=args.sampler,
        seed=args.seed,
        wfe_min_pct=args.wfe_min_pct,
        max_workers=args.workers,
        run_base=args.run_base,
        job_name=args.job.partition(":")[0].rsplit(".", 1)[-1],
        label=args.label,
        progress_every=args.progress_every,
    )
    print(f"Saved walk-forward run: {run_dir}")


if __name__ == "__main__":
    main()
