"""Walk-forward optimization: iteration planning, scheduling and result processing."""

from .processor import WalkforwardResultProcessor
from .runner import load_job_fn, run_walkforward
from .splits import (
    Iteration,
    IterationType,
    WalkforwardSettings,
    annotate_parameter_set,
    load_settings,
    split_iterations,
)
from .strategy import StrategyState, WalkforwardOptimizationStrategy

__all__ = [
    "Iteration",
    "IterationType",
    "StrategyState",
    "WalkforwardOptimizationStrategy",
    "WalkforwardResultProcessor",
    "WalkforwardSettings",
    "annotate_parameter_set",
    "load_job_fn",
    "load_settings",
    "run_walkforward",
    "split_iterations",
]
