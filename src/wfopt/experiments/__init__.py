"""Experiment/run artifact utilities."""

from .runners import dump_json, make_run_dir, save_frames
from .walkforward import run_walkforward

__all__ = [
    "dump_json",
    "make_run_dir",
    "run_walkforward",
    "save_frames",
]
