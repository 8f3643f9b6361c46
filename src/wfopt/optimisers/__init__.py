"""Search algorithms that step a parameter space into candidate parameter dicts."""

from .grid import grid_size, grid_step

__all__ = [
    "grid_size",
    "grid_step",
]
