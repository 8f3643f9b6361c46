from __future__ import annotations

from itertools import product
from typing import Iterator

from wfopt.core.parameters import Parameter


def grid_size(parameters: list[Parameter]) -> int:
    total = 1
    for p in parameters:
        total *= len(p.values())
    return total


def grid_step(parameters: list[Parameter], index: int = 0) -> Iterator[dict]:
    """
    Lazily yields every combination of the parameter values, first parameter
    outermost. The grid is the same for every iteration, so `index` is unused.
    """
    keys = [p.name for p in parameters]
    values = [p.values() for p in parameters]
    for combo in product(*values):
        yield dict(zip(keys, combo))
