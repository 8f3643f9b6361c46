"""
Signals pushed into an optimization strategy.

A run is started by the `SEED` signal; every finished compute job reports
either `Completed` (with its serialized result) or `Failed`.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Seed:
    pass


@dataclass(frozen=True)
class Completed:
    id: int
    payload: str

    def __post_init__(self):
        if self.id < 0:
            raise ValueError("job id must be >= 0")
        if not self.payload:
            raise ValueError("completed job must carry a payload; use Failed instead")


@dataclass(frozen=True)
class Failed:
    id: int

    def __post_init__(self):
        if self.id < 0:
            raise ValueError("job id must be >= 0")


Signal = Seed | Completed | Failed

SEED = Seed()


def job_result(id: int, payload: str | None) -> Completed | Failed:
    if not payload:
        return Failed(id)
    return Completed(id, payload)
