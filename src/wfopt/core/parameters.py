from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any


def load_json_arg(value: str):
    path = Path(value)
    if path.exists():
        return json.loads(path.read_text(encoding="utf-8"))
    return json.loads(value)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _native(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class StaticParameter:
    name: str
    value: Any

    def values(self) -> list:
        return [self.value]


@dataclass(frozen=True)
class ChoiceParameter:
    name: str
    choices: tuple

    def values(self) -> list:
        return list(self.choices)


@dataclass(frozen=True)
class StepParameter:
    """
    Inclusive numeric range walked from min_value to max_value in `step` increments.
    Uses Decimal stepping so 0.1 increments do not drift.
    """

    name: str
    min_value: Decimal
    max_value: Decimal
    step: Decimal

    def __post_init__(self):
        object.__setattr__(self, "min_value", _to_decimal(self.min_value))
        object.__setattr__(self, "max_value", _to_decimal(self.max_value))
        object.__setattr__(self, "step", _to_decimal(self.step))
        if self.step <= 0:
            raise ValueError(f"step for '{self.name}' must be > 0")
        if self.max_value < self.min_value:
            raise ValueError(f"max for '{self.name}' must be >= min")

    @property
    def is_integer(self) -> bool:
        return all(v == v.to_integral_value() for v in (self.min_value, self.max_value, self.step))

    def values(self) -> list:
        out = []
        cur = self.min_value
        while cur <= self.max_value:
            out.append(_native(cur))
            cur += self.step
        return out


Parameter = StaticParameter | ChoiceParameter | StepParameter


@dataclass
class ParameterSet:
    """One candidate configuration; `id` doubles as the job id reported back by the engine."""

    id: int
    value: dict[str, Any] = field(default_factory=dict)

    def params(self) -> dict[str, Any]:
        return {k: v for k, v in self.value.items() if k not in ("start-date", "end-date")}


def resolve_param_space(raw) -> list[Parameter]:
    if isinstance(raw, str):
        raw = load_json_arg(raw)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("param space must be a dict of key -> list/scalar/range")

    out: list[Parameter] = []
    for k, v in raw.items():
        name = str(k)
        if isinstance(v, dict):
            missing = [x for x in ("min", "max", "step") if x not in v]
            if missing:
                raise ValueError(f"range for '{name}' missing keys: {missing}")
            out.append(StepParameter(name, v["min"], v["max"], v["step"]))
        elif isinstance(v, list):
            if len(v) == 0:
                raise ValueError(f"param space for '{name}' cannot be empty")
            if len(v) == 1:
                out.append(StaticParameter(name, v[0]))
            else:
                out.append(ChoiceParameter(name, tuple(v)))
        else:
            out.append(StaticParameter(name, v))
    return out


def has_optimizable_params(parameters: list[Parameter]) -> bool:
    return any(len(p.values()) > 1 for p in parameters)


def param_space_to_dict(parameters: list[Parameter]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for p in parameters:
        if isinstance(p, StepParameter):
            out[p.name] = {"min": str(p.min_value), "max": str(p.max_value), "step": str(p.step)}
        else:
            out[p.name] = p.values()
    return out
