from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import pandas as pd

from wfopt.core.errors import ConfigurationError
from wfopt.core.parameters import ParameterSet, load_json_arg

# Culture-invariant rendering expected by the execution engine.
DATE_FORMAT = "%m/%d/%Y %H:%M:%S"
START_DATE_KEY = "start-date"
END_DATE_KEY = "end-date"

_HUNDRED = Decimal(100)


class IterationType(enum.Enum):
    IN_SAMPLE = "in_sample"
    OUT_OF_SAMPLE = "out_of_sample"


@dataclass(frozen=True)
class Iteration:
    kind: IterationType
    start: datetime
    end: datetime


@dataclass(frozen=True)
class WalkforwardSettings:
    start: datetime
    end: datetime
    iterations: int
    percent_in_sample: Decimal
    percent_out_of_sample: Decimal

    def __post_init__(self):
        object.__setattr__(self, "percent_in_sample", Decimal(str(self.percent_in_sample)))
        object.__setattr__(self, "percent_out_of_sample", Decimal(str(self.percent_out_of_sample)))

    @classmethod
    def from_dict(cls, data: dict) -> "WalkforwardSettings":
        required = ["start", "end", "iterations", "percent_in_sample", "percent_out_of_sample"]
        missing = [k for k in required if k not in data]
        if missing:
            raise ConfigurationError(f"walk-forward settings missing keys: {missing}")
        return cls(
            start=pd.Timestamp(data["start"]).to_pydatetime(),
            end=pd.Timestamp(data["end"]).to_pydatetime(),
            iterations=int(data["iterations"]),
            percent_in_sample=data["percent_in_sample"],
            percent_out_of_sample=data["percent_out_of_sample"],
        )

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "iterations": self.iterations,
            "percent_in_sample": str(self.percent_in_sample),
            "percent_out_of_sample": str(self.percent_out_of_sample),
        }


def load_settings(value: str) -> WalkforwardSettings:
    return WalkforwardSettings.from_dict(load_json_arg(value))


def enforce_sample_split_rules(percent_in_sample: Decimal, percent_out_of_sample: Decimal) -> bool:
    return percent_in_sample + percent_out_of_sample == _HUNDRED


def split_iterations(settings: WalkforwardSettings) -> list[Iteration]:
    """
    Tile [start, end) into `iterations` equal super-windows, each emitted as an
    in-sample window followed by its out-of-sample window.
    """
    if not enforce_sample_split_rules(settings.percent_in_sample, settings.percent_out_of_sample):
        raise ConfigurationError(
            "Sum of sample split percentages must equal 100.0 "
            f"(got {settings.percent_in_sample} + {settings.percent_out_of_sample})"
        )
    if settings.iterations < 0:
        raise ConfigurationError("iterations must be >= 0")
    if settings.iterations == 0:
        return []
    if settings.end <= settings.start:
        raise ConfigurationError("end must be after start")

    length = (settings.end - settings.start) / settings.iterations
    num, den = (settings.percent_in_sample / _HUNDRED).as_integer_ratio()

    out: list[Iteration] = []
    for i in range(settings.iterations):
        super_start = settings.start + length * i
        super_end = super_start + length
        split_point = super_start + (super_end - super_start) * num // den
        out.append(Iteration(IterationType.IN_SAMPLE, super_start, split_point))
        out.append(Iteration(IterationType.OUT_OF_SAMPLE, split_point, super_end))
    return out


def format_window_date(value: datetime) -> str:
    return value.strftime(DATE_FORMAT)


def parse_window_date(value: str) -> datetime:
    return datetime.strptime(value, DATE_FORMAT)


def annotate_parameter_set(parameter_set: ParameterSet, iteration: Iteration) -> ParameterSet:
    parameter_set.value[START_DATE_KEY] = format_window_date(iteration.start)
    parameter_set.value[END_DATE_KEY] = format_window_date(iteration.end)
    return parameter_set


def window_of(params: dict) -> tuple[datetime, datetime]:
    if START_DATE_KEY not in params or END_DATE_KEY not in params:
        raise KeyError("parameter set carries no evaluation window")
    return parse_window_date(str(params[START_DATE_KEY])), parse_window_date(str(params[END_DATE_KEY]))
