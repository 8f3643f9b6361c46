"""Core types shared by strategies, steppers and runners."""

from .errors import ConfigurationError, InvalidOperationError
from .objectives import Constraints, Target, parse_constraints
from .parameters import (
    ChoiceParameter,
    ParameterSet,
    StaticParameter,
    StepParameter,
    has_optimizable_params,
    load_json_arg,
    resolve_param_space,
)
from .results import SEED, Completed, Failed, Seed, job_result

__all__ = [
    "SEED",
    "ChoiceParameter",
    "Completed",
    "ConfigurationError",
    "Constraints",
    "Failed",
    "InvalidOperationError",
    "ParameterSet",
    "Seed",
    "StaticParameter",
    "StepParameter",
    "Target",
    "has_optimizable_params",
    "job_result",
    "load_json_arg",
    "parse_constraints",
    "resolve_param_space",
]
