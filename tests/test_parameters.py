from __future__ import annotations

import pytest

from wfopt.core.objectives import Constraints, Target, parse_constraints
from wfopt.core.parameters import (
    ChoiceParameter,
    StaticParameter,
    StepParameter,
    has_optimizable_params,
    param_space_to_dict,
    resolve_param_space,
)
from wfopt.core.results import SEED, Completed, Failed, Seed, job_result
from wfopt.optimisers.grid import grid_size, grid_step


def test_step_parameter_uses_exact_decimal_steps():
    p = StepParameter("rr", "0.1", "0.5", "0.1")
    assert p.values() == [0.1, 0.2, 0.3, 0.4, 0.5]
    assert not p.is_integer


def test_integer_step_parameter_yields_ints():
    p = StepParameter("fast", 5, 20, 5)
    assert p.values() == [5, 10, 15, 20]
    assert all(isinstance(v, int) for v in p.values())
    assert p.is_integer


def test_step_parameter_validation():
    with pytest.raises(ValueError):
        StepParameter("x", 0, 10, 0)
    with pytest.raises(ValueError):
        StepParameter("x", 10, 0, 1)


def test_resolve_param_space_from_json_text():
    params = resolve_param_space('{"fast": {"min": 5, "max": 15, "step": 5}, "slow": [50, 100], "pip": 0.0001, "mode": ["a"]}')
    by_name = {p.name: p for p in params}
    assert isinstance(by_name["fast"], StepParameter)
    assert isinstance(by_name["slow"], ChoiceParameter)
    assert by_name["pip"] == StaticParameter("pip", 0.0001)
    assert by_name["mode"] == StaticParameter("mode", "a")
    assert has_optimizable_params(params)
    assert param_space_to_dict(params)["slow"] == [50, 100]


def test_resolve_param_space_rejects_bad_input():
    with pytest.raises(ValueError):
        resolve_param_space({"fast": []})
    with pytest.raises(ValueError):
        resolve_param_space({"fast": {"min": 1, "max": 2}})
    with pytest.raises(ValueError):
        resolve_param_space([1, 2])


def test_grid_step_is_lazy_cartesian_product():
    params = resolve_param_space({"fast": [5, 10, 15], "slow": [50, 100], "pip": 0.1})
    gen = grid_step(params)
    assert next(gen) == {"fast": 5, "slow": 50, "pip": 0.1}
    rest = list(gen)
    assert len(rest) == 5
    assert rest[-1] == {"fast": 15, "slow": 100, "pip": 0.1}
    assert grid_size(params) == 6


def test_target_direction():
    t = Target("sharpe", "minimize")
    assert t.better(1.0, 2.0)
    assert not t.better(3.0, 2.0)
    assert t.better(5.0, None)
    assert t.value({"sharpe": float("nan")}) is None
    assert t.value({"sharpe": "x"}) is None
    assert t.value({"sharpe": 2}) == 2.0
    with pytest.raises(ValueError):
        Target("sharpe", "up")


def test_constraints_shorthand_and_modes():
    c = parse_constraints('{"trades": {">=": 10}, "max_drawdown_%": {">": -20}}')
    assert c.passes({"trades": 12, "max_drawdown_%": -5.0})
    assert not c.passes({"trades": 8, "max_drawdown_%": -5.0})
    assert not c.passes({"max_drawdown_%": -5.0})

    any_c = parse_constraints({"mode": "any", "rules": [{"metric": "trades", "op": ">", "value": 100}, {"metric": "sharpe", "op": ">", "value": 1}]})
    assert any_c.passes({"trades": 1, "sharpe": 1.5})
    assert Constraints().passes({})


def test_constraints_validation():
    with pytest.raises(ValueError):
        parse_constraints([{"metric": "trades", "op": "=~", "value": 1}])
    with pytest.raises(ValueError):
        parse_constraints({"mode": "some", "rules": []})
    with pytest.raises(ValueError):
        parse_constraints([{"metric": "trades"}])


def test_job_result_classifies_payloads():
    assert job_result(4, None) == Failed(4)
    assert job_result(4, "") == Failed(4)
    assert job_result(0, '{"x": 1}') == Completed(0, '{"x": 1}')
    assert isinstance(SEED, Seed)
    assert SEED != Completed(0, "{}")


def test_signal_validation():
    with pytest.raises(ValueError):
        Completed(1, "")
    with pytest.raises(ValueError):
        Completed(-1, "{}")
    with pytest.raises(ValueError):
        Failed(-2)
