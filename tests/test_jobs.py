from __future__ import annotations

from datetime import datetime

from wfopt.core.parameters import ParameterSet
from wfopt.experiments.walkforward.splits import Iteration, IterationType, annotate_parameter_set
from wfopt.jobs.synthetic import run_sma_cross, synthetic_prices


def _params(fast, slow, start=datetime(2020, 1, 1), end=datetime(2020, 1, 15)) -> dict:
    ps = ParameterSet(id=1, value={"fast": fast, "slow": slow})
    annotate_parameter_set(ps, Iteration(IterationType.IN_SAMPLE, start, end))
    return ps.value


def test_synthetic_prices_are_reproducible_per_window():
    a = synthetic_prices(datetime(2020, 1, 1), datetime(2020, 1, 3), seed=1)
    b = synthetic_prices(datetime(2020, 1, 1), datetime(2020, 1, 3), seed=1)
    c = synthetic_prices(datetime(2020, 1, 2), datetime(2020, 1, 4), seed=1)
    assert len(a) == 48
    assert a.equals(b)
    assert not a.equals(c)
    assert a.index[-1] < datetime(2020, 1, 3)


def test_sma_cross_summary():
    out = run_sma_cross(_params(5, 20))
    assert out is not None
    assert out["bars"] == 14 * 24
    assert out["trades"] >= 0
    assert out["max_drawdown_%"] <= 0.0
    assert out == run_sma_cross(_params(5, 20))


def test_sma_cross_rejects_invalid_params():
    assert run_sma_cross(_params(20, 20)) is None
    assert run_sma_cross(_params(0, 20)) is None
    assert run_sma_cross(_params(5, 500)) is None
