from __future__ import annotations

import numpy as np
import pandas as pd

from wfopt.experiments.walkforward.splits import window_of


def max_drawdown(equity: pd.Series) -> float:
    peak = equity.cummax()
    dd = (equity / peak) - 1.0
    return float(dd.min())


def synthetic_prices(start, end, *, freq: str = "1h", seed: int = 7, drift: float = 0.0, vol: float = 0.002) -> pd.Series:
    """Geometric random walk over [start, end); the same window and seed always give the same path."""
    idx = pd.date_range(start, end, freq=freq, inclusive="left")
    rng = np.random.default_rng([abs(int(seed)), abs(int(pd.Timestamp(start).value // 10**9))])
    rets = rng.normal(drift, vol, size=len(idx))
    return pd.Series(100.0 * np.exp(np.cumsum(rets)), index=idx, name="close")


def run_sma_cross(params: dict) -> dict | None:
    """
    Long/short SMA crossover over the window carried by `params`.
    Returns None when the parameter set is invalid for the window.
    """
    fast = int(params.get("fast", 10))
    slow = int(params.get("slow", 50))
    if fast <= 0 or slow <= fast:
        return None

    start, end = window_of(params)
    close = synthetic_prices(
        start,
        end,
        freq=str(params.get("freq", "1h")),
        seed=int(params.get("seed", 7)),
        drift=float(params.get("drift", 0.0)),
    )
    if len(close) <= slow + 1:
        return None

    sma_fast = close.rolling(fast).mean()
    sma_slow = close.rolling(slow).mean()
    position = np.sign(sma_fast - sma_slow).fillna(0.0).shift(1).fillna(0.0)
    strat_ret = close.pct_change().fillna(0.0) * position

    initial_equity = float(params.get("initial_equity", 100_000.0))
    equity = initial_equity * (1.0 + strat_ret).cumprod()
    trades = int((position.diff().fillna(0.0) != 0).sum())

    std = float(strat_ret.std())
    sharpe = float(strat_ret.mean() / std * np.sqrt(len(strat_ret))) if std > 0 else float("nan")

    return {
        "trades": trades,
        "bars": int(len(close)),
        "final_equity": float(equity.iloc[-1]),
        "total_return_%": float((equity.iloc[-1] / initial_equity - 1.0) * 100.0),
        "max_drawdown_%": float(max_drawdown(equity) * 100.0),
        "sharpe": sharpe,
    }
