from __future__ import annotations

import numpy as np


def walkforward_efficiency_pct(is_value: float | None, oos_value: float | None, *, direction: str) -> float:
    """OOS objective as a percentage of the IS objective, both scored in the optimisation direction."""
    if is_value is None or oos_value is None:
        return float("nan")
    direction_sign = 1.0 if direction == "maximize" else -1.0
    is_scored = direction_sign * float(is_value)
    oos_scored = direction_sign * float(oos_value)
    if not (np.isfinite(is_scored) and np.isfinite(oos_scored)) or is_scored <= 0:
        return float("nan")
    return float((oos_scored / is_scored) * 100.0)


def wfe_summary(wfe_values: list[float], *, min_pct: float, iteration_count: int) -> dict:
    arr = np.asarray(wfe_values, dtype=float)
    valid = arr[np.isfinite(arr)]
    valid_count = int(len(valid))
    pass_count = int(np.sum(valid >= float(min_pct)))
    return {
        "min_pct": float(min_pct),
        "valid_iteration_count": valid_count,
        "pass_iteration_count": pass_count,
        "fail_iteration_count": int(max(0, valid_count - pass_count)),
        "invalid_iteration_count": int(max(0, iteration_count - valid_count)),
        "pass_rate_pct": float((pass_count / valid_count) * 100.0) if valid_count > 0 else float("nan"),
        "mean_wfe_pct": float(np.mean(valid)) if valid_count > 0 else float("nan"),
        "all_valid_passed": bool(valid_count > 0 and pass_count == valid_count),
    }
