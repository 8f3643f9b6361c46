from __future__ import annotations

import math
from dataclasses import dataclass, field

from .parameters import load_json_arg

_OPS = {
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
}


@dataclass(frozen=True)
class Target:
    objective: str
    direction: str = "maximize"

    def __post_init__(self):
        if self.direction not in ("maximize", "minimize"):
            raise ValueError("direction must be 'maximize' or 'minimize'")

    @property
    def sign(self) -> float:
        return 1.0 if self.direction == "maximize" else -1.0

    def value(self, summary: dict) -> float | None:
        v = summary.get(self.objective)
        if v is None:
            return None
        try:
            x = float(v)
        except (TypeError, ValueError):
            return None
        if math.isnan(x):
            return None
        return x

    def better(self, candidate: float, incumbent: float | None) -> bool:
        if incumbent is None:
            return True
        if self.direction == "maximize":
            return candidate > incumbent
        return candidate < incumbent


@dataclass(frozen=True)
class Constraints:
    mode: str = "all"
    rules: tuple = field(default_factory=tuple)

    def passes(self, summary: dict) -> bool:
        if not self.rules:
            return True
        results = [_rule_ok(r, summary) for r in self.rules]
        return all(results) if self.mode == "all" else any(results)


def _rule_ok(rule: dict, summary: dict) -> bool:
    v = summary.get(rule["metric"])
    if v is None:
        return False
    if isinstance(v, float) and math.isnan(v):
        return False
    return _OPS[rule["op"]](v, rule["value"])


def parse_constraints(value) -> Constraints:
    """
    Accepts {"rules": [...], "mode": "all"|"any"}, a list of rules, or the
    shorthand {"metric": {"op": value}} / {"metric": min_value}.
    """
    if value is None:
        return Constraints()

    if isinstance(value, (dict, list)):
        data = value
    else:
        data = load_json_arg(value)
    if isinstance(data, dict):
        if "rules" in data:
            mode = data.get("mode", "all")
            rules = data["rules"]
        else:
            rules = []
            for metric, spec in data.items():
                if isinstance(spec, dict):
                    if len(spec) != 1:
                        raise ValueError(f"constraint for {metric} must have exactly one operator")
                    op, val = next(iter(spec.items()))
                else:
                    op, val = ">=", spec
                rules.append({"metric": metric, "op": op, "value": val})
            mode = "all"
    elif isinstance(data, list):
        rules = data
        mode = "all"
    else:
        raise ValueError("constraints must be JSON dict or list")

    for r in rules:
        if "metric" not in r or "op" not in r or "value" not in r:
            raise ValueError("each rule must include metric, op, value")
        if r["op"] not in _OPS:
            raise ValueError(f"unsupported operator: {r['op']}")
    if mode not in ("all", "any"):
        raise ValueError("constraints mode must be 'all' or 'any'")
    return Constraints(mode=mode, rules=tuple(dict(r) for r in rules))
