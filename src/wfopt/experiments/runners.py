from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd


def _safe(s: Any) -> str:
    return (
        str(s)
        .strip()
        .replace(" ", "_")
        .replace("/", "-")
        .replace(":", "-")
        .replace(".", "_")
        .lower()
    )


def make_run_dir(
    *,
    base: str | Path = "runs",
    mode: str = "walkforward",
    job: str,
    variant: str | None = None,
    label: str | None = None,
) -> Path:
    ts = datetime.now().strftime("%d%m%y_%H%M%S")
    stem = f"run_{ts}_{_safe(label)}" if label else f"run_{ts}"

    parent_dir = Path(base) / _safe(mode) / _safe(job)
    if variant:
        parent_dir = parent_dir / _safe(variant)
    parent_dir.mkdir(parents=True, exist_ok=True)

    run_dir = parent_dir / stem
    suffix = 1
    while run_dir.exists():
        suffix += 1
        run_dir = parent_dir / f"{stem}_{suffix:02d}"

    run_dir.mkdir(parents=True, exist_ok=False)
    return run_dir


def dump_json(path: Path, obj: Any) -> None:
    if is_dataclass(obj):
        obj = asdict(obj)
    with path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, default=str)


def save_frames(run_dir: Path, frames: dict[str, pd.DataFrame | None]) -> None:
    for name, df in frames.items():
        if df is None:
            continue
        df.to_csv(run_dir / f"{name}.csv", index=False)
