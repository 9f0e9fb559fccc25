from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

import numpy as np

from wnd_worker.training.round_executor import RoundResult


ROUND_RESULT_FILENAME = "round_result.json"


class SnapshotContractError(RuntimeError):
    pass


def _as_values(name: str, value: Any, *, label: str) -> np.ndarray:
    if isinstance(value, bool):
        raise SnapshotContractError(f"Invalid snapshot {label}: parameter {name!r} is a boolean.")
    if isinstance(value, (int, float)):
        value = [value]
    if not isinstance(value, list):
        raise SnapshotContractError(f"Invalid snapshot {label}: parameter {name!r} must be a number or list of numbers.")
    try:
        array = np.asarray(value, dtype=np.float64).ravel()
    except (TypeError, ValueError) as exc:
        raise SnapshotContractError(f"Invalid snapshot {label}: parameter {name!r} is not numeric.") from exc
    if not np.isfinite(array).all():
        raise SnapshotContractError(f"Invalid snapshot {label}: parameter {name!r} contains NaN/Inf.")
    return array


def parse_snapshot(payload: Any, *, label: str = "payload") -> dict[str, np.ndarray]:
    if not isinstance(payload, dict):
        raise SnapshotContractError(f"Invalid snapshot {label}: expected JSON object of parameter -> values.")
    params = payload.get("parameters", payload)
    if not isinstance(params, dict) or not params:
        raise SnapshotContractError(f"Invalid snapshot {label}: no parameters found.")
    return {str(name): _as_values(str(name), value, label=label) for name, value in params.items()}


def read_snapshot(path: Path) -> dict[str, np.ndarray]:
    if not path.exists():
        raise SnapshotContractError(f"Missing snapshot file: {path}")
    try:
        payload = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise SnapshotContractError(f"Invalid JSON in snapshot {path.name}: {exc}.") from exc
    return parse_snapshot(payload, label=path.name)


def write_snapshot(path: Path, weights: dict[str, np.ndarray]) -> None:
    payload = {"parameters": {name: np.asarray(value).ravel().tolist() for name, value in weights.items()}}
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(payload))
    tmp_path.replace(path)


def write_round_result(path: Path, result: RoundResult, *, worker_index: int) -> None:
    payload = {"worker_index": worker_index, **result.to_payload()}
    for key in ("training_error", "validation_error"):
        if not math.isfinite(float(payload[key])):
            raise SnapshotContractError(f"Round {result.round_index} produced non-finite {key}.")
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(payload))
    tmp_path.replace(path)
