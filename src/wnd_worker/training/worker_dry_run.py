from __future__ import annotations

import json
import math
import os
from pathlib import Path

import numpy as np

from wnd_worker.contracts.column_schema import load_column_schema
from wnd_worker.contracts.round_exchange import (
    ROUND_RESULT_FILENAME,
    read_snapshot,
    write_round_result,
    write_snapshot,
)
from wnd_worker.data.input_reader import InputLine
from wnd_worker.runtime.config import WorkerRuntimeConfig
from wnd_worker.training.worker import ShardWorker


DRY_RUN_ROUNDS = 3
DRY_RUN_COLUMNS = [
    {"column_num": 0, "column_name": "txn_id", "column_type": "C", "flag": "meta"},
    {"column_num": 1, "column_name": "amount", "column_type": "N", "final_select": True},
    {"column_num": 2, "column_name": "velocity", "column_type": "N", "final_select": True},
    {"column_num": 3, "column_name": "channel", "column_type": "C", "final_select": True, "bin_category": ["web", "app", "pos"]},
    {"column_num": 4, "column_name": "region", "column_type": "C", "final_select": True, "bin_category": ["us@^ca", "eu"]},
    {"column_num": 5, "column_name": "is_fraud", "column_type": "N", "flag": "target"},
]


def _synthetic_lines(n_rows: int, delimiter: str) -> list[str]:
    rng = np.random.default_rng(7)
    channels = ["web", "app", "pos", ""]
    regions = ["us", "ca", "eu", "apac"]
    lines: list[str] = []
    for idx in range(n_rows):
        amount = float(rng.normal())
        velocity = float(rng.normal())
        label = 1 if (0.8 * amount - 0.5 * velocity + rng.normal(0.0, 0.3)) > 0.6 else 0
        weight = "" if idx % 7 else f"{rng.uniform(0.5, 2.0):.3f}"
        fields = [
            f"t{idx:05d}",
            f"{amount:.4f}",
            f"{velocity:.4f}",
            channels[int(rng.integers(0, len(channels)))],
            regions[int(rng.integers(0, len(regions)))],
            str(label),
            weight,
        ]
        lines.append(delimiter.join(fields))
    return lines


def worker_dry_run() -> None:
    out_dir = Path(os.getenv("WORKER_OUTPUT_DIR", "artifacts")) / "_dry_run"
    out_dir.mkdir(parents=True, exist_ok=True)
    schema_path = out_dir / "column_config.json"
    schema_path.write_text(json.dumps(DRY_RUN_COLUMNS, indent=2))
    schema = load_column_schema(schema_path)

    cfg = WorkerRuntimeConfig(
        column_config_path=schema_path,
        validation_rate=0.2,
        bagging_sample_rate=0.9,
        sample_neg_only=True,
        up_sample_weight=2.0,
        sampling_seed=7,
        memory_budget_bytes=64 * 1024 * 1024,
        embed_column_ids=(3,),
        embed_outputs=4,
        hidden_nodes=(8,),
        activations=("relu",),
        load_manifest_dir=out_dir,
        resume_mode="fresh",
        output_dir=out_dir,
    ).validate()

    worker = ShardWorker(cfg, schema)
    summary = worker.load_lines(InputLine(text=line) for line in _synthetic_lines(600, cfg.delimiter))
    if summary.train_count == 0 or summary.validation_count == 0:
        raise RuntimeError("WORKER_DRY_RUN produced an empty training or validation shard.")

    first = worker.compute_round(1, None)
    if not first.is_empty:
        raise RuntimeError("WORKER_DRY_RUN first round was expected to be empty.")

    snapshot_path = out_dir / "snapshot.json"
    write_snapshot(snapshot_path, worker.graph.weights())
    snapshot = read_snapshot(snapshot_path)
    result = first
    for round_index in range(2, DRY_RUN_ROUNDS + 1):
        result = worker.compute_round(round_index, snapshot)
        if not (math.isfinite(result.training_error) and math.isfinite(result.validation_error)):
            raise RuntimeError(f"WORKER_DRY_RUN round {round_index} produced non-finite errors.")
        if any(not np.isfinite(grad).all() for grad in result.gradients.values()):
            raise RuntimeError(f"WORKER_DRY_RUN round {round_index} produced non-finite gradients.")

    write_round_result(out_dir / ROUND_RESULT_FILENAME, result, worker_index=cfg.worker_index)
    print(
        f"WORKER_DRY_RUN_OK train={result.training_count} valid={result.validation_count} "
        f"rounds={DRY_RUN_ROUNDS} artifact_dir={out_dir}"
    )
