from __future__ import annotations

from typing import Any

import wandb

from wnd_worker.runtime.config import WorkerRuntimeConfig
from wnd_worker.training.load_metrics import LoadSummary
from wnd_worker.training.round_executor import RoundResult


def init_wandb_run(cfg: WorkerRuntimeConfig, schema_hash: str) -> Any:
    wandb.login()
    return wandb.init(
        project=cfg.wandb_project,
        entity=cfg.wandb_entity,
        job_type="worker",
        group=f"bagging_{cfg.bagging_num}",
        name=f"worker-{cfg.worker_index}",
        tags=["wide_and_deep", "worker"],
        config={**cfg.signature(), "schema_hash": schema_hash, "memory_fraction": cfg.memory_fraction},
    )


def log_load_observability(worker_index: int, summary: LoadSummary, stores: dict[str, dict[str, int]]) -> None:
    prefix = f"worker/{worker_index}"
    payload: dict[str, object] = {f"{prefix}/load/{key}": value for key, value in summary.as_dict().items()}
    for store_name, stats in stores.items():
        for key, value in stats.items():
            payload[f"{prefix}/store/{store_name}/{key}"] = value
    wandb.log(payload)


def log_round_observability(worker_index: int, result: RoundResult) -> None:
    prefix = f"worker/{worker_index}"
    wandb.log(
        {
            f"{prefix}/training_count": result.training_count,
            f"{prefix}/validation_count": result.validation_count,
            f"{prefix}/training_error": result.training_error,
            f"{prefix}/validation_error": result.validation_error,
            f"{prefix}/mean_training_error": result.mean_training_error,
            f"{prefix}/mean_validation_error": result.mean_validation_error,
        },
        step=result.round_index,
    )
