"""Shard worker entrypoint: load this worker's shard and answer one round from a snapshot file."""

from __future__ import annotations

import logging

from wnd_worker.runtime.config import WorkerRuntimeConfig, _optional_bool_env


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def run_worker() -> None:
    from wnd_worker.contracts.column_schema import load_column_schema
    from wnd_worker.contracts.round_exchange import ROUND_RESULT_FILENAME, read_snapshot, write_round_result
    from wnd_worker.data.input_reader import iter_input_lines
    from wnd_worker.training.worker import ShardWorker

    logger = logging.getLogger(__name__)
    cfg = WorkerRuntimeConfig.from_env()
    logger.info(
        "phase=config_loaded worker_index=%d bagging_num=%d validation_rate=%s num_kfold=%s delimiter=%r",
        cfg.worker_index,
        cfg.bagging_num,
        cfg.validation_rate,
        cfg.num_kfold,
        cfg.delimiter,
    )
    if cfg.column_config_path is None:
        raise RuntimeError("Missing required environment variable: COLUMN_CONFIG_PATH")
    schema = load_column_schema(cfg.column_config_path)
    worker = ShardWorker(cfg, schema)

    run = None
    if cfg.wandb_enabled:
        from wnd_worker.training.round_observability import (
            init_wandb_run,
            log_load_observability,
            log_round_observability,
        )

        run = init_wandb_run(cfg, schema.fingerprint())

    summary = worker.load_lines(iter_input_lines(cfg.train_data_paths, cfg.delimiter, cfg.validation_data_path))
    if run is not None:
        log_load_observability(cfg.worker_index, summary, worker.store.stats())

    if cfg.snapshot_path is None:
        logger.info("phase=round_not_requested reason=no_snapshot_path")
    else:
        snapshot = read_snapshot(cfg.snapshot_path)
        result = worker.compute_round(cfg.round_index, snapshot)
        out_path = cfg.output_dir / ROUND_RESULT_FILENAME
        write_round_result(out_path, result, worker_index=cfg.worker_index)
        logger.info("phase=round_result_saved path=%s round=%d", out_path, result.round_index)
        if run is not None:
            log_round_observability(cfg.worker_index, result)

    if run is not None:
        run.finish()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    if _optional_bool_env("WORKER_DRY_RUN", default=False):
        from wnd_worker.training.worker_dry_run import worker_dry_run

        worker_dry_run()
    else:
        run_worker()
