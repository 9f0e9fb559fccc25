from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from wnd_worker.common.status_reporter import LoadProgressReporter
from wnd_worker.contracts.column_schema import ColumnSchema
from wnd_worker.data.input_reader import InputLine
from wnd_worker.data.record_codec import RecordCodec
from wnd_worker.runtime.config import WorkerRuntimeConfig
from wnd_worker.sampling.sampling_policy import SamplingPolicy
from wnd_worker.sampling.shard_assigner import ShardAssigner, ShardDecision
from wnd_worker.store.bounded_store import BoundedRecordStore
from wnd_worker.training.load_manifest import (
    load_previous_manifest,
    manifest_path,
    verify_reconstruction,
    write_load_manifest,
)
from wnd_worker.training.load_metrics import LoadMetrics, LoadSummary
from wnd_worker.training.model_graph import ModelGraph
from wnd_worker.training.round_executor import RoundExecutor, RoundResult
from wnd_worker.training.wide_and_deep import WideAndDeep

logger = logging.getLogger(__name__)


class ShardWorker:
    """Loads this worker's shard once, then answers one ``compute_round`` per coordinator round."""

    def __init__(self, cfg: WorkerRuntimeConfig, schema: ColumnSchema, graph: ModelGraph | None = None) -> None:
        self.cfg = cfg
        self.schema = schema
        self.codec = RecordCodec(schema, cfg.delimiter)
        self.sampling = SamplingPolicy.from_config(cfg)
        self.assigner = ShardAssigner.from_config(cfg)
        self.store = BoundedRecordStore.from_config(cfg)
        self.metrics = LoadMetrics()
        self.graph = graph if graph is not None else WideAndDeep.from_config(cfg, schema)
        self.executor = RoundExecutor(self.graph, self.codec.input_index_map, self.store.training, self.store.validation)
        self.progress = LoadProgressReporter(
            logger=logger,
            every_records=cfg.load_log_every,
            interval_seconds=float(cfg.status_update_seconds),
            name=f"worker{cfg.worker_index}",
        )
        self._summary: LoadSummary | None = None

    @property
    def summary(self) -> LoadSummary | None:
        return self._summary

    def load_line(self, text: str, is_validation: bool = False) -> ShardDecision | None:
        if self._summary is not None:
            raise RuntimeError("Load phase already finished; records can no longer be added.")
        ordinal = self.metrics.record_read()
        self.progress.update(ordinal, train=len(self.store.training), valid=len(self.store.validation))
        decoded = self.codec.decode(text, ordinal)
        record = self.sampling.apply(decoded)
        if record is None:
            self.metrics.record_dropped()
            return None
        decision = self.assigner.classify(record.label, decoded.fingerprint, is_validation)
        self.store.append(decision.shard, record)
        self.metrics.record_decision(decision)
        return decision

    def load_lines(self, lines: Iterable[InputLine]) -> LoadSummary:
        with self.progress:
            for line in lines:
                self.load_line(line.text, line.is_validation)
        return self.finish_load()

    def manifest_signature(self) -> dict[str, object]:
        return {
            **self.cfg.signature(),
            "schema_hash": self.schema.fingerprint(),
            "train_data_paths": [str(path) for path in self.cfg.train_data_paths],
        }

    def finish_load(self) -> LoadSummary:
        if self._summary is not None:
            return self._summary
        self.progress.clear()
        summary = self.metrics.summary()
        self._summary = summary
        stores = self.store.stats()
        logger.info(
            "phase=load_finished read=%d sampled=%d dropped_negative=%d pos_train=%d neg_train=%d "
            "pos_valid=%d neg_valid=%d train_accepted=%d train_offered=%d valid_accepted=%d valid_offered=%d",
            summary.read_count,
            summary.sampled_count,
            summary.dropped_negative_count,
            summary.positive_train_count,
            summary.negative_train_count,
            summary.positive_validation_count,
            summary.negative_validation_count,
            stores["training"]["accepted"],
            stores["training"]["offered"],
            stores["validation"]["accepted"],
            stores["validation"]["offered"],
        )
        diagnostics = self.codec.diagnostics
        if diagnostics.defaulted_fields or diagnostics.invalid_weights or diagnostics.negative_weights:
            logger.warning(
                "phase=parse_defaults_summary defaulted_fields=%d invalid_weights=%d negative_weights=%d",
                diagnostics.defaulted_fields,
                diagnostics.invalid_weights,
                diagnostics.negative_weights,
            )

        if self.cfg.load_manifest_dir is not None:
            path = manifest_path(self.cfg.load_manifest_dir, self.cfg.worker_index)
            signature = self.manifest_signature()
            previous = load_previous_manifest(
                path=path,
                expected_signature=signature,
                resume_mode=self.cfg.resume_mode,
                logger=logger,
            )
            verify_reconstruction(previous, summary, resume_mode=self.cfg.resume_mode, logger=logger)
            write_load_manifest(path, signature, summary, {**stores, "parse": diagnostics.as_dict()})
            logger.info("phase=load_manifest_saved path=%s", path)
        return summary

    def compute_round(self, round_index: int, snapshot: Mapping[str, Any] | None) -> RoundResult:
        if self._summary is None:
            raise RuntimeError("Load phase has not finished; call finish_load() before computing rounds.")
        return self.executor.execute(round_index, snapshot)
