"""One synchronous training round on the records held by this worker."""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Iterable, Mapping

import numpy as np

from wnd_worker.data.record_codec import Record, SparseInput
from wnd_worker.training.model_graph import ModelGraph

logger = logging.getLogger(__name__)

# exp(-logit) is capped here so extreme negative logits cannot overflow the sigmoid.
MAX_EXP = 1.0e19


def sigmoid(logit: float) -> float:
    if -logit > 700.0:
        return 1.0 / (1.0 + MAX_EXP)
    return 1.0 / (1.0 + min(MAX_EXP, math.exp(-logit)))


class RoundState(enum.Enum):
    WAITING_FOR_SNAPSHOT = "waiting_for_snapshot"
    COMPUTING = "computing"


@dataclass(frozen=True)
class RoundResult:
    round_index: int
    training_count: int = 0
    validation_count: int = 0
    training_error: float = 0.0
    validation_error: float = 0.0
    gradients: dict[str, np.ndarray] = field(default_factory=dict)

    @classmethod
    def empty(cls, round_index: int) -> "RoundResult":
        return cls(round_index=round_index)

    @property
    def is_empty(self) -> bool:
        return self.training_count == 0 and self.validation_count == 0 and not self.gradients

    @property
    def mean_training_error(self) -> float:
        return self.training_error / self.training_count if self.training_count else 0.0

    @property
    def mean_validation_error(self) -> float:
        return self.validation_error / self.validation_count if self.validation_count else 0.0

    def to_payload(self) -> dict[str, Any]:
        return {
            "round_index": self.round_index,
            "training_count": self.training_count,
            "validation_count": self.validation_count,
            "training_error": self.training_error,
            "validation_error": self.validation_error,
            "gradients": {name: np.asarray(value).ravel().tolist() for name, value in self.gradients.items()},
        }


class RoundExecutor:
    def __init__(
        self,
        graph: ModelGraph,
        input_index_map: Mapping[int, int],
        training: Iterable[Record],
        validation: Iterable[Record],
    ) -> None:
        self.graph = graph
        self.training = training
        self.validation = validation
        self.state = RoundState.WAITING_FOR_SNAPSHOT
        # positions inside Record.categorical, resolved once and reused every round
        try:
            self._embed_positions = [input_index_map[cid] for cid in graph.embed_column_ids]
            self._wide_positions = [input_index_map[cid] for cid in graph.wide_column_ids]
        except KeyError as exc:
            raise ValueError(f"Graph references column {exc.args[0]} that is not a selected input column.") from exc

    def _embed_inputs(self, record: Record) -> list[SparseInput]:
        return [record.categorical[pos] for pos in self._embed_positions]

    def _wide_inputs(self, record: Record) -> list[SparseInput]:
        return [record.categorical[pos] for pos in self._wide_positions]

    def predict(self, record: Record) -> float:
        return sigmoid(self.graph.forward(record.dense, self._embed_inputs(record), self._wide_inputs(record)))

    def execute(self, round_index: int, snapshot: Mapping[str, Any] | None) -> RoundResult:
        """Run one round; the first round and any round without a snapshot only return an empty result."""
        if round_index <= 1 or snapshot is None:
            logger.info("phase=round_skipped round=%d state=%s reason=no_global_model", round_index, self.state.value)
            return RoundResult.empty(round_index)

        started = perf_counter()
        self.graph.update_weights(snapshot)
        self.state = RoundState.COMPUTING

        train_count, train_error = 0, 0.0
        for record in self.training:
            error = self.predict(record) - record.label
            train_error += record.weight * error * error
            self.graph.backward(error, record.weight)
            train_count += 1

        valid_count, valid_error = 0, 0.0
        for record in self.validation:
            error = self.predict(record) - record.label
            valid_error += record.weight * error * error
            valid_count += 1

        result = RoundResult(
            round_index=round_index,
            training_count=train_count,
            validation_count=valid_count,
            training_error=train_error,
            validation_error=valid_error,
            gradients=self.graph.gradients(),
        )
        self.state = RoundState.WAITING_FOR_SNAPSHOT
        logger.info(
            "phase=round_computed round=%d train_count=%d valid_count=%d train_error=%.6f valid_error=%.6f "
            "elapsed_seconds=%.2f",
            round_index,
            train_count,
            valid_count,
            train_error,
            valid_error,
            perf_counter() - started,
        )
        return result
