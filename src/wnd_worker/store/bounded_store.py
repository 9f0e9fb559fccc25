from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from wnd_worker.data.record_codec import Record
from wnd_worker.runtime.config import WorkerRuntimeConfig
from wnd_worker.sampling.shard_assigner import Shard, ShardPolicy, resolve_policy

logger = logging.getLogger(__name__)

# Rough per-object costs of a stored record: the Record itself, its dense array header,
# and one SparseInput per categorical column.
RECORD_OVERHEAD_BYTES = 152
DENSE_HEADER_BYTES = 112
SPARSE_INPUT_BYTES = 64
MANUAL_TRAINING_SHARE = 0.6


def estimate_record_bytes(record: Record) -> int:
    return (
        RECORD_OVERHEAD_BYTES
        + DENSE_HEADER_BYTES
        + int(record.dense.nbytes)
        + SPARSE_INPUT_BYTES * len(record.categorical)
    )


class BoundedRecordList:
    """Append-only record list whose estimated size never exceeds ``max_bytes``.

    Once an append would cross the ceiling the list is sealed: that record and
    every later one is dropped, while ``offered`` keeps counting.
    """

    def __init__(self, max_bytes: int, name: str = "records") -> None:
        if max_bytes < 0:
            raise ValueError(f"max_bytes must be non-negative, got {max_bytes}")
        self.max_bytes = int(max_bytes)
        self.name = name
        self._records: list[Record] = []
        self._bytes = 0
        self._offered = 0
        self._full = False

    def append(self, record: Record) -> bool:
        self._offered += 1
        if self._full:
            return False
        size = estimate_record_bytes(record)
        if self._bytes + size > self.max_bytes:
            self._full = True
            logger.warning(
                "phase=record_store_full store=%s max_bytes=%d used_bytes=%d accepted=%d",
                self.name,
                self.max_bytes,
                self._bytes,
                len(self._records),
            )
            return False
        self._records.append(record)
        self._bytes += size
        return True

    @property
    def accepted(self) -> int:
        return len(self._records)

    @property
    def offered(self) -> int:
        return self._offered

    @property
    def rejected(self) -> int:
        return self._offered - len(self._records)

    @property
    def estimated_bytes(self) -> int:
        return self._bytes

    @property
    def is_full(self) -> bool:
        return self._full

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def stats(self) -> dict[str, int]:
        return {
            "offered": self.offered,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "estimated_bytes": self.estimated_bytes,
            "max_bytes": self.max_bytes,
        }


@dataclass(frozen=True)
class StoreBudget:
    training_bytes: int
    validation_bytes: int


def compute_store_budget(cfg: WorkerRuntimeConfig) -> StoreBudget:
    """Split the in-memory budget between the two stores.

    K-fold sizes validation by fold count even when a manual validation path is
    also set, since k-fold wins the policy; rate and manual splits size by their
    own shares.
    """
    total = cfg.memory_budget_bytes * cfg.memory_fraction
    policy = resolve_policy(cfg)
    if policy is ShardPolicy.KFOLD:
        validation_share = 1.0 / float(cfg.num_kfold or 1)
    elif policy is ShardPolicy.MANUAL:
        validation_share = 1.0 - MANUAL_TRAINING_SHARE
    elif policy is ShardPolicy.RANDOM_SPLIT:
        validation_share = cfg.validation_rate
    else:
        validation_share = 0.0
    return StoreBudget(
        training_bytes=int(total * (1.0 - validation_share)),
        validation_bytes=int(total * validation_share),
    )


class BoundedRecordStore:
    def __init__(self, budget: StoreBudget) -> None:
        self.training = BoundedRecordList(budget.training_bytes, name="training")
        self.validation = BoundedRecordList(budget.validation_bytes, name="validation")

    @classmethod
    def from_config(cls, cfg: WorkerRuntimeConfig) -> "BoundedRecordStore":
        budget = compute_store_budget(cfg)
        logger.info(
            "phase=record_store_sized memory_budget_bytes=%d memory_fraction=%s training_bytes=%d validation_bytes=%d",
            cfg.memory_budget_bytes,
            cfg.memory_fraction,
            budget.training_bytes,
            budget.validation_bytes,
        )
        return cls(budget)

    def for_shard(self, shard: Shard) -> BoundedRecordList:
        return self.training if shard is Shard.TRAINING else self.validation

    def append(self, shard: Shard, record: Record) -> bool:
        return self.for_shard(shard).append(record)

    def stats(self) -> dict[str, dict[str, int]]:
        return {"training": self.training.stats(), "validation": self.validation.stats()}
