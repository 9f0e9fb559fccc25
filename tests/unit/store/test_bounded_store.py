from __future__ import annotations

import unittest
from pathlib import Path

import numpy as np

from wnd_worker.data.record_codec import Record, SparseInput
from wnd_worker.runtime.config import WorkerRuntimeConfig
from wnd_worker.sampling.shard_assigner import Shard
from wnd_worker.store.bounded_store import (
    BoundedRecordList,
    BoundedRecordStore,
    StoreBudget,
    compute_store_budget,
    estimate_record_bytes,
)


def _record(num_dense: int = 4, num_categorical: int = 1) -> Record:
    return Record(
        dense=np.ones(num_dense, dtype=np.float32),
        categorical=tuple(SparseInput(column_num=idx, index=0) for idx in range(num_categorical)),
        label=0.0,
    )


class BoundedRecordListTests(unittest.TestCase):
    def test_accepts_until_ceiling_then_seals(self) -> None:
        size = estimate_record_bytes(_record())
        records = BoundedRecordList(max_bytes=3 * size + size // 2, name="training")

        with self.assertLogs("wnd_worker.store.bounded_store", level="WARNING") as logs:
            results = [records.append(_record()) for _ in range(10)]

        self.assertEqual(results, [True, True, True] + [False] * 7)
        self.assertEqual(records.accepted, 3)
        self.assertEqual(records.offered, 10)
        self.assertEqual(records.rejected, 7)
        self.assertTrue(records.is_full)
        self.assertLessEqual(records.estimated_bytes, records.max_bytes)
        self.assertEqual(len(logs.output), 1)
        self.assertIn("phase=record_store_full", logs.output[0])

    def test_sealed_list_rejects_smaller_records_too(self) -> None:
        big = _record(num_dense=64)
        small = _record(num_dense=1, num_categorical=0)
        records = BoundedRecordList(max_bytes=estimate_record_bytes(big) + estimate_record_bytes(small) - 1)
        self.assertTrue(records.append(big))
        with self.assertLogs("wnd_worker.store.bounded_store", level="WARNING"):
            self.assertFalse(records.append(big))
        self.assertFalse(records.append(small))
        self.assertEqual(len(records), 1)

    def test_zero_budget_accepts_nothing(self) -> None:
        records = BoundedRecordList(max_bytes=0)
        with self.assertLogs("wnd_worker.store.bounded_store", level="WARNING"):
            self.assertFalse(records.append(_record()))
        self.assertEqual(records.stats()["offered"], 1)
        self.assertEqual(list(records), [])

    def test_negative_budget_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            BoundedRecordList(max_bytes=-1)


class StoreBudgetTests(unittest.TestCase):
    def test_random_split_budget_follows_validation_rate(self) -> None:
        budget = compute_store_budget(
            WorkerRuntimeConfig(memory_budget_bytes=1000, memory_fraction=0.5, validation_rate=0.2)
        )
        self.assertAlmostEqual(budget.training_bytes, 400, delta=1)
        self.assertAlmostEqual(budget.validation_bytes, 100, delta=1)

    def test_manual_validation_budget_is_fixed_split(self) -> None:
        budget = compute_store_budget(
            WorkerRuntimeConfig(
                memory_budget_bytes=1000,
                memory_fraction=0.5,
                validation_rate=0.2,
                validation_data_path=Path("valid.psv"),
            )
        )
        self.assertAlmostEqual(budget.training_bytes, 300, delta=1)
        self.assertAlmostEqual(budget.validation_bytes, 200, delta=1)

    def test_kfold_budget_reserves_one_fold(self) -> None:
        budget = compute_store_budget(
            WorkerRuntimeConfig(memory_budget_bytes=1000, memory_fraction=0.5, num_kfold=4, bagging_num=4)
        )
        self.assertEqual((budget.training_bytes, budget.validation_bytes), (375, 125))

    def test_kfold_budget_ignores_manual_validation_path(self) -> None:
        budget = compute_store_budget(
            WorkerRuntimeConfig(
                memory_budget_bytes=1000,
                memory_fraction=0.5,
                num_kfold=4,
                bagging_num=4,
                validation_data_path=Path("valid.psv"),
            )
        )
        self.assertEqual((budget.training_bytes, budget.validation_bytes), (375, 125))

    def test_train_only_budget_has_no_validation_store(self) -> None:
        budget = compute_store_budget(
            WorkerRuntimeConfig(memory_budget_bytes=1000, memory_fraction=0.5, validation_rate=0.0)
        )
        self.assertEqual((budget.training_bytes, budget.validation_bytes), (500, 0))


class BoundedRecordStoreTests(unittest.TestCase):
    def test_append_routes_by_shard(self) -> None:
        store = BoundedRecordStore(StoreBudget(training_bytes=10_000, validation_bytes=10_000))
        store.append(Shard.TRAINING, _record())
        store.append(Shard.TRAINING, _record())
        store.append(Shard.VALIDATION, _record())
        self.assertEqual(len(store.training), 2)
        self.assertEqual(len(store.validation), 1)
        stats = store.stats()
        self.assertEqual(stats["training"]["accepted"], 2)
        self.assertEqual(stats["validation"]["offered"], 1)

    def test_full_validation_store_does_not_block_training(self) -> None:
        size = estimate_record_bytes(_record())
        store = BoundedRecordStore(StoreBudget(training_bytes=10 * size, validation_bytes=size))
        with self.assertLogs("wnd_worker.store.bounded_store", level="WARNING"):
            for _ in range(3):
                store.append(Shard.VALIDATION, _record())
        self.assertTrue(store.append(Shard.TRAINING, _record()))
        self.assertEqual(store.validation.accepted, 1)
        self.assertEqual(store.validation.offered, 3)


if __name__ == "__main__":
    unittest.main()
