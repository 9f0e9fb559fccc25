from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from wnd_worker.runtime.config import WorkerRuntimeConfig
from wnd_worker.training import round_observability
from wnd_worker.training.load_metrics import LoadSummary
from wnd_worker.training.round_executor import RoundResult


class RoundObservabilityTests(unittest.TestCase):
    def test_init_run_tags_worker_and_signature(self) -> None:
        cfg = WorkerRuntimeConfig(worker_index=2, bagging_num=4, wandb_project="proj")
        fake_wandb = MagicMock()
        with patch.object(round_observability, "wandb", fake_wandb):
            round_observability.init_wandb_run(cfg, "abc123")

        fake_wandb.login.assert_called_once_with()
        kwargs = fake_wandb.init.call_args.kwargs
        self.assertEqual(kwargs["project"], "proj")
        self.assertEqual(kwargs["name"], "worker-2")
        self.assertEqual(kwargs["group"], "bagging_4")
        self.assertEqual(kwargs["config"]["schema_hash"], "abc123")
        self.assertEqual(kwargs["config"]["worker_index"], 2)

    def test_load_metrics_are_prefixed_by_worker(self) -> None:
        summary = LoadSummary(10, 9, 1, 3, 4, 1, 1)
        fake_wandb = MagicMock()
        with patch.object(round_observability, "wandb", fake_wandb):
            round_observability.log_load_observability(1, summary, {"training": {"accepted": 7, "offered": 7}})

        payload = fake_wandb.log.call_args.args[0]
        self.assertEqual(payload["worker/1/load/read_count"], 10)
        self.assertEqual(payload["worker/1/load/dropped_negative_count"], 1)
        self.assertEqual(payload["worker/1/store/training/accepted"], 7)

    def test_round_metrics_use_round_as_step(self) -> None:
        result = RoundResult(round_index=5, training_count=4, validation_count=2, training_error=2.0, validation_error=0.5)
        fake_wandb = MagicMock()
        with patch.object(round_observability, "wandb", fake_wandb):
            round_observability.log_round_observability(0, result)

        payload = fake_wandb.log.call_args.args[0]
        self.assertEqual(fake_wandb.log.call_args.kwargs["step"], 5)
        self.assertEqual(payload["worker/0/mean_training_error"], 0.5)
        self.assertEqual(payload["worker/0/mean_validation_error"], 0.25)


if __name__ == "__main__":
    unittest.main()
