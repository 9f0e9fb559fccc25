from __future__ import annotations

import math
import random
import unittest

import numpy as np

from wnd_worker.data.record_codec import Record, SparseInput
from wnd_worker.training.round_executor import MAX_EXP, RoundExecutor, RoundResult, RoundState, sigmoid
from wnd_worker.training.wide_and_deep import WideAndDeep


class _RecordingGraph:
    """Constant-logit graph that records every call made by the executor."""

    def __init__(self, logit: float = 0.0, embed_column_ids=(), wide_column_ids=()) -> None:
        self.logit = logit
        self.embed_column_ids = list(embed_column_ids)
        self.wide_column_ids = list(wide_column_ids)
        self.forward_calls: list[tuple] = []
        self.backward_calls: list[tuple[float, float]] = []
        self.snapshots: list[dict] = []

    def forward(self, dense, embed_inputs, wide_inputs) -> float:
        self.forward_calls.append((np.array(dense), list(embed_inputs), list(wide_inputs)))
        return self.logit

    def backward(self, error: float, weight: float) -> None:
        self.backward_calls.append((error, weight))

    def update_weights(self, snapshot) -> None:
        self.snapshots.append(dict(snapshot))

    def gradients(self) -> dict[str, np.ndarray]:
        return {"bias": np.array([sum(e * w for e, w in self.backward_calls)])}

    def zero_gradients(self) -> None:
        self.backward_calls.clear()

    def weights(self) -> dict[str, np.ndarray]:
        return {"bias": np.zeros(1)}


def _record(label: float, weight: float = 1.0, dense=(0.5, -0.5), categorical=()) -> Record:
    return Record(dense=np.asarray(dense, dtype=np.float32), categorical=categorical, label=label, weight=weight)


class SigmoidTests(unittest.TestCase):
    def test_midpoint_and_saturation(self) -> None:
        self.assertEqual(sigmoid(0.0), 0.5)
        self.assertAlmostEqual(sigmoid(1000.0), 1.0)

    def test_extreme_negative_logits_are_clamped(self) -> None:
        self.assertEqual(sigmoid(-1000.0), 1.0 / (1.0 + MAX_EXP))
        self.assertEqual(sigmoid(-50.0), 1.0 / (1.0 + MAX_EXP))
        self.assertGreater(sigmoid(-1e308), 0.0)
        self.assertTrue(math.isfinite(sigmoid(-1e308)))


class RoundExecutorTests(unittest.TestCase):
    def test_first_round_is_a_no_op(self) -> None:
        graph = _RecordingGraph()
        executor = RoundExecutor(graph, {}, [_record(1.0)], [_record(0.0)])

        for round_index in (0, 1):
            result = executor.execute(round_index, {"bias": [1.0]})
            self.assertTrue(result.is_empty)
            self.assertEqual(result.round_index, round_index)
        self.assertEqual(graph.snapshots, [])
        self.assertEqual(graph.forward_calls, [])
        self.assertIs(executor.state, RoundState.WAITING_FOR_SNAPSHOT)

    def test_missing_snapshot_is_a_no_op(self) -> None:
        graph = _RecordingGraph()
        executor = RoundExecutor(graph, {}, [_record(1.0)], [])
        self.assertEqual(executor.execute(4, None), RoundResult.empty(4))
        self.assertEqual(graph.forward_calls, [])

    def test_first_round_leaves_real_graph_weights_unchanged(self) -> None:
        graph = WideAndDeep(num_inputs=2, category_sizes={}, embed_column_ids=(), wide_column_ids=(), seed=3)
        before = graph.weights()
        zeros = {name: np.zeros_like(value) for name, value in before.items()}
        RoundExecutor(graph, {}, [_record(1.0)], []).execute(1, zeros)
        after = graph.weights()
        for name, value in before.items():
            np.testing.assert_array_equal(after[name], value)

    def test_round_accumulates_weighted_errors(self) -> None:
        graph = _RecordingGraph(logit=0.0)
        training = [_record(1.0, weight=2.0), _record(0.0, weight=1.0)]
        validation = [_record(1.0, weight=4.0)]
        executor = RoundExecutor(graph, {}, training, validation)

        result = executor.execute(2, {"bias": [0.0]})

        self.assertEqual(result.training_count, 2)
        self.assertEqual(result.validation_count, 1)
        self.assertAlmostEqual(result.training_error, 2.0 * 0.25 + 1.0 * 0.25)
        self.assertAlmostEqual(result.validation_error, 4.0 * 0.25)
        self.assertEqual(graph.backward_calls, [(-0.5, 2.0), (0.5, 1.0)])
        self.assertEqual(len(graph.forward_calls), 3)
        self.assertEqual(graph.snapshots, [{"bias": [0.0]}])
        self.assertAlmostEqual(result.mean_training_error, 0.375)
        self.assertIs(executor.state, RoundState.WAITING_FOR_SNAPSHOT)

    def test_sparse_inputs_are_routed_by_column_id(self) -> None:
        graph = _RecordingGraph(embed_column_ids=[7], wide_column_ids=[5, 7])
        record = _record(1.0, categorical=(SparseInput(5, 1), SparseInput(7, 3)))
        executor = RoundExecutor(graph, {5: 0, 7: 1}, [record], [])
        executor.execute(2, {})
        _dense, embed_inputs, wide_inputs = graph.forward_calls[0]
        self.assertEqual(embed_inputs, [SparseInput(7, 3)])
        self.assertEqual(wide_inputs, [SparseInput(5, 1), SparseInput(7, 3)])

    def test_unknown_graph_column_is_rejected(self) -> None:
        graph = _RecordingGraph(wide_column_ids=[9])
        with self.assertRaises(ValueError):
            RoundExecutor(graph, {5: 0}, [], [])

    def test_gradient_sum_does_not_depend_on_record_order(self) -> None:
        rng = np.random.default_rng(0)
        records = [
            _record(float(idx % 2), weight=float(rng.uniform(0.5, 2.0)), dense=rng.normal(size=3),
                    categorical=(SparseInput(3, int(rng.integers(0, 4))),))
            for idx in range(40)
        ]
        shuffled = list(records)
        random.Random(1).shuffle(shuffled)

        def run(training: list[Record]) -> RoundResult:
            graph = WideAndDeep(
                num_inputs=3,
                category_sizes={3: 4},
                embed_column_ids=[3],
                wide_column_ids=[3],
                embed_outputs=2,
                hidden_nodes=(4,),
                activations=("tanh",),
                seed=5,
            )
            return RoundExecutor(graph, {3: 0}, training, []).execute(2, graph.weights())

        first, second = run(records), run(shuffled)
        self.assertAlmostEqual(first.training_error, second.training_error, places=9)
        for name, grad in first.gradients.items():
            np.testing.assert_allclose(second.gradients[name], grad, rtol=1e-9, atol=1e-12)

    def test_payload_flattens_gradients(self) -> None:
        result = RoundResult(round_index=3, training_count=1, gradients={"w": np.ones((2, 2))})
        payload = result.to_payload()
        self.assertEqual(payload["gradients"], {"w": [1.0, 1.0, 1.0, 1.0]})
        self.assertEqual(payload["round_index"], 3)


if __name__ == "__main__":
    unittest.main()
