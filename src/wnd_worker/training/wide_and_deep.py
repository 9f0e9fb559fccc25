"""Reference numpy wide-and-deep graph implementing :class:`ModelGraph`.

Wide part: one weight vector per categorical column, indexed by category.
Deep part: dense values concatenated with one embedding per embed column,
fed through fully connected hidden layers to a single logit. The record
logit is the sum of both parts.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import numpy as np

from wnd_worker.contracts.column_schema import ColumnSchema
from wnd_worker.data.record_codec import SparseInput
from wnd_worker.runtime.config import WorkerRuntimeConfig

logger = logging.getLogger(__name__)


def _activate(name: str, z: np.ndarray) -> np.ndarray:
    if name == "relu":
        return np.maximum(z, 0.0)
    if name == "tanh":
        return np.tanh(z)
    if name == "sigmoid":
        return 1.0 / (1.0 + np.exp(-np.clip(z, -60.0, 60.0)))
    if name == "linear":
        return z
    raise ValueError(f"Unsupported activation: {name}")


def _activation_grad(name: str, z: np.ndarray, a: np.ndarray) -> np.ndarray:
    if name == "relu":
        return (z > 0.0).astype(np.float64)
    if name == "tanh":
        return 1.0 - a * a
    if name == "sigmoid":
        return a * (1.0 - a)
    return np.ones_like(z)


def _is_bias(name: str) -> bool:
    return name.endswith(".b") or name == "wide.bias"


class WideAndDeep:
    def __init__(
        self,
        *,
        num_inputs: int,
        category_sizes: Mapping[int, int],
        embed_column_ids: Sequence[int],
        wide_column_ids: Sequence[int],
        embed_outputs: int = 16,
        hidden_nodes: Sequence[int] = (32, 16),
        activations: Sequence[str] = ("relu", "relu"),
        l2_reg: float = 0.0,
        seed: int = 0,
    ) -> None:
        if len(hidden_nodes) != len(activations):
            raise ValueError("hidden_nodes and activations must have the same length")
        missing = [cid for cid in [*embed_column_ids, *wide_column_ids] if cid not in category_sizes]
        if missing:
            raise ValueError(f"Columns {missing} are not selected categorical columns.")
        self.num_inputs = int(num_inputs)
        self._embed_column_ids = [int(cid) for cid in embed_column_ids]
        self._wide_column_ids = [int(cid) for cid in wide_column_ids]
        self.embed_outputs = int(embed_outputs)
        self.hidden_nodes = [int(nodes) for nodes in hidden_nodes]
        self.activations = list(activations)
        self.l2_reg = float(l2_reg)

        rng = np.random.default_rng(seed)
        params: dict[str, np.ndarray] = {}
        for cid in self._wide_column_ids:
            params[f"wide.{cid}.w"] = np.zeros(category_sizes[cid], dtype=np.float64)
        params["wide.bias"] = np.zeros(1, dtype=np.float64)
        for cid in self._embed_column_ids:
            params[f"embed.{cid}"] = rng.normal(0.0, 0.01, size=(category_sizes[cid], self.embed_outputs))

        fan_in = self.num_inputs + self.embed_outputs * len(self._embed_column_ids)
        for layer, fan_out in enumerate(self.hidden_nodes):
            limit = np.sqrt(6.0 / (fan_in + fan_out))
            params[f"dense.{layer}.w"] = rng.uniform(-limit, limit, size=(fan_in, fan_out))
            params[f"dense.{layer}.b"] = np.zeros(fan_out, dtype=np.float64)
            fan_in = fan_out
        limit = np.sqrt(6.0 / (fan_in + 1))
        params["final.w"] = rng.uniform(-limit, limit, size=fan_in)
        params["final.b"] = np.zeros(1, dtype=np.float64)

        self._params = params
        self._grads = {name: np.zeros_like(value) for name, value in params.items()}
        self._cache: dict[str, Any] | None = None

    @classmethod
    def from_config(cls, cfg: WorkerRuntimeConfig, schema: ColumnSchema) -> "WideAndDeep":
        # one extra slot per column for the missing/other category
        category_sizes = {col.column_num: len(col.bin_category) + 1 for col in schema.selected_categorical()}
        graph = cls(
            num_inputs=schema.numeric_input_count,
            category_sizes=category_sizes,
            embed_column_ids=cfg.embed_column_ids,
            wide_column_ids=schema.wide_column_ids(),
            embed_outputs=cfg.embed_outputs,
            hidden_nodes=cfg.hidden_nodes,
            activations=cfg.activations,
            l2_reg=cfg.l2_reg,
            seed=cfg.sampling_seed,
        )
        logger.info(
            "phase=graph_built num_inputs=%d embed_columns=%s wide_columns=%d hidden_nodes=%s parameters=%d",
            graph.num_inputs,
            graph.embed_column_ids,
            len(graph.wide_column_ids),
            graph.hidden_nodes,
            sum(value.size for value in graph._params.values()),
        )
        return graph

    @property
    def embed_column_ids(self) -> list[int]:
        return list(self._embed_column_ids)

    @property
    def wide_column_ids(self) -> list[int]:
        return list(self._wide_column_ids)

    def forward(
        self,
        dense: np.ndarray,
        embed_inputs: Sequence[SparseInput],
        wide_inputs: Sequence[SparseInput],
    ) -> float:
        params = self._params
        wide_logit = float(params["wide.bias"][0])
        for item in wide_inputs:
            wide_logit += float(params[f"wide.{item.column_num}.w"][item.index])

        parts = [np.asarray(dense, dtype=np.float64)]
        parts.extend(params[f"embed.{item.column_num}"][item.index] for item in embed_inputs)
        x = np.concatenate(parts) if parts else np.zeros(0)

        pre: list[np.ndarray] = []
        acts: list[np.ndarray] = [x]
        a = x
        for layer, name in enumerate(self.activations):
            z = a @ params[f"dense.{layer}.w"] + params[f"dense.{layer}.b"]
            a = _activate(name, z)
            pre.append(z)
            acts.append(a)
        deep_logit = float(a @ params["final.w"] + params["final.b"][0])

        self._cache = {"pre": pre, "acts": acts, "embed": list(embed_inputs), "wide": list(wide_inputs)}
        return wide_logit + deep_logit

    def backward(self, error: float, weight: float) -> None:
        if self._cache is None:
            raise RuntimeError("backward called before forward")
        cache, params, grads = self._cache, self._params, self._grads
        g = float(error) * float(weight)

        grads["wide.bias"][0] += g
        for item in cache["wide"]:
            grads[f"wide.{item.column_num}.w"][item.index] += g

        acts: list[np.ndarray] = cache["acts"]
        grads["final.w"] += g * acts[-1]
        grads["final.b"][0] += g
        delta = g * params["final.w"]
        for layer in reversed(range(len(self.activations))):
            delta_z = delta * _activation_grad(self.activations[layer], cache["pre"][layer], acts[layer + 1])
            grads[f"dense.{layer}.w"] += np.outer(acts[layer], delta_z)
            grads[f"dense.{layer}.b"] += delta_z
            delta = params[f"dense.{layer}.w"] @ delta_z

        offset = self.num_inputs
        for item in cache["embed"]:
            grads[f"embed.{item.column_num}"][item.index] += delta[offset : offset + self.embed_outputs]
            offset += self.embed_outputs
        self._cache = None

    def update_weights(self, snapshot: Mapping[str, Any]) -> None:
        for name, value in snapshot.items():
            if name not in self._params:
                raise ValueError(f"Snapshot parameter {name!r} is not part of this graph.")
            current = self._params[name]
            array = np.asarray(value, dtype=np.float64)
            if array.size != current.size:
                raise ValueError(
                    f"Snapshot parameter {name!r} has {array.size} values, expected {current.size}."
                )
            self._params[name] = array.reshape(current.shape).copy()
        self.zero_gradients()

    def gradients(self) -> dict[str, np.ndarray]:
        out: dict[str, np.ndarray] = {}
        for name, grad in self._grads.items():
            total = grad.copy()
            if self.l2_reg and not _is_bias(name):
                total += self.l2_reg * self._params[name]
            out[name] = total
        return out

    def zero_gradients(self) -> None:
        for grad in self._grads.values():
            grad.fill(0.0)
        self._cache = None

    def weights(self) -> dict[str, np.ndarray]:
        return {name: value.copy() for name, value in self._params.items()}
