"""Deterministic train/validation placement of decoded records.

Exactly one policy is active for a job and it is fixed when the assigner is
built: k-fold, manual (pre-labelled validation path), random or stratified
split, or train-only. ``classify`` never touches stores or counters; the
caller applies the returned decision.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

import numpy as np

from wnd_worker.runtime.config import WorkerRuntimeConfig
from wnd_worker.sampling.sampling_policy import (
    VALIDATION_SPLIT_STREAM,
    HashWindow,
    class_stream_key,
    class_value,
    is_positive,
    worker_rng,
)

logger = logging.getLogger(__name__)


class Shard(enum.Enum):
    TRAINING = "training"
    VALIDATION = "validation"


class ShardPolicy(enum.Enum):
    KFOLD = "kfold"
    MANUAL = "manual"
    RANDOM_SPLIT = "random_split"
    TRAIN_ONLY = "train_only"


@dataclass(frozen=True)
class ShardDecision:
    shard: Shard
    is_positive: bool

    @property
    def is_training(self) -> bool:
        return self.shard is Shard.TRAINING


def resolve_policy(cfg: WorkerRuntimeConfig) -> ShardPolicy:
    if cfg.is_kfold:
        return ShardPolicy.KFOLD
    if cfg.is_manual_validation:
        return ShardPolicy.MANUAL
    if cfg.validation_rate > 0.0:
        return ShardPolicy.RANDOM_SPLIT
    return ShardPolicy.TRAIN_ONLY


class ShardAssigner:
    def __init__(
        self,
        policy: ShardPolicy,
        *,
        worker_index: int = 0,
        num_kfold: int | None = None,
        validation_rate: float = 0.0,
        bagging_num: int = 1,
        fix_initial_input: bool = False,
        stratified: bool = False,
        seed: int = 0,
    ) -> None:
        if policy is ShardPolicy.KFOLD:
            if not num_kfold or num_kfold <= 0:
                raise ValueError("k-fold policy requires a positive num_kfold")
            if not 0 <= worker_index < num_kfold:
                raise ValueError(f"worker_index {worker_index} must be within [0, {num_kfold}) for k-fold")
        if policy is ShardPolicy.RANDOM_SPLIT and not 0.0 < validation_rate < 1.0:
            raise ValueError(f"random split needs a validation rate within (0, 1), got {validation_rate}")
        self.policy = policy
        self.worker_index = worker_index
        self.num_kfold = num_kfold
        self.validation_rate = validation_rate
        self.fix_initial_input = fix_initial_input
        self.stratified = stratified
        self.seed = seed
        self.window = HashWindow.for_worker(bagging_num, worker_index, validation_rate)
        self._generators: dict[int, np.random.Generator] = {}

    @classmethod
    def from_config(cls, cfg: WorkerRuntimeConfig) -> "ShardAssigner":
        policy = resolve_policy(cfg)
        logger.info(
            "phase=shard_policy_selected policy=%s worker_index=%d validation_rate=%s num_kfold=%s "
            "stratified=%s fix_initial_input=%s",
            policy.value,
            cfg.worker_index,
            cfg.validation_rate,
            cfg.num_kfold,
            cfg.stratified_sample,
            cfg.fix_initial_input,
        )
        return cls(
            policy,
            worker_index=cfg.worker_index,
            num_kfold=cfg.num_kfold,
            validation_rate=cfg.validation_rate,
            bagging_num=cfg.bagging_num,
            fix_initial_input=cfg.fix_initial_input,
            stratified=cfg.stratified_sample,
            seed=cfg.sampling_seed,
        )

    def _generator(self, label: float) -> np.random.Generator:
        key = class_value(label) if self.stratified else 0
        generator = self._generators.get(key)
        if generator is None:
            generator = worker_rng(self.seed, self.worker_index, VALIDATION_SPLIT_STREAM, class_stream_key(key))
            self._generators[key] = generator
        return generator

    def _shard(self, label: float, fingerprint: int, is_validation: bool) -> Shard:
        if self.policy is ShardPolicy.KFOLD:
            return Shard.VALIDATION if fingerprint % int(self.num_kfold or 1) == self.worker_index else Shard.TRAINING
        if self.policy is ShardPolicy.MANUAL:
            return Shard.VALIDATION if is_validation else Shard.TRAINING
        if self.policy is ShardPolicy.RANDOM_SPLIT:
            if self.fix_initial_input:
                return Shard.VALIDATION if self.window.contains(fingerprint) else Shard.TRAINING
            draw = float(self._generator(label).random())
            return Shard.TRAINING if draw >= self.validation_rate else Shard.VALIDATION
        return Shard.TRAINING

    def classify(self, label: float, fingerprint: int, is_validation: bool = False) -> ShardDecision:
        return ShardDecision(shard=self._shard(label, fingerprint, is_validation), is_positive=is_positive(label))
