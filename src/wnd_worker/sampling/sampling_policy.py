from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy.stats import poisson

from wnd_worker.data.record_codec import DecodedLine, Record
from wnd_worker.runtime.config import WorkerRuntimeConfig

logger = logging.getLogger(__name__)

# Labels within this distance of 1.0 (resp. 0.0) are the positive (resp. negative) class everywhere.
CLASS_EPSILON = 0.01
HASH_BUCKETS = 100

NEGATIVE_SAMPLING_STREAM = 1
UP_SAMPLING_STREAM = 2
VALIDATION_SPLIT_STREAM = 100


def is_positive(label: float) -> bool:
    return abs(label - 1.0) < CLASS_EPSILON


def is_negative(label: float) -> bool:
    return abs(label) < CLASS_EPSILON


def class_value(label: float) -> int:
    return int(math.floor(label + CLASS_EPSILON))


def class_stream_key(class_key: int) -> int:
    """Zigzag-encode a class key (0, -1, 1, -2, ... -> 0, 1, 2, 3, ...) so it can sit in a spawn key."""
    return 2 * class_key if class_key >= 0 else -2 * class_key - 1


def worker_rng(seed: int, worker_index: int, stream: int, *substreams: int) -> np.random.Generator:
    """Generator that depends only on (seed, worker, stream, substreams) so a restarted worker replays the same draws."""
    return np.random.default_rng(np.random.SeedSequence(entropy=seed, spawn_key=(worker_index, stream, *substreams)))


@dataclass(frozen=True)
class HashWindow:
    """``[start, end)`` over ``fingerprint % 100``; an ``end`` past 100 wraps to the front."""

    start: int
    end: int

    @classmethod
    def for_worker(cls, bagging_num: int, worker_index: int, rate: float) -> "HashWindow":
        if bagging_num <= 0:
            raise ValueError("bagging_num must be positive")
        start = (HASH_BUCKETS // bagging_num) * worker_index
        # rate * 100 is floored with a small tolerance so 0.2 -> 20 instead of 19.999...
        width = int(math.floor(rate * HASH_BUCKETS + 1e-9))
        return cls(start=start, end=start + width)

    def buckets(self) -> set[int]:
        return {bucket for bucket in range(HASH_BUCKETS) if self.contains_bucket(bucket)}

    def contains_bucket(self, bucket: int) -> bool:
        if self.end <= HASH_BUCKETS:
            return self.start <= bucket < self.end
        return bucket >= self.start or bucket < (self.end % HASH_BUCKETS)

    def contains(self, fingerprint: int) -> bool:
        return self.contains_bucket(fingerprint % HASH_BUCKETS)


class NegativeDownSampler:
    def __init__(
        self,
        *,
        enabled: bool,
        bagging_sample_rate: float,
        bagging_num: int = 1,
        worker_index: int = 0,
        fix_initial_input: bool = False,
        seed: int = 0,
    ) -> None:
        self.enabled = enabled
        self.bagging_sample_rate = bagging_sample_rate
        self.fix_initial_input = fix_initial_input
        self.window = HashWindow.for_worker(bagging_num, worker_index, 1.0 - bagging_sample_rate)
        self._rng = worker_rng(seed, worker_index, NEGATIVE_SAMPLING_STREAM)

    @classmethod
    def from_config(cls, cfg: WorkerRuntimeConfig) -> "NegativeDownSampler":
        return cls(
            enabled=cfg.sample_neg_only and cfg.binary_sampling_eligible,
            bagging_sample_rate=cfg.bagging_sample_rate,
            bagging_num=cfg.bagging_num,
            worker_index=cfg.worker_index,
            fix_initial_input=cfg.fix_initial_input,
            seed=cfg.sampling_seed,
        )

    def should_drop(self, label: float, fingerprint: int) -> bool:
        if not self.enabled or not is_negative(label):
            return False
        if self.fix_initial_input:
            return self.window.contains(fingerprint)
        return float(self._rng.random()) > self.bagging_sample_rate


class PositiveUpSampler:
    def __init__(self, *, up_sample_weight: float, enabled: bool = True, seed: int = 0, worker_index: int = 0) -> None:
        if up_sample_weight < 1.0:
            raise ValueError(f"up_sample_weight must be >= 1.0, got {up_sample_weight}")
        self.enabled = enabled and up_sample_weight != 1.0
        self.up_sample_weight = up_sample_weight
        self._dist = poisson(mu=up_sample_weight - 1.0)
        self._rng = worker_rng(seed, worker_index, UP_SAMPLING_STREAM)
        if self.enabled:
            logger.info("phase=up_sampling_enabled up_sample_weight=%s", up_sample_weight)

    @classmethod
    def from_config(cls, cfg: WorkerRuntimeConfig) -> "PositiveUpSampler":
        return cls(
            up_sample_weight=cfg.up_sample_weight,
            enabled=cfg.binary_sampling_eligible,
            seed=cfg.sampling_seed,
            worker_index=cfg.worker_index,
        )

    def multiplier(self) -> int:
        # + 1 keeps the multiplier strictly positive
        return int(self._dist.rvs(random_state=self._rng)) + 1

    def apply(self, record: Record) -> Record:
        if not self.enabled or not is_positive(record.label):
            return record
        return record.with_weight(record.weight * self.multiplier())


class SamplingPolicy:
    """Filters run ahead of shard assignment: drop sampled-out negatives, then up-weight positives."""

    def __init__(self, down_sampler: NegativeDownSampler, up_sampler: PositiveUpSampler) -> None:
        self.down_sampler = down_sampler
        self.up_sampler = up_sampler

    @classmethod
    def from_config(cls, cfg: WorkerRuntimeConfig) -> "SamplingPolicy":
        return cls(NegativeDownSampler.from_config(cfg), PositiveUpSampler.from_config(cfg))

    def apply(self, decoded: DecodedLine) -> Record | None:
        if self.down_sampler.should_drop(decoded.record.label, decoded.fingerprint):
            return None
        return self.up_sampler.apply(decoded.record)
