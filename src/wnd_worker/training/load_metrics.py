from __future__ import annotations

from dataclasses import asdict, dataclass

from wnd_worker.sampling.shard_assigner import ShardDecision


@dataclass(frozen=True)
class LoadSummary:
    read_count: int
    sampled_count: int
    dropped_negative_count: int
    positive_train_count: int
    negative_train_count: int
    positive_validation_count: int
    negative_validation_count: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    @property
    def train_count(self) -> int:
        return self.positive_train_count + self.negative_train_count

    @property
    def validation_count(self) -> int:
        return self.positive_validation_count + self.negative_validation_count


@dataclass
class LoadMetrics:
    """Class-balance counters, written only by the load phase."""

    read_count: int = 0
    sampled_count: int = 0
    dropped_negative_count: int = 0
    positive_train_count: int = 0
    negative_train_count: int = 0
    positive_validation_count: int = 0
    negative_validation_count: int = 0

    def record_read(self) -> int:
        self.read_count += 1
        return self.read_count

    def record_dropped(self) -> None:
        self.dropped_negative_count += 1

    def record_decision(self, decision: ShardDecision) -> None:
        self.sampled_count += 1
        if decision.is_training:
            if decision.is_positive:
                self.positive_train_count += 1
            else:
                self.negative_train_count += 1
        elif decision.is_positive:
            self.positive_validation_count += 1
        else:
            self.negative_validation_count += 1

    def summary(self) -> LoadSummary:
        return LoadSummary(**asdict(self))
