"""Runtime configuration parsing for the shard worker entrypoint."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_DELIMITER = "|"
DEFAULT_MEMORY_BUDGET_BYTES = 2 * 1024 * 1024 * 1024
RESUME_MODES = ("fresh", "lenient", "strict")
PROBLEM_TYPES = ("regression", "classification")
ACTIVATIONS = ("relu", "tanh", "sigmoid", "linear")


@dataclass(frozen=True)
class WorkerRuntimeConfig:
    delimiter: str = DEFAULT_DELIMITER
    column_config_path: Path | None = None
    train_data_paths: tuple[Path, ...] = ()
    validation_data_path: Path | None = None
    validation_rate: float = 0.2
    bagging_sample_rate: float = 1.0
    bagging_num: int = 1
    worker_index: int = 0
    num_kfold: int | None = None
    stratified_sample: bool = False
    fix_initial_input: bool = False
    up_sample_weight: float = 1.0
    sample_neg_only: bool = False
    problem_type: str = "regression"
    one_vs_all: bool = False
    sampling_seed: int = 0
    memory_budget_bytes: int = DEFAULT_MEMORY_BUDGET_BYTES
    memory_fraction: float = 0.6
    embed_column_ids: tuple[int, ...] = ()
    embed_outputs: int = 16
    hidden_nodes: tuple[int, ...] = (32, 16)
    activations: tuple[str, ...] = ("relu", "relu")
    l2_reg: float = 0.0
    load_manifest_dir: Path | None = None
    resume_mode: str = "lenient"
    status_update_seconds: int = 60
    load_log_every: int = 5000
    wandb_enabled: bool = False
    wandb_project: str = "wnd-worker"
    wandb_entity: str | None = None
    snapshot_path: Path | None = None
    round_index: int = 1
    output_dir: Path = Path("artifacts")

    @property
    def is_kfold(self) -> bool:
        return self.num_kfold is not None and self.num_kfold > 0

    @property
    def is_manual_validation(self) -> bool:
        return self.validation_data_path is not None

    @property
    def binary_sampling_eligible(self) -> bool:
        """Negative-only sampling and up-sampling apply to regression and one-vs-all only."""
        return self.problem_type == "regression" or (self.problem_type == "classification" and self.one_vs_all)

    def signature(self) -> dict[str, object]:
        """Knobs that decide which records land in which shard."""
        return {
            "delimiter": self.delimiter,
            "validation_rate": self.validation_rate,
            "validation_data_path": str(self.validation_data_path) if self.validation_data_path else None,
            "bagging_sample_rate": self.bagging_sample_rate,
            "bagging_num": self.bagging_num,
            "worker_index": self.worker_index,
            "num_kfold": self.num_kfold,
            "stratified_sample": self.stratified_sample,
            "fix_initial_input": self.fix_initial_input,
            "up_sample_weight": self.up_sample_weight,
            "sample_neg_only": self.sample_neg_only,
            "problem_type": self.problem_type,
            "one_vs_all": self.one_vs_all,
            "sampling_seed": self.sampling_seed,
        }

    def validate(self) -> "WorkerRuntimeConfig":
        if not self.delimiter:
            raise ValueError("Invalid WORKER_DELIMITER. Expected a non-empty string.")
        if not 0.0 <= self.validation_rate < 1.0:
            raise ValueError("Invalid VALID_SET_RATE. Expected a value within [0.0, 1.0).")
        if not 0.0 < self.bagging_sample_rate <= 1.0:
            raise ValueError("Invalid BAGGING_SAMPLE_RATE. Expected a value within (0.0, 1.0].")
        if self.bagging_num <= 0:
            raise ValueError("Invalid BAGGING_NUM. Expected positive integer.")
        if self.worker_index < 0:
            raise ValueError("Invalid TRAINER_ID. Expected non-negative integer.")
        if self.is_kfold:
            if self.worker_index >= int(self.num_kfold or 0):
                raise ValueError("Invalid TRAINER_ID. Expected a value below NUM_KFOLD when k-fold is enabled.")
        elif self.worker_index >= self.bagging_num:
            raise ValueError("Invalid TRAINER_ID. Expected a value below BAGGING_NUM.")
        if self.up_sample_weight < 1.0:
            raise ValueError("Invalid UP_SAMPLE_WEIGHT. Expected a value >= 1.0.")
        if self.problem_type not in PROBLEM_TYPES:
            raise ValueError("Invalid PROBLEM_TYPE. Expected one of: regression, classification.")
        if self.memory_budget_bytes <= 0:
            raise ValueError("Invalid WORKER_MEMORY_BYTES. Expected positive integer.")
        if not 0.0 < self.memory_fraction <= 1.0:
            raise ValueError("Invalid MEMORY_FRACTION. Expected a value within (0.0, 1.0].")
        if self.embed_outputs <= 0:
            raise ValueError("Invalid WND_EMBED_OUTPUTS. Expected positive integer.")
        if len(self.activations) != len(self.hidden_nodes):
            raise ValueError("Invalid WND_ACTIVATIONS. Expected one activation per WND_HIDDEN_NODES entry.")
        unknown = [name for name in self.activations if name not in ACTIVATIONS]
        if unknown:
            raise ValueError(f"Invalid WND_ACTIVATIONS {unknown}. Expected values from: {', '.join(ACTIVATIONS)}.")
        if any(nodes <= 0 for nodes in self.hidden_nodes):
            raise ValueError("Invalid WND_HIDDEN_NODES. Expected positive integers.")
        if self.resume_mode not in RESUME_MODES:
            raise ValueError("Invalid RESUME_MODE. Expected one of: fresh, lenient, strict.")
        if self.status_update_seconds <= 0:
            raise ValueError("Invalid STATUS_UPDATE_SECONDS. Expected positive integer.")
        if self.load_log_every <= 0:
            raise ValueError("Invalid LOAD_LOG_EVERY. Expected positive integer.")
        if self.sampling_seed < 0:
            raise ValueError("Invalid SAMPLING_SEED. Expected non-negative integer.")
        if self.round_index < 0:
            raise ValueError("Invalid ROUND_INDEX. Expected non-negative integer.")
        return self

    @classmethod
    def from_env(cls, *, require_inputs: bool = True) -> "WorkerRuntimeConfig":
        column_config_raw = os.getenv("COLUMN_CONFIG_PATH", "").strip()
        train_paths_raw = os.getenv("TRAIN_DATA_PATHS", "").strip()
        if require_inputs:
            column_config_raw = _required_env("COLUMN_CONFIG_PATH")
            train_paths_raw = _required_env("TRAIN_DATA_PATHS")
        train_data_paths = tuple(Path(item.strip()) for item in train_paths_raw.split(",") if item.strip())

        validation_path_raw = os.getenv("VALIDATION_DATA_PATH", "").strip()

        num_kfold_raw = os.getenv("NUM_KFOLD", "").strip()
        try:
            num_kfold = int(num_kfold_raw) if num_kfold_raw else None
        except ValueError as exc:
            raise ValueError("Invalid NUM_KFOLD. Expected integer.") from exc
        if num_kfold is not None and num_kfold <= 0:
            num_kfold = None

        problem_type = os.getenv("PROBLEM_TYPE", "regression").strip().lower() or "regression"

        memory_raw = os.getenv("WORKER_MEMORY_BYTES", "").strip()
        memory_budget_bytes = int(memory_raw) if memory_raw else _physical_memory_bytes()

        manifest_dir_raw = os.getenv("LOAD_MANIFEST_DIR", "").strip()
        snapshot_raw = os.getenv("SNAPSHOT_PATH", "").strip()

        activations = tuple(
            item.strip().lower() for item in os.getenv("WND_ACTIVATIONS", "relu,relu").split(",") if item.strip()
        )

        cfg = cls(
            delimiter=os.getenv("WORKER_DELIMITER", DEFAULT_DELIMITER) or DEFAULT_DELIMITER,
            column_config_path=Path(column_config_raw) if column_config_raw else None,
            train_data_paths=train_data_paths,
            validation_data_path=Path(validation_path_raw) if validation_path_raw else None,
            validation_rate=_float_env("VALID_SET_RATE", "0.2"),
            bagging_sample_rate=_float_env("BAGGING_SAMPLE_RATE", "1.0"),
            bagging_num=int(os.getenv("BAGGING_NUM", "1")),
            worker_index=int(os.getenv("TRAINER_ID", "0")),
            num_kfold=num_kfold,
            stratified_sample=_optional_bool_env("STRATIFIED_SAMPLE", default=False),
            fix_initial_input=_optional_bool_env("FIX_INITIAL_INPUT", default=False),
            up_sample_weight=_float_env("UP_SAMPLE_WEIGHT", "1.0"),
            sample_neg_only=_optional_bool_env("SAMPLE_NEG_ONLY", default=False),
            problem_type=problem_type,
            one_vs_all=_optional_bool_env("ONE_VS_ALL", default=False),
            sampling_seed=int(os.getenv("SAMPLING_SEED", "0")),
            memory_budget_bytes=memory_budget_bytes,
            memory_fraction=_float_env("MEMORY_FRACTION", "0.6"),
            embed_column_ids=_optional_int_list_env("WND_EMBED_COLUMN_IDS", default=()),
            embed_outputs=int(os.getenv("WND_EMBED_OUTPUTS", "16")),
            hidden_nodes=_optional_int_list_env("WND_HIDDEN_NODES", default=(32, 16)),
            activations=activations,
            l2_reg=_float_env("WND_L2_REG", "0.0"),
            load_manifest_dir=Path(manifest_dir_raw) if manifest_dir_raw else None,
            resume_mode=os.getenv("RESUME_MODE", "lenient").strip().lower() or "lenient",
            status_update_seconds=int(os.getenv("STATUS_UPDATE_SECONDS", "60")),
            load_log_every=int(os.getenv("LOAD_LOG_EVERY", "5000")),
            wandb_enabled=_optional_bool_env("WANDB_ENABLED", default=False),
            wandb_project=os.getenv("WANDB_PROJECT", "wnd-worker"),
            wandb_entity=os.getenv("WANDB_ENTITY"),
            snapshot_path=Path(snapshot_raw) if snapshot_raw else None,
            round_index=int(os.getenv("ROUND_INDEX", "1")),
            output_dir=Path(os.getenv("WORKER_OUTPUT_DIR", "artifacts")),
        )
        return cfg.validate()


def _physical_memory_bytes() -> int:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return DEFAULT_MEMORY_BUDGET_BYTES
    if pages <= 0 or page_size <= 0:
        return DEFAULT_MEMORY_BUDGET_BYTES
    return int(pages) * int(page_size)


def _required_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _float_env(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid {name} value {value!r}: must be a valid float") from exc


def _optional_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"Invalid {name} value {value!r}: expected one of true/false, yes/no, on/off, 1/0.")


def _optional_int_list_env(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return tuple(int(item.strip()) for item in value.split(",") if item.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name} value {value!r}: expected comma-separated integers.") from exc
