"""Parse one delimited input line into a training record and its shard fingerprint."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace

import numpy as np

from wnd_worker.contracts.column_schema import ColumnSchema, ColumnSpec


logger = logging.getLogger(__name__)

_MASK_64 = (1 << 64) - 1
_MAX_LOGGED_DEFAULTS = 20


class FatalConfigMismatch(RuntimeError):
    """Parsed input width disagrees with the column schema; almost always a delimiter problem."""


@dataclass(frozen=True)
class SparseInput:
    column_num: int
    index: int


@dataclass(frozen=True, eq=False)
class Record:
    dense: np.ndarray
    categorical: tuple[SparseInput, ...]
    label: float
    weight: float = 1.0

    def __post_init__(self) -> None:
        dense = np.array(self.dense, dtype=np.float32, copy=True)
        dense.setflags(write=False)
        object.__setattr__(self, "dense", dense)
        object.__setattr__(self, "categorical", tuple(self.categorical))
        if self.weight < 0:
            raise ValueError(f"Record weight must be non-negative, got {self.weight}.")

    def with_weight(self, weight: float) -> "Record":
        return replace(self, weight=float(weight))


@dataclass(frozen=True)
class DecodedLine:
    record: Record
    fingerprint: int


@dataclass
class ParseDiagnostics:
    """Counts of fields that fell back to a safe default."""

    defaulted_fields: int = 0
    invalid_weights: int = 0
    negative_weights: int = 0
    _logged: int = field(default=0, repr=False)

    def note_default(self, ordinal: int, column: str, raw: str) -> None:
        self.defaulted_fields += 1
        if self._logged < _MAX_LOGGED_DEFAULTS:
            self._logged += 1
            logger.warning("phase=field_parse_default record=%d column=%s raw=%r default=0.0", ordinal, column, raw)
            if self._logged == _MAX_LOGGED_DEFAULTS:
                logger.warning("phase=field_parse_default_suppressed after=%d", _MAX_LOGGED_DEFAULTS)

    def as_dict(self) -> dict[str, int]:
        return {
            "defaulted_fields": self.defaulted_fields,
            "invalid_weights": self.invalid_weights,
            "negative_weights": self.negative_weights,
        }


def string_hash(value: str) -> int:
    h = 0
    for byte in value.encode("utf-8"):
        h = (h * 31 + byte) & _MASK_64
    return h


def fold_fingerprint(fingerprint: int, value: str) -> int:
    return (fingerprint * 31 + string_hash(value)) & _MASK_64


def fingerprint_values(values: list[str]) -> int:
    fingerprint = 0
    for value in values:
        fingerprint = fold_fingerprint(fingerprint, value)
    return fingerprint


def parse_float(raw: str) -> float | None:
    """Return the parsed value, ``0.0`` for blanks, or ``None`` when the field is not a finite number."""
    if not raw:
        return 0.0
    try:
        value = float(raw)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


class RecordCodec:
    def __init__(self, schema: ColumnSchema, delimiter: str, diagnostics: ParseDiagnostics | None = None) -> None:
        if not delimiter:
            raise ValueError("delimiter must be a non-empty string")
        self.schema = schema
        self.delimiter = delimiter
        self.diagnostics = diagnostics if diagnostics is not None else ParseDiagnostics()
        self.numeric_input_count = schema.numeric_input_count
        self.categorical_input_count = schema.categorical_input_count
        self._selected = [schema.is_selected(col) for col in schema.columns]
        self._category_maps: dict[int, dict[str, int]] = {
            col.column_num: col.category_index_map() for col in schema.selected_categorical()
        }
        # column number -> position inside the dense or categorical array of every record
        self.input_index_map: dict[int, int] = {}
        for position, col in enumerate(schema.selected_numeric()):
            self.input_index_map[col.column_num] = position
        for position, col in enumerate(schema.selected_categorical()):
            self.input_index_map[col.column_num] = position

    def category_index(self, raw: str, col: ColumnSpec) -> int:
        missing_index = len(col.bin_category)
        if not raw:
            return missing_index
        return self._category_maps[col.column_num].get(raw, missing_index)

    def parse_weight(self, raw: str, ordinal: int) -> float:
        if not raw:
            return 1.0
        try:
            weight = float(raw)
        except ValueError:
            weight = math.nan
        if math.isnan(weight) or math.isinf(weight):
            self.diagnostics.invalid_weights += 1
            logger.warning("phase=weight_parse_default record=%d raw=%r default=1.0", ordinal, raw)
            return 1.0
        if weight < 0:
            self.diagnostics.negative_weights += 1
            logger.warning("phase=weight_negative record=%d weight=%s default=1.0", ordinal, weight)
            return 1.0
        return weight

    def _value(self, raw: str, col: ColumnSpec, ordinal: int) -> float:
        value = parse_float(raw)
        if value is None:
            self.diagnostics.note_default(ordinal, col.column_name, raw)
            return 0.0
        return value

    def decode(self, line: str, ordinal: int = 0) -> DecodedLine:
        fields = line.rstrip("\r\n").split(self.delimiter)
        columns = self.schema.columns
        dense = np.zeros(self.numeric_input_count, dtype=np.float32)
        categorical: list[SparseInput] = []
        label = 0.0
        weight = 1.0
        fingerprint = 0
        numeric_index = 0

        for index, raw in enumerate(fields):
            if index == len(columns):
                weight = self.parse_weight(raw, ordinal)
                break
            col = columns[index]
            if col.is_target:
                label = self._value(raw, col, ordinal)
                continue
            if not self._selected[index]:
                continue
            if col.is_numerical:
                if numeric_index < self.numeric_input_count:
                    dense[numeric_index] = self._value(raw, col, ordinal)
                numeric_index += 1
            else:
                categorical.append(SparseInput(col.column_num, self.category_index(raw, col)))
            fingerprint = fold_fingerprint(fingerprint, raw)

        if numeric_index != self.numeric_input_count or len(categorical) != self.categorical_input_count:
            raise FatalConfigMismatch(
                "Input length is inconsistent with parsing size. "
                f"Expected numeric={self.numeric_input_count} categorical={self.categorical_input_count}, "
                f"parsed numeric={numeric_index} categorical={len(categorical)}, "
                f"record={ordinal} delimiter={self.delimiter!r}."
            )

        record = Record(dense=dense, categorical=tuple(categorical), label=label, weight=weight)
        return DecodedLine(record=record, fingerprint=fingerprint)
