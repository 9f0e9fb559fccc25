from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


CATEGORY_GROUP_DELIMITER = "@^"
COLUMN_TYPES = ("N", "C")
COLUMN_FLAGS = ("meta", "target", "weight")


class ColumnSchemaError(RuntimeError):
    pass


@dataclass(frozen=True)
class ColumnSpec:
    column_num: int
    column_name: str
    column_type: str = "N"
    flag: str | None = None
    final_select: bool = False
    good_candidate: bool = True
    bin_category: tuple[str, ...] = ()

    @property
    def is_numerical(self) -> bool:
        return self.column_type == "N"

    @property
    def is_categorical(self) -> bool:
        return self.column_type == "C"

    @property
    def is_meta(self) -> bool:
        return self.flag == "meta" or self.flag == "weight"

    @property
    def is_target(self) -> bool:
        return self.flag == "target"

    def category_index_map(self) -> dict[str, int]:
        """Map each category value to its bin index; grouped bins share one index."""
        mapping: dict[str, int] = {}
        for index, entry in enumerate(self.bin_category):
            for value in flatten_category_group(entry):
                mapping[value] = index
        return mapping


@dataclass(frozen=True)
class ColumnSchema:
    columns: tuple[ColumnSpec, ...]

    def __len__(self) -> int:
        return len(self.columns)

    @property
    def is_after_var_select(self) -> bool:
        return any(col.final_select for col in self.columns)

    @property
    def target(self) -> ColumnSpec:
        for col in self.columns:
            if col.is_target:
                return col
        raise ColumnSchemaError("Column schema has no target column.")

    def is_selected(self, col: ColumnSpec) -> bool:
        if col.is_meta or col.is_target:
            return False
        if self.is_after_var_select:
            return col.final_select
        return col.good_candidate

    def selected_numeric(self) -> list[ColumnSpec]:
        return [col for col in self.columns if col.is_numerical and self.is_selected(col)]

    def selected_categorical(self) -> list[ColumnSpec]:
        return [col for col in self.columns if col.is_categorical and self.is_selected(col)]

    @property
    def numeric_input_count(self) -> int:
        return len(self.selected_numeric())

    @property
    def categorical_input_count(self) -> int:
        return len(self.selected_categorical())

    def wide_column_ids(self) -> list[int]:
        return [col.column_num for col in self.selected_categorical()]

    def get(self, column_num: int) -> ColumnSpec:
        for col in self.columns:
            if col.column_num == column_num:
                return col
        raise KeyError(column_num)

    def fingerprint(self) -> str:
        payload = json.dumps([_column_payload(col) for col in self.columns], sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def flatten_category_group(entry: str) -> list[str]:
    if CATEGORY_GROUP_DELIMITER not in entry:
        return [entry]
    return [value for value in entry.split(CATEGORY_GROUP_DELIMITER) if value]


def _column_payload(col: ColumnSpec) -> dict[str, Any]:
    return {
        "column_num": col.column_num,
        "column_name": col.column_name,
        "column_type": col.column_type,
        "flag": col.flag,
        "final_select": col.final_select,
        "good_candidate": col.good_candidate,
        "bin_category": list(col.bin_category),
    }


def parse_column_schema(payload: Any, *, label: str = "column schema") -> ColumnSchema:
    if not isinstance(payload, list) or not payload:
        raise ColumnSchemaError(f"Invalid {label}: expected non-empty JSON list of column objects.")

    columns: list[ColumnSpec] = []
    for position, item in enumerate(payload):
        if not isinstance(item, dict):
            raise ColumnSchemaError(f"Invalid {label} entry at position {position}: expected object.")
        try:
            column_num = int(item.get("column_num", position))
            column_name = str(item["column_name"])
            column_type = str(item.get("column_type", "N")).upper()
            flag_raw = item.get("flag")
            flag = str(flag_raw).strip().lower() if flag_raw else None
            bin_category = tuple(str(value) for value in (item.get("bin_category") or ()))
        except (KeyError, TypeError, ValueError) as exc:
            raise ColumnSchemaError(f"Invalid {label} entry at position {position}: {item!r}") from exc
        if column_num != position:
            raise ColumnSchemaError(
                f"Invalid {label}: column_num {column_num} at position {position}; columns must be listed in input order."
            )
        if column_type not in COLUMN_TYPES:
            raise ColumnSchemaError(f"Invalid {label}: column {column_name!r} has unknown column_type {column_type!r}.")
        if flag is not None and flag not in COLUMN_FLAGS:
            raise ColumnSchemaError(f"Invalid {label}: column {column_name!r} has unknown flag {flag!r}.")
        columns.append(
            ColumnSpec(
                column_num=column_num,
                column_name=column_name,
                column_type=column_type,
                flag=flag,
                final_select=bool(item.get("final_select", False)),
                good_candidate=bool(item.get("good_candidate", True)),
                bin_category=bin_category,
            )
        )

    targets = [col for col in columns if col.is_target]
    if len(targets) != 1:
        raise ColumnSchemaError(f"Invalid {label}: expected exactly one target column, found {len(targets)}.")
    return ColumnSchema(columns=tuple(columns))


def load_column_schema(path: Path) -> ColumnSchema:
    if not path.exists():
        raise ColumnSchemaError(f"Missing column config file: {path}")
    try:
        payload = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ColumnSchemaError(f"Invalid JSON in column config {path}: {exc}.") from exc
    return parse_column_schema(payload, label=str(path.name))
