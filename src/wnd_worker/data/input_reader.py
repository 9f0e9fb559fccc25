from __future__ import annotations

import gzip
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

import polars as pl

logger = logging.getLogger(__name__)

_PARQUET_BATCH_ROWS = 50_000


@dataclass(frozen=True)
class InputLine:
    text: str
    is_validation: bool = False


def _expand(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(
            child for child in path.iterdir() if child.is_file() and not child.name.startswith((".", "_"))
        )
    if not path.exists():
        raise FileNotFoundError(f"Input path does not exist: {path}")
    return [path]


def _iter_text(path: Path) -> Iterator[str]:
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "rt", encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\r\n")
            if line:
                yield line


def _iter_parquet(path: Path, delimiter: str) -> Iterator[str]:
    """Render every parquet row as one delimited line; nulls become empty fields.

    Rows are collected from a lazy scan one slice at a time so a large file is
    never materialized whole.
    """
    columns = list(pl.read_parquet_schema(str(path)))
    if not columns:
        return
    rendered = pl.scan_parquet(str(path)).select(
        pl.concat_str(
            [pl.col(name).cast(pl.Utf8, strict=False).fill_null("") for name in columns],
            separator=delimiter,
        ).alias("__line")
    )
    offset = 0
    while True:
        batch = rendered.slice(offset, _PARQUET_BATCH_ROWS).collect()
        if batch.height == 0:
            return
        yield from batch.get_column("__line").to_list()
        offset += batch.height


def iter_lines(path: Path, delimiter: str) -> Iterator[str]:
    for file_path in _expand(path):
        logger.info("phase=input_file_opened path=%s", file_path)
        if file_path.suffix == ".parquet":
            yield from _iter_parquet(file_path, delimiter)
        else:
            yield from _iter_text(file_path)


def iter_input_lines(
    train_paths: Iterable[Path],
    delimiter: str,
    validation_path: Path | None = None,
) -> Iterator[InputLine]:
    """Yield every input line tagged with the manual-validation flag of its source path."""
    for path in train_paths:
        for text in iter_lines(path, delimiter):
            yield InputLine(text=text, is_validation=False)
    if validation_path is not None:
        for text in iter_lines(validation_path, delimiter):
            yield InputLine(text=text, is_validation=True)
