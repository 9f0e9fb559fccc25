from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LoadProgressReporter:
    """Periodic load-phase progress with throughput.

    A line goes out every ``every_records`` records, or on the next update once
    ``interval_seconds`` have passed. On a terminal the line is redrawn in place.
    """

    logger: Any
    every_records: int = 5000
    interval_seconds: float = 60.0
    name: str = "load"
    _started: float = field(default=0.0, init=False, repr=False)
    _last_emit: float = field(default=0.0, init=False, repr=False)
    _last_records: int = field(default=0, init=False, repr=False)
    _redraw_width: int = field(default=0, init=False, repr=False)
    _active: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.every_records <= 0:
            raise ValueError("every_records must be positive")
        self._interactive = bool(getattr(sys.stderr, "isatty", lambda: False)())

    def _line(self, records: int, now: float, fields: dict[str, object]) -> str:
        elapsed = max(now - self._started, 1e-9)
        parts = [f"[{self.name}] records={records}", f"rate={records / elapsed:.0f}/s"]
        parts.extend(f"{key}={value}" for key, value in fields.items())
        return " ".join(parts)

    def update(self, records: int, *, force: bool = False, **fields: object) -> None:
        now = time.monotonic()
        if not self._started:
            self._started = self._last_emit = now
        due = records > 0 and records % self.every_records == 0
        if not due and self._last_emit and now - self._last_emit >= self.interval_seconds:
            due = records != self._last_records
        if not (force or due):
            return

        line = self._line(records, now, fields)
        self._last_emit = now
        self._last_records = records
        self._active = True
        if not self._interactive:
            self.logger.info("phase=load_progress message=%s", line)
            return
        pad = " " * max(self._redraw_width - len(line), 0)
        sys.stderr.write(f"\r{line}{pad}")
        sys.stderr.flush()
        self._redraw_width = len(line)

    def clear(self) -> None:
        if self._active and self._interactive:
            sys.stderr.write("\n")
            sys.stderr.flush()
        self._active = False
        self._redraw_width = 0

    def __enter__(self) -> "LoadProgressReporter":
        self._started = time.monotonic()
        self._last_emit = self._started
        return self

    def __exit__(self, *_exc: object) -> None:
        self.clear()
