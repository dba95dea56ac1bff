from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from extsync.core.runtime.settings import Settings


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dur_ms(t0: float, t1: float) -> int:
    return int((t1 - t0) * 1000)


def configure_logging(settings: Settings) -> None:
    fmt = '%(asctime)s - (%(threadName)-10s) - %(name)s - %(levelname)s - %(message)s'
    if (settings.log_format or "text").lower() == "json":
        # JSON payload already includes timestamp; keep formatter minimal.
        fmt = "%(message)s"
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=fmt,
    )


def log_event(logger: logging.Logger, *, settings: Settings, level: int, event: str, **fields: Any) -> None:
    """Emit an event log.

    - text format: one-liner `event key=value ...`
    - json format: one JSON object per line
    """
    if settings.log_format.lower() == "json":
        payload = {"ts_ms": _now_ms(), "event": event, **fields}
        logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
        return

    # text
    parts = [event]
    for k, v in fields.items():
        parts.append(f"{k}={v}")
    logger.log(level, " ".join(parts))


@dataclass
class ProcessSummary:
    extension: str
    operation: str
    status: str
    duration_ms: int
    changed: bool = False
    reason: str = ""

    def as_dict(self) -> dict:
        return {
            "extension": self.extension,
            "operation": self.operation,
            "status": self.status,
            "changed": self.changed,
            "reason": self.reason,
            "duration_ms": self.duration_ms,
        }


class SyncObserver:
    """Times one Process/ProcessDeletion call and emits start/end events."""

    def __init__(self, *, settings: Settings, logger: logging.Logger, extension: str, operation: str):
        self.settings = settings
        self.logger = logger
        self.extension = extension
        self.operation = operation
        self._t0: float | None = None

    def start(self) -> None:
        self._t0 = time.perf_counter()
        log_event(self.logger, settings=self.settings, level=logging.INFO, event="process_start",
                  extension=self.extension, operation=self.operation)

    def end(self, *, status: str, changed: bool = False, reason: str = "") -> ProcessSummary:
        dur = _dur_ms(self._t0, time.perf_counter()) if self._t0 is not None else 0
        summary = ProcessSummary(
            extension=self.extension,
            operation=self.operation,
            status=status,
            duration_ms=dur,
            changed=changed,
            reason=reason,
        )
        level = logging.INFO if status == "SUCCESS" else logging.ERROR
        log_event(self.logger, settings=self.settings, level=level, event="process_end", **summary.as_dict())
        return summary
