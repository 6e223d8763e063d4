"""Structured JSONL event logging with a run id.

Every line is one JSON object with stable key ordering so management agents
can collect and grep the log. A human-readable echo goes to stderr, which is
what shows up in the agent's policy log. Rotation is left to the host.
"""

from __future__ import annotations

import json
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

from .timebase import utc_now_z


@dataclass(frozen=True)
class EventLoggerConfig:
    path: Path | None
    debug: bool = False
    echo: bool = True


class EventLogger:
    def __init__(self, cfg: EventLoggerConfig, *, run_id: str | None = None, stream: TextIO | None = None) -> None:
        self._cfg = cfg
        self._run_id = run_id or uuid.uuid4().hex[:12]
        self._stream = stream
        self._file_ok = cfg.path is not None
        if cfg.path is not None:
            try:
                cfg.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                self._file_ok = False

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def path(self) -> str:
        return str(self._cfg.path or "")

    def with_debug(self, debug: bool) -> "EventLogger":
        """Same sink and run id, with debug gating changed (config arrives after logging starts)."""
        cfg = EventLoggerConfig(path=self._cfg.path, debug=bool(debug), echo=self._cfg.echo)
        return EventLogger(cfg, run_id=self._run_id, stream=self._stream)

    def event(self, event: str, *, level: str = "info", **fields: Any) -> None:
        level = str(level or "info")
        if level == "debug" and not self._cfg.debug:
            return
        payload: dict[str, Any] = {
            "ts_utc": utc_now_z(),
            "level": level,
            "event": str(event or "event"),
            "run_id": self._run_id,
        }
        for key, value in fields.items():
            if key in payload:
                continue
            payload[str(key)] = value
        if self._file_ok and self._cfg.path is not None:
            line = json.dumps(payload, sort_keys=True, default=str)
            try:
                with self._cfg.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError:
                self._file_ok = False
        if self._cfg.echo:
            self._echo(level, event, fields)

    def _echo(self, level: str, event: str, fields: dict[str, Any]) -> None:
        stream = self._stream or sys.stderr
        detail = " ".join(f"{k}={v}" for k, v in fields.items())
        tag = f"[{level.upper()}]".ljust(10)
        print(f"{tag}{event}{(' ' + detail) if detail else ''}", file=stream)

    def debug(self, event: str, **fields: Any) -> None:
        self.event(event, level="debug", **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.event(event, level="info", **fields)

    def system(self, event: str, **fields: Any) -> None:
        self.event(event, level="system", **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.event(event, level="warning", **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.event(event, level="error", **fields)


def null_logger() -> EventLogger:
    """Logger that writes nowhere; used by library callers and tests."""
    return EventLogger(EventLoggerConfig(path=None, debug=True, echo=False))
