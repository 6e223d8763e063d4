"""Persisted deferral state.

One record per host. Property-list paths are written as XML plists so
management agents can read the counters with ``defaults read``; any other
suffix is written as JSON. Writes always go through the atomic helpers.
"""

from __future__ import annotations

import json
import plistlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from xml.parsers.expat import ExpatError

from .atomic_write import atomic_write_bytes
from .errors import StoreError
from .logging import EventLogger, null_logger


@dataclass(frozen=True)
class PersistedState:
    defer_count: int
    first_prompt_date: int
    script_version: str
    abort_count: int = 0
    deferred_until: int = 0

    @classmethod
    def fresh(cls, now: int, script_version: str) -> "PersistedState":
        return cls(defer_count=0, first_prompt_date=int(now), script_version=str(script_version))

    def to_record(self) -> dict[str, Any]:
        return {
            "deferCount": int(self.defer_count),
            "firstPromptDate": int(self.first_prompt_date),
            "scriptVersion": str(self.script_version),
            "abortCount": int(self.abort_count),
            "deferredUntil": int(self.deferred_until),
        }


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_epoch(value: Any) -> int | None:
    # Older records stored the epoch as a string.
    count = _as_count(value)
    if count is None:
        return None
    return count if count > 0 else None


class StateStore:
    def __init__(self, path: str | Path, script_version: str, *, logger: EventLogger | None = None) -> None:
        self._path = Path(path)
        self._version = str(script_version)
        self._log = logger or null_logger()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def script_version(self) -> str:
        return self._version

    def load(self, now: int) -> PersistedState:
        if not self._path.exists():
            state = PersistedState.fresh(now, self._version)
            self.save(state)
            self._log.info("state_initialized", path=str(self._path))
            return state
        record = self._read_record()
        stored_version = record.get("scriptVersion")
        if stored_version != self._version:
            self._log.info("state_version_reset", stored=str(stored_version), current=self._version)
            return self.reset(now)
        state, repaired = self._repair(record, now)
        if repaired:
            self._log.warning("state_repaired", fields=repaired)
            self.save(state)
        self._log.debug("state_loaded", **state.to_record())
        return state

    def save(self, state: PersistedState) -> None:
        record = state.to_record()
        if self._is_plist:
            payload = plistlib.dumps(record, fmt=plistlib.FMT_XML, sort_keys=True)
        else:
            payload = (json.dumps(record, sort_keys=True, indent=2) + "\n").encode("utf-8")
        try:
            atomic_write_bytes(self._path, payload, mode=0o644)
        except OSError as exc:
            raise StoreError(f"cannot write state record {self._path}: {exc}") from exc

    def reset(self, now: int) -> PersistedState:
        """Start a new enforcement cycle and persist it."""
        state = PersistedState.fresh(now, self._version)
        self.save(state)
        self._log.info("state_reset", first_prompt_date=state.first_prompt_date)
        return state

    @property
    def _is_plist(self) -> bool:
        return self._path.suffix.lower() == ".plist"

    def _read_record(self) -> dict[str, Any]:
        try:
            raw = self._path.read_bytes()
        except OSError as exc:
            raise StoreError(f"cannot read state record {self._path}: {exc}") from exc
        try:
            if self._is_plist:
                data = plistlib.loads(raw)
            else:
                data = json.loads(raw.decode("utf-8"))
        except (plistlib.InvalidFileException, ExpatError, ValueError) as exc:
            self._log.warning("state_unparseable", path=str(self._path), error=str(exc))
            # Treated as a current-version record with every field missing.
            return {"scriptVersion": self._version}
        if not isinstance(data, dict):
            self._log.warning("state_unparseable", path=str(self._path), error="record is not a mapping")
            return {"scriptVersion": self._version}
        return data

    def _repair(self, record: dict[str, Any], now: int) -> tuple[PersistedState, list[str]]:
        repaired: list[str] = []
        defer_count = _as_count(record.get("deferCount"))
        if defer_count is None:
            defer_count = 0
            repaired.append("deferCount")
        first_prompt = _as_epoch(record.get("firstPromptDate"))
        if first_prompt is None:
            first_prompt = int(now)
            repaired.append("firstPromptDate")
        abort_count = _as_count(record.get("abortCount", 0))
        if abort_count is None:
            abort_count = 0
            repaired.append("abortCount")
        deferred_until = _as_count(record.get("deferredUntil", 0))
        if deferred_until is None:
            deferred_until = 0
            repaired.append("deferredUntil")
        state = PersistedState(
            defer_count=defer_count,
            first_prompt_date=first_prompt,
            script_version=self._version,
            abort_count=abort_count,
            deferred_until=deferred_until,
        )
        return state, repaired
