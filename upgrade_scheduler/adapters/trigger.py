"""Scheduled-trigger collaborator backed by a launchd daemon.

Only one pending trigger may exist: ``replace`` always boots out and deletes
every daemon plist carrying this engine's label before writing the new one,
so repeated calls converge on a single definition.
"""

from __future__ import annotations

import plistlib
import subprocess
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from upgrade_scheduler.kernel.atomic_write import atomic_write_bytes
from upgrade_scheduler.kernel.errors import TriggerError
from upgrade_scheduler.kernel.logging import EventLogger, null_logger
from upgrade_scheduler.kernel.paths import TRIGGER_LABEL


@dataclass(frozen=True)
class PendingTrigger:
    path: Path
    label: str
    hour: int
    minute: int
    day: int | None
    month: int | None
    program_arguments: tuple[str, ...]


class ScheduledTrigger(Protocol):
    def replace(self, at: datetime, command: Sequence[str]) -> Path:
        ...

    def remove(self) -> bool:
        ...

    def pending(self) -> PendingTrigger | None:
        ...


Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class LaunchdTrigger:
    def __init__(
        self,
        launchd_dir: str | Path,
        *,
        label: str = TRIGGER_LABEL,
        runner: Runner = subprocess.run,
        logger: EventLogger | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._dir = Path(launchd_dir)
        self._label = label
        self._runner = runner
        self._log = logger or null_logger()
        self._today = today

    @property
    def plist_path(self) -> Path:
        return self._dir / f"{self._label}.plist"

    def _launchctl(self, *args: str) -> int:
        try:
            proc = self._runner(["launchctl", *args], capture_output=True, text=True, check=False)
        except OSError as exc:
            raise TriggerError(f"launchctl unavailable: {exc}") from exc
        return int(proc.returncode)

    def _related_plists(self) -> list[Path]:
        if not self._dir.is_dir():
            return []
        return sorted(self._dir.glob(f"{self._label}*.plist"))

    def _unload(self, path: Path, label: str) -> None:
        if self._launchctl("print", f"system/{label}") != 0:
            return
        self._log.info("trigger_unloading", label=label)
        if self._launchctl("bootout", "system", str(path)) == 0:
            return
        self._log.warning("trigger_bootout_by_path_failed", label=label)
        if self._launchctl("bootout", f"system/{label}") != 0:
            raise TriggerError(f"failed to unload launch daemon {label}")

    def remove(self) -> bool:
        """Unload and delete every trigger for this engine. True if any existed."""
        removed = False
        for path in self._related_plists():
            label = path.stem
            self._unload(path, label)
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise TriggerError(f"failed to remove {path}: {exc}") from exc
            self._log.info("trigger_removed", path=str(path))
            removed = True
        return removed

    def _definition(self, at: datetime, command: Sequence[str]) -> dict[str, Any]:
        interval: dict[str, int] = {"Hour": int(at.hour), "Minute": int(at.minute)}
        if at.date() != self._today():
            interval["Day"] = int(at.day)
            interval["Month"] = int(at.month)
        return {
            "Label": self._label,
            "ProgramArguments": [str(part) for part in command],
            "StartCalendarInterval": interval,
            "RunAtLoad": False,
        }

    def replace(self, at: datetime, command: Sequence[str]) -> Path:
        self.remove()
        definition = self._definition(at, command)
        path = self.plist_path
        try:
            atomic_write_bytes(path, plistlib.dumps(definition, fmt=plistlib.FMT_XML), mode=0o644)
        except OSError as exc:
            raise TriggerError(f"failed to write {path}: {exc}") from exc
        if self._launchctl("bootstrap", "system", str(path)) != 0:
            # Leave no half-registered definition behind.
            path.unlink(missing_ok=True)
            raise TriggerError(f"failed to bootstrap launch daemon {self._label}")
        self._log.info("trigger_created", path=str(path), at=at.strftime("%Y-%m-%d %H:%M"))
        return path

    def pending(self) -> PendingTrigger | None:
        path = self.plist_path
        try:
            data = plistlib.loads(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            self._log.warning("trigger_unreadable", path=str(path), error=str(exc))
            return None
        interval = data.get("StartCalendarInterval") or {}
        return PendingTrigger(
            path=path,
            label=str(data.get("Label", "")),
            hour=int(interval.get("Hour", 0)),
            minute=int(interval.get("Minute", 0)),
            day=interval.get("Day"),
            month=interval.get("Month"),
            program_arguments=tuple(data.get("ProgramArguments") or ()),
        )
