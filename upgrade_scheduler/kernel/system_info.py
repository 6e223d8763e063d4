"""Host diagnostics and run preconditions.

Collected once per invocation and logged as ``system`` events so a support
engineer reading the agent log can see what the host looked like when a
decision was made.
"""

from __future__ import annotations

import getpass
import os
import platform
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import psutil

from .config import EffectiveConfig
from .errors import DependencyError

_VERSION_RE = re.compile(r'version="([^"]+)"')


@dataclass(frozen=True)
class SystemInfo:
    os_name: str
    os_version: str
    machine: str
    free_disk_gb: float | None
    user: str
    console_user: str | None
    upgrade_tool_version: str | None
    dialog_present: bool

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def host_os_version() -> str:
    mac_release = platform.mac_ver()[0]
    if mac_release:
        return mac_release
    return platform.release()


def _version_tuple(text: str) -> tuple[int, ...]:
    parts = []
    for chunk in str(text).strip().split("."):
        match = re.match(r"\d+", chunk)
        if not match:
            break
        parts.append(int(match.group(0)))
    return tuple(parts)


def target_already_installed(current: str, target: str) -> bool:
    """True when ``current`` is at or beyond ``target``.

    Only as many components as the target names are compared, so a target of
    ``"15"`` is satisfied by ``15.0.1`` and by ``16.1``.
    """
    cur = _version_tuple(current)
    tgt = _version_tuple(target)
    if not cur or not tgt:
        return False
    width = len(tgt)
    padded = cur + (0,) * max(0, width - len(cur))
    return padded[:width] >= tgt


def free_disk_gb(path: str = "/") -> float | None:
    try:
        usage = psutil.disk_usage(path)
    except OSError:
        return None
    return round(usage.free / (1024**3), 1)


def console_user() -> str | None:
    try:
        sessions = psutil.users()
    except (OSError, RuntimeError):
        return None
    for session in sessions:
        if session.terminal == "console":
            return session.name
    return sessions[0].name if sessions else None


def upgrade_tool_version(script_path: str | Path) -> str | None:
    """Version string declared in the upgrade tool's header, if readable."""
    try:
        lines = Path(script_path).read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return None
    for idx, line in enumerate(lines):
        if line.startswith("# Version of this script"):
            for candidate in lines[idx : idx + 2]:
                match = _VERSION_RE.search(candidate)
                if match:
                    return match.group(1)
    return None


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return "unknown"


def collect_system_info(config: EffectiveConfig) -> SystemInfo:
    tool = Path(config.upgrade_tool_path)
    return SystemInfo(
        os_name=platform.system(),
        os_version=host_os_version(),
        machine=platform.machine(),
        free_disk_gb=free_disk_gb("/"),
        user=_current_user(),
        console_user=console_user(),
        upgrade_tool_version=upgrade_tool_version(tool) if tool.exists() else None,
        dialog_present=_is_executable(Path(config.dialog_path)),
    )


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def missing_dependencies(config: EffectiveConfig, *, need_dialog: bool = True) -> list[str]:
    missing = []
    if not _is_executable(Path(config.upgrade_tool_path)):
        missing.append(config.upgrade_tool_path)
    if need_dialog and not _is_executable(Path(config.dialog_path)):
        missing.append(config.dialog_path)
    return missing


def check_dependencies(config: EffectiveConfig, *, need_dialog: bool = True) -> None:
    missing = missing_dependencies(config, need_dialog=need_dialog)
    if not missing:
        return
    if config.auto_install_dependencies:
        hint = "auto-install is enabled; the management agent must deploy them before the next run"
    else:
        hint = "auto-install is disabled"
    raise DependencyError(f"missing dependencies: {', '.join(missing)} ({hint})")
