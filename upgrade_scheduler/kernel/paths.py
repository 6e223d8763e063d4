"""Well-known host paths.

macOS hosts use the fixed locations management agents and configuration
profiles write to. Other hosts (development, CI) fall back to the platformdirs
site directories. ``UPGRADE_SCHEDULER_ROOT`` re-roots every path, which is how
tests and non-root dry runs keep off the real system locations.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from platformdirs import PlatformDirs

_ROOT_ENV = "UPGRADE_SCHEDULER_ROOT"
_APP_NAME = "upgrade-scheduler"
BUNDLE_ID = "com.upgradescheduler"
TRIGGER_LABEL = f"{BUNDLE_ID}.schedule"


@dataclass(frozen=True)
class HostPaths:
    managed_config: Path
    local_config: Path
    state_path: Path
    lock_path: Path
    log_path: Path
    launchd_dir: Path

    def as_dict(self) -> dict[str, str]:
        return {name: str(value) for name, value in self.__dict__.items()}


def _reroot(path: Path, root: Path | None) -> Path:
    if root is None:
        return path
    return root / path.relative_to(path.anchor)


def _darwin_paths() -> HostPaths:
    return HostPaths(
        managed_config=Path("/Library/Managed Preferences") / f"{BUNDLE_ID}.config.json",
        local_config=Path("/Library/Preferences") / f"{BUNDLE_ID}.config.json",
        state_path=Path("/Library/Preferences") / f"{BUNDLE_ID}.state.plist",
        lock_path=Path("/var/run") / f"{_APP_NAME}.lock",
        log_path=Path("/var/log") / f"{_APP_NAME}.jsonl",
        launchd_dir=Path("/Library/LaunchDaemons"),
    )


def _site_paths() -> HostPaths:
    dirs = PlatformDirs(_APP_NAME, appauthor=False)
    config_root = Path(dirs.site_config_dir)
    data_root = Path(dirs.site_data_dir)
    return HostPaths(
        managed_config=config_root / "managed" / f"{BUNDLE_ID}.config.json",
        local_config=config_root / f"{BUNDLE_ID}.config.json",
        state_path=data_root / f"{BUNDLE_ID}.state.json",
        lock_path=data_root / f"{_APP_NAME}.lock",
        log_path=data_root / "logs" / f"{_APP_NAME}.jsonl",
        launchd_dir=data_root / "LaunchDaemons",
    )


def default_host_paths(*, platform: str | None = None) -> HostPaths:
    plat = platform or sys.platform
    paths = _darwin_paths() if plat == "darwin" else _site_paths()
    override = str(os.environ.get(_ROOT_ENV) or "").strip()
    if not override:
        return paths
    root = Path(override).expanduser().absolute()
    return HostPaths(**{name: _reroot(value, root) for name, value in paths.__dict__.items()})
