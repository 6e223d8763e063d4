"""Upgrade-tool collaborator (erase-install command line)."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Protocol, Sequence

from upgrade_scheduler.kernel.errors import DispatchError
from upgrade_scheduler.kernel.logging import EventLogger, null_logger


class UpgradeTool(Protocol):
    def run(self, target_version: str, *, dry_run: bool, min_drive_space_gb: int) -> int:
        ...


def run_to_completion(argv: Sequence[str]) -> int:
    proc = subprocess.Popen(list(argv))
    # No kill on interruption: an install that has started must finish even
    # if this process is told to exit.
    return int(proc.wait())


class EraseInstallTool:
    def __init__(
        self,
        script_path: str | Path,
        *,
        runner: Callable[[Sequence[str]], int] = run_to_completion,
        logger: EventLogger | None = None,
    ) -> None:
        self._script = Path(script_path)
        self._runner = runner
        self._log = logger or null_logger()

    def build_args(self, target_version: str, *, dry_run: bool, min_drive_space_gb: int) -> list[str]:
        args = [
            str(self._script),
            "--reinstall",
            f"--os={target_version}",
            "--no-fs",
            "--check-power",
            f"--min-drive-space={int(min_drive_space_gb)}",
            "--cleanup-after-use",
        ]
        if dry_run:
            args.append("--test-run")
        return args

    def run(self, target_version: str, *, dry_run: bool, min_drive_space_gb: int) -> int:
        args = self.build_args(target_version, dry_run=dry_run, min_drive_space_gb=min_drive_space_gb)
        self._log.info("upgrade_tool_start", argv=" ".join(args))
        try:
            code = int(self._runner(args))
        except OSError as exc:
            raise DispatchError(f"cannot start upgrade tool {self._script}: {exc}") from exc
        self._log.info("upgrade_tool_exit", returncode=code)
        return code
