"""Kernel error types.

Each category carries the process exit code the CLI reports for it.
"""

from __future__ import annotations


class UpgradeSchedulerError(Exception):
    """Base error for the upgrade scheduler."""

    exit_code = 1


class ConfigError(UpgradeSchedulerError):
    """Raised when configuration validation or loading fails with no fallback."""

    exit_code = 2


class StoreError(UpgradeSchedulerError):
    """Raised when the persisted state record cannot be read or written."""

    exit_code = 3


class AlreadyRunningError(UpgradeSchedulerError):
    """Raised when another live instance holds the execution lock."""

    exit_code = 4

    def __init__(self, lock_path, *, holder_pid: int | None = None, holder_name: str | None = None) -> None:
        self.lock_path = lock_path
        self.holder_pid = holder_pid
        self.holder_name = holder_name
        detail = "holder unknown"
        if holder_pid is not None:
            detail = f"held by pid {holder_pid}"
            if holder_name:
                detail += f" ({holder_name})"
        super().__init__(f"instance_lock_held: {lock_path} {detail}")


class DispatchError(UpgradeSchedulerError):
    """Raised when an external effect of a decision fails."""

    exit_code = 5


class InstallFailedError(DispatchError):
    """Raised when the upgrade tool exits non-zero."""

    exit_code = 6

    def __init__(self, returncode: int) -> None:
        self.returncode = int(returncode)
        super().__init__(f"upgrade tool failed with exit code {self.returncode}")


class TriggerError(DispatchError):
    """Raised when the scheduled trigger cannot be registered or removed."""


class DependencyError(UpgradeSchedulerError):
    """Raised when a required external binary is missing."""

    exit_code = 7
