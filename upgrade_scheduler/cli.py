"""Command line interface for the upgrade scheduler."""

from __future__ import annotations

import argparse
import json
import signal
import sys
from pathlib import Path

from upgrade_scheduler import __version__
from upgrade_scheduler.kernel.config import ConfigPaths, ConfigResolver
from upgrade_scheduler.kernel.errors import UpgradeSchedulerError
from upgrade_scheduler.kernel.logging import EventLogger, EventLoggerConfig, null_logger
from upgrade_scheduler.kernel.paths import default_host_paths
from upgrade_scheduler.runtime.orchestrator import Orchestrator, RunOptions, forced_command


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config).expanduser() if args.config else None


def cmd_print_config(args: argparse.Namespace) -> int:
    paths = default_host_paths()
    resolver = ConfigResolver(
        ConfigPaths(managed_path=paths.managed_config, local_path=paths.local_config),
        logger=null_logger(),
    )
    config = resolver.resolve(_config_path(args))
    payload = config.as_dict()
    payload["dry_run"] = config.dry_run
    payload["paths"] = paths.as_dict()
    payload["forced_command"] = forced_command(_config_path(args))
    payload["version"] = __version__
    _print_json(payload)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    paths = default_host_paths()
    logger = EventLogger(EventLoggerConfig(path=paths.log_path))
    orchestrator = Orchestrator(paths, logger=logger, lock_timeout=args.lock_timeout)
    options = RunOptions(
        config_path=_config_path(args),
        scheduled=bool(args.scheduled),
        skip_os_version_check=bool(args.skip_os_version_check),
    )
    try:
        outcome = orchestrator.run(options)
    except UpgradeSchedulerError as exc:
        logger.error("run_failed", error_type=type(exc).__name__, error=str(exc), exit_code=exc.exit_code)
        raise
    return outcome.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="upgrade-scheduler",
        description="Prompt for, defer, schedule or enforce a managed OS upgrade.",
    )
    parser.add_argument("--config", default=None, help="Custom config file (JSON, or YAML by suffix)")
    parser.add_argument("--print-config", action="store_true", help="Print the effective config and exit")
    parser.add_argument("--skip-os-version-check", action="store_true")
    parser.add_argument("--scheduled", action="store_true", help="Forced mode used by the scheduled trigger")
    parser.add_argument("--lock-timeout", type=float, default=0.0, help="Seconds to wait for a running instance")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _raise_system_exit(signum, _frame) -> None:
    raise SystemExit(128 + int(signum))


def _install_signal_handlers() -> None:
    for name in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, _raise_system_exit)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _install_signal_handlers()
    try:
        if args.print_config:
            exit_code = cmd_print_config(args)
        else:
            exit_code = cmd_run(args)
    except UpgradeSchedulerError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        exit_code = exc.exit_code
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
