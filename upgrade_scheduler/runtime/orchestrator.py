"""One invocation end to end.

Lock, resolve config, run the preconditions, load state, decide, prompt if
needed, decide again on the answer, dispatch. The lock is held for the whole
run so two invocations never interleave state reads and writes.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from upgrade_scheduler import __version__
from upgrade_scheduler.adapters.prompt import DialogPrompt, PromptCollaborator, collect_response
from upgrade_scheduler.adapters.trigger import LaunchdTrigger, ScheduledTrigger
from upgrade_scheduler.adapters.upgrade_tool import EraseInstallTool, UpgradeTool
from upgrade_scheduler.engine.decision import Decision, DecisionKind, plan, resolve_choice
from upgrade_scheduler.kernel.config import ConfigPaths, ConfigResolver, EffectiveConfig
from upgrade_scheduler.kernel.instance_lock import acquire_execution_lock
from upgrade_scheduler.kernel.logging import EventLogger, null_logger
from upgrade_scheduler.kernel.paths import HostPaths
from upgrade_scheduler.kernel.state_store import StateStore
from upgrade_scheduler.kernel.system_info import (
    check_dependencies,
    collect_system_info,
    host_os_version,
    target_already_installed,
)
from upgrade_scheduler.kernel.timebase import epoch_now, format_duration, local_datetime

from .dispatcher import ActionDispatcher, DispatchResult


@dataclass(frozen=True)
class RunOptions:
    config_path: Path | None = None
    scheduled: bool = False
    skip_os_version_check: bool = False


@dataclass(frozen=True)
class RunOutcome:
    exit_code: int
    reason: str
    decision: Decision | None = None
    result: DispatchResult | None = None


def forced_command(config_path: Path | None = None) -> list[str]:
    """Command line a scheduled trigger runs to re-enter in forced mode."""
    argv = [sys.executable, "-m", "upgrade_scheduler", "--scheduled"]
    if config_path is not None:
        argv += ["--config", str(Path(config_path).expanduser().absolute())]
    return argv


def _dialog_prompt(config: EffectiveConfig, logger: EventLogger) -> PromptCollaborator:
    return DialogPrompt(config, logger=logger)


def _launchd_trigger(paths: HostPaths, logger: EventLogger) -> ScheduledTrigger:
    return LaunchdTrigger(paths.launchd_dir, logger=logger)


def _erase_install(config: EffectiveConfig, logger: EventLogger) -> UpgradeTool:
    return EraseInstallTool(config.upgrade_tool_path, logger=logger)


class Orchestrator:
    def __init__(
        self,
        paths: HostPaths,
        *,
        prompt_factory: Callable[[EffectiveConfig, EventLogger], PromptCollaborator] = _dialog_prompt,
        trigger_factory: Callable[[HostPaths, EventLogger], ScheduledTrigger] = _launchd_trigger,
        upgrade_tool_factory: Callable[[EffectiveConfig, EventLogger], UpgradeTool] = _erase_install,
        clock: Callable[[], int] = epoch_now,
        os_version: Callable[[], str] = host_os_version,
        logger: EventLogger | None = None,
        script_version: str = __version__,
        lock_timeout: float = 0,
    ) -> None:
        self._paths = paths
        self._prompt_factory = prompt_factory
        self._trigger_factory = trigger_factory
        self._tool_factory = upgrade_tool_factory
        self._clock = clock
        self._os_version = os_version
        self._log = logger or null_logger()
        self._script_version = str(script_version)
        self._lock_timeout = float(lock_timeout)

    def run(self, options: RunOptions) -> RunOutcome:
        with acquire_execution_lock(self._paths.lock_path, timeout=self._lock_timeout):
            self._log.info("run_start", version=self._script_version, scheduled=options.scheduled)
            outcome = self._run_locked(options)
            self._log.info("run_end", exit_code=outcome.exit_code, reason=outcome.reason)
            return outcome

    def _run_locked(self, options: RunOptions) -> RunOutcome:
        resolver = ConfigResolver(
            ConfigPaths(managed_path=self._paths.managed_config, local_path=self._paths.local_config),
            logger=self._log,
        )
        config = resolver.resolve(options.config_path)
        log = self._log.with_debug(config.debug_mode)
        info = collect_system_info(config)
        log.system("system_info", script_version=self._script_version, **info.as_dict())
        log.info(
            "config_summary",
            source=config.source.value,
            target=config.installer_target_version,
            max_deferrals=config.max_deferrals,
            force_timeout=format_duration(config.force_timeout_seconds),
            test_mode=config.test_mode,
            prevent_all_reboots=config.prevent_all_reboots,
        )
        trigger = self._trigger_factory(self._paths, log)

        if not (options.skip_os_version_check or config.skip_os_version_check):
            current = self._os_version()
            if target_already_installed(current, config.installer_target_version):
                log.info("target_already_installed", current=current, target=config.installer_target_version)
                if options.scheduled:
                    trigger.remove()
                return RunOutcome(exit_code=0, reason="already_installed")

        check_dependencies(config, need_dialog=not options.scheduled)

        store = StateStore(self._paths.state_path, self._script_version, logger=log)
        now = int(self._clock())
        state = store.load(now)
        decision = plan(config, state, now, scheduled=options.scheduled)
        log.info(
            "decision_planned",
            kind=decision.kind.value,
            reason=decision.reason,
            enforced=decision.enforced,
            defer_count=state.defer_count,
            abort_count=state.abort_count,
        )
        if decision.kind is DecisionKind.DEFERRAL_ACTIVE:
            log.info("deferral_active", until=local_datetime(state.deferred_until).isoformat(timespec="minutes"))
            return RunOutcome(exit_code=0, reason=decision.reason, decision=decision)

        prompt: PromptCollaborator | None = None
        if decision.kind is DecisionKind.PROMPT_USER:
            prompt = self._prompt_factory(config, log)
            offered = decision.options
            response = collect_response(
                prompt,
                offered,
                enforced=decision.enforced,
                clock=lambda: local_datetime(self._clock()),
            )
            # The prompt can block for a long time; decide against a fresh clock.
            decision = resolve_choice(config, state, int(self._clock()), response, offered=offered)
            log.info("decision_resolved", kind=decision.kind.value, reason=decision.reason)

        if decision.kind is DecisionKind.FORCE_INSTALL and decision.countdown:
            if prompt is None:
                prompt = self._prompt_factory(config, log)
            prompt.countdown(config.preinstall_countdown_seconds)

        dispatcher = ActionDispatcher(
            store,
            trigger,
            self._tool_factory(config, log),
            forced_command=forced_command(options.config_path),
            clock=self._clock,
            logger=log,
        )
        result = dispatcher.dispatch(decision, config)
        exit_code = 1 if decision.kind is DecisionKind.ABORTED else 0
        return RunOutcome(exit_code=exit_code, reason=decision.reason, decision=decision, result=result)
