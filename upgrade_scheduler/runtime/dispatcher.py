"""Turn a decision into exactly one side effect."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from upgrade_scheduler.adapters.trigger import ScheduledTrigger
from upgrade_scheduler.adapters.upgrade_tool import UpgradeTool
from upgrade_scheduler.engine.decision import Decision, DecisionKind
from upgrade_scheduler.kernel.config import EffectiveConfig
from upgrade_scheduler.kernel.errors import DispatchError, InstallFailedError, TriggerError
from upgrade_scheduler.kernel.logging import EventLogger, null_logger
from upgrade_scheduler.kernel.state_store import PersistedState, StateStore
from upgrade_scheduler.kernel.timebase import epoch_now


@dataclass(frozen=True)
class DispatchResult:
    kind: DecisionKind
    returncode: int | None = None
    trigger_path: Path | None = None
    state: PersistedState | None = None


class ActionDispatcher:
    def __init__(
        self,
        store: StateStore,
        trigger: ScheduledTrigger,
        upgrade_tool: UpgradeTool,
        *,
        forced_command: Sequence[str],
        clock: Callable[[], int] = epoch_now,
        logger: EventLogger | None = None,
    ) -> None:
        self._store = store
        self._trigger = trigger
        self._tool = upgrade_tool
        self._forced_command = list(forced_command)
        self._clock = clock
        self._log = logger or null_logger()

    def dispatch(self, decision: Decision, config: EffectiveConfig) -> DispatchResult:
        kind = decision.kind
        self._log.info("dispatch", kind=kind.value, reason=decision.reason)
        if kind is DecisionKind.FORCE_INSTALL:
            return self._install(decision, config)
        if kind is DecisionKind.SCHEDULE_INSTALL:
            if decision.schedule_at is None:
                raise DispatchError("schedule_install without a time")
            path = self._trigger.replace(decision.schedule_at, self._forced_command)
            return DispatchResult(kind=kind, trigger_path=path)
        if kind in (DecisionKind.DEFER_GRANTED, DecisionKind.ABORTED):
            if decision.next_state is None:
                raise DispatchError(f"{kind.value} without a next state")
            self._store.save(decision.next_state)
            return DispatchResult(kind=kind, state=decision.next_state)
        raise DispatchError(f"decision {kind.value} is not dispatchable")

    def _install(self, decision: Decision, config: EffectiveConfig) -> DispatchResult:
        try:
            self._trigger.remove()
        except TriggerError as exc:
            # A stale trigger only re-runs this engine in forced mode; the install goes ahead.
            self._log.warning("trigger_remove_failed", error=str(exc))
        code = self._tool.run(
            config.installer_target_version,
            dry_run=config.dry_run,
            min_drive_space_gb=config.min_drive_space_gb,
        )
        if code != 0:
            raise InstallFailedError(code)
        state = None
        if decision.reset_cycle:
            state = self._store.reset(self._clock())
        self._log.info("install_completed", dry_run=config.dry_run)
        return DispatchResult(kind=decision.kind, returncode=code, state=state)
