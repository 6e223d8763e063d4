"""Deferral/enforcement decision engine.

Everything here is a pure function of the effective config, the persisted
state, the current epoch time and (for ``resolve_choice``) the prompt
response. Side effects belong to the dispatcher.

States per invocation::

    AwaitingUserChoice -> Deferred | ScheduledToday | InstallingNow | Aborted

Every outcome except InstallingNow loops back to AwaitingUserChoice on the
next invocation; a successful install resets the cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Sequence

from upgrade_scheduler.kernel.config import EffectiveConfig
from upgrade_scheduler.kernel.state_store import PersistedState

from .slots import TimeSlot


class UserChoice(Enum):
    INSTALL_NOW = "install_now"
    SCHEDULE_TODAY = "schedule_today"
    DEFER = "defer"


class DecisionKind(Enum):
    PROMPT_USER = "prompt_user"
    FORCE_INSTALL = "force_install"
    SCHEDULE_INSTALL = "schedule_install"
    DEFER_GRANTED = "defer_granted"
    ABORTED = "aborted"
    DEFERRAL_ACTIVE = "deferral_active"


@dataclass(frozen=True)
class PromptResponse:
    choice: UserChoice | None
    slot: TimeSlot | None = None
    detail: str = ""

    @classmethod
    def no_response(cls, detail: str = "") -> "PromptResponse":
        return cls(choice=None, slot=None, detail=detail)

    @property
    def answered(self) -> bool:
        return self.choice is not None


@dataclass(frozen=True)
class Assessment:
    enforced: bool
    reasons: tuple[str, ...]
    options: tuple[UserChoice, ...]
    elapsed_seconds: int
    deferrals_remaining: int
    aborts_remaining: int


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    reason: str
    enforced: bool = False
    options: tuple[UserChoice, ...] = ()
    schedule_at: datetime | None = None
    next_state: PersistedState | None = None
    reset_cycle: bool = False
    # Installs the user did not pick themselves get a countdown warning first.
    countdown: bool = False

    @property
    def mutates_state(self) -> bool:
        return self.next_state is not None or self.reset_cycle


ALL_OPTIONS = (UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY, UserChoice.DEFER)
ENFORCED_OPTIONS = (UserChoice.INSTALL_NOW, UserChoice.SCHEDULE_TODAY)


def assess(config: EffectiveConfig, state: PersistedState, now: int) -> Assessment:
    elapsed = max(0, int(now) - int(state.first_prompt_date))
    reasons = []
    if state.defer_count >= config.max_deferrals:
        reasons.append("deferral_limit")
    if elapsed >= config.force_timeout_seconds:
        reasons.append("force_timeout")
    # Both ceilings may trip together; they collapse into one enforced flag.
    enforced = bool(reasons)
    return Assessment(
        enforced=enforced,
        reasons=tuple(reasons),
        options=ENFORCED_OPTIONS if enforced else ALL_OPTIONS,
        elapsed_seconds=elapsed,
        deferrals_remaining=max(0, config.max_deferrals - state.defer_count),
        aborts_remaining=max(0, config.max_aborts - state.abort_count),
    )


def plan(config: EffectiveConfig, state: PersistedState, now: int, *, scheduled: bool = False) -> Decision:
    """Decide what to do before any user interaction."""
    assessment = assess(config, state, now)
    if scheduled:
        return Decision(
            kind=DecisionKind.FORCE_INSTALL,
            reason="scheduled_trigger",
            enforced=True,
            reset_cycle=True,
            countdown=True,
        )
    if not assessment.enforced and state.deferred_until > int(now):
        return Decision(kind=DecisionKind.DEFERRAL_ACTIVE, reason="deferral_window_open")
    return Decision(
        kind=DecisionKind.PROMPT_USER,
        reason=",".join(assessment.reasons) or "prompt",
        enforced=assessment.enforced,
        options=assessment.options,
    )


def _abort(config: EffectiveConfig, state: PersistedState, enforced: bool, detail: str) -> Decision:
    reason = detail or "no_response"
    if not enforced:
        # Only aborts of an enforced prompt count toward the ceiling.
        return Decision(kind=DecisionKind.ABORTED, reason=reason, next_state=state)
    if state.abort_count >= config.max_aborts:
        return Decision(
            kind=DecisionKind.FORCE_INSTALL,
            reason="abort_limit",
            enforced=True,
            reset_cycle=True,
            countdown=True,
        )
    return Decision(
        kind=DecisionKind.ABORTED,
        reason=reason,
        enforced=True,
        next_state=replace(state, abort_count=state.abort_count + 1),
    )


def resolve_choice(
    config: EffectiveConfig,
    state: PersistedState,
    now: int,
    response: PromptResponse | None,
    *,
    offered: Sequence[UserChoice] | None = None,
) -> Decision:
    """Turn the prompt response into the transition to dispatch.

    ``offered`` is what the prompt actually showed. Enforcement for the answer
    follows it rather than ``now``, so a prompt left open across the timeout
    still honours the defer it offered.
    """
    if offered is None:
        offered = assess(config, state, now).options
    enforced = UserChoice.DEFER not in offered
    if response is None or not response.answered:
        return _abort(config, state, enforced, response.detail if response else "")
    choice = response.choice
    if choice is UserChoice.INSTALL_NOW:
        return Decision(
            kind=DecisionKind.FORCE_INSTALL,
            reason="user_install_now",
            enforced=enforced,
            reset_cycle=True,
        )
    if choice is UserChoice.SCHEDULE_TODAY:
        if response.slot is None:
            return _abort(config, state, enforced, "no_time_selected")
        return Decision(
            kind=DecisionKind.SCHEDULE_INSTALL,
            reason=f"user_scheduled:{response.slot.label}",
            enforced=enforced,
            schedule_at=response.slot.at,
        )
    if enforced:
        # Defer was not offered; reaching here means the prompt was bypassed.
        return Decision(
            kind=DecisionKind.FORCE_INSTALL,
            reason="defer_not_allowed",
            enforced=True,
            reset_cycle=True,
            countdown=True,
        )
    first_prompt = int(now) if state.defer_count == 0 else state.first_prompt_date
    next_state = replace(
        state,
        defer_count=state.defer_count + 1,
        first_prompt_date=max(first_prompt, state.first_prompt_date),
        deferred_until=int(now) + int(config.deferral_window_seconds),
    )
    return Decision(
        kind=DecisionKind.DEFER_GRANTED,
        reason=f"deferred:{next_state.defer_count}/{config.max_deferrals}",
        next_state=next_state,
    )
