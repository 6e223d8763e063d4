"""Prompt collaborator.

``DialogPrompt`` drives a swiftDialog-compatible binary with ``--select`` and
``--jsonoutput`` and deserializes its output into a typed ``PromptResponse``.
Any failure (non-zero exit, missing binary, unparseable or unexpected JSON)
is reported as "no response"; it never raises into the engine.
"""

from __future__ import annotations

import json
import subprocess
from datetime import datetime
from typing import Any, Callable, Protocol, Sequence

from upgrade_scheduler.engine.decision import PromptResponse, UserChoice
from upgrade_scheduler.engine.slots import TimeSlot, generate_time_slots
from upgrade_scheduler.kernel.config import EffectiveConfig
from upgrade_scheduler.kernel.logging import EventLogger, null_logger


class PromptCollaborator(Protocol):
    def choose_action(self, options: Sequence[UserChoice], *, enforced: bool) -> PromptResponse:
        ...

    def choose_time(self, slots: Sequence[TimeSlot]) -> TimeSlot | None:
        ...

    def countdown(self, seconds: int) -> None:
        ...


def collect_response(
    prompt: PromptCollaborator,
    options: Sequence[UserChoice],
    *,
    enforced: bool,
    clock: Callable[[], datetime] = datetime.now,
) -> PromptResponse:
    """Ask for an action and, for schedule-today, a time slot.

    Slots are built from ``clock()`` after the action dialog closes; it may
    have been open for hours.
    """
    response = prompt.choose_action(options, enforced=enforced)
    if response.choice is not UserChoice.SCHEDULE_TODAY:
        # A defer that was not offered passes through; the engine forces the install.
        return response
    slots = generate_time_slots(clock())
    slot = prompt.choose_time(slots)
    if slot is None:
        return PromptResponse(choice=UserChoice.SCHEDULE_TODAY, slot=None, detail="no_time_selected")
    return PromptResponse(choice=UserChoice.SCHEDULE_TODAY, slot=slot)


def _extract_json(text: str) -> Any:
    text = str(text or "").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    # Some dialog builds print warnings before the JSON body.
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        return json.loads(text[start : end + 1])
    except ValueError:
        return None


def parse_selection(text: str) -> str | None:
    """Selected option label from dialog JSON output, or ``None``."""
    data = _extract_json(text)
    if not isinstance(data, dict):
        return None
    selected = data.get("SelectedOption")
    if isinstance(selected, str) and selected.strip():
        return selected.strip()
    for value in data.values():
        if isinstance(value, dict):
            nested = value.get("selectedValue")
            if isinstance(nested, str) and nested.strip():
                return nested.strip()
    return None


Runner = Callable[..., "subprocess.CompletedProcess[str]"]

_COUNTDOWN_GRACE_S = 30


class DialogPrompt:
    def __init__(
        self,
        config: EffectiveConfig,
        *,
        runner: Runner = subprocess.run,
        logger: EventLogger | None = None,
    ) -> None:
        self._config = config
        self._runner = runner
        self._log = logger or null_logger()

    def _labels(self) -> dict[UserChoice, str]:
        cfg = self._config
        return {
            UserChoice.INSTALL_NOW: cfg.install_now_text,
            UserChoice.SCHEDULE_TODAY: cfg.schedule_today_text,
            UserChoice.DEFER: cfg.defer_text,
        }

    def _base_args(self, title: str, message: str, *, height: int, width: int) -> list[str]:
        cfg = self._config
        return [
            cfg.dialog_path,
            "--title", title,
            "--message", message,
            "--button1text", "Confirm",
            "--height", str(height),
            "--width", str(width),
            "--moveable",
            "--icon", cfg.dialog_icon,
            "--ontop",
            "--timeout", "0",
            "--showicon", "true",
            "--position", cfg.dialog_position,
            "--messagefont", "size=14",
        ]

    def _select(self, args: list[str], values: Sequence[str], default: str, select_title: str) -> str | None:
        argv = args + [
            "--selecttitle", select_title,
            "--select",
            "--selectvalues", ",".join(values),
            "--selectdefault", default,
            "--jsonoutput",
        ]
        try:
            proc = self._runner(argv, capture_output=True, text=True, check=False)
        except OSError as exc:
            self._log.warning("dialog_unavailable", error=str(exc))
            return None
        self._log.debug("dialog_exit", returncode=proc.returncode, stdout=str(proc.stdout or "")[-2000:])
        if proc.returncode != 0:
            return None
        selection = parse_selection(proc.stdout)
        if selection not in values:
            self._log.warning("dialog_unexpected_selection", selection=str(selection))
            return None
        return selection

    def choose_action(self, options: Sequence[UserChoice], *, enforced: bool) -> PromptResponse:
        labels = self._labels()
        values = [labels[opt] for opt in options]
        message = self._config.dialog_message
        if enforced:
            message += (
                "\n\nThe deferral limit has been reached. Closing this window without"
                " choosing counts toward an automatic installation."
            )
        args = self._base_args(self._config.dialog_title, message, height=250, width=550)
        selection = self._select(args, values, labels[UserChoice.INSTALL_NOW], "Select an action:")
        if selection is None:
            return PromptResponse.no_response("no_selection")
        by_label = {labels[opt]: opt for opt in options}
        self._log.info("user_selected", selection=selection)
        return PromptResponse(choice=by_label[selection])

    def choose_time(self, slots: Sequence[TimeSlot]) -> TimeSlot | None:
        if not slots:
            return None
        values = [slot.label for slot in slots]
        args = self._base_args("Schedule Installation", "Select installation time:", height=280, width=500)
        selection = self._select(args, values, values[0], "Choose time:")
        if selection is None:
            return None
        self._log.info("user_selected_time", slot=selection)
        return next(slot for slot in slots if slot.label == selection)

    def countdown(self, seconds: int) -> None:
        """Warn before an install the user did not start.

        Returns when the timer runs out or the user continues; a missing or
        failing dialog never holds the install back.
        """
        seconds = int(seconds)
        if seconds <= 0:
            return
        cfg = self._config
        argv = [
            cfg.dialog_path,
            "--title", cfg.preinstall_title,
            "--message", cfg.preinstall_message,
            "--button1text", cfg.preinstall_continue_text,
            "--height", "180",
            "--width", "450",
            "--moveable",
            "--icon", cfg.dialog_icon,
            "--ontop",
            "--timer", str(seconds),
            "--position", cfg.dialog_position,
        ]
        self._log.info("preinstall_countdown", seconds=seconds)
        try:
            proc = self._runner(
                argv, capture_output=True, text=True, check=False, timeout=seconds + _COUNTDOWN_GRACE_S
            )
        except subprocess.TimeoutExpired:
            self._log.warning("preinstall_countdown_stuck", seconds=seconds)
            return
        except OSError as exc:
            self._log.warning("dialog_unavailable", error=str(exc))
            return
        self._log.info("preinstall_countdown_done", returncode=proc.returncode)
