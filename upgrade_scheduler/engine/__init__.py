"""Decision engine (pure) and schedule slot helpers."""

from __future__ import annotations

from .decision import (  # noqa: F401
    Assessment,
    Decision,
    DecisionKind,
    PromptResponse,
    UserChoice,
    assess,
    plan,
    resolve_choice,
)
from .slots import TimeSlot, generate_time_slots, parse_time_slot  # noqa: F401
