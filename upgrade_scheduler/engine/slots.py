"""Schedule-today time slots.

Slots run on the half hour from the next full hour to 23:30. Late in the
evening, when fewer than three slots remain, whole-hour "Tomorrow" slots from
08:00 are appended so the user is never left with a near-empty list.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

_MIN_TODAY_SLOTS = 3
_TOMORROW_FIRST_HOUR = 8
_TOMORROW_PREFIX = "Tomorrow "
_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass(frozen=True)
class TimeSlot:
    label: str
    at: datetime

    @property
    def tomorrow(self) -> bool:
        return self.label.startswith(_TOMORROW_PREFIX)


def _at(base: datetime, hour: int, minute: int, *, days: int = 0) -> datetime:
    day = (base + timedelta(days=days)).date()
    return datetime(day.year, day.month, day.day, hour, minute)


def generate_time_slots(now: datetime) -> list[TimeSlot]:
    slots: list[TimeSlot] = []
    next_hour = now.hour + 1
    for hour in range(next_hour, 24):
        for minute in (0, 30):
            slots.append(TimeSlot(label=f"{hour:02d}:{minute:02d}", at=_at(now, hour, minute)))
    if len(slots) < _MIN_TODAY_SLOTS:
        for hour in range(_TOMORROW_FIRST_HOUR, next_hour):
            slots.append(TimeSlot(label=f"{_TOMORROW_PREFIX}{hour:02d}:00", at=_at(now, hour, 0, days=1)))
    return slots


def parse_time_slot(label: str, now: datetime) -> TimeSlot | None:
    """Turn a slot label back into a slot; ``None`` for anything malformed."""
    text = str(label or "").strip()
    days = 0
    if text.startswith(_TOMORROW_PREFIX):
        days = 1
        text = text[len(_TOMORROW_PREFIX):].strip()
    match = _HHMM.match(text)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    at = _at(now, hour, minute, days=days)
    if at <= now:
        return None
    canonical = f"{_TOMORROW_PREFIX if days else ''}{hour:02d}:{minute:02d}"
    return TimeSlot(label=canonical, at=at)
