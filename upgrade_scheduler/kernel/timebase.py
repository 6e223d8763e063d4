"""Time utilities.

State timestamps are integer epoch seconds (UTC). Schedule slots and trigger
calendar intervals are local wall-clock times, matching how launchd reads
``StartCalendarInterval``.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def epoch_now() -> int:
    return int(time.time())


def local_datetime(epoch: int | float) -> datetime:
    """Naive local wall-clock datetime for an epoch timestamp."""
    return datetime.fromtimestamp(float(epoch))


def utc_iso_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    text = dt.astimezone(timezone.utc).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def utc_now_z() -> str:
    return utc_iso_z(datetime.now(timezone.utc))


def format_duration(seconds: int | float) -> str:
    """Compact ``1d02h03m`` rendering for log lines."""
    total = max(0, int(seconds))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d{hours:02d}h{minutes:02d}m"
    if hours:
        return f"{hours}h{minutes:02d}m"
    return f"{minutes}m"
