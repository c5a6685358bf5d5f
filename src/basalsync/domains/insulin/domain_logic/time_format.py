"""Clock and display helpers for epoch-millisecond timestamps."""

from __future__ import annotations

import time

MS_PER_MINUTE = 60_000


def now_millis() -> int:
    return int(time.time() * 1000)


def until_string(end_ms: int, now_ms: int) -> str:
    """Remaining time until ``end_ms`` as a display suffix, e.g. ``" (in 1h 05m)"``."""
    if end_ms <= now_ms:
        return " (ended)"
    remaining_minutes = -(-(end_ms - now_ms) // MS_PER_MINUTE)  # round up
    hours, minutes = divmod(remaining_minutes, 60)
    if hours:
        return f" (in {hours}h {minutes:02d}m)"
    return f" (in {minutes}m)"
