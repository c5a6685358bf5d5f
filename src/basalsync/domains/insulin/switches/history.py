"""In-memory profile switch history."""

from __future__ import annotations

import threading
from bisect import bisect_right

from basalsync.domains.insulin.switches.models import ProfileSwitchRecord


class InMemorySwitchHistory:
    """Append-only switch history kept sorted by ``effective_from``.

    Records with equal ``effective_from`` stay in insertion order, so the
    later insertion is found first by ``latest_at_or_before``. Readers work
    on an immutable snapshot and never take the lock.

    Usage::

        history = InMemorySwitchHistory()
        history.add(record)
        current = history.latest_at_or_before(now_ms)
    """

    def __init__(self, records: list[ProfileSwitchRecord] | None = None) -> None:
        self._lock = threading.Lock()
        # (records, effective_from keys), replaced as a whole on every append
        self._snapshot: tuple[tuple[ProfileSwitchRecord, ...], tuple[int, ...]] = ((), ())
        for record in records or []:
            self.add(record)

    def add(self, record: ProfileSwitchRecord) -> None:
        with self._lock:
            records, keys = self._snapshot
            # bisect_right places the new record after any existing ties.
            index = bisect_right(keys, record.effective_from)
            self._snapshot = (
                records[:index] + (record,) + records[index:],
                keys[:index] + (record.effective_from,) + keys[index:],
            )

    def latest_at_or_before(self, time: int) -> ProfileSwitchRecord | None:
        records, keys = self._snapshot
        index = bisect_right(keys, time)
        return records[index - 1] if index else None

    def is_empty(self) -> bool:
        return not self._snapshot[0]

    def count(self) -> int:
        return len(self._snapshot[0])

    def all(self) -> list[ProfileSwitchRecord]:
        """All records in time order (ties in insertion order)."""
        return list(self._snapshot[0])
