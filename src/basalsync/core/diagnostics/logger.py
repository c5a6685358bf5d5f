"""Diagnostics logger: persistent trail of profile integrity anomalies.

An anomaly is recorded when the switch history is non-empty but no profile
can be resolved, e.g. the profile named by the active switch was deleted
from the store. Each entry keeps the context the resolver saw (timestamp,
history size, reason) for later investigation.

* ``report_anomaly`` never raises: diagnostics are best-effort.
* ``context_json`` holds string values only; no profile data is stored.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from basalsync.core.storage.database import ProfileDatabase

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DiagnosticEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class DiagnosticEvent:
    """A single diagnostics log entry."""

    kind: str                            # 'profile_integrity_anomaly' | ...
    item_id: str = ""
    reason: str = ""
    context: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# DiagnosticsLogger
# ---------------------------------------------------------------------------

class DiagnosticsLogger:
    """Records diagnostic events to the ``diagnostics_log`` SQLite table.

    Usage::

        diagnostics = DiagnosticsLogger(profile_db)
        diagnostics.report_anomaly({
            "item_id": "CaughtError",
            "start_date": "1767225600000",
            "history_size": "3",
            "reason": "name_not_in_store",
        })
    """

    ANOMALY_KIND = "profile_integrity_anomaly"

    def __init__(self, database: ProfileDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: DiagnosticEvent) -> str:
        """Insert a diagnostic event and return its UUID (empty string on failure)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        context_json = (
            json.dumps(event.context, sort_keys=True, separators=(",", ":"))
            if event.context
            else None
        )

        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """INSERT INTO diagnostics_log
                       (id, timestamp, kind, item_id, reason, context_json)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        now,
                        event.kind,
                        event.item_id or None,
                        event.reason or None,
                        context_json,
                    ),
                )
        except Exception:
            logger.exception("Failed to write diagnostic event; event lost")
            return ""

        return event_id

    def report_anomaly(self, context: Mapping[str, str]) -> None:
        """DiagnosticsSink entry point used by the resolver."""
        context = {str(k): str(v) for k, v in context.items()}
        self.log_event(DiagnosticEvent(
            kind=self.ANOMALY_KIND,
            item_id=context.get("item_id", ""),
            reason=context.get("reason", ""),
            context=context,
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        kind: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query diagnostic events, newest first.

        Args:
            kind: Filter by event kind.
            since: ISO 8601 timestamp lower bound.
            limit: Maximum events to return.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if kind:
            conditions.append("kind = ?")
            params.append(kind)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM diagnostics_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        with self._db.lock:
            rows = self._db.connection.execute(query, params).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            event["context"] = json.loads(event.pop("context_json") or "{}")
            events.append(event)
        return events

    def count_events(self, *, since: str | None = None) -> int:
        """Count diagnostic events, optionally since a timestamp."""
        with self._db.lock:
            if since:
                row = self._db.connection.execute(
                    "SELECT COUNT(*) FROM diagnostics_log WHERE timestamp >= ?", (since,)
                ).fetchone()
            else:
                row = self._db.connection.execute(
                    "SELECT COUNT(*) FROM diagnostics_log"
                ).fetchone()
        return row[0]
