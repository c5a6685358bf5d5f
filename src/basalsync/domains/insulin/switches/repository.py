"""Persistent profile switch history backed by SQLite.

Embedded profile snapshots are encrypted with ``SnapshotEncryptor`` before
they are written; the columns used for time queries stay in plain text.
"""

from __future__ import annotations

import logging
import sqlite3

from basalsync.core.storage.database import ProfileDatabase
from basalsync.core.storage.encryption import EncryptionError, SnapshotEncryptor
from basalsync.domains.insulin.switches.models import (
    EmbeddedSnapshot,
    ProfileSwitchRecord,
    StoreReference,
    SwitchSource,
)

logger = logging.getLogger(__name__)

_KIND_STORE_REFERENCE = "store_reference"
_KIND_EMBEDDED = "embedded"


class RepositoryError(Exception):
    """Raised when a stored switch cannot be read back."""


class SwitchRepository:
    """Append-only switch history persisted in the ``profile_switches`` table.

    ``latest_at_or_before`` is a single indexed query on
    ``(effective_from, seq)``; ``seq`` is the insertion order, so the most
    recently inserted record wins ties.

    Usage::

        db = ProfileDatabase(":memory:")
        db.initialize()
        repo = SwitchRepository(db, SnapshotEncryptor(key="..."))

        repo.add(record)
        current = repo.latest_at_or_before(now_ms)
    """

    def __init__(self, database: ProfileDatabase, encryptor: SnapshotEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add(self, record: ProfileSwitchRecord) -> int:
        """Persist a switch record and return its sequence number."""
        selection = record.selection
        if isinstance(selection, EmbeddedSnapshot):
            kind, profile_json_enc = _KIND_EMBEDDED, self._enc.encrypt(selection.profile_json)
        else:
            kind, profile_json_enc = _KIND_STORE_REFERENCE, None

        with self._db.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO profile_switches (
                    effective_from, source, selection_kind, profile_name, profile_json_enc,
                    duration_minutes, percentage, time_shift_minutes, profile_source
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.effective_from,
                    record.source.value,
                    kind,
                    selection.name,
                    profile_json_enc,
                    record.duration_minutes,
                    record.percentage,
                    record.time_shift_minutes,
                    record.profile_source or None,
                ),
            )
        seq = cursor.lastrowid
        logger.info(
            "Saved profile switch %d: %s at %d (%s, %d min)",
            seq,
            record.customized_name,
            record.effective_from,
            kind,
            record.duration_minutes,
        )
        return seq

    def rotate_snapshots(self) -> int:
        """Re-encrypt every embedded snapshot under the current primary key.

        Returns the number of rows rewritten. Rows no configured key can
        decrypt are left as they are and logged.
        """
        rotated = 0
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT seq, profile_json_enc FROM profile_switches WHERE profile_json_enc IS NOT NULL"
            ).fetchall()
            for row in rows:
                try:
                    token = self._enc.rotate(row["profile_json_enc"])
                except EncryptionError:
                    logger.error("Cannot rotate snapshot of profile switch %d", row["seq"])
                    continue
                conn.execute(
                    "UPDATE profile_switches SET profile_json_enc = ? WHERE seq = ?",
                    (token, row["seq"]),
                )
                rotated += 1
        logger.info("Rotated %d profile snapshot(s)", rotated)
        return rotated

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def latest_at_or_before(self, time: int) -> ProfileSwitchRecord | None:
        with self._db.lock:
            row = self._db.connection.execute(
                """SELECT * FROM profile_switches
                   WHERE effective_from <= ?
                   ORDER BY effective_from DESC, seq DESC
                   LIMIT 1""",
                (time,),
            ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def get_switches(
        self,
        *,
        since: int | None = None,
        until: int | None = None,
        limit: int = 100,
    ) -> list[ProfileSwitchRecord]:
        """Query switches in a time window, newest first.

        Args:
            since: Lower bound on ``effective_from`` (epoch ms, inclusive).
            until: Upper bound on ``effective_from`` (epoch ms, inclusive).
            limit: Maximum results to return.
        """
        conditions: list[str] = []
        params: list[int] = []
        if since is not None:
            conditions.append("effective_from >= ?")
            params.append(since)
        if until is not None:
            conditions.append("effective_from <= ?")
            params.append(until)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = (
            f"SELECT * FROM profile_switches{where} "
            "ORDER BY effective_from DESC, seq DESC LIMIT ?"
        )
        params.append(limit)

        with self._db.lock:
            rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count(self) -> int:
        with self._db.lock:
            row = self._db.connection.execute("SELECT COUNT(*) FROM profile_switches").fetchone()
        return row[0]

    def is_empty(self) -> bool:
        return self.count() == 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _row_to_record(self, row: sqlite3.Row) -> ProfileSwitchRecord:
        if row["selection_kind"] == _KIND_EMBEDDED:
            try:
                profile_json = self._enc.decrypt(row["profile_json_enc"]) or ""
            except EncryptionError:
                # Left empty: the resolver reports it as a corrupt snapshot.
                logger.error("Cannot decrypt snapshot of profile switch %d", row["seq"])
                profile_json = ""
            selection = EmbeddedSnapshot(name=row["profile_name"], profile_json=profile_json)
        else:
            selection = StoreReference(name=row["profile_name"])

        try:
            return ProfileSwitchRecord(
                effective_from=row["effective_from"],
                selection=selection,
                source=SwitchSource(row["source"]),
                duration_minutes=row["duration_minutes"],
                percentage=row["percentage"],
                time_shift_minutes=row["time_shift_minutes"],
                profile_source=row["profile_source"] or "",
            )
        except ValueError as exc:
            raise RepositoryError(f"Unreadable profile switch {row['seq']}: {exc}") from exc
