"""Profile resolver: which basal profile is in effect at a given time.

Resolution reads the switch history and the active profile store:

1. Take the latest switch with ``effective_from <= time`` (later insertion
   wins ties).
2. No switch -> not found.
3. Embedded snapshot -> the snapshot, as frozen when the switch was made.
4. Store reference -> the named profile from the *current* store, unmodified.
   A name that has vanished from the store is not found; there is no
   fallback to another profile.

A persisted switch that cannot be read back resolves as ``CORRUPT_RECORD``.

Failures are returned as ``ResolutionNotFound`` values. When the history is
non-empty and resolution still fails, the failure is logged at ERROR and
reported to the diagnostics sink.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Union

from basalsync.domains.insulin.connectors import (
    ActiveStoreProvider,
    DiagnosticsSink,
    SwitchHistoryProvider,
)
from basalsync.domains.insulin.domain_logic.time_format import now_millis, until_string
from basalsync.domains.insulin.profile.models import MGDL, Profile, ProfileFormatError
from basalsync.domains.insulin.switches.models import EmbeddedSnapshot, ProfileSwitchRecord
from basalsync.domains.insulin.switches.repository import RepositoryError

logger = logging.getLogger(__name__)

NO_PROFILE_SELECTED = "No profile selected"


class NotFoundReason(str, Enum):
    NO_RECORD = "no_record"
    NO_ACTIVE_STORE = "no_active_store"
    NAME_NOT_IN_STORE = "name_not_in_store"
    CORRUPT_SNAPSHOT = "corrupt_snapshot"
    CORRUPT_RECORD = "corrupt_record"


@dataclass(frozen=True)
class ResolutionNotFound:
    """No profile is in effect at ``time``."""

    time: int
    reason: NotFoundReason
    record: ProfileSwitchRecord | None = None


Resolution = Union[Profile, ResolutionNotFound]


class ProfileResolver:
    """Resolves the active profile and its display name.

    One instance per running system, built by the composition root. All
    methods are synchronous reads and safe to call from any thread as long
    as the history and store provider give snapshot-consistent reads.

    Usage::

        resolver = ProfileResolver(store_provider, history, diagnostics)
        profile = resolver.get_profile()
        label = resolver.profile_name_with_duration()
    """

    def __init__(
        self,
        store_provider: ActiveStoreProvider,
        history: SwitchHistoryProvider,
        diagnostics: DiagnosticsSink,
        *,
        clock: Callable[[], int] = now_millis,
        units: str = MGDL,
        no_profile_label: str = NO_PROFILE_SELECTED,
    ) -> None:
        self._store_provider = store_provider
        self._history = history
        self._diagnostics = diagnostics
        self._clock = clock
        self._units = units
        self._no_profile_label = no_profile_label

    @property
    def units(self) -> str:
        """Glucose units configured for the system."""
        return self._units

    def now(self) -> int:
        return self._clock()

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def profile_name(
        self,
        time: int | None = None,
        customized: bool = True,
        with_remaining_time: bool = False,
    ) -> str:
        """Human-readable label of the profile in effect at ``time`` (default: now)."""
        now = self._clock()
        at = now if time is None else time
        try:
            record = self._history.latest_at_or_before(at)
        except RepositoryError as exc:
            logger.error("Switch record in effect at %d is unreadable: %s", at, exc)
            return self._no_profile_label
        return self.display_name(
            record, customized=customized, with_remaining_time=with_remaining_time, now=now
        )

    def profile_name_with_duration(self) -> str:
        return self.profile_name(customized=True, with_remaining_time=True)

    def display_name(
        self,
        record: ProfileSwitchRecord | None,
        *,
        customized: bool = True,
        with_remaining_time: bool = False,
        now: int | None = None,
    ) -> str:
        """Label for ``record``; only embedded snapshots carry a customized name."""
        if record is None:
            return self._no_profile_label

        if record.is_embedded and customized:
            name = record.customized_name
        else:
            name = record.profile_name
        if not record.is_embedded:
            store = self._store_provider.current_store()
            if store is None or record.profile_name not in store:
                logger.debug("Profile %r named by switch is not in the active store", name)

        if with_remaining_time and record.original_end is not None:
            name += until_string(record.original_end, self._clock() if now is None else now)
        return name

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def resolve_profile(self, time: int | None = None) -> Resolution:
        """Return the Profile in effect at ``time`` (default: now), or ResolutionNotFound."""
        return self.resolve_with_record(time)[1]

    def resolve_with_record(
        self, time: int | None = None
    ) -> tuple[ProfileSwitchRecord | None, Resolution]:
        """Resolve at ``time`` and also return the switch record the result came from."""
        at = self._clock() if time is None else time
        try:
            record = self._history.latest_at_or_before(at)
        except RepositoryError as exc:
            logger.error("Switch record in effect at %d is unreadable: %s", at, exc)
            return None, self._not_found(at, NotFoundReason.CORRUPT_RECORD)
        if record is None:
            return None, self._not_found(at, NotFoundReason.NO_RECORD)

        if isinstance(record.selection, EmbeddedSnapshot):
            try:
                return record, record.profile_object()
            except ProfileFormatError as exc:
                logger.error("Embedded snapshot of %r is corrupt: %s", record.profile_name, exc)
                return record, self._not_found(at, NotFoundReason.CORRUPT_SNAPSHOT, record)

        store = self._store_provider.current_store()
        if store is None:
            return record, self._not_found(at, NotFoundReason.NO_ACTIVE_STORE, record)
        profile = store.get_specific_profile(record.profile_name)
        if profile is None:
            return record, self._not_found(at, NotFoundReason.NAME_NOT_IN_STORE, record)
        return record, profile

    def get_profile(self, time: int | None = None) -> Profile | None:
        """Like ``resolve_profile`` but returns None instead of ResolutionNotFound."""
        result = self.resolve_profile(time)
        return None if isinstance(result, ResolutionNotFound) else result

    def is_profile_valid(self, context: str, time: int | None = None) -> bool:
        """True if a profile resolves at ``time`` and passes its own validity check."""
        profile = self.get_profile(time)
        return profile is not None and profile.is_valid(context)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _not_found(
        self,
        time: int,
        reason: NotFoundReason,
        record: ProfileSwitchRecord | None = None,
    ) -> ResolutionNotFound:
        if self._history.is_empty():
            logger.debug("No profile switch recorded yet (time=%d)", time)
        else:
            history_size = self._history.count()
            logger.error(
                "Profile resolution failed at %d: %s (history size %d, profile %r)",
                time,
                reason.value,
                history_size,
                record.profile_name if record else None,
            )
            self._report_anomaly(time, reason, history_size, record)
        return ResolutionNotFound(time=time, reason=reason, record=record)

    def _report_anomaly(
        self,
        time: int,
        reason: NotFoundReason,
        history_size: int,
        record: ProfileSwitchRecord | None,
    ) -> None:
        context = {
            "item_id": "CaughtError",
            "start_date": str(time),
            "history_size": str(history_size),
            "reason": reason.value,
        }
        if record is not None:
            context["profile_name"] = record.profile_name
            context["switch_effective_from"] = str(record.effective_from)
        try:
            self._diagnostics.report_anomaly(context)
        except Exception:
            logger.exception("Diagnostics sink failed to record anomaly")
