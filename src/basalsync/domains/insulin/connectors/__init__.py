"""Collaborator interfaces consumed by the profile engine.

The resolver and notifier only see these protocols. Concrete profile
sources, histories, pump command queues and alert surfaces are wired in by
the composition root.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from basalsync.domains.insulin.profile.models import Profile, ProfileStore
from basalsync.domains.insulin.switches.models import ProfileSwitchRecord


@dataclass(frozen=True)
class CommandResult:
    """Outcome reported by the command queue for a profile push."""

    success: bool
    enacted: bool = False  # the pump actually switched to the new profile
    message: str = ""


@runtime_checkable
class ActiveStoreProvider(Protocol):
    """The currently selected profile source."""

    def current_store(self) -> ProfileStore | None:
        """Latest store snapshot, or None when no profile source is configured."""
        ...

    @property
    def source_name(self) -> str:
        """Label recorded on switches built from this source."""
        ...


@runtime_checkable
class SwitchHistoryProvider(Protocol):
    """Read access to the profile switch history."""

    def latest_at_or_before(self, time: int) -> ProfileSwitchRecord | None:
        """Record with the greatest ``effective_from <= time``; later insertion wins ties."""
        ...

    def is_empty(self) -> bool: ...

    def count(self) -> int: ...


@runtime_checkable
class CommandQueue(Protocol):
    """Asynchronous pump command queue."""

    def set_profile(self, profile: Profile, callback: Callable[[CommandResult], None]) -> None:
        """Queue a profile push; ``callback`` may run on any thread."""
        ...


@runtime_checkable
class AlertSink(Protocol):
    """User-facing error surface. Must not block."""

    def show_error(self, title: str, message: str, sound_id: str) -> None: ...


@runtime_checkable
class NotificationBus(Protocol):
    """In-process publish/subscribe."""

    def subscribe(self, event_type: type, callback: Callable[[Any], None]) -> UUID: ...

    def unsubscribe(self, subscription_id: UUID) -> bool: ...

    def publish(self, event: Any) -> None: ...


@runtime_checkable
class DiagnosticsSink(Protocol):
    """Best-effort anomaly reporting. Must not block or raise."""

    def report_anomaly(self, context: Mapping[str, str]) -> None: ...
