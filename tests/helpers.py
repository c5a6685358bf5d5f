"""Builders and fake collaborators shared by the basalsync tests.

``tests/`` is on pytest's ``pythonpath`` (see ``pyproject.toml``), so test
modules import these with ``from helpers import ...``.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

from basalsync.domains.insulin.connectors import CommandResult
from basalsync.domains.insulin.profile.models import Profile, ProfileStore
from basalsync.domains.insulin.switches.models import (
    EmbeddedSnapshot,
    ProfileSwitchRecord,
    StoreReference,
)

T0 = 1_767_225_600_000  # 2026-01-01T00:00:00Z in epoch ms
MINUTE = 60_000


def make_profile_doc(
    basal: list[tuple[str, float]] | None = None,
    isf: float = 50.0,
    ic: float = 10.0,
    target_low: float = 100.0,
    target_high: float = 120.0,
    dia: float = 5.0,
    units: str = "mg/dl",
) -> dict[str, Any]:
    """Create a Nightscout profile document with sensible defaults."""
    basal = basal or [("00:00", 0.8), ("06:00", 1.2), ("22:00", 0.9)]
    return {
        "dia": dia,
        "units": units,
        "timezone": "UTC",
        "basal": [{"time": t, "value": v} for t, v in basal],
        "sens": [{"time": "00:00", "value": isf}],
        "carbratio": [{"time": "00:00", "value": ic}, {"time": "12:00", "value": ic * 1.5}],
        "target_low": [{"time": "00:00", "value": target_low}],
        "target_high": [{"time": "00:00", "value": target_high}],
    }


def make_profile(**kwargs: Any) -> Profile:
    return Profile.from_dict(make_profile_doc(**kwargs))


def make_store_doc(**profiles: dict[str, Any]) -> dict[str, Any]:
    profiles = profiles or {
        "Default": make_profile_doc(),
        "Sport": make_profile_doc(basal=[("00:00", 0.5)]),
    }
    return {"defaultProfile": next(iter(profiles)), "store": profiles}


def reference_switch(name: str, effective_from: int, **kwargs: Any) -> ProfileSwitchRecord:
    return ProfileSwitchRecord(
        effective_from=effective_from, selection=StoreReference(name), **kwargs
    )


def embedded_switch(
    name: str, profile: Profile, effective_from: int, **kwargs: Any
) -> ProfileSwitchRecord:
    return ProfileSwitchRecord(
        effective_from=effective_from,
        selection=EmbeddedSnapshot(name=name, profile_json=profile.to_json()),
        **kwargs,
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakeStoreProvider:
    """ActiveStoreProvider returning whatever store the test sets."""

    def __init__(self, store: ProfileStore | None = None, source_name: str = "fake") -> None:
        self.store = store
        self._source_name = source_name

    def current_store(self) -> ProfileStore | None:
        return self.store

    @property
    def source_name(self) -> str:
        return self._source_name


class RecordingDiagnostics:
    """DiagnosticsSink that keeps every reported context."""

    def __init__(self) -> None:
        self.reports: list[dict[str, str]] = []

    def report_anomaly(self, context) -> None:
        self.reports.append(dict(context))


class RecordingAlertSink:
    def __init__(self) -> None:
        self.errors: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def show_error(self, title: str, message: str, sound_id: str) -> None:
        with self._lock:
            self.errors.append((title, message, sound_id))


class ManualCommandQueue:
    """CommandQueue that holds pushes until the test completes them."""

    def __init__(self) -> None:
        self.pushes: list[tuple[Profile, Callable[[CommandResult], None]]] = []
        self._lock = threading.Lock()

    def set_profile(self, profile: Profile, callback: Callable[[CommandResult], None]) -> None:
        with self._lock:
            self.pushes.append((profile, callback))

    def complete(self, index: int, result: CommandResult) -> None:
        _, callback = self.pushes[index]
        callback(result)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self.pushes)
