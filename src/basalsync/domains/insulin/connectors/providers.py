"""Concrete collaborator implementations for running the engine locally."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from pathlib import Path

from basalsync.core.bus.events import ProfileStoreChanged
from basalsync.domains.insulin.connectors import CommandResult, NotificationBus
from basalsync.domains.insulin.profile.loader import load_profile_store_file
from basalsync.domains.insulin.profile.models import Profile, ProfileStore

logger = logging.getLogger(__name__)


class LocalProfileSource:
    """Active profile source holding one ProfileStore at a time.

    Updates replace the whole store, so readers always see a consistent
    snapshot. Each update publishes ``ProfileStoreChanged`` when a bus is
    attached.
    """

    def __init__(
        self,
        store: ProfileStore | None = None,
        *,
        source_name: str = "local",
        path: str | Path | None = None,
        bus: NotificationBus | None = None,
    ) -> None:
        self._store = store
        self._source_name = source_name
        self._path = Path(path).expanduser() if path else None
        self._bus = bus

    def current_store(self) -> ProfileStore | None:
        return self._store

    @property
    def source_name(self) -> str:
        return self._source_name

    @property
    def path(self) -> Path | None:
        return self._path

    def attach_bus(self, bus: NotificationBus | None) -> None:
        self._bus = bus

    def replace(self, store: ProfileStore | None, *, reason: str = "replaced") -> None:
        """Swap in a new store and announce the change."""
        self._store = store
        logger.info(
            "Profile store %s: %d profile(s)",
            reason,
            len(store) if store is not None else 0,
        )
        if self._bus is not None:
            self._bus.publish(ProfileStoreChanged(reason=f"store {reason}"))

    def reload(self) -> ProfileStore:
        """Re-read the store file and replace the active store.

        Raises:
            RuntimeError: If the source has no file path.
            FileNotFoundError, ProfileFormatError: If the file cannot be loaded;
                the previous store stays active.
        """
        if self._path is None:
            raise RuntimeError(f"Profile source {self._source_name!r} has no file to reload")
        store = load_profile_store_file(self._path)
        self.replace(store, reason="reloaded")
        return store


class MockCommandQueue:
    """Simulated pump command queue. Always available.

    Pushes are applied in order on a worker thread. A push is ``enacted``
    only when the profile differs from the last one applied. Set
    ``failure_message`` to make every push fail with that message.
    """

    def __init__(self, *, failure_message: str | None = None) -> None:
        self.failure_message = failure_message
        self._queue: queue.Queue[tuple[Profile, Callable[[CommandResult], None]] | None] = (
            queue.Queue()
        )
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._applied: Profile | None = None

    @property
    def applied_profile(self) -> Profile | None:
        return self._applied

    def set_profile(self, profile: Profile, callback: Callable[[CommandResult], None]) -> None:
        with self._lock:
            self._ensure_worker_started_locked()
        self._queue.put((profile, callback))

    def close(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is not None:
            self._queue.put(None)
            worker.join(timeout)

    def _ensure_worker_started_locked(self) -> None:
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._run_loop, name="mock-command-queue", daemon=True)
        self._worker.start()

    def _run_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            profile, callback = item
            try:
                callback(self._apply(profile))
            except Exception:
                logger.exception("Profile push callback failed")

    def _apply(self, profile: Profile) -> CommandResult:
        if self.failure_message is not None:
            return CommandResult(success=False, enacted=False, message=self.failure_message)
        if profile == self._applied:
            return CommandResult(success=True, enacted=False, message="Profile unchanged")
        self._applied = profile
        return CommandResult(success=True, enacted=True, message="Basal profile set")


class LoggingAlertSink:
    """Alert surface that writes user-facing errors to the log."""

    def show_error(self, title: str, message: str, sound_id: str) -> None:
        logger.error("%s: %s [sound=%s]", title, message, sound_id)
