"""Profile change notifier: pushes the resolved profile to the pump.

On every ``ProfileStoreChanged`` event the notifier resolves the current
profile and asks the command queue to set it. At most one push is in
flight; events arriving meanwhile are coalesced into a single re-resolve
once the push completes.

State machine::

    IDLE --signal--> PUSHING --completion / not found--> IDLE
                        |  signal while PUSHING: remember, re-run after completion
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from uuid import UUID

from basalsync.core.bus.events import ActiveProfileChanged, ProfileStoreChanged
from basalsync.domains.insulin.connectors import (
    AlertSink,
    CommandQueue,
    CommandResult,
    NotificationBus,
)
from basalsync.domains.insulin.domain_logic.resolver import ProfileResolver, ResolutionNotFound

logger = logging.getLogger(__name__)


class NotifierState(str, Enum):
    IDLE = "idle"
    PUSHING = "pushing"


class ProfileChangeNotifier:
    """Reacts to profile store changes by pushing the active profile.

    Usage::

        notifier = ProfileChangeNotifier(resolver, command_queue, alerts)
        notifier.start(bus)
        ...
        notifier.stop()
    """

    def __init__(
        self,
        resolver: ProfileResolver,
        command_queue: CommandQueue,
        alerts: AlertSink,
        *,
        error_title: str = "Failed to update basal profile",
        sound_id: str = "bolus_error",
    ) -> None:
        self._resolver = resolver
        self._command_queue = command_queue
        self._alerts = alerts
        self._error_title = error_title
        self._sound_id = sound_id

        self._cond = threading.Condition()
        self._state = NotifierState.IDLE
        self._requested = False
        self._stopping = False
        self._bus: NotificationBus | None = None
        self._subscription: UUID | None = None
        self._worker: threading.Thread | None = None

    @property
    def state(self) -> NotifierState:
        with self._cond:
            return self._state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, bus: NotificationBus) -> None:
        """Subscribe to ``ProfileStoreChanged`` on ``bus`` and start the worker."""
        with self._cond:
            if self._worker is not None:
                raise RuntimeError("Notifier already started")
            self._stopping = False
            self._bus = bus
            self._worker = threading.Thread(
                target=self._run_loop, name="profile-change-notifier", daemon=True
            )
            self._worker.start()
        self._subscription = bus.subscribe(ProfileStoreChanged, self._on_store_changed)
        logger.info("Profile change notifier started")

    def stop(self, timeout: float | None = 5.0) -> None:
        """Unsubscribe and stop the worker. A push already queued is not cancelled."""
        if self._bus is not None and self._subscription is not None:
            self._bus.unsubscribe(self._subscription)
        self._subscription = None
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            worker, self._worker = self._worker, None
        if worker is not None:
            worker.join(timeout)
        logger.info("Profile change notifier stopped")

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no push is in flight or pending; False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._state is NotifierState.IDLE and not self._requested, timeout
            )

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _on_store_changed(self, event: ProfileStoreChanged) -> None:
        with self._cond:
            if self._state is NotifierState.PUSHING:
                logger.debug("Profile push in flight, coalescing %s", event)
            self._requested = True
            self._cond.notify_all()

    def _run_loop(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(
                    lambda: self._stopping
                    or (self._requested and self._state is NotifierState.IDLE)
                )
                if self._stopping:
                    return
                self._requested = False
                self._state = NotifierState.PUSHING
            try:
                self._push_current_profile()
            except Exception as exc:
                logger.exception("Profile push failed before reaching the command queue")
                self._show_error(str(exc))
                self._finish()

    def _push_current_profile(self) -> None:
        record, result = self._resolver.resolve_with_record()
        profile_name = self._resolver.display_name(record)
        if isinstance(result, ResolutionNotFound):
            logger.warning("No profile to push: %s", result.reason.value)
            self._show_error(f"{profile_name} ({result.reason.value})")
            self._finish()
            return

        logger.debug("Pushing profile %s", profile_name)
        self._command_queue.set_profile(result, self._completion_callback(profile_name))

    def _completion_callback(self, profile_name: str) -> Callable[[CommandResult], None]:
        def on_complete(command_result: CommandResult) -> None:
            try:
                if not command_result.success:
                    logger.error("Profile push failed: %s", command_result.message)
                    self._show_error(command_result.message)
                elif command_result.enacted:
                    logger.info("Profile %s enacted", profile_name)
                    if self._bus is not None:
                        self._bus.publish(ActiveProfileChanged(profile_name=profile_name))
            finally:
                self._finish()

        return on_complete

    def _show_error(self, message: str) -> None:
        try:
            self._alerts.show_error(self._error_title, message, self._sound_id)
        except Exception:
            logger.exception("Alert sink failed to show %r", message)

    def _finish(self) -> None:
        with self._cond:
            self._state = NotifierState.IDLE
            self._cond.notify_all()
