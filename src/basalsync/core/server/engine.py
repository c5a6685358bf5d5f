"""Composition of the profile engine: one resolver and notifier per running system."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Union

from basalsync.core.bus.event_bus import EventBus
from basalsync.core.config.settings import Settings
from basalsync.core.diagnostics.logger import DiagnosticsLogger
from basalsync.core.storage.database import ProfileDatabase
from basalsync.core.storage.encryption import EncryptionError, SnapshotEncryptor
from basalsync.domains.insulin.connectors import AlertSink, CommandQueue
from basalsync.domains.insulin.connectors.providers import (
    LocalProfileSource,
    LoggingAlertSink,
    MockCommandQueue,
)
from basalsync.domains.insulin.domain_logic.notifier import ProfileChangeNotifier
from basalsync.domains.insulin.domain_logic.resolver import ProfileResolver
from basalsync.domains.insulin.domain_logic.time_format import now_millis
from basalsync.domains.insulin.profile.loader import load_profile_store_file
from basalsync.domains.insulin.profile.models import ProfileFormatError, ProfileStore
from basalsync.domains.insulin.switches.history import InMemorySwitchHistory
from basalsync.domains.insulin.switches.repository import SwitchRepository

logger = logging.getLogger(__name__)


@dataclass
class ProfileEngine:
    """Wired collaborators of the profile engine."""

    bus: EventBus
    database: ProfileDatabase
    profile_source: LocalProfileSource
    history: Union[InMemorySwitchHistory, SwitchRepository]
    diagnostics: DiagnosticsLogger
    resolver: ProfileResolver
    notifier: ProfileChangeNotifier
    command_queue: CommandQueue

    @property
    def persistent(self) -> bool:
        return isinstance(self.history, SwitchRepository)

    def start(self) -> None:
        self.notifier.start(self.bus)

    def stop(self) -> None:
        self.notifier.stop()
        close = getattr(self.command_queue, "close", None)
        if callable(close):
            close()
        self.database.close()


def _load_initial_store(settings: Settings) -> ProfileStore | None:
    if not settings.profile_store_path:
        logger.info("No PROFILE_STORE_PATH configured; starting without a profile store")
        return None
    try:
        return load_profile_store_file(settings.profile_store_path)
    except (FileNotFoundError, ProfileFormatError) as exc:
        logger.error("Failed to load profile store: %s", exc)
        return None


def build_engine(
    settings: Settings,
    *,
    profile_source: LocalProfileSource | None = None,
    history: InMemorySwitchHistory | SwitchRepository | None = None,
    command_queue: CommandQueue | None = None,
    alerts: AlertSink | None = None,
    clock: Callable[[], int] = now_millis,
) -> ProfileEngine:
    """Build (but do not start) the profile engine from settings.

    With an ``ENCRYPTION_KEY`` the switch history is persisted to
    ``db_path``; without one, history and diagnostics live in memory.
    """
    bus = EventBus()

    database: ProfileDatabase | None = None
    if history is None and settings.encryption_key:
        try:
            encryptor = SnapshotEncryptor(settings.encryption_key)
            database = ProfileDatabase(settings.db_path)
            database.initialize()
            history = SwitchRepository(database, encryptor)
            if encryptor.key_count > 1:
                history.rotate_snapshots()
            logger.info(
                "Switch history persisted to %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence; switches will not be stored")
            database = None

    if database is None:
        database = ProfileDatabase(":memory:")
        database.initialize()
    if history is None:
        history = InMemorySwitchHistory()
        logger.info("Switch history kept in memory")

    if profile_source is None:
        profile_source = LocalProfileSource(
            _load_initial_store(settings),
            source_name=settings.profile_source_name,
            path=settings.profile_store_path or None,
        )
    profile_source.attach_bus(bus)

    diagnostics = DiagnosticsLogger(database)
    resolver = ProfileResolver(
        profile_source,
        history,
        diagnostics,
        clock=clock,
        units=settings.units,
        no_profile_label=settings.no_profile_label,
    )
    command_queue = command_queue if command_queue is not None else MockCommandQueue()
    notifier = ProfileChangeNotifier(
        resolver,
        command_queue,
        alerts if alerts is not None else LoggingAlertSink(),
        error_title=settings.failed_profile_update_title,
        sound_id=settings.alert_sound_id,
    )
    return ProfileEngine(
        bus=bus,
        database=database,
        profile_source=profile_source,
        history=history,
        diagnostics=diagnostics,
        resolver=resolver,
        notifier=notifier,
        command_queue=command_queue,
    )
