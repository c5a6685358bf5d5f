"""Shared test fixtures for basal profile engine tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("PROFILE_STORE_PATH", "")
    monkeypatch.setenv("UNITS", "mg/dl")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from helpers import (  # noqa: E402
    T0,
    FakeStoreProvider,
    ManualCommandQueue,
    RecordingAlertSink,
    RecordingDiagnostics,
    make_store_doc,
)

from basalsync.domains.insulin.profile.models import ProfileStore  # noqa: E402
from basalsync.domains.insulin.switches.history import InMemorySwitchHistory  # noqa: E402

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def profile_store() -> ProfileStore:
    return ProfileStore.from_dict(make_store_doc())


@pytest.fixture
def store_provider(profile_store: ProfileStore) -> FakeStoreProvider:
    return FakeStoreProvider(profile_store)


@pytest.fixture
def history() -> InMemorySwitchHistory:
    return InMemorySwitchHistory()


@pytest.fixture
def diagnostics() -> RecordingDiagnostics:
    return RecordingDiagnostics()


@pytest.fixture
def alerts() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def command_queue() -> ManualCommandQueue:
    return ManualCommandQueue()


@pytest.fixture
def clock():
    """Mutable test clock: ``clock.now`` is returned by ``clock()``."""

    class _Clock:
        now = T0

        def __call__(self) -> int:
            return self.now

    return _Clock()


@pytest.fixture
def resolver(store_provider, history, diagnostics, clock):
    from basalsync.domains.insulin.domain_logic.resolver import ProfileResolver

    return ProfileResolver(store_provider, history, diagnostics, clock=clock)


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def profile_db():
    """Create an in-memory ProfileDatabase for testing."""
    from basalsync.core.storage.database import ProfileDatabase

    db = ProfileDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def snapshot_encryptor():
    """Create a SnapshotEncryptor with a fresh key."""
    from basalsync.core.storage.encryption import SnapshotEncryptor

    return SnapshotEncryptor(SnapshotEncryptor.generate_key())


@pytest.fixture
def switch_repository(profile_db, snapshot_encryptor):
    """Create a SwitchRepository backed by in-memory SQLite."""
    from basalsync.domains.insulin.switches.repository import SwitchRepository

    return SwitchRepository(profile_db, snapshot_encryptor)


@pytest.fixture
def diagnostics_logger(profile_db):
    """Create a DiagnosticsLogger backed by in-memory SQLite."""
    from basalsync.core.diagnostics.logger import DiagnosticsLogger

    return DiagnosticsLogger(profile_db)
