"""Tests for ProfileChangeNotifier."""

from __future__ import annotations

import pytest
from helpers import T0, embedded_switch, make_profile, reference_switch, wait_for

from basalsync.core.bus.event_bus import EventBus
from basalsync.core.bus.events import ActiveProfileChanged, ProfileStoreChanged
from basalsync.domains.insulin.connectors import CommandResult
from basalsync.domains.insulin.domain_logic.notifier import NotifierState, ProfileChangeNotifier
from basalsync.domains.insulin.domain_logic.resolver import ProfileResolver


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def notifier(resolver, command_queue, alerts, bus):
    notifier = ProfileChangeNotifier(
        resolver, command_queue, alerts, error_title="Pump error", sound_id="beep"
    )
    notifier.start(bus)
    yield notifier
    notifier.stop()


class TestPush:
    def test_change_pushes_resolved_profile(self, notifier, bus, history, command_queue, profile_store):
        history.add(reference_switch("Default", T0))
        bus.publish(ProfileStoreChanged(reason="test"))
        assert wait_for(lambda: command_queue.count == 1)
        profile, _ = command_queue.pushes[0]
        assert profile is profile_store.get_specific_profile("Default")
        assert notifier.state is NotifierState.PUSHING

    def test_completion_returns_to_idle(self, notifier, bus, history, command_queue):
        history.add(reference_switch("Default", T0))
        bus.publish(ProfileStoreChanged())
        assert wait_for(lambda: command_queue.count == 1)
        command_queue.complete(0, CommandResult(success=True, enacted=False))
        assert notifier.wait_idle(timeout=2)
        assert notifier.state is NotifierState.IDLE

    def test_enacted_publishes_active_profile_changed(self, notifier, bus, history, command_queue):
        received = []
        bus.subscribe(ActiveProfileChanged, received.append)
        history.add(embedded_switch("Default", make_profile(), T0, percentage=110))
        bus.publish(ProfileStoreChanged())
        assert wait_for(lambda: command_queue.count == 1)
        command_queue.complete(0, CommandResult(success=True, enacted=True))
        assert notifier.wait_idle(timeout=2)
        assert received == [ActiveProfileChanged(profile_name="Default (110%)")]

    def test_not_enacted_publishes_nothing(self, notifier, bus, history, command_queue):
        received = []
        bus.subscribe(ActiveProfileChanged, received.append)
        history.add(reference_switch("Default", T0))
        bus.publish(ProfileStoreChanged())
        assert wait_for(lambda: command_queue.count == 1)
        command_queue.complete(0, CommandResult(success=True, enacted=False))
        assert notifier.wait_idle(timeout=2)
        assert received == []

    def test_enacted_name_comes_from_pushed_record(
        self, store_provider, diagnostics, clock, command_queue, alerts, bus
    ):
        class _SwitchLandsAfterFirstRead:
            def __init__(self):
                self.records = [
                    embedded_switch("Default", make_profile(), T0, percentage=110),
                    reference_switch("Sport", T0),
                ]

            def latest_at_or_before(self, time):
                return self.records.pop(0) if len(self.records) > 1 else self.records[0]

            def is_empty(self):
                return False

            def count(self):
                return 2

        resolver = ProfileResolver(
            store_provider, _SwitchLandsAfterFirstRead(), diagnostics, clock=clock
        )
        notifier = ProfileChangeNotifier(resolver, command_queue, alerts)
        received = []
        bus.subscribe(ActiveProfileChanged, received.append)
        notifier.start(bus)
        try:
            bus.publish(ProfileStoreChanged())
            assert wait_for(lambda: command_queue.count == 1)
            command_queue.complete(0, CommandResult(success=True, enacted=True))
            assert notifier.wait_idle(timeout=2)
        finally:
            notifier.stop()
        assert received == [ActiveProfileChanged(profile_name="Default (110%)")]


class TestCoalescing:
    def test_signals_during_push_cause_one_more_push(self, notifier, bus, history, command_queue):
        history.add(reference_switch("Default", T0))
        bus.publish(ProfileStoreChanged())
        assert wait_for(lambda: command_queue.count == 1)

        bus.publish(ProfileStoreChanged())
        bus.publish(ProfileStoreChanged())
        bus.publish(ProfileStoreChanged())
        assert command_queue.count == 1

        command_queue.complete(0, CommandResult(success=True))
        assert wait_for(lambda: command_queue.count == 2)
        command_queue.complete(1, CommandResult(success=True))
        assert notifier.wait_idle(timeout=2)
        assert command_queue.count == 2

    def test_second_push_sees_latest_switch(self, notifier, bus, history, command_queue, profile_store):
        history.add(reference_switch("Default", T0))
        bus.publish(ProfileStoreChanged())
        assert wait_for(lambda: command_queue.count == 1)

        history.add(reference_switch("Sport", T0))
        bus.publish(ProfileStoreChanged())
        command_queue.complete(0, CommandResult(success=True))
        assert wait_for(lambda: command_queue.count == 2)
        profile, _ = command_queue.pushes[1]
        assert profile is profile_store.get_specific_profile("Sport")
        command_queue.complete(1, CommandResult(success=True))


class TestErrors:
    def test_failed_push_alerts(self, notifier, bus, history, command_queue, alerts):
        history.add(reference_switch("Default", T0))
        bus.publish(ProfileStoreChanged())
        assert wait_for(lambda: command_queue.count == 1)
        command_queue.complete(0, CommandResult(success=False, message="Pump unreachable"))
        assert notifier.wait_idle(timeout=2)
        assert alerts.errors == [("Pump error", "Pump unreachable", "beep")]

    def test_not_found_alerts_without_push(self, notifier, bus, history, command_queue, alerts):
        history.add(reference_switch("Ghost", T0))
        bus.publish(ProfileStoreChanged())
        assert wait_for(lambda: len(alerts.errors) == 1)
        assert notifier.wait_idle(timeout=2)
        assert command_queue.count == 0
        title, message, sound = alerts.errors[0]
        assert title == "Pump error"
        assert message == "Ghost (name_not_in_store)"
        assert sound == "beep"

    def test_command_queue_error_alerts_and_recovers(self, resolver, alerts, bus, history):
        class _Exploding:
            def set_profile(self, profile, callback):
                raise RuntimeError("queue closed")

        notifier = ProfileChangeNotifier(resolver, _Exploding(), alerts)
        notifier.start(bus)
        try:
            history.add(reference_switch("Default", T0))
            bus.publish(ProfileStoreChanged())
            assert wait_for(lambda: len(alerts.errors) == 1)
            assert notifier.wait_idle(timeout=2)
            assert alerts.errors[0][1] == "queue closed"
        finally:
            notifier.stop()

    def test_failing_alert_sink_keeps_worker_alive(
        self, resolver, command_queue, bus, history, profile_store
    ):
        class _BrokenAlerts:
            def __init__(self):
                self.calls = 0

            def show_error(self, title, message, sound_id):
                self.calls += 1
                raise RuntimeError("notification service down")

        alerts = _BrokenAlerts()
        notifier = ProfileChangeNotifier(resolver, command_queue, alerts)
        notifier.start(bus)
        try:
            history.add(reference_switch("Ghost", T0))
            bus.publish(ProfileStoreChanged())
            assert wait_for(lambda: alerts.calls == 1)
            assert notifier.wait_idle(timeout=2)
            assert notifier._worker.is_alive()

            history.add(reference_switch("Default", T0))
            bus.publish(ProfileStoreChanged())
            assert wait_for(lambda: command_queue.count == 1)
            profile, _ = command_queue.pushes[0]
            assert profile is profile_store.get_specific_profile("Default")

            command_queue.complete(0, CommandResult(success=False, message="Pump unreachable"))
            assert notifier.wait_idle(timeout=2)
            assert alerts.calls == 2
        finally:
            notifier.stop()


class TestLifecycle:
    def test_start_twice_rejected(self, notifier, bus):
        with pytest.raises(RuntimeError):
            notifier.start(bus)

    def test_stop_unsubscribes(self, resolver, command_queue, alerts, bus, history):
        notifier = ProfileChangeNotifier(resolver, command_queue, alerts)
        notifier.start(bus)
        notifier.stop()
        history.add(reference_switch("Default", T0))
        bus.publish(ProfileStoreChanged())
        assert bus.subscribers_for(ProfileStoreChanged()) == ()
        assert command_queue.count == 0

    def test_restart_after_stop(self, resolver, command_queue, alerts, bus, history):
        notifier = ProfileChangeNotifier(resolver, command_queue, alerts)
        notifier.start(bus)
        notifier.stop()
        notifier.start(bus)
        try:
            history.add(reference_switch("Default", T0))
            bus.publish(ProfileStoreChanged())
            assert wait_for(lambda: command_queue.count == 1)
            command_queue.complete(0, CommandResult(success=True))
        finally:
            notifier.stop()
