"""Tests for InMemorySwitchHistory."""

from __future__ import annotations

import threading

from helpers import T0, reference_switch

from basalsync.domains.insulin.switches.history import InMemorySwitchHistory


class TestLatestAtOrBefore:
    def test_empty_history(self):
        history = InMemorySwitchHistory()
        assert history.is_empty()
        assert history.latest_at_or_before(T0) is None

    def test_before_first_record(self):
        history = InMemorySwitchHistory([reference_switch("Default", T0)])
        assert history.latest_at_or_before(T0 - 1) is None

    def test_record_applies_from_its_own_time(self):
        record = reference_switch("Default", T0)
        history = InMemorySwitchHistory([record])
        assert history.latest_at_or_before(T0) is record
        assert history.latest_at_or_before(T0 + 10_000) is record

    def test_picks_most_recent_not_after_time(self):
        first = reference_switch("Default", T0)
        second = reference_switch("Sport", T0 + 5_000)
        history = InMemorySwitchHistory([second, first])
        assert history.latest_at_or_before(T0 + 4_999) is first
        assert history.latest_at_or_before(T0 + 5_000) is second

    def test_tie_resolves_to_later_insertion(self):
        first = reference_switch("Default", T0)
        second = reference_switch("Sport", T0)
        history = InMemorySwitchHistory()
        history.add(first)
        history.add(second)
        assert history.latest_at_or_before(T0) is second

    def test_backdated_record_does_not_hide_newer_ones(self):
        history = InMemorySwitchHistory([reference_switch("Default", T0)])
        history.add(reference_switch("Sport", T0 - 60_000))
        assert history.latest_at_or_before(T0).profile_name == "Default"
        assert history.latest_at_or_before(T0 - 1).profile_name == "Sport"


class TestBookkeeping:
    def test_count_and_all_sorted(self):
        history = InMemorySwitchHistory()
        for offset in (3, 1, 2):
            history.add(reference_switch(f"P{offset}", T0 + offset))
        assert history.count() == 3
        assert [r.profile_name for r in history.all()] == ["P1", "P2", "P3"]

    def test_concurrent_appends_keep_every_record(self):
        history = InMemorySwitchHistory()

        def writer(base: int) -> None:
            for i in range(200):
                history.add(reference_switch("Default", T0 + base + i))

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        records = history.all()
        assert len(records) == 800
        times = [r.effective_from for r in records]
        assert times == sorted(times)
