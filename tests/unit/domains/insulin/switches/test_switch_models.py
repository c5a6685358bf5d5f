"""Tests for ProfileSwitchRecord."""

from __future__ import annotations

import pytest
from helpers import MINUTE, T0, embedded_switch, make_profile, reference_switch

from basalsync.domains.insulin.profile.models import ProfileFormatError
from basalsync.domains.insulin.switches.models import (
    EmbeddedSnapshot,
    ProfileSwitchRecord,
    StoreReference,
    SwitchSource,
)


class TestSelection:
    def test_store_reference(self):
        record = reference_switch("Default", T0)
        assert record.profile_name == "Default"
        assert not record.is_embedded
        assert record.profile_object() is None

    def test_embedded_snapshot(self):
        profile = make_profile()
        record = embedded_switch("Temp", profile, T0)
        assert record.is_embedded
        assert record.profile_name == "Temp"
        assert record.profile_object() == profile

    def test_corrupt_snapshot_raises(self):
        record = ProfileSwitchRecord(T0, EmbeddedSnapshot("Temp", "not-json"))
        with pytest.raises(ProfileFormatError):
            record.profile_object()

    def test_unsupported_selection_rejected(self):
        with pytest.raises(TypeError):
            ProfileSwitchRecord(T0, "Default")  # type: ignore[arg-type]

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError):
            reference_switch("Default", T0, duration_minutes=-5)

    def test_defaults(self):
        record = ProfileSwitchRecord(T0, StoreReference("Default"))
        assert record.source is SwitchSource.USER
        assert record.percentage == 100
        assert record.duration_minutes == 0


class TestDisplay:
    def test_uncustomized_name(self):
        assert reference_switch("Default", T0).customized_name == "Default"

    def test_percentage_only(self):
        record = reference_switch("Default", T0, percentage=120)
        assert record.customized_name == "Default (120%)"

    def test_percentage_and_whole_hour_shift(self):
        record = reference_switch("Default", T0, percentage=120, time_shift_minutes=120)
        assert record.customized_name == "Default (120%,2h)"

    def test_shift_in_minutes(self):
        record = reference_switch("Default", T0, time_shift_minutes=90)
        assert record.customized_name == "Default (100%,90m)"

    def test_negative_shift(self):
        record = reference_switch("Default", T0, time_shift_minutes=-60)
        assert record.customized_name == "Default (100%,-1h)"


class TestOriginalEnd:
    def test_unbounded(self):
        assert reference_switch("Default", T0).original_end is None

    def test_bounded(self):
        record = reference_switch("Default", T0, duration_minutes=30)
        assert record.original_end == T0 + 30 * MINUTE
