"""Builds profile switch records from a profile store."""

from __future__ import annotations

import logging

from basalsync.domains.insulin.profile.models import ProfileStore
from basalsync.domains.insulin.switches.models import (
    EmbeddedSnapshot,
    ProfileSwitchRecord,
    SwitchSource,
)

logger = logging.getLogger(__name__)


class ProfileSwitchRejected(Exception):
    """Raised when a switch cannot be created; no record is produced."""


def prepare_switch(
    store: ProfileStore,
    profile_name: str,
    duration_minutes: int,
    percentage: int,
    time_shift_minutes: int,
    effective_from: int,
    *,
    source: SwitchSource = SwitchSource.USER,
    profile_source: str = "",
) -> ProfileSwitchRecord:
    """Create a switch to ``profile_name`` with its customization baked in.

    The named profile is looked up now, scaled by ``percentage`` and shifted
    by ``time_shift_minutes``, and the result is embedded in the record. The
    record therefore resolves to the same profile even if the store is later
    edited or the profile deleted.

    Raises:
        ProfileSwitchRejected: If ``profile_name`` is not in ``store`` or the
            percentage/duration are out of range.
    """
    profile = store.get_specific_profile(profile_name)
    if profile is None:
        raise ProfileSwitchRejected(f"Profile {profile_name!r} is not in the profile store")
    if percentage <= 0:
        raise ProfileSwitchRejected(f"Percentage must be positive, got {percentage}")
    if duration_minutes < 0:
        raise ProfileSwitchRejected(f"Duration must not be negative, got {duration_minutes}")

    scaled = profile.scale(percentage, time_shift_minutes)
    record = ProfileSwitchRecord(
        effective_from=effective_from,
        selection=EmbeddedSnapshot(name=profile_name, profile_json=scaled.to_json()),
        source=source,
        duration_minutes=duration_minutes,
        percentage=percentage,
        time_shift_minutes=time_shift_minutes,
        profile_source=profile_source,
    )
    logger.info(
        "Prepared profile switch to %s at %d (duration %d min)",
        record.customized_name,
        effective_from,
        duration_minutes,
    )
    return record
