"""Basal profile models: immutable time-of-day dosing tables.

A ``Profile`` holds five schedules (basal, isf, ic, target_low, target_high).
Each schedule is a tuple of ``Segment`` objects ordered by start minute with
the first one starting at midnight, so every schedule covers the whole day.

Profiles round-trip through the Nightscout profile document shape::

    {"dia": 5, "units": "mg/dl", "timezone": "UTC",
     "basal": [{"time": "00:00", "timeAsSeconds": 0, "value": 0.8}, ...],
     "sens": [...], "carbratio": [...], "target_low": [...], "target_high": [...]}

A ``ProfileStore`` is a named collection of profiles as loaded from one
profile source (``{"defaultProfile": "Default", "store": {"Default": {...}}}``).
"""

from __future__ import annotations

import json
import logging
from bisect import bisect_right
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from basalsync.domains.insulin.profile import hard_limits

logger = logging.getLogger(__name__)

MGDL = "mg/dl"
MMOL = "mmol"
MGDL_PER_MMOL = 18.0
MINUTES_PER_DAY = 24 * 60

# Nightscout document key -> Profile attribute
SCHEDULE_KEYS: dict[str, str] = {
    "basal": "basal",
    "sens": "isf",
    "carbratio": "ic",
    "target_low": "target_low",
    "target_high": "target_high",
}

_UNIT_ALIASES = {
    "mg/dl": MGDL,
    "mgdl": MGDL,
    "mmol": MMOL,
    "mmol/l": MMOL,
}


class ProfileFormatError(ValueError):
    """Raised when a profile document or schedule is malformed."""


# ---------------------------------------------------------------------------
# Segments and schedules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Segment:
    """One schedule entry: ``value`` applies from ``start_minutes`` until the next segment."""

    start_minutes: int
    value: float

    def __post_init__(self) -> None:
        if not 0 <= self.start_minutes < MINUTES_PER_DAY:
            raise ProfileFormatError(
                f"Segment start {self.start_minutes} is outside 0..{MINUTES_PER_DAY - 1}"
            )

    def to_dict(self) -> dict[str, Any]:
        hours, minutes = divmod(self.start_minutes, 60)
        return {
            "time": f"{hours:02d}:{minutes:02d}",
            "timeAsSeconds": self.start_minutes * 60,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, entry: Mapping[str, Any]) -> Segment:
        try:
            if "timeAsSeconds" in entry:
                start = int(entry["timeAsSeconds"]) // 60
            else:
                hours, minutes = str(entry["time"]).split(":")[:2]
                start = int(hours) * 60 + int(minutes)
            value = float(entry["value"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProfileFormatError(f"Malformed schedule entry {entry!r}: {exc}") from exc
        return cls(start_minutes=start, value=value)


Schedule = tuple[Segment, ...]


def _check_schedule(name: str, segments: Iterable[Segment]) -> Schedule:
    schedule = tuple(segments)
    if not schedule:
        raise ProfileFormatError(f"Schedule {name!r} is empty")
    if schedule[0].start_minutes != 0:
        raise ProfileFormatError(f"Schedule {name!r} must start at 00:00")
    for prev, cur in zip(schedule, schedule[1:]):
        if cur.start_minutes <= prev.start_minutes:
            raise ProfileFormatError(
                f"Schedule {name!r} segments must have strictly increasing start times"
            )
    return schedule


def _value_at(schedule: Schedule, minute: int) -> float:
    minute %= MINUTES_PER_DAY
    starts = [segment.start_minutes for segment in schedule]
    return schedule[bisect_right(starts, minute) - 1].value


def _shift_schedule(
    schedule: Schedule,
    shift_minutes: int,
    transform: Callable[[float], float] | None = None,
) -> Schedule:
    """Rebuild ``schedule`` so that new[t] == transform(old[t + shift])."""
    shift = shift_minutes % MINUTES_PER_DAY
    starts = sorted({(s.start_minutes - shift) % MINUTES_PER_DAY for s in schedule} | {0})
    result = []
    for start in starts:
        value = _value_at(schedule, start + shift)
        result.append(Segment(start, transform(value) if transform else value))
    return tuple(result)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Profile:
    """Immutable basal profile.

    Glucose-based schedules (``isf``, ``target_low``, ``target_high``) are in
    the profile's own ``units``; use the ``*_mgdl_at`` helpers for unit-free
    comparisons.
    """

    basal: Schedule
    isf: Schedule
    ic: Schedule
    target_low: Schedule
    target_high: Schedule
    dia: float = 5.0
    units: str = MGDL
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        units = _UNIT_ALIASES.get(str(self.units).lower())
        if units is None:
            raise ProfileFormatError(f"Unknown glucose units: {self.units!r}")
        object.__setattr__(self, "units", units)
        for attr in SCHEDULE_KEYS.values():
            object.__setattr__(self, attr, _check_schedule(attr, getattr(self, attr)))

    # ------------------------------------------------------------------
    # Lookups (minute of day)
    # ------------------------------------------------------------------

    def basal_at(self, minute: int) -> float:
        return _value_at(self.basal, minute)

    def isf_at(self, minute: int) -> float:
        return _value_at(self.isf, minute)

    def ic_at(self, minute: int) -> float:
        return _value_at(self.ic, minute)

    def target_low_at(self, minute: int) -> float:
        return _value_at(self.target_low, minute)

    def target_high_at(self, minute: int) -> float:
        return _value_at(self.target_high, minute)

    def target_at(self, minute: int) -> float:
        """Midpoint of the target range."""
        return (self.target_low_at(minute) + self.target_high_at(minute)) / 2

    def isf_mgdl_at(self, minute: int) -> float:
        return self._to_mgdl(self.isf_at(minute))

    def target_mgdl_at(self, minute: int) -> float:
        return self._to_mgdl(self.target_at(minute))

    def minute_of_day(self, epoch_ms: int) -> int:
        """Minute of day for an epoch-millisecond timestamp in the profile's timezone."""
        try:
            tz = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown profile timezone %r, using UTC", self.timezone)
            tz = timezone.utc
        local = datetime.fromtimestamp(epoch_ms / 1000, tz=tz)
        return local.hour * 60 + local.minute

    def basal_at_time(self, epoch_ms: int) -> float:
        return self.basal_at(self.minute_of_day(epoch_ms))

    @property
    def max_daily_basal(self) -> float:
        """Highest basal rate (U/h) anywhere in the day."""
        return max(segment.value for segment in self.basal)

    @property
    def total_daily_basal(self) -> float:
        """Insulin (U) delivered by the basal schedule over 24 h."""
        ends = [s.start_minutes for s in self.basal[1:]] + [MINUTES_PER_DAY]
        return sum(s.value * (end - s.start_minutes) / 60 for s, end in zip(self.basal, ends))

    def _to_mgdl(self, value: float) -> float:
        return value * MGDL_PER_MMOL if self.units == MMOL else value

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def scale(self, percentage: float, time_shift_minutes: int = 0) -> Profile:
        """Return a percentage-scaled, time-shifted copy of this profile.

        Basal rates are multiplied by ``percentage / 100``; ISF and IC are
        divided by it so that a higher percentage always means more insulin.
        Targets are not scaled. The result's value at minute ``t`` is the
        original value at minute ``t + time_shift_minutes``.
        """
        if percentage <= 0:
            raise ValueError(f"Percentage must be positive, got {percentage}")
        factor = percentage / 100.0
        shift = time_shift_minutes
        return Profile(
            basal=_shift_schedule(self.basal, shift, lambda v: v * factor),
            isf=_shift_schedule(self.isf, shift, lambda v: v / factor),
            ic=_shift_schedule(self.ic, shift, lambda v: v / factor),
            target_low=_shift_schedule(self.target_low, shift),
            target_high=_shift_schedule(self.target_high, shift),
            dia=self.dia,
            units=self.units,
            timezone=self.timezone,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validation_errors(self) -> list[str]:
        """Return every hard-limit violation in this profile (empty when valid)."""
        errors: list[str] = []
        if not hard_limits.DIA_MIN_HOURS <= self.dia <= hard_limits.DIA_MAX_HOURS:
            errors.append(f"DIA {self.dia}h outside {hard_limits.DIA_MIN_HOURS}-{hard_limits.DIA_MAX_HOURS}h")

        for segment in self.basal:
            if not hard_limits.BASAL_MIN <= segment.value <= hard_limits.BASAL_MAX:
                errors.append(f"Basal {segment.value} U/h at {_hhmm(segment)} out of range")
        for segment in self.isf:
            isf = self._to_mgdl(segment.value)
            if not hard_limits.ISF_MIN_MGDL <= isf <= hard_limits.ISF_MAX_MGDL:
                errors.append(f"ISF {segment.value} at {_hhmm(segment)} out of range")
        for segment in self.ic:
            if not hard_limits.IC_MIN <= segment.value <= hard_limits.IC_MAX:
                errors.append(f"IC {segment.value} g/U at {_hhmm(segment)} out of range")

        for schedule in (self.target_low, self.target_high):
            for segment in schedule:
                target = self._to_mgdl(segment.value)
                if not hard_limits.TARGET_MIN_MGDL <= target <= hard_limits.TARGET_MAX_MGDL:
                    errors.append(f"Target {segment.value} at {_hhmm(segment)} out of range")

        boundaries = sorted({s.start_minutes for s in self.target_low + self.target_high})
        for minute in boundaries:
            if self.target_low_at(minute) > self.target_high_at(minute):
                errors.append(f"Target low above target high at {minute // 60:02d}:{minute % 60:02d}")
        return errors

    def is_valid(self, context: str) -> bool:
        """Check the profile against the hard limits, logging each violation.

        Args:
            context: Who is asking (e.g. ``"OpenAPSSMB"``); included in log lines.
        """
        errors = self.validation_errors()
        for error in errors:
            logger.warning("Invalid profile (%s): %s", context, error)
        return not errors

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"dia": self.dia, "units": self.units, "timezone": self.timezone}
        for key, attr in SCHEDULE_KEYS.items():
            data[key] = [segment.to_dict() for segment in getattr(self, attr)]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, default_units: str = MGDL) -> Profile:
        """Parse a Nightscout profile document.

        Raises:
            ProfileFormatError: If a schedule is missing or malformed.
        """
        if not isinstance(data, Mapping):
            raise ProfileFormatError(f"Profile document must be a mapping, got {type(data).__name__}")
        schedules: dict[str, Schedule] = {}
        for key, attr in SCHEDULE_KEYS.items():
            entries = data.get(key)
            if entries is None:
                raise ProfileFormatError(f"Profile document is missing {key!r}")
            if not isinstance(entries, list):
                entries = [{"time": "00:00", "value": entries}]
            segments = sorted((Segment.from_dict(e) for e in entries), key=lambda s: s.start_minutes)
            schedules[attr] = tuple(segments)
        try:
            dia = float(data.get("dia", 5.0))
        except (TypeError, ValueError) as exc:
            raise ProfileFormatError(f"Malformed DIA: {data.get('dia')!r}") from exc
        return cls(
            **schedules,
            dia=dia,
            units=str(data.get("units") or default_units),
            timezone=str(data.get("timezone") or "UTC"),
        )

    @classmethod
    def from_json(cls, text: str) -> Profile:
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise ProfileFormatError(f"Profile JSON is not parseable: {exc}") from exc
        return cls.from_dict(data)


def _hhmm(segment: Segment) -> str:
    return segment.to_dict()["time"]


# ---------------------------------------------------------------------------
# ProfileStore
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ProfileStore:
    """Immutable snapshot of the profiles exposed by one profile source."""

    profiles: Mapping[str, Profile]
    default_profile_name: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "profiles", MappingProxyType(dict(self.profiles)))
        object.__setattr__(self, "raw", MappingProxyType(dict(self.raw)))
        if self.default_profile_name is not None and self.default_profile_name not in self.profiles:
            raise ProfileFormatError(
                f"Default profile {self.default_profile_name!r} is not in the store"
            )

    def __contains__(self, name: object) -> bool:
        return name in self.profiles

    def __len__(self) -> int:
        return len(self.profiles)

    @property
    def profile_names(self) -> list[str]:
        return list(self.profiles)

    @property
    def default_profile(self) -> Profile | None:
        if self.default_profile_name is None:
            return None
        return self.profiles[self.default_profile_name]

    def get_specific_profile(self, name: str) -> Profile | None:
        return self.profiles.get(name)

    def get_raw_profile(self, name: str) -> dict[str, Any] | None:
        """Return the profile document exactly as the source provided it."""
        raw_store = self.raw.get("store", {})
        entry = raw_store.get(name) if isinstance(raw_store, Mapping) else None
        return dict(entry) if entry is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "defaultProfile": self.default_profile_name,
            "store": {name: profile.to_dict() for name, profile in self.profiles.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProfileStore:
        """Parse a Nightscout profile-store document.

        Raises:
            ProfileFormatError: If the document or any profile in it is malformed.
        """
        if not isinstance(data, Mapping):
            raise ProfileFormatError("Profile store document must be a mapping")
        store = data.get("store")
        if not isinstance(store, Mapping):
            raise ProfileFormatError("Profile store document is missing 'store'")
        default_units = str(data.get("units") or MGDL)

        profiles: dict[str, Profile] = {}
        for name, document in store.items():
            try:
                profiles[str(name)] = Profile.from_dict(document, default_units=default_units)
            except ProfileFormatError as exc:
                raise ProfileFormatError(f"Profile {name!r}: {exc}") from exc

        default_name = data.get("defaultProfile")
        return cls(
            profiles=profiles,
            default_profile_name=str(default_name) if default_name else None,
            raw=data,
        )

    @classmethod
    def from_json(cls, text: str) -> ProfileStore:
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise ProfileFormatError(f"Profile store JSON is not parseable: {exc}") from exc
        return cls.from_dict(data)
