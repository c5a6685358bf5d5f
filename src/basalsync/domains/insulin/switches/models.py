"""Profile switch records: "from this time on, this profile is active"."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from basalsync.domains.insulin.profile.models import Profile

MS_PER_MINUTE = 60_000


class SwitchSource(str, Enum):
    """Who recorded the switch."""

    USER = "user"
    NIGHTSCOUT = "nightscout"
    ALGORITHM = "algorithm"


@dataclass(frozen=True)
class StoreReference:
    """Select a profile by name from whichever store is active at read time."""

    name: str


@dataclass(frozen=True)
class EmbeddedSnapshot:
    """A frozen copy of the profile taken when the switch was created."""

    name: str
    profile_json: str


ProfileSelection = Union[StoreReference, EmbeddedSnapshot]


@dataclass(frozen=True)
class ProfileSwitchRecord:
    """An immutable entry in the profile switch history.

    ``percentage`` and ``time_shift_minutes`` are kept for display and audit;
    for embedded snapshots their effect is already part of the snapshot.
    """

    effective_from: int  # epoch ms
    selection: ProfileSelection
    source: SwitchSource = SwitchSource.USER
    duration_minutes: int = 0  # 0 = unbounded
    percentage: int = 100
    time_shift_minutes: int = 0
    profile_source: str = ""  # label of the profile source the record was built from

    def __post_init__(self) -> None:
        if not isinstance(self.selection, (StoreReference, EmbeddedSnapshot)):
            raise TypeError(f"Unsupported profile selection: {self.selection!r}")
        if self.duration_minutes < 0:
            raise ValueError(f"Duration must not be negative, got {self.duration_minutes}")

    @property
    def profile_name(self) -> str:
        return self.selection.name

    @property
    def is_embedded(self) -> bool:
        return isinstance(self.selection, EmbeddedSnapshot)

    @property
    def is_customized(self) -> bool:
        return self.percentage != 100 or self.time_shift_minutes != 0

    @property
    def customized_name(self) -> str:
        """Display name with the customization appended, e.g. ``Default (120%,2h)``."""
        if not self.is_customized:
            return self.profile_name
        parts = [f"{self.percentage}%"]
        if self.time_shift_minutes:
            parts.append(_format_shift(self.time_shift_minutes))
        return f"{self.profile_name} ({','.join(parts)})"

    @property
    def original_end(self) -> int | None:
        """End of the requested duration (epoch ms); ``None`` when unbounded."""
        if self.duration_minutes == 0:
            return None
        return self.effective_from + self.duration_minutes * MS_PER_MINUTE

    def profile_object(self) -> Profile | None:
        """Deserialize the embedded snapshot; ``None`` for store references.

        Raises:
            ProfileFormatError: If the embedded JSON is corrupt.
        """
        if isinstance(self.selection, EmbeddedSnapshot):
            return Profile.from_json(self.selection.profile_json)
        return None


def _format_shift(minutes: int) -> str:
    if minutes % 60 == 0:
        return f"{minutes // 60}h"
    return f"{minutes}m"
