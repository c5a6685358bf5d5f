"""Events exchanged on the notification bus."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ProfileStoreChanged:
    """A profile store was edited or reloaded, or a new switch was recorded."""

    reason: str = ""


@dataclass(frozen=True)
class ActiveProfileChanged:
    """The pump has enacted a new basal profile."""

    profile_name: str = ""
