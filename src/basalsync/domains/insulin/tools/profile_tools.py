"""MCP tools for inspecting and switching the active basal profile.

Reads go through the ProfileResolver. ``profile_switch`` records a new
switch (with the profile frozen into it) and announces the change on the
bus, which makes the notifier push the new profile to the pump.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Union

from fastmcp import Context, FastMCP

from basalsync.core.bus.events import ProfileStoreChanged
from basalsync.domains.insulin.domain_logic.resolver import ResolutionNotFound
from basalsync.domains.insulin.domain_logic.switch_factory import (
    ProfileSwitchRejected,
    prepare_switch,
)
from basalsync.domains.insulin.profile.models import ProfileFormatError

if TYPE_CHECKING:
    from basalsync.core.bus.event_bus import EventBus
    from basalsync.domains.insulin.connectors.providers import LocalProfileSource
    from basalsync.domains.insulin.domain_logic.resolver import ProfileResolver
    from basalsync.domains.insulin.switches.history import InMemorySwitchHistory
    from basalsync.domains.insulin.switches.repository import SwitchRepository

    SwitchLog = Union[InMemorySwitchHistory, SwitchRepository]

logger = logging.getLogger(__name__)


def _parse_time(at: str) -> int | None:
    """ISO 8601 string -> epoch ms; empty string means now (None)."""
    if not at:
        return None
    parsed = datetime.fromisoformat(at)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def register_profile_tools(
    mcp: FastMCP,
    resolver: ProfileResolver,
    profile_source: LocalProfileSource,
    history: SwitchLog,
    bus: EventBus,
) -> None:
    """Register basal profile tools on the MCP server."""

    @mcp.tool
    async def profile_status(ctx: Context, validity_context: str = "profile_status") -> str:
        """Show the active basal profile name, remaining duration and validity.

        Args:
            validity_context: Label used in validation log lines.
        """
        return json.dumps({
            "status": "ok",
            "profile_name": resolver.profile_name_with_duration(),
            "base_profile_name": resolver.profile_name(customized=False),
            "units": resolver.units,
            "valid": resolver.is_profile_valid(validity_context),
            "switches_recorded": history.count(),
        })

    @mcp.tool
    async def get_active_profile(ctx: Context, at: str = "") -> str:
        """Return the full basal profile in effect at a given time.

        Args:
            at: ISO 8601 timestamp (e.g., '2026-01-15T08:00:00+00:00'). Defaults to now.
        """
        try:
            time = _parse_time(at)
        except ValueError:
            return json.dumps({"status": "error", "message": f"Invalid timestamp: {at!r}"})

        record, result = resolver.resolve_with_record(time)
        profile_name = resolver.display_name(record)
        if isinstance(result, ResolutionNotFound):
            return json.dumps({
                "status": "not_found",
                "reason": result.reason.value,
                "profile_name": profile_name,
            })
        return json.dumps({
            "status": "ok",
            "profile_name": profile_name,
            "total_daily_basal": round(result.total_daily_basal, 2),
            "profile": result.to_dict(),
        }, indent=2)

    @mcp.tool
    async def list_profiles(ctx: Context) -> str:
        """List the profiles available in the active profile store."""
        store = profile_source.current_store()
        if store is None:
            return json.dumps({"status": "no_store", "profiles": []})
        return json.dumps({
            "status": "ok",
            "source": profile_source.source_name,
            "default_profile": store.default_profile_name,
            "profiles": store.profile_names,
        })

    @mcp.tool
    async def profile_switch(
        ctx: Context,
        profile_name: str,
        duration_minutes: int = 0,
        percentage: int = 100,
        time_shift_minutes: int = 0,
    ) -> str:
        """Switch to a basal profile, optionally scaled and time-shifted.

        The profile is frozen into the switch: later edits to the profile
        store do not change it.

        Args:
            profile_name: Name of a profile in the active store.
            duration_minutes: How long the switch is meant to last (0 = until the next switch).
            percentage: Insulin percentage (100 = unchanged).
            time_shift_minutes: Shift the schedule by this many minutes.
        """
        store = profile_source.current_store()
        if store is None:
            return json.dumps({"status": "error", "message": "No profile store is active"})
        try:
            record = prepare_switch(
                store,
                profile_name,
                duration_minutes,
                percentage,
                time_shift_minutes,
                resolver.now(),
                profile_source=profile_source.source_name,
            )
        except ProfileSwitchRejected as exc:
            return json.dumps({"status": "rejected", "message": str(exc)})

        history.add(record)
        bus.publish(ProfileStoreChanged(reason="profile switch"))
        logger.info("Profile switch recorded: %s", record.customized_name)
        return json.dumps({
            "status": "saved",
            "profile_name": record.customized_name,
            "effective_from": record.effective_from,
            "duration_minutes": record.duration_minutes,
        })

    @mcp.tool
    async def reload_profile_store(ctx: Context) -> str:
        """Reload the profile store from its file and push the active profile."""
        try:
            store = profile_source.reload()
        except (RuntimeError, FileNotFoundError, ProfileFormatError) as exc:
            logger.warning("Profile store reload failed: %s", exc)
            return json.dumps({"status": "error", "message": str(exc)})
        return json.dumps({
            "status": "ok",
            "profiles": store.profile_names,
            "default_profile": store.default_profile_name,
        })
