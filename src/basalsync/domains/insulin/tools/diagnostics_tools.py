"""MCP tools for viewing the profile diagnostics trail.

Each entry is a profile integrity anomaly: the switch history was not empty
but no profile could be resolved. Entries carry timestamps, history sizes
and profile names only, never profile data.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from basalsync.core.diagnostics.logger import DiagnosticsLogger

logger = logging.getLogger(__name__)


def register_diagnostics_tools(
    mcp: FastMCP,
    diagnostics: DiagnosticsLogger,
) -> None:
    """Register diagnostics tools on the MCP server."""

    @mcp.tool
    async def diagnostics_summary(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """View recent profile resolution anomalies.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        total_events = diagnostics.count_events(since=since)
        recent_events = diagnostics.get_events(since=since, limit=20)

        display_events = [
            {
                "timestamp": event.get("timestamp"),
                "kind": event.get("kind"),
                "reason": event.get("reason"),
                "profile_name": event["context"].get("profile_name"),
                "history_size": event["context"].get("history_size"),
            }
            for event in recent_events
        ]

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": total_events,
            "recent_events": display_events,
        }, indent=2)
