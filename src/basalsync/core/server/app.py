"""FastMCP application for the basal profile engine.

``create_app()`` returns a fresh server per call, so integration tests can
build one around their own engine. ``mcp`` is created lazily for FastMCP
discovery.
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from basalsync.core.config.settings import get_settings
from basalsync.core.server.engine import ProfileEngine, build_engine
from basalsync.domains.insulin.tools.diagnostics_tools import register_diagnostics_tools
from basalsync.domains.insulin.tools.profile_tools import register_profile_tools

logger = logging.getLogger(__name__)


def create_app(*, engine_override: ProfileEngine | None = None) -> FastMCP:
    """Build the MCP server and register the profile and diagnostics tools.

    Without ``engine_override`` an engine is built from settings and started
    here. An override is used as-is and its caller owns start/stop.
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        "Basal Profile Engine",
        instructions=(
            "Resolves which basal profile is active for an automated insulin "
            "delivery loop, records profile switches and pushes the active "
            "profile to the pump."
        ),
    )

    # --- Initialize engine ---
    if engine_override is not None:
        engine = engine_override
    else:
        engine = build_engine(settings)
        engine.start()

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        store = engine.profile_source.current_store()
        return {
            "status": "ok",
            "server": "Basal Profile Engine",
            "version": "0.1.0",
            "profiles_loaded": len(store) if store is not None else 0,
            "storage_enabled": engine.persistent,
            "switches_recorded": engine.history.count(),
            "notifier_state": engine.notifier.state.value,
        }

    register_profile_tools(
        server, engine.resolver, engine.profile_source, engine.history, engine.bus
    )
    logger.info("Profile tools registered")

    register_diagnostics_tools(server, engine.diagnostics)
    logger.info("Diagnostics tools registered")

    return server


# Built on first attribute access so importing create_app has no side effects.
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
