"""Basal profile engine entry point: ``python -m basalsync.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from basalsync.core.config.settings import get_settings
from basalsync.core.server.app import create_app
from basalsync.core.server.engine import build_engine


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.basalsync_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.basalsync_allow_insecure_bind and not _is_loopback_host(settings.basalsync_host):
        raise RuntimeError(
            "Refusing to bind the profile server to a non-loopback host without an auth layer. "
            "Set BASALSYNC_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting basal profile server on %s:%d",
        settings.basalsync_host,
        settings.basalsync_port,
    )

    engine = build_engine(settings)
    engine.start()
    try:
        mcp = create_app(engine_override=engine)
        mcp.run(
            transport="streamable-http",
            host=settings.basalsync_host,
            port=settings.basalsync_port,
        )
    finally:
        engine.stop()


if __name__ == "__main__":
    run()
