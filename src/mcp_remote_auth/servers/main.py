"""Starlette application setup for the remote OAuth service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from mcp_remote_auth.remote_oauth.service import RemoteOAuthService
from mcp_remote_auth.servers.auth import auth_routes
from mcp_remote_auth.servers.correlation import CorrelationIdMiddleware
from mcp_remote_auth.utils.environment import OAuthSettings
from mcp_remote_auth.utils.logging import setup_logging

logger = logging.getLogger("mcp-remote-auth.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(
    service: RemoteOAuthService | None = None,
    settings: OAuthSettings | None = None,
    *,
    base_path: str = "/oauth",
) -> Starlette:
    """Build the ASGI app.

    When *service* is omitted one is built from *settings* (or from the
    environment), and process-wide logging is configured as well.
    """
    if service is None:
        settings = settings or OAuthSettings.from_env()
        setup_logging(settings.log_level)
        service = RemoteOAuthService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Remote OAuth service starting...")
        removed = service.cleanup_expired()
        logger.debug("Startup cleanup removed %d pending authorizations", removed)
        try:
            yield
        finally:
            logger.info("Remote OAuth service shutdown complete.")

    routes = [
        Route("/healthz", health_check, methods=["GET"]),
        *auth_routes(service, base_path=base_path),
    ]
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.oauth_service = service
    return app
