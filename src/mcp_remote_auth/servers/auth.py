"""Browser-based OAuth endpoints for remote MCP server connections.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters.
2. Delegate business logic to ``RemoteOAuthService``.
3. Return an appropriate Starlette ``Response`` type.

The base path is configurable (default: ``/oauth``) so that reverse-proxies can
mount the application under arbitrary prefixes.

SECURITY NOTE
-------------
• No raw secrets (state, code verifiers, access / refresh tokens, client
  secrets) are ever logged or returned.
• Correlation IDs, if present in ``request.state.correlation_id``, are included
  in INFO logs to aid troubleshooting.

This module is HTTP-only and MUST remain free from heavy business logic.
"""

from __future__ import annotations

import html
import logging
from typing import Any

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from mcp_remote_auth.remote_oauth.errors import (
    NeedsReauth,
    OAuthFailure,
    StateInvalid,
    TransportTimeout,
)
from mcp_remote_auth.remote_oauth.models import (
    AuthorizationRequest,
    OAuthMetadata,
    ServerCredential,
)
from mcp_remote_auth.remote_oauth.service import RemoteOAuthService
from mcp_remote_auth.utils.logging import mask_sensitive

_LOG = logging.getLogger("mcp-remote-auth.auth.routes")


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny success / error HTML page."""
    title = html.escape(title)
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{title}</title></head><body><h1>{title}</h1><p>{html.escape(body)}</p></body></html>"
    )
    return HTMLResponse(content, status_code=status)


def _failure_status(failure: OAuthFailure) -> int:
    if isinstance(failure, TransportTimeout):
        return 504
    if isinstance(failure, (NeedsReauth, StateInvalid)):
        return 401
    return 400


def _failure_response(failure: OAuthFailure) -> JSONResponse:
    return JSONResponse(failure.to_payload(), status_code=_failure_status(failure))


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


def _credential_summary(credential: ServerCredential) -> dict[str, Any]:
    """Public view of a credential: never includes token material."""
    return {
        "status": "connected",
        "server_id": credential.server_id,
        "board_id": credential.board_id,
        "expires_at": credential.token_set.expires_at,
        "scope": credential.token_set.scope,
        "has_refresh_token": credential.token_set.refresh_token is not None,
    }


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def auth_routes(service: RemoteOAuthService, *, base_path: str = "/oauth") -> list[Route]:
    """Return the OAuth endpoints bound to *service* under *base_path*."""
    base_path = base_path.rstrip("/")

    # ----- POST /oauth/servers/{server_id}/discover ---------------------- #
    async def _discover(request: Request) -> Response:
        server_id: str = request.path_params["server_id"]
        try:
            payload: Any = await request.json()
        except ValueError:
            return JSONResponse({"error": "invalid JSON body"}, status_code=400)
        server_url = payload.get("server_url") if isinstance(payload, dict) else None
        if not server_url or not isinstance(server_url, str):
            return JSONResponse({"error": "missing server_url"}, status_code=400)

        force = bool(payload.get("force", False))
        result = await run_in_threadpool(service.discover, server_id, server_url, force=force)
        if not isinstance(result, OAuthMetadata):
            return _failure_response(result)

        _LOG.info(
            "Discovered server_id=%s issuer=%s correlation_id=%s",
            server_id,
            result.authorization_server,
            _correlation_id(request),
        )
        return JSONResponse(result.to_dict())

    # ----- GET /oauth/servers/{server_id}/start -------------------------- #
    async def _start(request: Request) -> Response:
        server_id: str = request.path_params["server_id"]
        server_url = request.query_params.get("server_url")
        redirect_uri = request.query_params.get("redirect_uri")
        board_id = request.query_params.get("board_id", "default")
        scope = request.query_params.get("scope")

        if not server_url:
            return JSONResponse({"error": "missing server_url"}, status_code=400)
        if not redirect_uri:
            return JSONResponse({"error": "missing redirect_uri"}, status_code=400)

        result = await run_in_threadpool(
            lambda: service.start_authorization(
                server_id=server_id,
                server_url=server_url,
                redirect_uri=redirect_uri,
                board_id=board_id,
                scopes=scope.split() if scope else None,
            )
        )
        if not isinstance(result, AuthorizationRequest):
            return _failure_response(result)

        _LOG.info(
            "OAuth start server_id=%s board_id=%s session=%s correlation_id=%s",
            server_id,
            board_id,
            mask_sensitive(result.session_id, 6),
            _correlation_id(request),
        )

        # ------------------------------------------------------------------
        # Content negotiation + explicit override for browser vs API clients
        # ------------------------------------------------------------------
        fmt_param = request.query_params.get("format")
        accept_header = (request.headers.get("accept") or "").lower()

        def _json_resp() -> JSONResponse:
            return JSONResponse(
                {
                    "authorize_url": result.url,
                    "session_id": result.session_id,
                    "expires_at": result.expires_at,
                }
            )

        def _redirect_resp() -> RedirectResponse:
            # Use 303 See Other for GET safety across methods
            return RedirectResponse(result.url, status_code=303)

        if fmt_param == "json":
            return _json_resp()
        if fmt_param == "redirect":
            return _redirect_resp()

        if "text/html" in accept_header:
            return _redirect_resp()

        return _json_resp()

    # ----- GET /oauth/callback ------------------------------------------- #
    async def _callback(request: Request) -> Response:
        # Check for provider-side errors first (e.g., invalid_scope, access_denied)
        oauth_error = request.query_params.get("error")
        if oauth_error:
            description = request.query_params.get("error_description", "")
            return _html_page(
                "Authorization error",
                f"{oauth_error}: {description}" if description else oauth_error,
                400,
            )

        code = request.query_params.get("code")
        state = request.query_params.get("state")

        if not code or not state:
            return _html_page("Missing parameters", "code or state missing", 400)

        result = await run_in_threadpool(
            lambda: service.complete_authorization(code=code, state=state)
        )
        if not isinstance(result, ServerCredential):
            _LOG.warning(
                "OAuth callback failed code=%s correlation_id=%s",
                result.code,
                _correlation_id(request),
            )
            return _html_page("Authorization failed", result.message, _failure_status(result))

        _LOG.info(
            "OAuth success server_id=%s correlation_id=%s",
            result.server_id,
            _correlation_id(request),
        )
        return _html_page("Authorization successful", "You may close this window.")

    # ----- POST /oauth/servers/{server_id}/refresh ----------------------- #
    async def _refresh(request: Request) -> Response:
        server_id: str = request.path_params["server_id"]
        result = await run_in_threadpool(service.refresh, server_id)
        if not isinstance(result, ServerCredential):
            return _failure_response(result)
        return JSONResponse(_credential_summary(result))

    # ----- GET /oauth/servers/{server_id}/status ------------------------- #
    async def _status(request: Request) -> Response:
        server_id: str = request.path_params["server_id"]
        state = await run_in_threadpool(service.connection_state, server_id)
        return JSONResponse({"server_id": server_id, "state": state.value})

    # ----- POST /oauth/servers/{server_id}/disconnect -------------------- #
    async def _disconnect(request: Request) -> Response:
        server_id: str = request.path_params["server_id"]
        await run_in_threadpool(service.disconnect, server_id)
        _LOG.info(
            "Disconnected server_id=%s correlation_id=%s",
            server_id,
            _correlation_id(request),
        )
        return Response(status_code=204)

    servers = f"{base_path}/servers/{{server_id}}"
    return [
        Route(f"{servers}/discover", _discover, methods=["POST"]),
        Route(f"{servers}/start", _start, methods=["GET"]),
        Route(f"{base_path}/callback", _callback, methods=["GET"]),
        Route(f"{servers}/refresh", _refresh, methods=["POST"]),
        Route(f"{servers}/status", _status, methods=["GET"]),
        Route(f"{servers}/disconnect", _disconnect, methods=["POST"]),
    ]
