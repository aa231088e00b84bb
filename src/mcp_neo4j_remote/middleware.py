"""
ASGI middleware for the mcp-neo4j-remote server.
"""

import json

from starlette.requests import Request

from .auth.base import AuthenticationError
from .auth.context import current_session
from .auth.manager import AuthManager
from .mcp_logging import logger

PUBLIC_PATHS = ("/health",)
UNAUTHORIZED_BODY = {"error": "Authentication required"}


class AuthenticationMiddleware:
    """
    ASGI middleware that authenticates every HTTP request before it reaches MCP.

    The request is handed to the AuthManager; the resulting session is bound to
    the `current_session` context variable for the duration of the request so
    tools can tell who is calling. A rejected request never reaches the app and
    gets a 401 with a generic JSON body.

    Usage:
        app = AuthenticationMiddleware(mcp.http_app(path="/mcp"), ctx.auth)

    Public paths (`/health`) and non-HTTP scopes (lifespan) pass through untouched.
    """

    def __init__(self, app, auth_manager: AuthManager, public_paths: tuple[str, ...] = PUBLIC_PATHS):
        self.app = app
        self.auth_manager = auth_manager
        self.public_paths = public_paths

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        if any(path == p or path.startswith(f"{p}/") for p in self.public_paths):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        try:
            session = await self.auth_manager.authenticate(request)
        except AuthenticationError as e:
            client = scope.get("client") or ("?", 0)
            logger.warning(f"🚫 Rejected {scope.get('method', '?')} {path} from {client[0]}: {e}")
            await self._send_unauthorized(send)
            return

        token = current_session.set(session)
        try:
            await self.app(scope, receive, send)
        finally:
            current_session.reset(token)

    async def _send_unauthorized(self, send):
        body = json.dumps(UNAUTHORIZED_BODY).encode()
        challenges = ", ".join(self._challenges()) or "Bearer"
        await send(
            {
                "type": "http.response.start",
                "status": 401,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode()),
                    (b"www-authenticate", challenges.encode()),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})

    def _challenges(self) -> list[str]:
        challenges = []
        if self.auth_manager.get_oauth_provider() is not None:
            challenges.append("Bearer")
        if self.auth_manager.get_api_key_provider() is not None:
            challenges.append("ApiKey")
        return challenges


__all__ = ["AuthenticationMiddleware", "PUBLIC_PATHS"]
