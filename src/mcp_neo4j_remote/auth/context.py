"""
Propagation of the authenticated session.

The ASGI middleware authenticates the request and stores the session in a
context variable; MCP tools, which never see the HTTP request, read it back to
log who is calling. Outside HTTP (stdio transport) there is no session.
"""

import contextvars

from ..models import AuthSession

current_session: contextvars.ContextVar[AuthSession | None] = contextvars.ContextVar(
    "current_session", default=None
)


def current_user() -> str | None:
    """User ID of the session bound to the running request, if any."""
    session = current_session.get()
    return session.user_id if session else None


__all__ = ["current_session", "current_user"]
