"""
Authentication for mcp-neo4j-remote.

- AuthManager: ordered provider chain with fallback and anonymous mode
- ApiKeyProvider: static API key allowlist
- OAuthProvider: bearer tokens validated by Descope
"""

from .apikey import ApiKeyProvider
from .base import AuthenticationError, AuthProvider
from .context import current_session, current_user
from .manager import AuthManager, anonymous_session
from .oauth import OAuthProvider

__all__ = [
    "ApiKeyProvider",
    "AuthManager",
    "AuthProvider",
    "AuthenticationError",
    "OAuthProvider",
    "anonymous_session",
    "current_session",
    "current_user",
]
