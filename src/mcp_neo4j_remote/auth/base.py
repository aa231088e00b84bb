"""
Credential provider interface.

A provider validates one credential scheme against one verification backend.
Providers are a closed set (`ApiKeyProvider`, `OAuthProvider`); the AuthManager
only talks to them through this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from starlette.requests import Request

from ..models import AuthSession, AuthType


class AuthenticationError(Exception):
    """A credential was missing, malformed, unknown or expired."""

    pass


def get_authorization(request: Request) -> tuple[str, str] | None:
    """
    Split the Authorization header into (scheme, credentials).

    The scheme is lower-cased; returns None when the header is absent or has no credentials.
    """
    header = request.headers.get("authorization", "").strip()
    scheme, _, credentials = header.partition(" ")
    credentials = credentials.strip()
    if not scheme or not credentials:
        return None
    return scheme.lower(), credentials


class AuthProvider(ABC):
    """Base class for credential providers."""

    name: ClassVar[str]
    kind: ClassVar[AuthType]

    @abstractmethod
    def can_handle(self, request: Request) -> bool:
        """Whether the request carries this provider's credential markers. Must be cheap and pure."""

    @abstractmethod
    async def authenticate(self, request: Request) -> AuthSession:
        """
        Validate the request's credential.

        Raises:
            AuthenticationError: if the credential is invalid
        """

    @abstractmethod
    async def validate_session(self, session_id: str) -> AuthSession | None:
        """Re-validate an opaque session identifier; None when it is not (or no longer) valid."""

    async def close(self) -> None:
        """Release resources held by the provider."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


__all__ = ["AuthProvider", "AuthenticationError", "get_authorization"]
