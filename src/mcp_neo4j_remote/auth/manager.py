"""
Authentication chain.

The AuthManager holds an ordered list of credential providers and, for each
request, returns the session produced by the first provider that both claims
and accepts the request. With no providers configured every request is let in
as an anonymous user.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request

from ..mcp_logging import logger
from ..models import AuthSession, AuthStatus
from .apikey import ApiKeyProvider
from .base import AuthenticationError, AuthProvider
from .oauth import OAuthProvider

if TYPE_CHECKING:
    from ..settings import AppSettings

GENERIC_FAILURE = "Authentication failed: No valid credentials provided"


def anonymous_session() -> AuthSession:
    """Session granted to every request when authentication is not configured."""
    return AuthSession(
        id="no-auth",
        type="oauth",
        user_id="anonymous",
        name="Anonymous User",
        provider="none",
        scopes=["read", "write"],
    )


class AuthManager:
    """
    Ordered chain of credential providers.

    Providers are tried in registration order. A provider that fails does not end the
    chain: the next one that can handle the request gets its turn, so a request with a
    bad bearer token but a good API key still gets in.
    """

    def __init__(self, providers: list[AuthProvider] | None = None):
        self._providers: list[AuthProvider] = list(providers or [])
        if not self._providers:
            logger.warning(
                "⚠️  No authentication providers initialized. Server will run WITHOUT authentication!"
            )

    @classmethod
    def from_settings(cls, settings: "AppSettings") -> "AuthManager":
        """Build the chain from settings: OAuth first (if configured), then API keys."""
        providers: list[AuthProvider] = []

        if settings.descope_project_id:
            try:
                providers.append(
                    OAuthProvider(
                        settings.descope_project_id,
                        base_url=settings.descope_base_url,
                        supported_providers=settings.oauth_providers,
                    )
                )
                logger.info("🔐 OAuth provider initialized with Descope")
            except ValueError as e:
                logger.warning(f"⚠️  Failed to initialize OAuth provider: {e}")

        if settings.api_keys:
            try:
                providers.append(ApiKeyProvider(settings.api_keys))
                logger.info(f"🔑 API key provider initialized with {len(settings.api_keys)} keys")
            except ValueError as e:
                logger.warning(f"⚠️  Failed to initialize API key provider: {e}")

        return cls(providers)

    async def authenticate(self, request: Request) -> AuthSession:
        """
        Authenticate a request with the first compatible provider.

        Raises:
            AuthenticationError: with a generic message when no provider accepts the request
        """
        logger.debug(
            "Attempting authentication (authorization: %s, x-api-key: %s)",
            "present" if request.headers.get("authorization") else "missing",
            "present" if request.headers.get("x-api-key") else "missing",
        )

        # Snapshot so add/remove_provider cannot disturb an in-flight iteration
        providers = tuple(self._providers)
        if not providers:
            return anonymous_session()

        for provider in providers:
            if not provider.can_handle(request):
                logger.debug(f"Provider {provider.name} cannot handle request")
                continue
            try:
                session = await provider.authenticate(request)
            except AuthenticationError as e:
                logger.info(f"❌ {provider.name} authentication failed: {e}")
                continue
            except Exception as e:
                logger.error(f"❌ {provider.name} authentication error: {e}")
                continue
            logger.debug(f"✅ Provider {provider.name} authenticated {session.user_id}")
            return session

        raise AuthenticationError(GENERIC_FAILURE)

    async def validate_session(
        self, session_id: str, provider_type: str | None = None
    ) -> AuthSession | None:
        """Re-validate a session ID against one provider (by name) or all of them."""
        for provider in tuple(self._providers):
            if provider_type and provider.name != provider_type:
                continue
            try:
                session = await provider.validate_session(session_id)
            except Exception as e:
                logger.error(f"Session validation failed for {provider.name}: {e}")
                continue
            if session:
                return session
        return None

    def get_oauth_provider(self) -> OAuthProvider | None:
        for provider in self._providers:
            match provider:
                case OAuthProvider():
                    return provider
        return None

    def get_api_key_provider(self) -> ApiKeyProvider | None:
        for provider in self._providers:
            match provider:
                case ApiKeyProvider():
                    return provider
        return None

    def is_auth_enabled(self) -> bool:
        return len(self._providers) > 0

    def get_available_methods(self) -> list[str]:
        return [p.name for p in self._providers]

    def add_provider(self, provider: AuthProvider) -> None:
        """Append a provider to the end of the chain."""
        self._providers.append(provider)
        logger.info(f"Added authentication provider {provider.name}")

    def remove_provider(self, name: str) -> None:
        """Remove every provider with the given name. Unknown names are ignored."""
        self._providers = [p for p in self._providers if p.name != name]

    def get_auth_status(self) -> AuthStatus:
        return AuthStatus(
            enabled=self.is_auth_enabled(),
            providers=self.get_available_methods(),
            oauth_configured=self.get_oauth_provider() is not None,
            api_key_configured=self.get_api_key_provider() is not None,
        )

    async def close(self) -> None:
        for provider in tuple(self._providers):
            await provider.close()


__all__ = ["AuthManager", "anonymous_session", "GENERIC_FAILURE"]
