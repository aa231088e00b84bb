"""
OAuth bearer-token authentication through Descope session validation.

Clients send `Authorization: Bearer <session token>`. The token is checked by the
identity provider; this server never issues or renews tokens.
"""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
from typing import Any

import httpx
from starlette.requests import Request

from ..mcp_logging import logger
from ..models import AuthSession, get_current_datetime
from .base import AuthenticationError, AuthProvider, get_authorization

BEARER_SCHEME = "bearer"
VALIDATE_PATH = "/v1/auth/validate"
DEFAULT_SCOPES = ["read", "write"]


class OAuthProvider(AuthProvider):
    """Validates bearer tokens against the Descope session validation endpoint."""

    name = "oauth"
    kind = "oauth"

    def __init__(
        self,
        project_id: str,
        base_url: str = "https://api.descope.com",
        supported_providers: list[str] | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not project_id or not project_id.strip():
            raise ValueError("A Descope project ID is required")
        self.project_id = project_id.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._supported_providers = list(supported_providers or [])
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def get_supported_providers(self) -> list[str]:
        return list(self._supported_providers)

    def can_handle(self, request: Request) -> bool:
        authorization = get_authorization(request)
        return authorization is not None and authorization[0] == BEARER_SCHEME

    async def introspect(self, token: str) -> dict[str, Any]:
        """
        Ask the identity provider whether a token is valid.

        Returns:
            The token claims

        Raises:
            AuthenticationError: if the token is rejected or the provider is unreachable
        """
        client = await self._get_client()
        try:
            resp = await client.post(
                f"{self.base_url}{VALIDATE_PATH}",
                headers={"Authorization": f"Bearer {self.project_id}:{token}"},
                json={},
            )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Token validation request failed: {e}") from e

        if resp.status_code >= 400:
            raise AuthenticationError(f"Token rejected by identity provider ({resp.status_code})")
        try:
            data = resp.json()
        except ValueError as e:
            raise AuthenticationError("Identity provider returned an invalid response") from e

        # Descope nests the claims under "token"; RFC 7662 style responses are flat
        claims = data.get("token", data) if isinstance(data, dict) else None
        if not isinstance(claims, dict):
            raise AuthenticationError("Identity provider returned no claims")
        if claims.get("active") is False:
            raise AuthenticationError("Token is not active")
        return claims

    @staticmethod
    def _parse_scopes(claims: dict[str, Any]) -> list[str]:
        scope = claims.get("scope")
        if isinstance(scope, str) and scope.strip():
            return scope.split()
        for key in ("scopes", "permissions"):
            value = claims.get(key)
            if isinstance(value, list) and value:
                return [str(v) for v in value]
        return list(DEFAULT_SCOPES)

    def _session_from_claims(self, token: str, claims: dict[str, Any]) -> AuthSession:
        expires_at = None
        exp = claims.get("exp")
        if isinstance(exp, (int, float)):
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
            if expires_at <= get_current_datetime():
                raise AuthenticationError("Token has expired")

        amr = claims.get("amr")
        provider = claims.get("provider") or (amr[0] if isinstance(amr, list) and amr else None)
        session_id = claims.get("jti") or f"oauth-{hashlib.sha256(token.encode('utf-8')).hexdigest()[:16]}"

        return AuthSession(
            id=str(session_id),
            type="oauth",
            user_id=claims.get("sub") or claims.get("userId"),
            email=claims.get("email"),
            name=claims.get("name"),
            provider=provider or "descope",
            scopes=self._parse_scopes(claims),
            expires_at=expires_at,
        )

    async def authenticate(self, request: Request) -> AuthSession:
        authorization = get_authorization(request)
        if authorization is None or authorization[0] != BEARER_SCHEME:
            raise AuthenticationError("No bearer token provided")
        token = authorization[1]
        session = self._session_from_claims(token, await self.introspect(token))
        logger.debug(f"🔐 Bearer token accepted for {session.user_id}")
        return session

    async def validate_session(self, session_id: str) -> AuthSession | None:
        """Re-validate a session token with the identity provider."""
        if not session_id:
            return None
        try:
            return self._session_from_claims(session_id, await self.introspect(session_id))
        except AuthenticationError as e:
            logger.debug(f"OAuth session validation failed: {e}")
            return None


__all__ = ["OAuthProvider"]
