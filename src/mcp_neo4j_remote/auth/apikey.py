"""
API key authentication against a static allowlist.

Accepted credential markers, in order of precedence:

    Authorization: ApiKey <key>
    x-api-key: <key>
    ?api_key=<key>
"""

from __future__ import annotations

import hashlib
import hmac

from starlette.requests import Request

from ..mcp_logging import logger
from ..models import AuthSession
from .base import AuthenticationError, AuthProvider, get_authorization

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY_PARAM = "api_key"
API_KEY_SCHEME = "apikey"
SESSION_ID_PREFIX = "apikey-"


def _fingerprint(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


class ApiKeyProvider(AuthProvider):
    """
    Validates API keys against keys supplied at process start.

    Only SHA-256 fingerprints are used to build session identifiers; keys themselves
    never appear in sessions or logs.
    """

    name = "apikey"
    kind = "apikey"

    def __init__(self, api_keys: list[str]):
        keys = [k.strip() for k in api_keys if k and k.strip()]
        if not keys:
            raise ValueError("At least one API key required")
        self._api_keys: list[str] = list(dict.fromkeys(keys))
        self._session_ids: dict[str, str] = {
            self._session_id(k): k for k in self._api_keys
        }

    @staticmethod
    def _session_id(api_key: str) -> str:
        return f"{SESSION_ID_PREFIX}{_fingerprint(api_key)[:16]}"

    def get_api_key_count(self) -> int:
        return len(self._api_keys)

    def extract_api_key(self, request: Request) -> str | None:
        """Return the API key carried by the request, if any."""
        authorization = get_authorization(request)
        if authorization and authorization[0] == API_KEY_SCHEME:
            return authorization[1]
        header = request.headers.get(API_KEY_HEADER, "").strip()
        if header:
            return header
        param = request.query_params.get(API_KEY_QUERY_PARAM, "").strip()
        return param or None

    def can_handle(self, request: Request) -> bool:
        return self.extract_api_key(request) is not None

    def _is_valid(self, candidate: str) -> bool:
        # Compare against every key so timing does not depend on which one matched
        matched = False
        for key in self._api_keys:
            if hmac.compare_digest(candidate.encode("utf-8"), key.encode("utf-8")):
                matched = True
        return matched

    def _build_session(self, api_key: str) -> AuthSession:
        fingerprint = _fingerprint(api_key)
        return AuthSession(
            id=self._session_id(api_key),
            type="apikey",
            user_id=f"apikey-{fingerprint[:8]}",
            name="API Key User",
            provider="apikey",
            scopes=["read", "write"],
        )

    async def authenticate(self, request: Request) -> AuthSession:
        api_key = self.extract_api_key(request)
        if not api_key:
            raise AuthenticationError("No API key provided")
        if not self._is_valid(api_key):
            raise AuthenticationError("Invalid API key")
        session = self._build_session(api_key)
        logger.debug(f"🔑 API key accepted for {session.user_id}")
        return session

    async def validate_session(self, session_id: str) -> AuthSession | None:
        """Accept a session ID issued by this provider, or a raw configured key."""
        if not session_id:
            return None
        api_key = self._session_ids.get(session_id)
        if api_key is None and self._is_valid(session_id):
            api_key = session_id
        return self._build_session(api_key) if api_key else None


__all__ = ["ApiKeyProvider"]
