"""Tests for authentication providers and the AuthManager chain."""

import time

import httpx
import pytest
from unittest.mock import AsyncMock, Mock
from starlette.requests import Request

from mcp_neo4j_remote.auth import (
    ApiKeyProvider,
    AuthManager,
    AuthenticationError,
    OAuthProvider,
)
from mcp_neo4j_remote.auth.manager import GENERIC_FAILURE
from mcp_neo4j_remote.models import AuthSession
from mcp_neo4j_remote.settings import AppSettings

API_KEY = "test-api-key-0123456789abcdef"
PROJECT_ID = "P2test"


def make_request(headers: dict[str, str] | None = None, query: str = "") -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/mcp",
            "headers": raw_headers,
            "query_string": query.encode(),
        }
    )


def make_oauth(handler, **kwargs) -> OAuthProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OAuthProvider(PROJECT_ID, client=client, **kwargs)


def valid_claims(**overrides):
    claims = {
        "sub": "user-42",
        "email": "ada@example.com",
        "name": "Ada",
        "exp": int(time.time()) + 3600,
        "amr": ["google"],
        "scope": "read write",
    }
    claims.update(overrides)
    return claims


def accepting(claims: dict):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token": claims})

    return handler


def rejecting(request: httpx.Request) -> httpx.Response:
    return httpx.Response(401, json={"errorCode": "E061005"})


def mock_provider(name: str, session: AuthSession | None = None, handles: bool = True, error=None):
    provider = Mock()
    provider.name = name
    provider.can_handle = Mock(return_value=handles)
    provider.authenticate = AsyncMock(return_value=session, side_effect=error)
    provider.validate_session = AsyncMock(return_value=session)
    provider.close = AsyncMock()
    return provider


# ---------- API keys ----------


async def test_api_key_from_header_markers():
    """API keys are read from the ApiKey scheme, x-api-key, and ?api_key."""
    provider = ApiKeyProvider([API_KEY])

    for request in (
        make_request({"Authorization": f"ApiKey {API_KEY}"}),
        make_request({"x-api-key": API_KEY}),
        make_request(query=f"api_key={API_KEY}"),
    ):
        assert provider.can_handle(request)
        session = await provider.authenticate(request)
        assert session.type == "apikey"
        assert session.provider == "apikey"
        assert session.scopes == ["read", "write"]
        assert session.user_id.startswith("apikey-")
        assert API_KEY not in session.id and API_KEY not in session.user_id


async def test_api_key_invalid_rejected():
    """Unknown keys raise AuthenticationError."""
    provider = ApiKeyProvider([API_KEY])
    with pytest.raises(AuthenticationError):
        await provider.authenticate(make_request({"x-api-key": "wrong"}))


def test_api_key_cannot_handle_bearer():
    """A bearer token is not an API key marker."""
    provider = ApiKeyProvider([API_KEY])
    assert not provider.can_handle(make_request({"Authorization": "Bearer abc"}))
    assert not provider.can_handle(make_request())


def test_api_key_requires_keys():
    """Empty or blank key lists raise ValueError."""
    with pytest.raises(ValueError, match="At least one API key required"):
        ApiKeyProvider([" ", ""])


def test_api_key_count_trims_and_dedupes():
    provider = ApiKeyProvider([f" {API_KEY} ", API_KEY, "other-key"])
    assert provider.get_api_key_count() == 2


async def test_api_key_session_is_stable():
    """The same key always maps to the same session ID, which can be re-validated."""
    provider = ApiKeyProvider([API_KEY])
    first = await provider.authenticate(make_request({"x-api-key": API_KEY}))
    second = await provider.authenticate(make_request({"x-api-key": API_KEY}))
    assert first.id == second.id

    validated = await provider.validate_session(first.id)
    assert validated is not None and validated.user_id == first.user_id
    assert (await provider.validate_session(API_KEY)).id == first.id
    assert await provider.validate_session("apikey-unknown") is None


# ---------- OAuth ----------


async def test_oauth_valid_token():
    """A token accepted by Descope yields an oauth session with its claims."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"token": valid_claims()})

    provider = make_oauth(handler)
    session = await provider.authenticate(make_request({"Authorization": "Bearer tok123"}))

    assert session.type == "oauth"
    assert session.user_id == "user-42"
    assert session.email == "ada@example.com"
    assert session.provider == "google"
    assert session.scopes == ["read", "write"]
    assert session.expires_at is not None and not session.is_expired
    assert seen[0].url.path == "/v1/auth/validate"
    assert seen[0].headers["authorization"] == f"Bearer {PROJECT_ID}:tok123"
    await provider.close()


async def test_oauth_rejected_token():
    provider = make_oauth(rejecting)
    with pytest.raises(AuthenticationError):
        await provider.authenticate(make_request({"Authorization": "Bearer bad"}))


async def test_oauth_expired_token():
    """A token whose exp is in the past is rejected even if the provider answers 200."""
    provider = make_oauth(accepting(valid_claims(exp=int(time.time()) - 10)))
    with pytest.raises(AuthenticationError, match="expired"):
        await provider.authenticate(make_request({"Authorization": "Bearer old"}))


async def test_oauth_inactive_token():
    """Introspection-style responses with active=false are rejected."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"active": False})

    provider = make_oauth(handler)
    with pytest.raises(AuthenticationError, match="not active"):
        await provider.authenticate(make_request({"Authorization": "Bearer t"}))


async def test_oauth_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    provider = make_oauth(handler)
    with pytest.raises(AuthenticationError):
        await provider.authenticate(make_request({"Authorization": "Bearer t"}))


async def test_oauth_scopes_fallbacks():
    """Scopes come from scope, then scopes/permissions, then default to read/write."""
    provider = make_oauth(accepting(valid_claims(scope=None, permissions=["admin", "admin", "read"])))
    session = await provider.authenticate(make_request({"Authorization": "Bearer t"}))
    assert session.scopes == ["admin", "read"]

    provider = make_oauth(accepting(valid_claims(scope=None, amr=None)))
    session = await provider.authenticate(make_request({"Authorization": "Bearer t"}))
    assert session.scopes == ["read", "write"]
    assert session.provider == "descope"


def test_oauth_can_handle_bearer_only():
    provider = OAuthProvider(PROJECT_ID)
    assert provider.can_handle(make_request({"Authorization": "Bearer abc"}))
    assert provider.can_handle(make_request({"Authorization": "bearer abc"}))
    assert not provider.can_handle(make_request({"Authorization": f"ApiKey {API_KEY}"}))
    assert not provider.can_handle(make_request({"x-api-key": API_KEY}))


def test_oauth_requires_project_id():
    with pytest.raises(ValueError):
        OAuthProvider(" ")


async def test_oauth_validate_session_returns_none_on_failure():
    provider = make_oauth(rejecting)
    assert await provider.validate_session("tok") is None
    assert await provider.validate_session("") is None


# ---------- AuthManager ----------


async def test_manager_anonymous_when_no_providers():
    """With no providers every request is let in as the anonymous user."""
    manager = AuthManager([])
    session = await manager.authenticate(make_request())

    assert session.id == "no-auth"
    assert session.user_id == "anonymous"
    assert session.provider == "none"
    assert session.scopes == ["read", "write"]
    assert not manager.is_auth_enabled()


async def test_manager_falls_back_from_bad_bearer_to_api_key():
    """An invalid bearer token does not block a valid API key on the same request."""
    manager = AuthManager([make_oauth(rejecting), ApiKeyProvider([API_KEY])])
    request = make_request({"Authorization": "Bearer invalid", "x-api-key": API_KEY})

    session = await manager.authenticate(request)

    assert session.type == "apikey"


async def test_manager_skips_providers_that_cannot_handle():
    """A request with only an API key never reaches the OAuth backend."""
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"token": valid_claims()})

    manager = AuthManager([make_oauth(handler), ApiKeyProvider([API_KEY])])
    session = await manager.authenticate(make_request({"x-api-key": API_KEY}))

    assert session.type == "apikey"
    assert calls == []


async def test_manager_first_success_short_circuits():
    first = mock_provider("one", AuthSession(id="s1", type="oauth", user_id="u1"))
    second = mock_provider("two", AuthSession(id="s2", type="apikey", user_id="u2"))

    session = await AuthManager([first, second]).authenticate(make_request())

    assert session.id == "s1"
    second.can_handle.assert_not_called()
    second.authenticate.assert_not_called()


async def test_manager_unexpected_exception_continues_chain():
    """Provider exceptions are caught and the next provider is tried."""
    broken = mock_provider("broken", error=RuntimeError("provider exploded"))
    fallback = mock_provider("fallback", AuthSession(id="s2", type="apikey", user_id="u2"))

    session = await AuthManager([broken, fallback]).authenticate(make_request())

    assert session.id == "s2"
    broken.authenticate.assert_awaited_once()


async def test_manager_generic_failure_message():
    """Rejections never reveal which provider failed or why."""
    manager = AuthManager([make_oauth(rejecting), ApiKeyProvider([API_KEY])])
    request = make_request({"Authorization": "Bearer nope", "x-api-key": "also-wrong"})

    with pytest.raises(AuthenticationError) as exc_info:
        await manager.authenticate(request)
    assert str(exc_info.value) == GENERIC_FAILURE


async def test_manager_rejects_request_without_credentials():
    manager = AuthManager([ApiKeyProvider([API_KEY])])
    with pytest.raises(AuthenticationError, match=GENERIC_FAILURE):
        await manager.authenticate(make_request())


async def test_manager_validate_session_by_provider_type():
    api = ApiKeyProvider([API_KEY])
    manager = AuthManager([mock_provider("oauth", None), api])
    issued = await api.authenticate(make_request({"x-api-key": API_KEY}))

    assert (await manager.validate_session(issued.id)).id == issued.id
    assert (await manager.validate_session(issued.id, "apikey")).id == issued.id
    assert await manager.validate_session(issued.id, "oauth") is None


def test_manager_status_and_typed_lookup():
    oauth = OAuthProvider(PROJECT_ID, supported_providers=["google"])
    api = ApiKeyProvider([API_KEY])
    manager = AuthManager([oauth, api])

    assert manager.get_oauth_provider() is oauth
    assert manager.get_api_key_provider() is api
    assert manager.get_available_methods() == ["oauth", "apikey"]
    assert manager.get_auth_status().to_dict() == {
        "enabled": True,
        "providers": ["oauth", "apikey"],
        "oauthConfigured": True,
        "apiKeyConfigured": True,
    }


def test_manager_add_and_remove_provider():
    manager = AuthManager([])
    api = ApiKeyProvider([API_KEY])

    manager.add_provider(api)
    assert manager.is_auth_enabled()
    assert manager.get_api_key_provider() is api

    manager.remove_provider("apikey")
    manager.remove_provider("does-not-exist")
    assert not manager.is_auth_enabled()
    assert manager.get_api_key_provider() is None


def test_manager_from_settings_orders_oauth_first():
    settings = AppSettings(
        neo4j_uri="bolt://localhost:7687",
        neo4j_username="neo4j",
        neo4j_password="password",
        descope_project_id=PROJECT_ID,
        api_keys=[API_KEY],
    )
    manager = AuthManager.from_settings(settings)
    assert manager.get_available_methods() == ["oauth", "apikey"]


async def test_manager_close_closes_providers():
    first, second = mock_provider("one"), mock_provider("two")
    await AuthManager([first, second]).close()
    first.close.assert_awaited_once()
    second.close.assert_awaited_once()
