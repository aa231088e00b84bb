"""
Pytest configuration and fixtures for mcp-neo4j-remote tests.

This module provides a recording stand-in for the Neo4j async driver, so the
graph manager can be exercised without a database, and helpers for putting the
application context into a known state.
"""

from collections import deque
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from mcp_neo4j_remote.auth.manager import AuthManager
from mcp_neo4j_remote.context import ctx
from mcp_neo4j_remote.manager import KnowledgeGraphManager
from mcp_neo4j_remote.models import Entity, Relation
from mcp_neo4j_remote.settings import AppSettings


class FakeResult:
    """Minimal async result: `single()` returns `record`, `data()` returns `rows`."""

    def __init__(self, record: dict[str, Any] | None = None, rows: list[dict[str, Any]] | None = None):
        self.record = record
        self.rows = rows or []
        self.consumed = False

    async def single(self):
        return self.record

    async def data(self):
        return self.rows

    async def consume(self):
        self.consumed = True


class FakeTransaction:
    def __init__(self, driver: "FakeDriver"):
        self._driver = driver

    async def run(self, query: str, parameters: dict | None = None, **kwargs):
        return self._driver._record_run(query, parameters, kwargs, in_tx=True)


class FakeSession:
    def __init__(self, driver: "FakeDriver", database: str | None):
        self._driver = driver
        self.database = database
        self.closed = False

    async def run(self, query: str, parameters: dict | None = None, **kwargs):
        return self._driver._record_run(query, parameters, kwargs, in_tx=False)

    async def execute_write(self, work, *args, **kwargs):
        self._driver.write_transactions += 1
        return await work(FakeTransaction(self._driver), *args, **kwargs)

    async def close(self):
        self.closed = True


class FakeDriver:
    """
    Records every query with its parameters.

    Queue responses with `respond()`; each `run` consumes the next one. A queued
    exception is raised instead of returning a result.
    """

    def __init__(self):
        self.queries: list[tuple[str, dict[str, Any], bool]] = []
        self.sessions: list[FakeSession] = []
        self.write_transactions = 0
        self._responses: deque = deque()
        self.verify_connectivity = AsyncMock(return_value=None)
        self.close = AsyncMock(return_value=None)

    def respond(self, response: "FakeResult | Exception") -> "FakeDriver":
        self._responses.append(response)
        return self

    def session(self, database: str | None = None) -> FakeSession:
        session = FakeSession(self, database)
        self.sessions.append(session)
        return session

    def _record_run(self, query: str, parameters: dict | None, kwargs: dict, in_tx: bool):
        params = dict(parameters or {})
        params.update(kwargs)
        self.queries.append((query, params, in_tx))
        response = self._responses.popleft() if self._responses else FakeResult()
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def graph_manager(fake_driver: FakeDriver) -> KnowledgeGraphManager:
    """KnowledgeGraphManager wired to the recording fake driver."""
    return KnowledgeGraphManager(driver=fake_driver, database="memory")


@pytest.fixture
def sample_entities() -> list[Entity]:
    return [
        Entity(name="Alice", entity_type="Person", observations=["likes tea", "lives in Lyon"]),
        Entity(name="Acme", entity_type="Organization", observations=["makes anvils"]),
        Entity(name="Bob", entity_type="Person", observations=[]),
    ]


@pytest.fixture
def sample_relations() -> list[Relation]:
    return [
        Relation(source="Alice", target="Acme", relation_type="works_at"),
        Relation(source="Alice", target="Bob", relation_type="knows"),
    ]


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        neo4j_uri="bolt://localhost:7687",
        neo4j_username="neo4j",
        neo4j_password="password",
        api_keys=["test-api-key-0123456789abcdef"],
    )


@pytest.fixture
def mock_context(settings: AppSettings, monkeypatch: pytest.MonkeyPatch):
    """
    Put the global context into an initialized state with a mocked graph manager.

    Yields the context; `ctx.memory` is a Mock whose coroutine methods are AsyncMocks.
    """
    memory = Mock(spec=KnowledgeGraphManager)
    for name in (
        "create_entities",
        "create_relations",
        "add_observations",
        "delete_entities",
        "delete_observations",
        "delete_relations",
        "read_graph",
        "search_nodes",
        "find_nodes",
        "open_nodes",
        "get_stats",
        "test_connection",
        "initialize",
        "close",
    ):
        setattr(memory, name, AsyncMock())
    memory.database = "neo4j"

    monkeypatch.setattr(
        ctx,
        "_components",
        {"settings": settings, "logger": Mock(), "memory": memory, "auth": AuthManager([])},
    )
    yield ctx
