"""
Data models for the Neo4j graph memory and the authentication chain.

Python attributes are snake_case; the JSON wire format keeps the camelCase
names MCP clients already use (`relationType`, `entityName`, ...), through
pydantic aliases. Dump with `by_alias=True` when talking to clients.
"""

from datetime import datetime, timezone
import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def get_current_datetime() -> datetime:
    """Get the current datetime (UTC)."""
    return datetime.now(timezone.utc)


class KnowledgeGraphException(Exception):
    """
    Base exception for the knowledge graph.

    Raised for problems in the interaction between the server and the graph store.
    Exceptions involving data validity should be raised as a `ValueError` instead.
    """

    pass


class _WireModel(BaseModel):
    model_config = ConfigDict(
        validate_by_name=True,
        validate_by_alias=True,
        serialize_by_alias=True,
    )

    def to_dict(self) -> dict[str, Any]:
        """Return the model as a JSON-compatible dictionary using wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Entity(_WireModel):
    """
    A named, typed node of the knowledge graph with its observation log.

    The name is the natural key: creating an entity whose name already exists
    overwrites the stored type and observations. Example:

    - {'name': 'Alice', 'type': 'Person', 'observations': ['likes tea']}
    """

    name: str = Field(
        ...,
        min_length=1,
        title="Entity name",
        description="The unique name of the entity",
    )
    entity_type: str = Field(
        ...,
        alias="type",
        title="Entity type",
        description="Type classification (e.g., 'Person', 'Organization'); also stored as a node label",
    )
    observations: list[str] = Field(
        default_factory=list,
        title="Observations",
        description="Facts about the entity, one short statement each",
    )


class Relation(_WireModel):
    """
    Directed connection between two entities.

    Relations are stored in active voice; (source, relationType, target) identifies an edge.
    """

    source: str = Field(..., title="Source entity", description="Name of the source entity")
    target: str = Field(..., title="Target entity", description="Name of the target entity")
    relation_type: str = Field(
        ...,
        alias="relationType",
        title="Relation type",
        description="Relationship type in active voice, e.g. 'knows' or 'works_at'",
    )

    def key(self) -> tuple[str, str, str]:
        return (self.source, self.relation_type, self.target)

    def __str__(self) -> str:
        return f"({self.source})-[{self.relation_type}]->({self.target})"


class ObservationAddition(_WireModel):
    """Request to append observations to an entity."""

    entity_name: str = Field(
        ...,
        alias="entityName",
        title="Entity name",
        description="The name of the entity to add the observations to",
    )
    contents: list[str] = Field(
        ...,
        title="Contents",
        description="Observation strings to add; strings already present are skipped",
    )


class ObservationDeletion(_WireModel):
    """Request to remove observations from an entity."""

    entity_name: str = Field(
        ...,
        alias="entityName",
        title="Entity name",
        description="The name of the entity containing the observations",
    )
    observations: list[str] = Field(
        ...,
        title="Observations",
        description="Observation strings to delete",
    )

    def __repr__(self):
        return f"ObservationDeletion(entity_name={self.entity_name}, observations={self.observations})"


class AddObservationResult(_WireModel):
    """Result of adding observations to an entity."""

    entity_name: str = Field(..., alias="entityName", title="Entity name")
    added_observations: list[str] = Field(
        default_factory=list,
        alias="addedObservations",
        title="Added observations",
        description="The observations that were actually added (excluding duplicates)",
    )


class KnowledgeGraph(_WireModel):
    """
    Read-only snapshot of (part of) the knowledge graph.

    Returned by every read operation; it is not a live view of the database.
    """

    entities: list[Entity] = Field(default_factory=list, title="Entities")
    relations: list[Relation] = Field(default_factory=list, title="Relations")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)


class GraphStats(_WireModel):
    """Aggregate counters over the memory graph."""

    entities: int = 0
    relations: int = 0
    total_observations: int = Field(default=0, alias="totalObservations")


AuthType = Literal["oauth", "apikey"]


class AuthSession(_WireModel):
    """
    Normalized identity produced by exactly one credential provider.

    Sessions are created fresh for every authenticated request and never persisted.
    """

    id: str = Field(..., title="Session ID")
    type: AuthType = Field(..., title="Credential scheme")
    user_id: str | None = Field(default=None, alias="userId")
    email: str | None = None
    name: str | None = None
    provider: str | None = None
    scopes: list[str] | None = None
    created_at: datetime = Field(default_factory=get_current_datetime, alias="createdAt")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")

    @field_validator("scopes", mode="after")
    @classmethod
    def _dedupe_scopes(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        return list(dict.fromkeys(s for s in v if s))

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= get_current_datetime()


class AuthStatus(_WireModel):
    """Read-only view of the configured authentication providers."""

    enabled: bool
    providers: list[str] = Field(default_factory=list)
    oauth_configured: bool = Field(default=False, alias="oauthConfigured")
    api_key_configured: bool = Field(default=False, alias="apiKeyConfigured")


__all__ = [
    "AddObservationResult",
    "AuthSession",
    "AuthStatus",
    "AuthType",
    "Entity",
    "GraphStats",
    "KnowledgeGraph",
    "KnowledgeGraphException",
    "ObservationAddition",
    "ObservationDeletion",
    "Relation",
    "get_current_datetime",
]
