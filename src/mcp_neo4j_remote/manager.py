"""
Knowledge Graph Manager backed by Neo4j.

This module contains the core business logic for managing the knowledge graph:
entity and relation upserts, observation bookkeeping, idempotent deletes, and
full-text search. Neo4j is the only persistence layer; nothing is cached here.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction, AsyncSession
from neo4j.exceptions import ClientError

from .mcp_logging import logger
from .models import (
    AddObservationResult,
    Entity,
    GraphStats,
    KnowledgeGraph,
    ObservationAddition,
    ObservationDeletion,
    Relation,
)
from .security import quote_identifier, validate_identifier

if TYPE_CHECKING:
    from .settings import AppSettings


MEMORY_LABEL = "Memory"
FULLTEXT_INDEX_NAME = "search"

# Neo4j status codes meaning "this index is already there"
_INDEX_EXISTS_CODES = frozenset(
    {
        "Neo.ClientError.Schema.EquivalentSchemaRuleAlreadyExists",
        "Neo.ClientError.Schema.IndexWithNameAlreadyExists",
    }
)

_CREATE_INDEX_QUERY = f"""
CREATE FULLTEXT INDEX {FULLTEXT_INDEX_NAME} IF NOT EXISTS
FOR (m:{MEMORY_LABEL}) ON EACH [m.name, m.type, m.observations]
"""

_LOAD_GRAPH_QUERY = """
CALL db.index.fulltext.queryNodes($index, $filter) YIELD node AS entity, score
OPTIONAL MATCH (entity)-[r]-(other)
RETURN collect(DISTINCT {
    name: entity.name,
    type: entity.type,
    observations: entity.observations
}) AS nodes,
collect(DISTINCT {
    source: startNode(r).name,
    target: endNode(r).name,
    relationType: type(r)
}) AS relations
"""

_ADD_OBSERVATIONS_QUERY = f"""
UNWIND $observations AS obs
OPTIONAL MATCH (e:{MEMORY_LABEL} {{name: obs.entityName}})
WITH obs, e,
     CASE WHEN e IS NULL THEN []
          ELSE [o IN obs.contents WHERE NOT o IN coalesce(e.observations, [])]
     END AS new
FOREACH (_ IN CASE WHEN e IS NULL THEN [] ELSE [1] END |
    SET e.observations = coalesce(e.observations, []) + new)
RETURN obs.entityName AS name, new
"""

_DELETE_ENTITIES_QUERY = f"""
UNWIND $entities AS name
MATCH (e:{MEMORY_LABEL} {{name: name}})
DETACH DELETE e
"""

_DELETE_OBSERVATIONS_QUERY = f"""
UNWIND $deletions AS d
MATCH (e:{MEMORY_LABEL} {{name: d.entityName}})
SET e.observations = [o IN coalesce(e.observations, []) WHERE NOT o IN d.observations]
"""

_STATS_QUERY = f"""
MATCH (e:{MEMORY_LABEL})
WITH count(e) AS entities, sum(size(coalesce(e.observations, []))) AS totalObservations
OPTIONAL MATCH (:{MEMORY_LABEL})-[r]->(:{MEMORY_LABEL})
RETURN entities, count(r) AS relations, totalObservations
"""


def _lucene_phrase(value: str) -> str:
    """Quote a value as a Lucene phrase so spaces and operators are matched literally."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_name_filter(names: list[str]) -> str:
    """Build the full-text filter matching any of the given entity names."""
    return f"name:({' '.join(_lucene_phrase(n) for n in names)})"


class KnowledgeGraphManager:
    """
    Core manager for knowledge graph operations on Neo4j.

    Every public method borrows its own driver session and releases it on all exit
    paths. Each method is atomic on its own, except `create_relations` and
    `delete_relations`, which issue one query per relation: a failure midway leaves
    the earlier relations committed.
    """

    def __init__(
        self,
        uri: str | None = None,
        username: str | None = None,
        password: str | None = None,
        database: str = "neo4j",
        driver: AsyncDriver | None = None,
    ):
        """
        Initialize the knowledge graph manager.

        Args:
            uri: Neo4j connection URI (bolt://, neo4j://, neo4j+s://, ...)
            username: Neo4j user
            password: Neo4j password
            database: Database to run queries against
            driver: An already-built async driver; takes precedence over uri/credentials
        """
        if driver is None:
            if not uri:
                raise ValueError("A Neo4j URI or an existing driver is required")
            driver = AsyncGraphDatabase.driver(
                uri,
                auth=(username, password),
                max_connection_lifetime=3600,
                max_connection_pool_size=50,
                connection_acquisition_timeout=60,
            )
        self._driver = driver
        self._database = database

    @classmethod
    def from_settings(cls, settings: "AppSettings") -> "KnowledgeGraphManager":
        """Initialize the knowledge graph manager via the settings object."""
        return cls(
            uri=settings.neo4j_uri,
            username=settings.neo4j_username,
            password=settings.neo4j_password,
            database=settings.neo4j_database,
        )

    @property
    def database(self) -> str:
        return self._database

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Context manager lending a Neo4j session for the duration of one operation."""
        session = self._driver.session(database=self._database)
        try:
            yield session
        finally:
            await session.close()

    # ---------- Lifecycle ----------
    async def initialize(self) -> None:
        """
        Verify connectivity and make sure the full-text search index exists.

        Raises:
            Any driver error other than "index already exists"; the server must not start.
        """
        try:
            await self._driver.verify_connectivity()
        except Exception as e:
            logger.error(f"⛔ Neo4j connection failed: {e}")
            raise
        logger.info("🔌 Connected to Neo4j")
        await self._create_fulltext_index()

    async def _create_fulltext_index(self) -> None:
        async with self.session() as session:
            try:
                result = await session.run(_CREATE_INDEX_QUERY)
                await result.consume()
            except ClientError as e:
                code = getattr(e, "code", None)
                if code in _INDEX_EXISTS_CODES or "An index with this name already exists" in str(e):
                    logger.info(f"🔎 Full-text index '{FULLTEXT_INDEX_NAME}' already exists")
                    return
                raise
        logger.info(f"🔎 Full-text index '{FULLTEXT_INDEX_NAME}' created/verified")

    async def close(self) -> None:
        """Close the driver. The manager must not be used afterwards."""
        await self._driver.close()
        logger.info("🔌 Neo4j connection closed")

    async def test_connection(self) -> bool:
        """Liveness probe. Never raises."""
        try:
            await self._driver.verify_connectivity()
            return True
        except Exception as e:
            logger.error(f"❌ Neo4j connection test failed: {e}")
            return False

    # ---------- Reads ----------
    async def load_graph(self, filter_query: str = "*") -> KnowledgeGraph:
        """
        Run a full-text query and return the matching entities plus every relation
        touching them (one hop, both directions).

        Args:
            filter_query: Lucene query against name/type/observations; `*` matches everything
        """
        async with self.session() as session:
            result = await session.run(
                _LOAD_GRAPH_QUERY, index=FULLTEXT_INDEX_NAME, filter=filter_query
            )
            record = await result.single()

        if record is None:
            return KnowledgeGraph()

        entities: dict[str, Entity] = {}
        for node in record["nodes"] or []:
            name = node.get("name")
            if not name or name in entities:
                continue
            entities[name] = Entity(
                name=name,
                entity_type=node.get("type") or "",
                observations=list(node.get("observations") or []),
            )

        relations: dict[tuple[str, str, str], Relation] = {}
        for rel in record["relations"] or []:
            source, target, rel_type = rel.get("source"), rel.get("target"), rel.get("relationType")
            if not (source and target and rel_type):
                continue
            relations.setdefault(
                (source, rel_type, target),
                Relation(source=source, target=target, relation_type=rel_type),
            )

        logger.debug(
            f"💾 Loaded {len(entities)} entities and {len(relations)} relations for filter '{filter_query}'"
        )
        return KnowledgeGraph(entities=list(entities.values()), relations=list(relations.values()))

    async def read_graph(self) -> KnowledgeGraph:
        """Read the entire knowledge graph."""
        return await self.load_graph()

    async def search_nodes(self, query: str) -> KnowledgeGraph:
        """Search entities by free text over names, types and observations."""
        return await self.load_graph(query)

    async def find_nodes(self, names: list[str]) -> KnowledgeGraph:
        """Find entities by name. Unknown names are simply absent from the result."""
        names = [n for n in names if n]
        if not names:
            return KnowledgeGraph()
        return await self.load_graph(build_name_filter(names))

    async def open_nodes(self, names: list[str]) -> KnowledgeGraph:
        """Alias of `find_nodes`."""
        return await self.find_nodes(names)

    async def get_stats(self) -> GraphStats:
        """Count entities, relations and observations in one query."""
        async with self.session() as session:
            result = await session.run(_STATS_QUERY)
            record = await result.single()

        if record is None:
            return GraphStats()
        return GraphStats(
            entities=int(record["entities"] or 0),
            relations=int(record["relations"] or 0),
            total_observations=int(record["totalObservations"] or 0),
        )

    # ---------- Writes ----------
    async def create_entities(self, entities: list[Entity]) -> list[Entity]:
        """
        Upsert entities by name.

        An existing entity has its type and observations overwritten (observations are
        replaced, not appended; use `add_observations` to append), and gains a label
        equal to its type. All entities are written in a single transaction. A name
        repeated within the batch is written once, from its last entry, and repeated
        observation strings are collapsed.

        Returns:
            The input entities, unchanged

        Raises:
            ValueError: if an entity type is not a valid label; nothing is written
        """
        if not entities:
            return entities

        # The last entry wins when a name repeats, whatever its label group
        latest = {entity.name: entity for entity in entities}

        # Labels cannot be parameters: group rows by their validated label
        groups: dict[str, list[dict[str, Any]]] = {}
        for entity in latest.values():
            entity_type = validate_identifier(entity.entity_type, "entity type")
            groups.setdefault(quote_identifier(entity_type, "entity type"), []).append(
                {
                    "name": entity.name,
                    "type": entity_type,
                    "observations": list(dict.fromkeys(entity.observations)),
                }
            )

        async def _merge(tx: AsyncManagedTransaction) -> None:
            for label, rows in groups.items():
                result = await tx.run(
                    f"""
                    UNWIND $entities AS entity
                    MERGE (e:{MEMORY_LABEL} {{name: entity.name}})
                    SET e += entity, e:{label}
                    """,
                    entities=rows,
                )
                await result.consume()

        async with self.session() as session:
            await session.execute_write(_merge)

        logger.info(f"👤 Created/updated {len(entities)} entities")
        return entities

    async def create_relations(self, relations: list[Relation]) -> list[Relation]:
        """
        Upsert directed relations, one query per relation.

        A relation whose source or target does not exist writes nothing and is not an
        error. Relation types are all validated before the first write.

        Returns:
            The input relations, unchanged
        """
        rel_types = [quote_identifier(r.relation_type, "relation type") for r in relations]

        async with self.session() as session:
            for relation, rel_type in zip(relations, rel_types):
                result = await session.run(
                    f"""
                    MATCH (from:{MEMORY_LABEL} {{name: $source}})
                    MATCH (to:{MEMORY_LABEL} {{name: $target}})
                    MERGE (from)-[r:{rel_type}]->(to)
                    """,
                    source=relation.source,
                    target=relation.target,
                )
                await result.consume()

        logger.info(f"🔗 Created {len(relations)} relations")
        return relations

    async def add_observations(
        self, additions: list[ObservationAddition]
    ) -> list[AddObservationResult]:
        """
        Append observations, skipping strings the entity already has.

        Requests for the same entity are combined and duplicate strings collapsed. An
        entity that does not exist is reported with no added observations.
        """
        merged: dict[str, list[str]] = {}
        for addition in additions:
            bucket = merged.setdefault(addition.entity_name, [])
            for content in addition.contents:
                if content not in bucket:
                    bucket.append(content)
        if not merged:
            return []

        rows = [{"entityName": name, "contents": contents} for name, contents in merged.items()]
        async with self.session() as session:
            result = await session.run(_ADD_OBSERVATIONS_QUERY, observations=rows)
            records = await result.data()

        results = [
            AddObservationResult(entity_name=r["name"], added_observations=list(r["new"] or []))
            for r in records
        ]
        added = sum(len(r.added_observations) for r in results)
        logger.info(f"📝 Added {added} observations to {len(results)} entities")
        return results

    async def delete_entities(self, entity_names: list[str]) -> None:
        """Delete entities and their relations. Unknown names are ignored."""
        if not entity_names:
            return
        async with self.session() as session:
            result = await session.run(_DELETE_ENTITIES_QUERY, entities=list(entity_names))
            await result.consume()
        logger.info(f"🗑️ Deleted up to {len(entity_names)} entities")

    async def delete_observations(self, deletions: list[ObservationDeletion]) -> None:
        """Remove exactly the listed observation strings. Unknown entities are ignored."""
        if not deletions:
            return
        rows = [
            {"entityName": d.entity_name, "observations": list(d.observations)} for d in deletions
        ]
        async with self.session() as session:
            result = await session.run(_DELETE_OBSERVATIONS_QUERY, deletions=rows)
            await result.consume()
        logger.info(f"🗑️ Deleted observations from up to {len(deletions)} entities")

    async def delete_relations(self, relations: list[Relation]) -> None:
        """Delete relations matching the exact (source, type, target) triple, one query each."""
        rel_types = [quote_identifier(r.relation_type, "relation type") for r in relations]

        async with self.session() as session:
            for relation, rel_type in zip(relations, rel_types):
                result = await session.run(
                    f"""
                    MATCH (source:{MEMORY_LABEL} {{name: $source}})-[r:{rel_type}]->(target:{MEMORY_LABEL} {{name: $target}})
                    DELETE r
                    """,
                    source=relation.source,
                    target=relation.target,
                )
                await result.consume()

        logger.info(f"🗑️ Deleted up to {len(relations)} relations")


__all__ = ["KnowledgeGraphManager", "build_name_filter", "MEMORY_LABEL", "FULLTEXT_INDEX_NAME"]
