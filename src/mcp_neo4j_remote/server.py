"""
FastMCP server exposing the Neo4j graph memory.

This module implements the Model Context Protocol surface: the knowledge graph
tools, two read-only resources describing the server, and a public health
check. Every HTTP request other than the health check is authenticated by
`AuthenticationMiddleware` before it reaches FastMCP.
"""

import json
import sys
import time
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
import uvicorn

from .auth.context import current_user
from .context import ctx
from .mcp_logging import logger
from .middleware import AuthenticationMiddleware
from .models import (
    Entity,
    ObservationAddition,
    ObservationDeletion,
    Relation,
    get_current_datetime,
)
from .security import check_production_security
from .version import MCP_NEO4J_VERSION, SERVER_NAME

INSTRUCTIONS = """
This is a remote Neo4j memory server providing persistent graph-based memory.

Information is stored as entities (named, typed nodes carrying a list of
observations) and directed relations between entities. Relations should be
written in active voice, e.g. (Alice)-[works_at]->(Acme).

Authentication is supported via:
- OAuth bearer tokens (Authorization: Bearer <token>)
- API keys (x-api-key header or Authorization: ApiKey <key>)

Use the tools to create, read, search, and delete entities, relations, and observations.
"""

_STARTED_AT = time.monotonic()

mcp = FastMCP(name=SERVER_NAME, version=MCP_NEO4J_VERSION, instructions=INSTRUCTIONS)


def _to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _fail(action: str, e: Exception) -> ToolError:
    """Log a tool failure and build the error returned to the client."""
    logger.error(f"❌ Failed to {action}: {e}")
    if isinstance(e, ValueError):
        return ToolError(f"Failed to {action}: {e}")
    return ToolError(f"Failed to {action}")


# ---------- Write tools ----------
@mcp.tool(
    annotations={
        "title": "Create Entities",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def create_entities(
    entities: list[Entity] = Field(description="Entities to create or overwrite, matched by name"),
) -> str:
    """
    Create multiple new entities in the knowledge graph.

    An entity whose name already exists has its type and observations replaced.
    """
    logger.info(f"👤 Creating {len(entities)} entities (user: {current_user()})")
    try:
        result = await ctx.memory.create_entities(entities)
    except Exception as e:
        raise _fail("create entities", e) from e
    return _to_json([entity.to_dict() for entity in result])


@mcp.tool(
    annotations={
        "title": "Create Relations",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def create_relations(
    relations: list[Relation] = Field(description="Relations to create, in active voice"),
) -> str:
    """Create multiple new relations between entities in the knowledge graph. Relations should be in active voice."""
    logger.info(f"🔗 Creating {len(relations)} relations (user: {current_user()})")
    try:
        result = await ctx.memory.create_relations(relations)
    except Exception as e:
        raise _fail("create relations", e) from e
    return _to_json([r.to_dict() for r in result])


@mcp.tool(
    annotations={
        "title": "Add Observations",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
    }
)
async def add_observations(
    observations: list[ObservationAddition] = Field(
        description="Observations to append, grouped by entity name"
    ),
) -> str:
    """
    Add new observations to existing entities in the knowledge graph.

    Returns the observations actually added to each entity; strings the entity
    already had are skipped.
    """
    logger.info(f"📝 Adding observations to {len(observations)} entities (user: {current_user()})")
    try:
        result = await ctx.memory.add_observations(observations)
    except Exception as e:
        raise _fail("add observations", e) from e
    return _to_json([r.to_dict() for r in result])


@mcp.tool(
    annotations={
        "title": "Delete Entities",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
async def delete_entities(
    entityNames: list[str] = Field(description="Names of the entities to delete"),
) -> str:
    """Delete multiple entities and their associated relations from the knowledge graph."""
    logger.info(f"🗑️ Deleting {len(entityNames)} entities (user: {current_user()})")
    try:
        await ctx.memory.delete_entities(entityNames)
    except Exception as e:
        raise _fail("delete entities", e) from e
    return "Entities deleted successfully"


@mcp.tool(
    annotations={
        "title": "Delete Observations",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
async def delete_observations(
    deletions: list[ObservationDeletion] = Field(
        description="Observation strings to remove, grouped by entity name"
    ),
) -> str:
    """Delete specific observations from entities in the knowledge graph."""
    logger.info(f"🗑️ Deleting observations from {len(deletions)} entities (user: {current_user()})")
    try:
        await ctx.memory.delete_observations(deletions)
    except Exception as e:
        raise _fail("delete observations", e) from e
    return "Observations deleted successfully"


@mcp.tool(
    annotations={
        "title": "Delete Relations",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
async def delete_relations(
    relations: list[Relation] = Field(description="Relations to delete, matched on source, type and target"),
) -> str:
    """Delete multiple relations from the knowledge graph."""
    logger.info(f"🗑️ Deleting {len(relations)} relations (user: {current_user()})")
    try:
        await ctx.memory.delete_relations(relations)
    except Exception as e:
        raise _fail("delete relations", e) from e
    return "Relations deleted successfully"


# ---------- Read tools ----------
@mcp.tool(annotations={"title": "Read Graph", "readOnlyHint": True, "openWorldHint": False})
async def read_graph() -> str:
    """Read the entire knowledge graph."""
    logger.info(f"📖 Reading full graph (user: {current_user()})")
    try:
        graph = await ctx.memory.read_graph()
    except Exception as e:
        raise _fail("read graph", e) from e
    return graph.to_json()


@mcp.tool(annotations={"title": "Search Nodes", "readOnlyHint": True, "openWorldHint": False})
async def search_nodes(
    query: str = Field(
        description="Full-text query matched against entity names, types and observations"
    ),
) -> str:
    """Search for nodes in the knowledge graph based on a query."""
    logger.info(f"🔎 Searching nodes for '{query}' (user: {current_user()})")
    try:
        graph = await ctx.memory.search_nodes(query)
    except Exception as e:
        raise _fail("search nodes", e) from e
    return graph.to_json()


@mcp.tool(annotations={"title": "Find Nodes", "readOnlyHint": True, "openWorldHint": False})
async def find_nodes(
    names: list[str] = Field(description="Exact names of the entities to retrieve"),
) -> str:
    """Find specific nodes in the knowledge graph by their names."""
    logger.info(f"🔎 Finding nodes {names} (user: {current_user()})")
    try:
        graph = await ctx.memory.find_nodes(names)
    except Exception as e:
        raise _fail("find nodes", e) from e
    return graph.to_json()


@mcp.tool(annotations={"title": "Open Nodes", "readOnlyHint": True, "openWorldHint": False})
async def open_nodes(
    names: list[str] = Field(description="Exact names of the entities to retrieve"),
) -> str:
    """Open specific nodes in the knowledge graph by their names (alias for find_nodes)."""
    logger.info(f"🔎 Opening nodes {names} (user: {current_user()})")
    try:
        graph = await ctx.memory.open_nodes(names)
    except Exception as e:
        raise _fail("open nodes", e) from e
    return graph.to_json()


# ---------- Resources ----------
@mcp.resource("mcp-neo4j://status", name="Server Status", mime_type="application/json")
async def server_status() -> str:
    """Server, Neo4j and authentication status."""
    memory = ctx.memory
    connected = await memory.test_connection()
    neo4j: dict[str, Any] = {"connected": connected, "database": memory.database}
    if connected:
        try:
            neo4j.update((await memory.get_stats()).to_dict())
        except Exception as e:
            logger.error(f"❌ Failed to load graph stats: {e}")

    return _to_json(
        {
            "server": {
                "name": SERVER_NAME,
                "version": MCP_NEO4J_VERSION,
                "status": "running",
                "uptime": round(time.monotonic() - _STARTED_AT, 3),
            },
            "neo4j": neo4j,
            "auth": ctx.auth.get_auth_status().to_dict(),
            "timestamp": get_current_datetime().isoformat(),
        }
    )


@mcp.resource("mcp-neo4j://auth-info", name="Authentication Information", mime_type="application/json")
async def auth_info() -> str:
    """Configured authentication methods."""
    auth = ctx.auth
    status = auth.get_auth_status()
    oauth = auth.get_oauth_provider()
    api_key = auth.get_api_key_provider()
    return _to_json(
        {
            **status.to_dict(),
            "oauth": {
                "enabled": status.oauth_configured,
                "providers": oauth.get_supported_providers() if oauth else [],
            },
            "apiKey": {
                "enabled": status.api_key_configured,
                "count": api_key.get_api_key_count() if api_key else 0,
            },
        }
    )


# ---------- HTTP routes ----------
@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:
    """Public liveness probe; reports `degraded` when Neo4j is unreachable."""
    connected = await ctx.memory.test_connection()
    return JSONResponse(
        {
            "status": "healthy" if connected else "degraded",
            "server": SERVER_NAME,
            "version": MCP_NEO4J_VERSION,
            "neo4j": connected,
        }
    )


def build_http_app():
    """Build the authenticated ASGI app for the http and sse transports."""
    settings = ctx.settings
    middleware = [
        # Outermost so CORS preflight requests are answered before authentication
        Middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["mcp-session-id"],
        ),
        Middleware(AuthenticationMiddleware, auth_manager=ctx.auth),
    ]
    return mcp.http_app(path=settings.http_path, middleware=middleware, transport=settings.transport)


# ----- MAIN APPLICATION ENTRY POINT -----#


async def startup_check() -> None:
    """Connect to Neo4j and prepare the search index. Exits with status 1 if that fails."""
    try:
        await ctx.memory.initialize()
    except Exception as e:
        logger.error(f"🛑 Startup check failed: {e}")
        sys.exit(1)
    logger.info("✅ Startup check passed: Neo4j reachable, search index ready")


async def stop_server() -> None:
    """Release the Neo4j driver and the auth providers' HTTP clients."""
    try:
        await ctx.auth.close()
    except Exception as e:
        logger.error(f"Error while closing auth providers: {e}")
    try:
        await ctx.memory.close()
    except Exception as e:
        logger.error(f"Error while closing Neo4j driver: {e}")


async def start_server():
    """Common entry point for the MCP server."""
    settings = ctx.settings
    logger.debug(f"🚌 Transport selected: {settings.transport}")
    for key, value in settings.summary().items():
        logger.info(f"  - {key}: {value}")
    for warning in check_production_security(settings):
        logger.warning(f"⚠️  {warning}")

    try:
        await startup_check()
        if settings.transport == "stdio":
            # stdio is a local, single-client channel: no HTTP, no authentication
            await mcp.run_async(transport="stdio")
        else:
            config = uvicorn.Config(
                build_http_app(),
                host=settings.host,
                port=settings.port,
                log_level="debug" if settings.debug else "info",
            )
            logger.info(
                f"🌐 Serving MCP on http://{settings.host}:{settings.port}{settings.http_path}"
            )
            await uvicorn.Server(config).serve()
    finally:
        logger.info("👋 Shutting down...")
        await stop_server()


__all__ = ["mcp", "start_server", "stop_server", "build_http_app"]
