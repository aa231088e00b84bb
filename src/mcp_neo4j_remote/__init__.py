"""
Remote Neo4j graph memory MCP server package.

Lightweight package init without importing heavy submodules to avoid side effects
during test discovery and simple metadata imports. Import submodules directly,
e.g. `from mcp_neo4j_remote.manager import KnowledgeGraphManager`.
"""

from .version import MCP_NEO4J_VERSION

__version__ = MCP_NEO4J_VERSION

__all__: list[str] = [
    "__version__",
]
