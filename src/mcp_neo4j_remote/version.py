"""Centralized application/version constants for mcp-neo4j-remote."""

# Bump when application version changes
MCP_NEO4J_VERSION: str = "1.0.0"

# Name advertised to MCP clients and in status documents
SERVER_NAME: str = "mcp-neo4j-remote"
