"""
Centralized configuration for the mcp-neo4j-remote server.

This module consolidates all configuration concerns (CLI args, environment
variables, and sensible defaults) into a single, validated settings object.

Precedence (highest first):
- CLI arguments
- Environment variables (optionally from .env)
- Defaults
"""

from __future__ import annotations

from dotenv import load_dotenv
import argparse
import os
from pathlib import Path
from typing import Literal
import logging as lg

logger = lg.getLogger("mcp-neo4j-remote-bootstrap")


DEFAULT_PORT = 8080
DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PATH = "/mcp"
DEFAULT_NEO4J_DATABASE = "neo4j"
DEFAULT_DESCOPE_BASE_URL = "https://api.descope.com"
DEFAULT_OAUTH_PROVIDERS = "google,github,microsoft"


Transport = Literal["stdio", "sse", "http"]

TRANSPORT_ENUM: dict[str, Transport] = {
    "stdio": "stdio",
    "http": "http",
    "sse": "sse",
    # Common aliases that normalize to http
    "streamable-http": "http",
    "streamablehttp": "http",
    "streamable_http": "http",
    "streamable http": "http",
    "httpstream": "http",
}


def split_csv(value: str | None) -> list[str]:
    """Split a comma-delimited string into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() == "true"


class AppSettings:
    """Application settings loaded from CLI and environment.

    Attributes:
        debug: Enables verbose logging when True
        transport: Validated transport value ("stdio" | "sse" | "http")
        host: HTTP bind host
        port: HTTP port
        http_path: Path the MCP endpoint is mounted on
        neo4j_uri: Bolt/neo4j URI of the graph database
        neo4j_username: Neo4j user
        neo4j_password: Neo4j password
        neo4j_database: Neo4j database name
        descope_project_id: Descope project ID; enables OAuth when set
        descope_base_url: Base URL of the Descope API
        oauth_providers: Identity providers advertised by the OAuth provider
        api_keys: Allowlisted API keys; enables API key auth when non-empty
        cors_origins: Allowed CORS origins for the HTTP transport
        log_file: Optional path of a log file
    """

    def __init__(
        self,
        *,
        neo4j_uri: str,
        neo4j_username: str,
        neo4j_password: str,
        neo4j_database: str = DEFAULT_NEO4J_DATABASE,
        debug: bool = False,
        transport: Transport = "http",
        host: str = DEFAULT_HTTP_HOST,
        port: int = DEFAULT_PORT,
        http_path: str = DEFAULT_HTTP_PATH,
        descope_project_id: str | None = None,
        descope_base_url: str = DEFAULT_DESCOPE_BASE_URL,
        oauth_providers: list[str] | None = None,
        api_keys: list[str] | None = None,
        cors_origins: list[str] | None = None,
        log_file: Path | None = None,
    ) -> None:
        self.neo4j_uri = neo4j_uri
        self.neo4j_username = neo4j_username
        self.neo4j_password = neo4j_password
        self.neo4j_database = neo4j_database
        self.debug = bool(debug)
        self.transport = transport
        self.host = host
        self.port = int(port)
        self.http_path = http_path
        self.descope_project_id = descope_project_id or None
        self.descope_base_url = descope_base_url
        self.oauth_providers = (
            oauth_providers if oauth_providers is not None else split_csv(DEFAULT_OAUTH_PROVIDERS)
        )
        self.api_keys = api_keys or []
        self.cors_origins = cors_origins or ["*"]
        self.log_file = log_file

    # ---------- Construction ----------
    @classmethod
    def load(cls, argv: list[str] | None = None) -> "AppSettings":
        """
        Create a settings instance from CLI args, env, and defaults.

        Raises:
            ValueError: if the transport is unknown or a required Neo4j setting is missing
        """
        # CLI args > Env vars > Defaults
        parser = argparse.ArgumentParser(add_help=False)
        parser.add_argument("--debug", action="store_true", default=None)
        parser.add_argument("--transport", type=str)
        parser.add_argument("--port", type=int)
        parser.add_argument("--http-host", type=str)
        parser.add_argument("--http-path", type=str)
        parser.add_argument("--log-file", type=str)
        args, _ = parser.parse_known_args(argv)

        # Load .env if available
        env_path = os.getenv("MCP_ENV_PATH")
        if env_path and Path(env_path).exists():
            load_dotenv(env_path, verbose=False)
            logger.debug(f"Loaded .env from {env_path}")
        elif load_dotenv(verbose=False):
            logger.debug("Loaded .env from current directory")

        # Debug mode
        debug: bool = bool(args.debug) or _env_flag("MCP_DEBUG")
        if debug:
            logger.setLevel(lg.DEBUG)
            logger.debug(f"🐞 Debug mode: {debug}")

        # Transport
        transport_raw = (args.transport or os.getenv("MCP_TRANSPORT", "http")).strip().lower()
        if transport_raw not in TRANSPORT_ENUM:
            valid = ", ".join(sorted({"stdio", "sse", "streamable-http", "http"}))
            raise ValueError(f"Invalid transport '{transport_raw}'. Valid options: {valid}")
        transport: Transport = TRANSPORT_ENUM[transport_raw]

        # Port/Host/Path for HTTP
        port = args.port or int(os.getenv("PORT", DEFAULT_PORT))
        host = args.http_host or os.getenv("MCP_HTTP_HOST", DEFAULT_HTTP_HOST)
        http_path = args.http_path or os.getenv("MCP_HTTP_PATH", DEFAULT_HTTP_PATH)

        # Neo4j connection (required)
        neo4j_uri = os.getenv("NEO4J_URI")
        neo4j_username = os.getenv("NEO4J_USERNAME")
        neo4j_password = os.getenv("NEO4J_PASSWORD")
        missing = [
            name
            for name, value in (
                ("NEO4J_URI", neo4j_uri),
                ("NEO4J_USERNAME", neo4j_username),
                ("NEO4J_PASSWORD", neo4j_password),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        log_file_raw = args.log_file or os.getenv("MCP_LOG_FILE")
        log_file = Path(log_file_raw).resolve() if log_file_raw else None

        return cls(
            neo4j_uri=neo4j_uri,
            neo4j_username=neo4j_username,
            neo4j_password=neo4j_password,
            neo4j_database=os.getenv("NEO4J_DATABASE", DEFAULT_NEO4J_DATABASE),
            debug=debug,
            transport=transport,
            host=host,
            port=port,
            http_path=http_path,
            descope_project_id=os.getenv("DESCOPE_PROJECT_ID"),
            descope_base_url=os.getenv("DESCOPE_BASE_URL", DEFAULT_DESCOPE_BASE_URL),
            oauth_providers=split_csv(os.getenv("OAUTH_PROVIDERS", DEFAULT_OAUTH_PROVIDERS)),
            api_keys=split_csv(os.getenv("API_KEYS")),
            cors_origins=split_csv(os.getenv("CORS_ORIGINS", "*")),
            log_file=log_file,
        )

    def summary(self) -> dict[str, object]:
        """Return a loggable view of the configuration without secrets."""
        return {
            "neo4j_uri": self.neo4j_uri,
            "neo4j_database": self.neo4j_database,
            "transport": self.transport,
            "port": self.port,
            "cors_origins": ", ".join(self.cors_origins),
            "oauth_configured": bool(self.descope_project_id),
            "api_keys_configured": len(self.api_keys),
        }


__all__ = ["AppSettings", "Transport", "split_csv"]
