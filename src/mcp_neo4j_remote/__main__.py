"""
Remote MCP server for Neo4j graph memory.
"""

import argparse
import asyncio
import signal
import sys

from .context import ctx
from .mcp_logging import logger
from .server import start_server
from .version import MCP_NEO4J_VERSION


def _raise_keyboard_interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


def main():
    # Parse version flag early, before any initialization
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-v", "--version", action="store_true")
    args, _ = parser.parse_known_args()

    if args.version:
        print(MCP_NEO4J_VERSION)
        sys.exit(0)

    # SIGTERM takes the same path as Ctrl+C; uvicorn installs its own handlers while serving
    signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)

    try:
        # Initialize context first to get settings and logger
        ctx.init()
        logger.debug("🚀 Starting mcp-neo4j-remote server...")
        asyncio.run(start_server())
    except KeyboardInterrupt:
        logger.info("👋 Received shutdown signal, shutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        logger.error(f"⛔ mcp-neo4j-remote encountered an uncaught exception: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
