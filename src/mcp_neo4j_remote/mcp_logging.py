"""
Logging for the mcp-neo4j-remote server.

Modules log through the shared `logger`; `configure_logging()` attaches its
handlers once settings are known (see `AppContext.init`). Until then only
warnings and errors reach stderr, through the logging module's last-resort
handler.

Nothing is ever written to stdout: with the stdio transport it carries the MCP
protocol stream.
"""

from __future__ import annotations

import logging as lg
import sys
from pathlib import Path

LOGGER_NAME = "mcp-neo4j-remote"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

logger = lg.getLogger(LOGGER_NAME)


def configure_logging(debug: bool = False, log_file: Path | None = None) -> lg.Logger:
    """
    Point the server logger at stderr, and at `log_file` too when one is given.

    Calling it again replaces the handlers from the previous call.
    """
    level = lg.DEBUG if debug else lg.INFO
    formatter = lg.Formatter(LOG_FORMAT)

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    handlers: list[lg.Handler] = [lg.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(lg.FileHandler(filename=log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


__all__ = ["logger", "configure_logging", "LOGGER_NAME", "LOG_FORMAT"]
