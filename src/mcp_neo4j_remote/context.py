"""
Runtime components shared across the server.

`ctx.init()` runs once in `__main__` and builds everything from the settings;
tools, routes and the middleware then read `ctx.memory`, `ctx.auth` and
`ctx.settings`. Reading a component before `init()` raises RuntimeError.
"""

from __future__ import annotations

import logging as lg
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .auth.manager import AuthManager
    from .manager import KnowledgeGraphManager
    from .settings import AppSettings


class AppContext:
    """Settings, logger, graph memory and auth chain, built together at startup."""

    def __init__(self) -> None:
        self._components: dict[str, Any] = {}

    @property
    def is_initialized(self) -> bool:
        return bool(self._components)

    def init(self, settings: "AppSettings | None" = None) -> "AppContext":
        """
        Build the components. A second call is a no-op.

        Settings are loaded from CLI/env unless given. No network I/O happens
        here; the graph manager connects in `KnowledgeGraphManager.initialize()`.
        """
        if self.is_initialized:
            return self

        # Deferred: these modules import ctx themselves
        from .auth.manager import AuthManager
        from .manager import KnowledgeGraphManager
        from .mcp_logging import configure_logging
        from .settings import AppSettings

        settings = settings or AppSettings.load()
        app_logger = configure_logging(debug=settings.debug, log_file=settings.log_file)
        self._components = {
            "settings": settings,
            "logger": app_logger,
            "memory": KnowledgeGraphManager.from_settings(settings),
            "auth": AuthManager.from_settings(settings),
        }
        app_logger.debug("Context initialized")
        return self

    def _component(self, name: str) -> Any:
        try:
            return self._components[name]
        except KeyError:
            raise RuntimeError(
                f"Cannot read ctx.{name}: context not initialized, call ctx.init() at startup"
            ) from None

    @property
    def settings(self) -> "AppSettings":
        return self._component("settings")

    @property
    def logger(self) -> lg.Logger:
        return self._component("logger")

    @property
    def memory(self) -> "KnowledgeGraphManager":
        """The Neo4j-backed graph manager."""
        return self._component("memory")

    @property
    def auth(self) -> "AuthManager":
        """The authentication provider chain."""
        return self._component("auth")


ctx = AppContext()

__all__ = ["ctx", "AppContext"]
