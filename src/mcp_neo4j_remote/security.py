"""
Security utilities for mcp-neo4j-remote.

Provides input validation and configuration checks to prevent common vulnerabilities.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import regex as re

if TYPE_CHECKING:
    from .settings import AppSettings


MAX_IDENTIFIER_LENGTH = 128
MIN_API_KEY_LENGTH = 20

# Letters and digits of any script, underscore, hyphen, and inner single spaces.
_IDENTIFIER = re.compile(r"^[\p{L}\p{N}_](?:[\p{L}\p{N}_\-]| (?! ))*$")


def validate_identifier(value: str | None, kind: str = "identifier") -> str:
    """
    Validate a user-supplied name that will be used as a Cypher label or relationship type.

    Entity types and relation types are data chosen by clients, but Cypher cannot bind
    them as parameters, so they end up inside the query text. Only a conservative
    character set is accepted.

    Args:
        value: The raw label or relationship type
        kind: What the value is, used in the error message

    Returns:
        The value with surrounding whitespace removed

    Raises:
        ValueError: If the value is empty, too long, or contains characters outside
            letters, digits, `_`, `-` and single inner spaces

    Example:
        >>> validate_identifier("works_at", "relation type")
        'works_at'

        >>> validate_identifier("x`]->() DETACH DELETE n //", "relation type")
        ValueError: Invalid relation type ...
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid {kind}: value must be a non-empty string")

    stripped = value.strip()
    if len(stripped) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Invalid {kind} '{stripped[:32]}...': longer than {MAX_IDENTIFIER_LENGTH} characters"
        )
    if not _IDENTIFIER.match(stripped):
        raise ValueError(
            f"Invalid {kind} '{stripped}': only letters, digits, '_', '-' and single spaces are allowed"
        )
    return stripped


def quote_identifier(value: str | None, kind: str = "identifier") -> str:
    """Validate a label or relationship type and return it backtick-quoted for Cypher."""
    return f"`{validate_identifier(value, kind)}`"


def check_production_security(settings: "AppSettings") -> list[str]:
    """
    Check for common production security misconfigurations.

    Returns:
        List of security warnings (empty if all checks pass)

    Example:
        >>> warnings = check_production_security(settings)
        >>> for warning in warnings:
        ...     logger.warning(f"⚠️  {warning}")
    """
    warnings = []

    # Check 1: Authentication configured
    if not settings.descope_project_id and not settings.api_keys:
        warnings.append(
            "Neither DESCOPE_PROJECT_ID nor API_KEYS is set - server will run without authentication!"
        )

    # Check 2: Weak API keys
    short_keys = [k for k in settings.api_keys if len(k) < MIN_API_KEY_LENGTH]
    if short_keys:
        warnings.append(
            f"{len(short_keys)} API key(s) are shorter than {MIN_API_KEY_LENGTH} characters"
        )

    # Check 3: Debug mode in production
    if settings.debug:
        warnings.append("MCP_DEBUG is enabled - disable for production!")

    # Check 4: Open CORS on an HTTP deployment
    if settings.transport != "stdio" and "*" in settings.cors_origins:
        warnings.append("CORS_ORIGINS allows any origin ('*')")

    return warnings


__all__ = ["validate_identifier", "quote_identifier", "check_production_security"]
