"""Utility functions for Lorekeeper core functionality.

This module provides helper functions for ID generation, time manipulation,
and text tokenization shared by the ranker and the linker.
"""

import uuid
from datetime import UTC, datetime


def generate_memory_id() -> str:
    """Generate a unique, sortable ID for a memory entry.

    Returns a time-based UUID string with 'mem_' prefix for clarity.

    Returns:
        A unique memory ID string.

    Example:
        >>> memory_id = generate_memory_id()
        >>> memory_id.startswith('mem_')
        True
    """
    return f"mem_{uuid.uuid1()}"


def utc_now() -> datetime:
    """Get current UTC time with timezone information.

    Returns:
        Current datetime in UTC with timezone info.

    Example:
        >>> now = utc_now()
        >>> now.tzinfo is not None
        True
    """
    return datetime.now(UTC)


def lower_tokens(text: str) -> list[str]:
    """Split text on whitespace and lowercase every token.

    Example:
        >>> lower_tokens("The Battle  was LOST")
        ['the', 'battle', 'was', 'lost']
    """
    return text.lower().split()
