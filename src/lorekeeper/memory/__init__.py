"""Memory storage for Lorekeeper.

This module provides the versioned memory store and what sits around it:
- Entity summary store: one current memory version per narrative entity
- Memory cache: TTL read-through cache in front of store queries
- Relevance ranker: tag-overlap scoring against a context string
"""

from lorekeeper.memory.cache import MemoryCache, TTLMemoryCache
from lorekeeper.memory.ranking import RelevanceRanker
from lorekeeper.memory.store import EntitySummaryStore

__all__ = [
    "EntitySummaryStore",
    "MemoryCache",
    "TTLMemoryCache",
    "RelevanceRanker",
]
