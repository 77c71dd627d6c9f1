"""Memory link generation for connecting related memories.

This module implements the linking component that identifies connections
between newly learned memories and the memories that were active when they
were learned, based on the overlap of their tag tokens.
"""

import logging

from lorekeeper.core.types import MemoryConnection, MemoryEntry
from lorekeeper.core.utils import lower_tokens

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.3


def tag_tokens(entry: MemoryEntry) -> list[str]:
    """Lowercase whitespace tokens of all of an entry's tags."""
    return lower_tokens(" ".join(entry.tags))


class MemoryLinker:
    """Generates semantic links between memories.

    Strength is the number of shared tag tokens divided by the larger of the
    two token counts, so identical tag sets score 1.0 and disjoint ones 0.0.
    Only pairs strictly above ``threshold`` become connections.

    Attributes:
        threshold: Minimum strength (exclusive) for a connection.
        connection_type: Type recorded on generated connections.
    """

    def __init__(self, threshold: float = DEFAULT_THRESHOLD, connection_type: str = "semantic"):
        self.threshold = threshold
        self.connection_type = connection_type

    def connection_strength(self, entry_a: MemoryEntry, entry_b: MemoryEntry) -> float:
        """Tag-token overlap between two memories, in [0, 1]."""
        tokens_a = tag_tokens(entry_a)
        tokens_b = tag_tokens(entry_b)
        denominator = max(len(tokens_a), len(tokens_b))
        if denominator == 0:
            return 0.0

        present_in_b = set(tokens_b)
        shared = sum(1 for token in tokens_a if token in present_in_b)
        return min(shared / denominator, 1.0)

    def generate_links(
        self,
        new_entries: list[MemoryEntry],
        existing_entries: list[MemoryEntry],
    ) -> list[MemoryConnection]:
        """Connect every new entry to the existing entries it overlaps with.

        Args:
            new_entries: Memories created by the current interaction.
            existing_entries: Memories that were active for the interaction.

        Returns:
            Connections ordered by new entry, then by existing entry.
        """
        connections: list[MemoryConnection] = []
        for new_entry in new_entries:
            for existing in existing_entries:
                if existing.id == new_entry.id:
                    continue
                strength = self.connection_strength(new_entry, existing)
                if strength > self.threshold:
                    connections.append(
                        MemoryConnection(
                            source_id=new_entry.id,
                            target_id=existing.id,
                            strength=strength,
                            connection_type=self.connection_type,
                        )
                    )

        if connections:
            logger.info(f"Linked {len(new_entries)} new memories with {len(connections)} connections")
        return connections
