"""Relevance ranking of memory entries against a context string."""

from lorekeeper.core.types import MemoryEntry
from lorekeeper.core.utils import lower_tokens

TAG_MATCH_BONUS = 0.2


class RelevanceRanker:
    """Scores memories by stored relevance plus tag overlap with the context.

    A tag matches when its lowercase text is a substring of at least one
    lowercase whitespace-separated token of the context. Each matching tag
    adds ``tag_bonus``; the total is capped at 1.0 and never drops below the
    stored relevance score. Ranking is deterministic and stable on ties.
    """

    def __init__(self, tag_bonus: float = TAG_MATCH_BONUS):
        self.tag_bonus = tag_bonus

    def score(self, entry: MemoryEntry, context_text: str) -> float:
        base = max(0.0, entry.relevance_score)
        tokens = lower_tokens(context_text)

        matches = 0
        for tag in entry.tags:
            needle = tag.lower()
            if needle and any(needle in token for token in tokens):
                matches += 1

        return max(base, min(base + matches * self.tag_bonus, 1.0))

    def rank(
        self, entries: list[MemoryEntry], context_text: str, limit: int
    ) -> list[MemoryEntry]:
        """Return the ``limit`` highest-scoring entries, best first."""
        if limit <= 0:
            return []
        # sorted() is stable, so equal scores keep their input order
        scored = [(self.score(entry, context_text), entry) for entry in entries]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [entry for _, entry in scored[:limit]]
