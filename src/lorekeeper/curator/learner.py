"""Interaction learner: stores what an interaction taught the engine.

After a response has been generated, the learner
1. asks the analyzer for new memory candidates and stores them as soft
   character memories,
2. refreshes the active soft memories the interaction touched,
3. links the new memories to the active ones.
"""

import logging

from lorekeeper.core.types import ContextBundle, LearningResult, MemoryEntry, MemoryUpdate
from lorekeeper.curator.analyzers import InteractionAnalyzer, KeywordAnalyzer
from lorekeeper.curator.linkers import MemoryLinker
from lorekeeper.memory.store import EntitySummaryStore

logger = logging.getLogger(__name__)


class InteractionLearner:
    """Mines, refreshes and links memories after each interaction.

    Attributes:
        store: Entity summary store written to.
        analyzer: Strategy proposing candidates and refresh decisions.
        linker: Connection scorer.
    """

    def __init__(
        self,
        store: EntitySummaryStore,
        analyzer: InteractionAnalyzer | None = None,
        linker: MemoryLinker | None = None,
    ):
        self.store = store
        self.analyzer = analyzer or KeywordAnalyzer()
        self.linker = linker or MemoryLinker()

    async def learn(
        self,
        entity_id: str,
        prompt_text: str,
        response_text: str,
        bundle: ContextBundle,
    ) -> LearningResult:
        """Learn from one interaction with a character.

        Args:
            entity_id: Character the interaction was with.
            prompt_text: What was asked.
            response_text: What was generated.
            bundle: Context bundle the response was generated from.

        Returns:
            LearningResult with created entries, refreshed entries and connections.

        Raises:
            DatabaseError: If a store write fails. Analysis itself never raises.
        """
        candidates = self.analyzer.propose_memories(prompt_text, response_text, bundle)

        new_entries: list[MemoryEntry] = []
        for candidate in candidates:
            entry = await self.store.create_entry(
                "character", entity_id, candidate.text, "soft", candidate.tags
            )
            new_entries.append(entry)

        updated_entries: list[MemoryEntry] = []
        for memory in bundle.active_memories:
            if not self.analyzer.should_refresh(memory, prompt_text, response_text):
                continue
            updated = await self.store.update_entry(
                memory.id,
                lambda current: MemoryUpdate(
                    used_recently=True,
                    text=self.analyzer.enhance_text(current.text, response_text),
                ),
            )
            updated_entries.append(updated)

        connections = self.linker.generate_links(new_entries, bundle.active_memories)

        logger.info(
            f"Learned from interaction with {entity_id}: {len(new_entries)} new, "
            f"{len(updated_entries)} refreshed, {len(connections)} connections"
        )
        return LearningResult(
            new_entries=new_entries,
            updated_entries=updated_entries,
            connections=connections,
        )
