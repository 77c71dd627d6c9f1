"""Context assembly for generation requests.

Collects the world, character and scene descriptions plus the entities'
recently used memories into a ``ContextBundle``.
"""

import logging

from lorekeeper.core.protocols import NarrativeStore, TagStore
from lorekeeper.core.types import (
    Character,
    ContextBundle,
    MemoryEntry,
    MemoryFilter,
    MemoryTag,
    Scene,
    World,
)
from lorekeeper.memory.store import EntitySummaryStore

logger = logging.getLogger(__name__)

# Every version flagged used_recently, superseded ones included
ACTIVE_FILTER = MemoryFilter(used_recently=True, current_only=False)


def format_world(world: World) -> str:
    return f"{world.name} ({world.world_type}): {world.description}. Theme: {world.theme}"


def format_character(character: Character) -> str:
    return f"{character.name} ({character.species}): {character.arc_summary}"


def format_scene(scene: Scene) -> str:
    return f"{scene.title}: {scene.description}"


def format_memory_context(memories: list[MemoryEntry]) -> str:
    """Render memories as ``[KIND] text`` lines, in the given order."""
    return "\n".join(f"[{memory.memory_kind.upper()}] {memory.text}" for memory in memories)


class ContextBuilder:
    """Builds context bundles from narrative data and active memories.

    A memory is active when its ``used_recently`` flag is set. Building a
    bundle never modifies any memory entry.

    Attributes:
        store: Entity summary store (queried through its cache).
        narrative: Narrative data collaborator.
        tags: Tag reference collaborator.
    """

    def __init__(self, store: EntitySummaryStore, narrative: NarrativeStore, tags: TagStore):
        self.store = store
        self.narrative = narrative
        self.tags = tags

    async def build(
        self,
        world_id: str,
        character_id: str | None = None,
        scene_id: str | None = None,
    ) -> ContextBundle:
        """Assemble the context bundle for one generation request.

        Args:
            world_id: World the request belongs to.
            character_id: Optional character; adds character context and memories.
            scene_id: Optional scene; adds scene context.

        Returns:
            ContextBundle with empty strings for anything not requested or not found.
        """
        world = await self.narrative.get_world(world_id)
        world_context = format_world(world) if world else ""

        character_context = ""
        if character_id:
            character = await self.narrative.get_character(character_id)
            character_context = format_character(character) if character else ""

        scene_context = ""
        if scene_id:
            scene = await self.narrative.get_scene(scene_id)
            scene_context = format_scene(scene) if scene else ""

        active = await self.get_active_memories(world_id, character_id)
        relevant_tags = await self.resolve_tags(active)

        logger.debug(
            f"Built context for world={world_id} character={character_id} "
            f"scene={scene_id}: {len(active)} active memories, {len(relevant_tags)} tags"
        )

        return ContextBundle(
            world_context=world_context,
            character_context=character_context,
            scene_context=scene_context,
            memory_context=format_memory_context(active),
            active_memories=active,
            relevant_tags=relevant_tags,
        )

    async def get_active_memories(
        self, world_id: str, character_id: str | None = None
    ) -> list[MemoryEntry]:
        """World plus character memories flagged used_recently, best relevance first."""
        memories = list(await self.store.query("world", world_id, ACTIVE_FILTER))
        if character_id:
            memories.extend(await self.store.query("character", character_id, ACTIVE_FILTER))
        # Stable sort keeps world memories ahead of character ones on ties
        return sorted(memories, key=lambda memory: memory.relevance_score, reverse=True)

    async def resolve_tags(self, memories: list[MemoryEntry]) -> list[MemoryTag]:
        """Resolve the distinct tag names of the given memories.

        Names without reference data are left out of the result.
        """
        names = list(dict.fromkeys(tag for memory in memories for tag in memory.tags))
        if not names:
            return []
        return await self.tags.get_tags(names)
