"""Unit tests for context assembly."""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from lorekeeper.context.builder import (
    ContextBuilder,
    format_character,
    format_memory_context,
    format_scene,
    format_world,
)
from lorekeeper.core.types import Character, MemoryEntry, MemoryTag, Scene, World
from lorekeeper.core.utils import generate_memory_id
from lorekeeper.curator.learner import InteractionLearner
from lorekeeper.memory.store import EntitySummaryStore
from lorekeeper.storage.repositories import SQLiteNarrativeStore, SQLiteTagStore
from lorekeeper.storage.sqlite import SQLiteStorage

WORLD = World(
    id="w1",
    name="Eldoria",
    description="A land of floating isles",
    world_type="fantasy",
    theme="hope against power",
)
CHARACTER = Character(
    id="c1", world_id="w1", name="Aria", species="elf", arc_summary="Seeks her lost brother"
)
SCENE = Scene(id="s1", world_id="w1", title="The Market", description="Crowded stalls at dawn")


@pytest.fixture
async def sqlite():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = SQLiteStorage(Path(tmpdir) / "test.db")
        await storage.initialize()
        yield storage
        await storage.disconnect()


@pytest.fixture
async def builder(sqlite):
    narrative = SQLiteNarrativeStore(sqlite)
    for record in [WORLD, CHARACTER, SCENE]:
        await narrative.save(record)
    tags = SQLiteTagStore(sqlite)
    await tags.save_tag(MemoryTag(name="battle", category="plot", color="red"))
    return ContextBuilder(EntitySummaryStore(sqlite), narrative, tags)


async def remember(builder: ContextBuilder, entity_type: str, entity_id: str, text: str, **kwargs):
    """Create a memory and flag it as recently used."""
    store = builder.store
    entry = await store.create_entry(entity_type, entity_id, text, **kwargs)
    return await store.update_entry(entry.id, {"used_recently": True})


class TestFormatters:
    """Tests for context string formats."""

    def test_format_world(self):
        assert format_world(WORLD) == (
            "Eldoria (fantasy): A land of floating isles. Theme: hope against power"
        )

    def test_format_character(self):
        assert format_character(CHARACTER) == "Aria (elf): Seeks her lost brother"

    def test_format_scene(self):
        assert format_scene(SCENE) == "The Market: Crowded stalls at dawn"

    def test_format_memory_context(self):
        memories = [
            MemoryEntry(id=generate_memory_id(), entity_type="world", entity_id="w1", text="Old war"),
            MemoryEntry(
                id=generate_memory_id(),
                entity_type="character",
                entity_id="c1",
                text="Fears fire",
                memory_kind="soft",
            ),
        ]
        assert format_memory_context(memories) == "[HARD] Old war\n[SOFT] Fears fire"

    def test_format_no_memories(self):
        assert format_memory_context([]) == ""


@pytest.mark.asyncio
class TestContextBuilder:
    """Tests for ContextBuilder.build."""

    async def test_build_full_bundle(self, builder):
        """World, character and scene context plus active memories."""
        world_memory = await remember(builder, "world", "w1", "The isles drift north")
        character_memory = await remember(
            builder, "character", "c1", "Lost a battle at sea", kind="soft", tags=["battle"]
        )

        bundle = await builder.build("w1", character_id="c1", scene_id="s1")

        assert bundle.world_context == format_world(WORLD)
        assert bundle.character_context == format_character(CHARACTER)
        assert bundle.scene_context == format_scene(SCENE)
        assert [m.id for m in bundle.active_memories] == [world_memory.id, character_memory.id]
        assert bundle.memory_context == (
            "[HARD] The isles drift north\n[SOFT] Lost a battle at sea"
        )
        assert [t.name for t in bundle.relevant_tags] == ["battle"]

    async def test_world_only(self, builder):
        bundle = await builder.build("w1")

        assert bundle.world_context
        assert bundle.character_context == ""
        assert bundle.scene_context == ""
        assert bundle.active_memories == []
        assert bundle.memory_context == ""

    async def test_missing_records_give_empty_strings(self, builder):
        bundle = await builder.build("unknown", character_id="nobody", scene_id="nowhere")

        assert bundle.world_context == ""
        assert bundle.character_context == ""
        assert bundle.scene_context == ""

    async def test_only_recently_used_memories_are_active(self, builder):
        await builder.store.create_entry("world", "w1", "Never used")

        bundle = await builder.build("w1")

        assert bundle.active_memories == []

    async def test_superseded_memories_stay_active(self, builder):
        """A newer version does not hide older ones flagged used_recently."""
        old = await remember(builder, "character", "c1", "old")
        latest = await remember(builder, "character", "c1", "new")

        bundle = await builder.build("w1", character_id="c1")

        assert [m.id for m in bundle.active_memories] == [latest.id, old.id]

    async def test_learning_keeps_active_memories(self, builder):
        """A chat turn that stores a new memory keeps the character's active set."""
        fear = await remember(builder, "character", "c1", "Fears the dark", kind="soft")
        before = await builder.build("w1", character_id="c1")
        assert [m.id for m in before.active_memories] == [fear.id]

        result = await InteractionLearner(builder.store).learn(
            "c1", "hi", "I feel the anger", before
        )
        assert len(result.new_entries) == 1

        after = await builder.build("w1", character_id="c1")

        assert [m.id for m in after.active_memories] == [fear.id]
        assert after.memory_context == "[SOFT] Fears the dark"

    async def test_active_memories_sorted_by_relevance(self, builder, sqlite):
        world_memory = await remember(builder, "world", "w1", "world fact")
        character_memory = await remember(builder, "character", "c1", "character fact")
        await sqlite.execute(
            "UPDATE memory_entries SET relevance_score = 0.9 WHERE id = ?", (character_memory.id,)
        )
        builder.store.cache.invalidate()

        bundle = await builder.build("w1", character_id="c1")

        assert [m.id for m in bundle.active_memories] == [character_memory.id, world_memory.id]

    async def test_unknown_tags_are_dropped(self, builder):
        await remember(builder, "world", "w1", "x", tags=["battle", "mystery"])

        bundle = await builder.build("w1")

        assert [t.name for t in bundle.relevant_tags] == ["battle"]

    async def test_build_does_not_modify_memories(self, builder):
        memory = await remember(builder, "world", "w1", "stable")

        await builder.build("w1")

        stored = await builder.store.get_entry(memory.id)
        assert stored == memory


@pytest.mark.asyncio
class TestBuilderWithMocks:
    """Tests for collaborator usage."""

    async def test_no_tag_lookup_without_tags(self):
        store = Mock()
        store.query = AsyncMock(return_value=[])
        narrative = Mock()
        narrative.get_world = AsyncMock(return_value=WORLD)
        tags = Mock()
        tags.get_tags = AsyncMock(return_value=[])

        bundle = await ContextBuilder(store, narrative, tags).build("w1")

        assert bundle.relevant_tags == []
        tags.get_tags.assert_not_called()
        store.query.assert_awaited_once()
