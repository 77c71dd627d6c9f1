"""Unit tests for the interaction learner."""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from lorekeeper.core.exceptions import DatabaseError
from lorekeeper.core.types import ContextBundle, MemoryCandidate
from lorekeeper.curator.learner import InteractionLearner
from lorekeeper.memory.store import EntitySummaryStore
from lorekeeper.storage.sqlite import SQLiteStorage


@pytest.fixture
async def store():
    """Create a store over a temporary database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        sqlite = SQLiteStorage(Path(tmpdir) / "test.db")
        await sqlite.initialize()
        yield EntitySummaryStore(sqlite)
        await sqlite.disconnect()


@pytest.fixture
def learner(store):
    return InteractionLearner(store)


async def active_memory(store: EntitySummaryStore, entity_id: str, text: str, kind: str, tags=None):
    entry = await store.create_entry("character", entity_id, text, kind, tags)
    return await store.update_entry(entry.id, {"used_recently": True})


@pytest.mark.asyncio
class TestInteractionLearner:
    """Tests for InteractionLearner.learn."""

    async def test_learns_past_events(self, learner, store):
        result = await learner.learn("c1", "Tell me", "I remember the siege.", ContextBundle())

        assert len(result.new_entries) == 1
        entry = result.new_entries[0]
        assert entry.entity_type == "character"
        assert entry.entity_id == "c1"
        assert entry.memory_kind == "soft"
        assert entry.text == "Character recalls past events: I remember the siege."
        assert entry.tags == ["[temporal:past]", "[lore:history]"]

        current = await store.get_current("character", "c1")
        assert current.id == entry.id

    async def test_two_candidates_become_two_versions(self, learner, store):
        result = await learner.learn(
            "c1", "Tell me", "I remember, and I feel joy.", ContextBundle()
        )

        assert [e.version for e in result.new_entries] == [1, 2]
        history = await store.get_history("character", "c1")
        assert sum(e.is_current for e in history) == 1

    async def test_nothing_learned(self, learner, store):
        result = await learner.learn("c1", "Hi", "Hello.", ContextBundle())

        assert result.new_entries == []
        assert result.updated_entries == []
        assert result.connections == []
        assert await store.get_history("character", "c1") == []

    async def test_refreshes_soft_active_memories(self, learner, store):
        soft = await active_memory(store, "c2", "Fears the sea", "soft")
        hard = await active_memory(store, "c3", "Born in winter", "hard")
        bundle = ContextBundle(active_memories=[soft, hard])

        result = await learner.learn("c1", "Do you remember?", "Vaguely.", bundle)

        assert [e.id for e in result.updated_entries] == [soft.id]
        refreshed = await store.get_entry(soft.id)
        assert refreshed.text == "Fears the sea [Enhanced with: Vaguely....]"
        assert refreshed.used_recently is True
        assert refreshed.version == soft.version
        assert (await store.get_entry(hard.id)).text == "Born in winter"

    async def test_refresh_builds_on_latest_text(self, learner, store):
        """An edit made after the bundle was built is kept by the refresh."""
        soft = await active_memory(store, "c2", "Fears the sea", "soft")
        bundle = ContextBundle(active_memories=[soft])
        await store.update_entry(soft.id, {"text": "Fears the deep sea"})

        result = await learner.learn("c1", "Do you remember?", "Vaguely.", bundle)

        assert result.updated_entries[0].text == "Fears the deep sea [Enhanced with: Vaguely....]"
        assert (await store.get_entry(soft.id)).text == result.updated_entries[0].text

    async def test_links_new_memories_to_active_ones(self, learner, store):
        history = await active_memory(store, "c2", "The old war", "soft", ["[lore:history]"])
        bundle = ContextBundle(active_memories=[history])

        result = await learner.learn("c1", "Hi", "I remember it well.", bundle)

        assert len(result.connections) == 1
        assert result.connections[0].source_id == result.new_entries[0].id
        assert result.connections[0].target_id == history.id
        assert result.connections[0].strength == pytest.approx(0.5)

    async def test_custom_analyzer(self, store):
        analyzer = Mock()
        analyzer.propose_memories = Mock(
            return_value=[MemoryCandidate(text="Custom", tags=["x"])]
        )
        analyzer.should_refresh = Mock(return_value=False)

        result = await InteractionLearner(store, analyzer=analyzer).learn(
            "c1", "p", "r", ContextBundle()
        )

        assert [e.text for e in result.new_entries] == ["Custom"]
        analyzer.propose_memories.assert_called_once()

    async def test_store_failure_propagates(self):
        store = Mock()
        store.create_entry = AsyncMock(side_effect=DatabaseError("disk full"))

        with pytest.raises(DatabaseError):
            await InteractionLearner(store).learn("c1", "p", "I remember", ContextBundle())
