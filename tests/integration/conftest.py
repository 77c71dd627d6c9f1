"""Pytest fixtures for integration tests.

This module provides shared fixtures for integration testing of Lorekeeper.
These fixtures set up real instances of components (not mocks) to test the
complete flow. Only the text generation provider is scripted, except in
tests that request ``check_ollama``.
"""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from lorekeeper.context.templates import load_default_templates
from lorekeeper.core.config import EngineConfig
from lorekeeper.core.types import Character, MemoryTag, Region, Scene, TimelineEvent, World
from lorekeeper.engine import MemoryEngine
from lorekeeper.llm.client import OllamaClient
from lorekeeper.memory.cache import TTLMemoryCache
from lorekeeper.memory.store import EntitySummaryStore
from lorekeeper.storage.repositories import (
    SQLiteInteractionLog,
    SQLiteNarrativeStore,
    SQLiteTagStore,
    SQLiteTemplateStore,
)
from lorekeeper.storage.sqlite import SQLiteStorage


@pytest.fixture(scope="function")
def temp_dir():
    """Create a temporary directory for test data.

    Yields:
        Path to temporary directory.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="function")
async def sqlite_storage(temp_dir):
    """Create and initialize SQLite storage for testing.

    Yields:
        Initialized SQLiteStorage instance.
    """
    storage = SQLiteStorage(str(temp_dir / "test_lorekeeper.db"))
    await storage.initialize()
    yield storage
    await storage.disconnect()


@pytest.fixture(scope="function")
async def universe(sqlite_storage):
    """Seed a small universe: one world, two characters, a scene and tag data."""
    narrative = SQLiteNarrativeStore(sqlite_storage)
    records = [
        World(
            id="eldoria",
            name="Eldoria",
            description="Floating isles torn by conflict",
            world_type="fantasy",
            theme="love versus power",
        ),
        Character(
            id="aria",
            world_id="eldoria",
            name="Aria",
            species="elf",
            origin="the Sylvan Reach",
            personality="Guarded but kind",
            arc_summary="Searches for her lost brother",
        ),
        Character(
            id="borin",
            world_id="eldoria",
            name="Borin",
            species="dwarf",
            origin="Deepholm",
            arc_summary="Forges weapons for a war he opposes",
        ),
        Scene(
            id="harbor",
            world_id="eldoria",
            title="The Harbor",
            description="Ships creak in the fog",
        ),
        Region(id="sylvan_reach", world_id="eldoria", name="Sylvan Reach"),
        TimelineEvent(id="the_fall", world_id="eldoria", name="The Fall of the Spire"),
    ]
    for record in records:
        await narrative.save(record)

    tags = SQLiteTagStore(sqlite_storage)
    for tag in [
        MemoryTag(name="[temporal:past]", category="temporal", color="gray"),
        MemoryTag(name="[lore:history]", category="lore", color="gold"),
        MemoryTag(name="[emotion:joy]", category="emotion", color="yellow"),
        MemoryTag(name="sea", category="location", color="blue"),
    ]:
        await tags.save_tag(tag)

    templates = SQLiteTemplateStore(sqlite_storage)
    for template in load_default_templates():
        await templates.save_template(template)

    return sqlite_storage


@pytest.fixture(scope="function")
def generator():
    """Scripted generation client.

    Set ``generator.generate.return_value`` or ``side_effect`` per test.
    """
    client = Mock()
    client.generate = AsyncMock(return_value="...")
    return client


@pytest.fixture(scope="function")
def memory_store(universe):
    """Entity summary store over the seeded database."""
    return EntitySummaryStore(universe, cache=TTLMemoryCache(default_ttl=3600))


@pytest.fixture(scope="function")
def engine(universe, memory_store, generator):
    """Memory engine wired to real SQLite collaborators.

    Yields:
        MemoryEngine instance.
    """
    return MemoryEngine(
        store=memory_store,
        narrative=SQLiteNarrativeStore(universe),
        tags=SQLiteTagStore(universe),
        templates=SQLiteTemplateStore(universe),
        generator=generator,
        interaction_log=SQLiteInteractionLog(universe),
        config=EngineConfig(),
    )


@pytest.fixture(scope="function")
def ollama_client():
    """Create Ollama client for testing.

    Note: Requires running Ollama instance.
    """
    return OllamaClient(base_url="http://localhost:11434")


@pytest.fixture
def check_ollama():
    """Check if Ollama is available for testing.

    Raises:
        pytest.skip: If Ollama is not available.
    """
    import httpx

    try:
        response = httpx.get("http://localhost:11434/api/tags", timeout=2.0)
        if response.status_code != 200:
            pytest.skip("Ollama is not responding")
    except Exception:
        pytest.skip("Ollama is not available")
