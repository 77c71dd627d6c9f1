"""Interfaces of the collaborators the memory engine consumes.

The engine only depends on these protocols. SQLite-backed implementations
live in ``lorekeeper.storage.repositories`` and the Ollama adapter in
``lorekeeper.llm.client``.
"""

from typing import Protocol

from lorekeeper.core.types import (
    Character,
    ContextTemplate,
    InteractionLog,
    MemoryTag,
    Region,
    Scene,
    TimelineEvent,
    World,
)


class NarrativeStore(Protocol):
    """Id-keyed lookup of universe records. Missing ids return None."""

    async def get_world(self, world_id: str) -> World | None: ...

    async def get_character(self, character_id: str) -> Character | None: ...

    async def get_scene(self, scene_id: str) -> Scene | None: ...

    async def get_region(self, region_id: str) -> Region | None: ...

    async def get_timeline_event(self, event_id: str) -> TimelineEvent | None: ...


class TagStore(Protocol):
    """Name-keyed lookup of tag reference data."""

    async def get_tags(self, names: list[str]) -> list[MemoryTag]: ...


class TemplateStore(Protocol):
    """Lookup of the single active template per template kind."""

    async def get_active_template(self, template_kind: str) -> ContextTemplate | None: ...


class GenerationClient(Protocol):
    """Opaque text completion. Failures raise GenerationError."""

    async def generate(self, model: str, prompt: str) -> str: ...


class InteractionLogSink(Protocol):
    """Append-only interaction log."""

    async def append(self, entry: InteractionLog) -> None: ...
