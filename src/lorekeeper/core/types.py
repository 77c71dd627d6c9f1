"""Core data types and Pydantic models for Lorekeeper.

This module defines the foundational data structures used throughout the engine,
including memory entries, tags, context bundles, templates and narrative records.
"""

import hashlib
import json
from datetime import datetime
from typing import Annotated, Any, Literal, get_args

from pydantic import BaseModel, Field, StringConstraints, field_validator

from lorekeeper.core.utils import utc_now

# Type aliases for identifiers and enumerations
MemoryID = Annotated[str, StringConstraints(pattern=r"^mem_[a-f0-9\-]+$")]

EntityType = Literal["character", "region", "world", "timeline_event", "scene"]
MemoryKind = Literal["hard", "soft", "ephemeral"]
TagCategory = Literal["emotion", "plot", "lore", "relationship", "location", "temporal"]
TemplateKind = Literal[
    "scene_continuation",
    "character_chat",
    "plot_development",
    "world_building",
    "dialogue_generation",
]

ENTITY_TYPES: tuple[str, ...] = get_args(EntityType)
MEMORY_KINDS: tuple[str, ...] = get_args(MemoryKind)
TEMPLATE_KINDS: tuple[str, ...] = get_args(TemplateKind)


def _unique_tags(tags: list[str]) -> list[str]:
    """Drop blank and repeated tag names, keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


# Memory entries
class MemoryEntry(BaseModel):
    """A versioned, taggable memory snippet attached to a narrative entity.

    For a given (entity_type, entity_id) at most one entry is current.
    Every create for that key supersedes the previous current entry and
    takes the next version number.
    """

    id: MemoryID
    entity_type: EntityType
    entity_id: str
    text: str
    memory_kind: MemoryKind = "hard"
    version: int = Field(default=1, ge=1)
    is_current: bool = True
    tags: list[str] = Field(default_factory=list)
    last_used_scene: str | None = None
    editable: bool = True
    used_recently: bool = False
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, v: list[str]) -> list[str]:
        return _unique_tags(v)

    @property
    def key(self) -> str:
        """Entity key shared by every version of this memory."""
        return f"{self.entity_type}:{self.entity_id}"


class MemoryTag(BaseModel):
    """Reference data describing a tag. Entries only hold tag names."""

    name: str
    category: TagCategory
    color: str = "#888888"
    description: str = ""


class NewMemory(BaseModel):
    """One item of a batch create."""

    entity_type: EntityType
    entity_id: str
    text: str
    kind: MemoryKind = "hard"
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, v: list[str]) -> list[str]:
        return _unique_tags(v)


class MemoryFilter(BaseModel):
    """Filters for memory queries.

    Attributes:
        kind: Only entries of this memory kind.
        tags: Entries sharing at least one of these tags.
        min_relevance: Lower bound on the stored relevance score.
        used_recently: Match on the used_recently flag.
        editable: Match on the editable flag.
        current_only: Drop superseded versions. Pass False for the full history.
    """

    kind: MemoryKind | None = None
    tags: list[str] | None = None
    min_relevance: float | None = Field(default=None, ge=0.0, le=1.0)
    used_recently: bool | None = None
    editable: bool | None = None
    current_only: bool = True

    def fingerprint(self) -> str:
        """Short stable hash of the filter, used in cache keys.

        Tag order does not matter, so two filters naming the same tags
        share a fingerprint.
        """
        data = self.model_dump()
        if data["tags"] is not None:
            data["tags"] = sorted(set(data["tags"]))
        raw = json.dumps(data, sort_keys=True)
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


class MemoryUpdate(BaseModel):
    """Partial update of a memory entry. Only set fields are applied."""

    text: str | None = None
    kind: MemoryKind | None = None
    tags: list[str] | None = None
    editable: bool | None = None
    used_recently: bool | None = None
    last_used_scene: str | None = None


class MemoryConnection(BaseModel):
    """Connection between a newly learned memory and an existing one."""

    source_id: MemoryID
    target_id: MemoryID
    strength: float = Field(ge=0.0, le=1.0)
    connection_type: str = "semantic"


class MemoryAnalytics(BaseModel):
    """Aggregate view over every version stored for one entity."""

    entity_type: EntityType
    entity_id: str
    total_memories: int = 0
    current_memories: int = 0
    hard_memories: int = 0
    soft_memories: int = 0
    ephemeral_memories: int = 0
    avg_relevance: float = 0.0
    last_updated: datetime | None = None


# Context assembly
class ContextBundle(BaseModel):
    """Strings and memory references handed to prompt rendering.

    Never persisted; rebuilt for every generation request.
    """

    world_context: str = ""
    character_context: str = ""
    scene_context: str = ""
    memory_context: str = ""
    active_memories: list[MemoryEntry] = Field(default_factory=list)
    relevant_tags: list[MemoryTag] = Field(default_factory=list)


class ContextTemplate(BaseModel):
    """A fill-in-the-blank prompt template for one generation scenario."""

    name: str
    template_kind: TemplateKind
    body: str
    variables: list[str] = Field(default_factory=list)
    description: str = ""
    is_active: bool = True


# Learning
class MemoryCandidate(BaseModel):
    """A memory proposed by an interaction analyzer, before it is stored."""

    text: str
    tags: list[str] = Field(default_factory=list)


class LearningResult(BaseModel):
    """Outcome of learning from one interaction."""

    new_entries: list[MemoryEntry] = Field(default_factory=list)
    updated_entries: list[MemoryEntry] = Field(default_factory=list)
    connections: list[MemoryConnection] = Field(default_factory=list)


class InteractionLog(BaseModel):
    """Record of one generation round trip, appended to the log sink."""

    entity_id: str
    world_id: str
    prompt: str
    response: str
    memories_used: list[str] = Field(default_factory=list)
    detected_emotion: str = "neutral"
    scene_context: str = ""
    created_at: datetime = Field(default_factory=utc_now)


# Narrative records (read-only views of the universe data)
class World(BaseModel):
    id: str
    name: str
    description: str = ""
    world_type: str = ""
    theme: str = ""


class Character(BaseModel):
    id: str
    world_id: str | None = None
    name: str
    species: str = ""
    origin: str = ""
    personality: str = ""
    arc_summary: str = ""


class Scene(BaseModel):
    id: str
    world_id: str | None = None
    title: str
    description: str = ""
    dialogue: str = ""


class Region(BaseModel):
    id: str
    world_id: str | None = None
    name: str
    description: str = ""


class TimelineEvent(BaseModel):
    id: str
    world_id: str | None = None
    name: str
    description: str = ""


# Engine responses
class GenerationResponse(BaseModel):
    """Common shape of every engine generation response."""

    text: str
    memories_used: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CharacterChatResponse(GenerationResponse):
    character_name: str
    character_state: str = "engaged"
    detected_emotion: str = "neutral"


class SceneContinuationResponse(GenerationResponse):
    scene_suggestions: list[str] = Field(default_factory=list)
    character_actions: list[str] = Field(default_factory=list)
    plot_developments: list[str] = Field(default_factory=list)


class PlotSuggestionResponse(GenerationResponse):
    suggested_actions: list[str] = Field(default_factory=list)
