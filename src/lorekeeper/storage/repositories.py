"""SQLite-backed implementations of the engine's collaborator protocols.

These cover the read side the engine needs (narrative lookups, tag and
template reference data, the interaction log) plus small seeding helpers
used by the CLI and the tests.
"""

import logging
from typing import Any

from lorekeeper.core.exceptions import InvalidArgumentError
from lorekeeper.core.types import (
    TEMPLATE_KINDS,
    Character,
    ContextTemplate,
    InteractionLog,
    MemoryTag,
    Region,
    Scene,
    TimelineEvent,
    World,
)
from lorekeeper.storage.sqlite import SQLiteStorage

logger = logging.getLogger(__name__)


class SQLiteNarrativeStore:
    """Id-keyed lookup of worlds, characters, scenes, regions and timeline events."""

    def __init__(self, sqlite: SQLiteStorage):
        self.sqlite = sqlite

    async def _get(self, table: str, record_id: str) -> dict[str, Any] | None:
        return await self.sqlite.fetch_one(f"SELECT * FROM {table} WHERE id = ?", (record_id,))

    async def get_world(self, world_id: str) -> World | None:
        row = await self._get("worlds", world_id)
        return World(**row) if row else None

    async def get_character(self, character_id: str) -> Character | None:
        row = await self._get("characters", character_id)
        return Character(**row) if row else None

    async def get_scene(self, scene_id: str) -> Scene | None:
        row = await self._get("scenes", scene_id)
        return Scene(**row) if row else None

    async def get_region(self, region_id: str) -> Region | None:
        row = await self._get("regions", region_id)
        return Region(**row) if row else None

    async def get_timeline_event(self, event_id: str) -> TimelineEvent | None:
        row = await self._get("timeline_events", event_id)
        return TimelineEvent(**row) if row else None

    async def save(self, record: World | Character | Scene | Region | TimelineEvent) -> None:
        """Insert or replace a narrative record (seeding helper)."""
        table = {
            World: "worlds",
            Character: "characters",
            Scene: "scenes",
            Region: "regions",
            TimelineEvent: "timeline_events",
        }[type(record)]
        data = record.model_dump()
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        await self.sqlite.execute(
            f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(data.values()),
        )
        logger.debug(f"Saved {table} record {record.id}")


class SQLiteTagStore:
    """Name-keyed lookup of tag reference data."""

    def __init__(self, sqlite: SQLiteStorage):
        self.sqlite = sqlite

    async def get_tags(self, names: list[str]) -> list[MemoryTag]:
        """Resolve tag names, keeping the order of ``names``. Unknown names are skipped."""
        if not names:
            return []
        placeholders = ", ".join("?" for _ in names)
        rows = await self.sqlite.fetch_all(
            f"SELECT * FROM memory_tags WHERE name IN ({placeholders})", tuple(names)
        )
        by_name = {row["name"]: MemoryTag(**row) for row in rows}
        return [by_name[name] for name in names if name in by_name]

    async def save_tag(self, tag: MemoryTag) -> None:
        await self.sqlite.execute(
            """
            INSERT OR REPLACE INTO memory_tags (name, category, color, description)
            VALUES (?, ?, ?, ?)
            """,
            (tag.name, tag.category, tag.color, tag.description),
        )


class SQLiteTemplateStore:
    """Prompt templates with at most one active template per kind."""

    def __init__(self, sqlite: SQLiteStorage):
        self.sqlite = sqlite

    async def get_active_template(self, template_kind: str) -> ContextTemplate | None:
        row = await self.sqlite.fetch_one(
            "SELECT * FROM context_templates WHERE template_kind = ? AND is_active = 1",
            (template_kind,),
        )
        if row is None:
            return None
        row["variables"] = SQLiteStorage.deserialize_json(row["variables"], default=[])
        row["is_active"] = bool(row["is_active"])
        return ContextTemplate(**row)

    async def save_template(self, template: ContextTemplate) -> None:
        """Store a template. An active template deactivates the previous one of its kind."""
        if template.template_kind not in TEMPLATE_KINDS:
            raise InvalidArgumentError(f"Invalid template kind: {template.template_kind}")

        async with self.sqlite.transaction() as conn:
            if template.is_active:
                await conn.execute(
                    "UPDATE context_templates SET is_active = 0 WHERE template_kind = ? AND name != ?",
                    (template.template_kind, template.name),
                )
            await conn.execute(
                """
                INSERT OR REPLACE INTO context_templates
                    (name, template_kind, body, variables, description, is_active)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    template.name,
                    template.template_kind,
                    template.body,
                    SQLiteStorage.serialize_json(template.variables),
                    template.description,
                    int(template.is_active),
                ),
            )
        logger.info(f"Saved template {template.name} ({template.template_kind})")


class SQLiteInteractionLog:
    """Append-only interaction log table."""

    def __init__(self, sqlite: SQLiteStorage):
        self.sqlite = sqlite

    async def append(self, entry: InteractionLog) -> None:
        await self.sqlite.execute(
            """
            INSERT INTO interaction_logs (
                entity_id, world_id, prompt, response, memories_used,
                detected_emotion, scene_context, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entity_id,
                entry.world_id,
                entry.prompt,
                entry.response,
                SQLiteStorage.serialize_json(entry.memories_used),
                entry.detected_emotion,
                entry.scene_context,
                entry.created_at.isoformat(),
            ),
        )

    async def recent(self, entity_id: str, limit: int = 20) -> list[InteractionLog]:
        rows = await self.sqlite.fetch_all(
            """
            SELECT * FROM interaction_logs WHERE entity_id = ?
            ORDER BY id DESC LIMIT ?
            """,
            (entity_id, limit),
        )
        logs = []
        for row in rows:
            row.pop("id")
            row["memories_used"] = SQLiteStorage.deserialize_json(row["memories_used"], default=[])
            logs.append(InteractionLog(**row))
        return logs
