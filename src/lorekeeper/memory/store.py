"""Entity summary store: versioned memory entries per narrative entity.

This module owns the "one current version per entity" invariant. Creating a
memory for an (entity_type, entity_id) key supersedes the previous current
entry and takes the next version number, as one atomic step.
"""

import asyncio
import logging
import sqlite3
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite
from pydantic import ValidationError

from lorekeeper.core.exceptions import (
    ConcurrencyConflictError,
    DatabaseError,
    InvalidArgumentError,
    NotFoundError,
)
from lorekeeper.core.types import (
    ENTITY_TYPES,
    MEMORY_KINDS,
    MemoryAnalytics,
    MemoryEntry,
    MemoryFilter,
    MemoryUpdate,
    NewMemory,
)
from lorekeeper.core.utils import generate_memory_id, utc_now
from lorekeeper.memory.cache import MemoryCache, TTLMemoryCache
from lorekeeper.memory.ranking import RelevanceRanker
from lorekeeper.storage.sqlite import SQLiteStorage

logger = logging.getLogger(__name__)

_INSERT_ENTRY = """
    INSERT INTO memory_entries (
        id, entity_type, entity_id, text, memory_kind, version, is_current,
        tags, last_used_scene, editable, used_recently, relevance_score,
        created_by, created_at, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def validate_entity_type(entity_type: str) -> None:
    if entity_type not in ENTITY_TYPES:
        raise InvalidArgumentError(
            f"Invalid entity type {entity_type!r}, expected one of {', '.join(ENTITY_TYPES)}"
        )


def validate_memory_kind(kind: str) -> None:
    if kind not in MEMORY_KINDS:
        raise InvalidArgumentError(
            f"Invalid memory kind {kind!r}, expected one of {', '.join(MEMORY_KINDS)}"
        )


def entity_key(entity_type: str, entity_id: str) -> str:
    """Cache key prefix shared by every query about one entity."""
    return f"{entity_type}:{entity_id}:"


class EntitySummaryStore:
    """Versioned memory storage with a read-through cache.

    Write serialization happens at three levels:
    - a keyed ``asyncio.Lock`` per (entity_type, entity_id) in this process,
    - a ``BEGIN IMMEDIATE`` transaction around deactivate-then-insert,
    - unique indexes on the current row and on the version number, which turn
      a lost cross-process race into ``ConcurrencyConflictError``.

    Attributes:
        sqlite: SQLite storage backend.
        cache: Cache in front of ``query``.
        ranker: Ranker used by ``get_relevant_memories``.
        created_by: Author recorded on new entries.
    """

    def __init__(
        self,
        sqlite: SQLiteStorage,
        cache: MemoryCache | None = None,
        ranker: RelevanceRanker | None = None,
        created_by: str = "system",
    ):
        self.sqlite = sqlite
        self.cache = cache if cache is not None else TTLMemoryCache()
        self.ranker = ranker or RelevanceRanker()
        self.created_by = created_by
        self._key_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Counter[tuple[str, str]] = Counter()

    # ========== Write Operations ==========

    @asynccontextmanager
    async def _locked(self, keys: list[tuple[str, str]]) -> AsyncIterator[None]:
        """Hold the per-entity locks for every key, acquired in sorted order.

        A key's lock is dropped once no task holds or waits for it.
        """
        ordered = sorted(set(keys))
        for key in ordered:
            self._lock_users[key] += 1
        acquired: list[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self._key_locks.setdefault(key, asyncio.Lock())
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in ordered:
                self._lock_users[key] -= 1
                if not self._lock_users[key]:
                    del self._lock_users[key]
                    self._key_locks.pop(key, None)

    async def create_entry(
        self,
        entity_type: str,
        entity_id: str,
        text: str,
        kind: str = "hard",
        tags: list[str] | None = None,
    ) -> MemoryEntry:
        """Create the next current version of an entity's memory.

        Args:
            entity_type: One of character, region, world, timeline_event, scene.
            entity_id: ID of the narrative entity.
            text: Memory text.
            kind: hard, soft or ephemeral.
            tags: Tag names to attach.

        Returns:
            The new current entry.

        Raises:
            InvalidArgumentError: If entity_type or kind is not recognised.
            ConcurrencyConflictError: If another writer won the race for this key.
            DatabaseError: If the database operation fails.
        """
        validate_entity_type(entity_type)
        validate_memory_kind(kind)

        created = await self._create_many(
            [NewMemory(entity_type=entity_type, entity_id=entity_id, text=text, kind=kind, tags=tags or [])]
        )
        entry = created[0]
        logger.info(f"Created memory {entry.id} for {entry.key} (v{entry.version})")
        return entry

    async def batch_create_entries(
        self, items: list[NewMemory | dict[str, Any]]
    ) -> list[MemoryEntry]:
        """Create many memories in one transaction.

        Every affected key is deactivated before any row is inserted. Items for
        the same key take consecutive versions in input order and only the
        last one stays current.

        Returns:
            Created entries, in input order.

        Raises:
            InvalidArgumentError: If any item is invalid (nothing is written).
            ConcurrencyConflictError: If another writer won the race for a key.
            DatabaseError: If the database operation fails.
        """
        memories: list[NewMemory] = []
        for item in items:
            if isinstance(item, NewMemory):
                memories.append(item)
                continue
            item = {name: value for name, value in item.items() if value is not None}
            validate_entity_type(item.get("entity_type", ""))
            validate_memory_kind(item.get("kind", "hard"))
            try:
                memories.append(NewMemory.model_validate(item))
            except ValidationError as e:
                raise InvalidArgumentError(f"Invalid memory in batch: {e}") from e

        if not memories:
            return []

        created = await self._create_many(memories)
        logger.info(
            f"Batch created {len(created)} memories across "
            f"{len({entry.key for entry in created})} entities"
        )
        return created

    async def _create_many(self, memories: list[NewMemory]) -> list[MemoryEntry]:
        keys = [(m.entity_type, m.entity_id) for m in memories]
        last_index = {key: i for i, key in enumerate(keys)}
        now = utc_now()

        async with self._locked(keys):
            try:
                async with self.sqlite.transaction() as conn:
                    next_version: dict[tuple[str, str], int] = {}
                    for key in dict.fromkeys(keys):
                        next_version[key] = await self._max_version(conn, *key) + 1
                        # Deactivate first so the inserts never see two current rows
                        await conn.execute(
                            """
                            UPDATE memory_entries SET is_current = 0, updated_at = ?
                            WHERE entity_type = ? AND entity_id = ? AND is_current = 1
                            """,
                            (now.isoformat(), *key),
                        )

                    created: list[MemoryEntry] = []
                    for i, (memory, key) in enumerate(zip(memories, keys)):
                        entry = MemoryEntry(
                            id=generate_memory_id(),
                            entity_type=memory.entity_type,
                            entity_id=memory.entity_id,
                            text=memory.text,
                            memory_kind=memory.kind,
                            version=next_version[key],
                            is_current=last_index[key] == i,
                            tags=memory.tags,
                            created_by=self.created_by,
                            created_at=now,
                            updated_at=now,
                        )
                        next_version[key] += 1
                        await conn.execute(_INSERT_ENTRY, self._entry_to_params(entry))
                        created.append(entry)
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e):
                    raise DatabaseError(f"Failed to create memories: {e}") from e
                entity_type, entity_id = keys[0]
                raise ConcurrencyConflictError(entity_type, entity_id) from e
            except sqlite3.Error as e:
                raise DatabaseError(f"Failed to create memories: {e}") from e
            finally:
                for entity_type, entity_id in dict.fromkeys(keys):
                    self.cache.invalidate(entity_key(entity_type, entity_id))

        return created

    async def _max_version(
        self, conn: aiosqlite.Connection, entity_type: str, entity_id: str
    ) -> int:
        cursor = await conn.execute(
            """
            SELECT COALESCE(MAX(version), 0) AS max_version FROM memory_entries
            WHERE entity_type = ? AND entity_id = ?
            """,
            (entity_type, entity_id),
        )
        row = await cursor.fetchone()
        return int(row["max_version"]) if row is not None else 0

    async def update_entry(
        self,
        memory_id: str,
        update: MemoryUpdate | dict[str, Any] | Callable[[MemoryEntry], MemoryUpdate | dict[str, Any]],
    ) -> MemoryEntry:
        """Apply a partial update in place.

        Never changes id, version, is_current or the entity linkage.

        Args:
            memory_id: Memory to update.
            update: The changes, or a function building them from the entry as
                re-read under the entity lock.

        Raises:
            NotFoundError: If the memory does not exist.
            InvalidArgumentError: If the update carries an invalid value.
            DatabaseError: If the database operation fails.
        """
        entry = await self.get_entry(memory_id)
        async with self._locked([(entry.entity_type, entry.entity_id)]):
            # Re-read under the lock so concurrent updates do not clobber each other
            entry = await self.get_entry(memory_id)
            if callable(update):
                update = update(entry)
            changes = self._coerce_update(update)
            updated = MemoryEntry.model_validate(
                {**entry.model_dump(), **changes, "updated_at": utc_now()}
            )

            try:
                await self.sqlite.execute(
                    """
                    UPDATE memory_entries
                    SET text = ?, memory_kind = ?, tags = ?, editable = ?,
                        used_recently = ?, last_used_scene = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        updated.text,
                        updated.memory_kind,
                        SQLiteStorage.serialize_json(updated.tags),
                        int(updated.editable),
                        int(updated.used_recently),
                        updated.last_used_scene,
                        updated.updated_at.isoformat(),
                        memory_id,
                    ),
                )
            finally:
                self.cache.invalidate(entity_key(updated.entity_type, updated.entity_id))

        logger.info(f"Updated memory {memory_id}: {', '.join(sorted(changes)) or 'no changes'}")
        return updated

    # ========== Read Operations ==========

    async def get_entry(self, memory_id: str) -> MemoryEntry:
        """Get a memory entry by ID.

        Raises:
            NotFoundError: If the memory does not exist.
        """
        row = await self.sqlite.fetch_one(
            "SELECT * FROM memory_entries WHERE id = ?", (memory_id,)
        )
        if row is None:
            raise NotFoundError(memory_id, "memory")
        return self._row_to_entry(row)

    async def get_current(self, entity_type: str, entity_id: str) -> MemoryEntry | None:
        """Get the current memory of an entity, if it has one."""
        validate_entity_type(entity_type)
        row = await self.sqlite.fetch_one(
            """
            SELECT * FROM memory_entries
            WHERE entity_type = ? AND entity_id = ? AND is_current = 1
            """,
            (entity_type, entity_id),
        )
        return self._row_to_entry(row) if row is not None else None

    async def query(
        self,
        entity_type: str,
        entity_id: str,
        filter: MemoryFilter | dict[str, Any] | None = None,
    ) -> list[MemoryEntry]:
        """Query an entity's memories, best relevance first.

        Results are served through the cache and invalidated by any write to
        the same entity. ``filter.current_only`` decides whether superseded
        versions are included.

        Raises:
            InvalidArgumentError: If entity_type or a filter value is invalid.
            DatabaseError: If the query fails.
        """
        validate_entity_type(entity_type)
        memory_filter = self._coerce_filter(filter)
        key = f"{entity_key(entity_type, entity_id)}{memory_filter.fingerprint()}"

        async def load() -> list[MemoryEntry]:
            return await self._query_db(entity_type, entity_id, memory_filter)

        entries = await self.cache.get_or_load(key, load)
        # Cached entries are never handed out directly
        return [entry.model_copy(deep=True) for entry in entries]

    async def _query_db(
        self, entity_type: str, entity_id: str, memory_filter: MemoryFilter
    ) -> list[MemoryEntry]:
        conditions = ["entity_type = ?", "entity_id = ?"]
        params: list[Any] = [entity_type, entity_id]

        if memory_filter.current_only:
            conditions.append("is_current = 1")
        if memory_filter.kind is not None:
            conditions.append("memory_kind = ?")
            params.append(memory_filter.kind)
        if memory_filter.min_relevance is not None:
            conditions.append("relevance_score >= ?")
            params.append(memory_filter.min_relevance)
        if memory_filter.used_recently is not None:
            conditions.append("used_recently = ?")
            params.append(int(memory_filter.used_recently))
        if memory_filter.editable is not None:
            conditions.append("editable = ?")
            params.append(int(memory_filter.editable))
        if memory_filter.tags:
            placeholders = ", ".join("?" for _ in memory_filter.tags)
            conditions.append(
                f"EXISTS (SELECT 1 FROM json_each(memory_entries.tags) WHERE value IN ({placeholders}))"
            )
            params.extend(memory_filter.tags)

        query = (
            f"SELECT * FROM memory_entries WHERE {' AND '.join(conditions)} "
            "ORDER BY relevance_score DESC, version DESC, id ASC"
        )
        rows = await self.sqlite.fetch_all(query, tuple(params))
        logger.debug(f"Loaded {len(rows)} memories for {entity_type}:{entity_id}")
        return [self._row_to_entry(row) for row in rows]

    async def get_history(self, entity_type: str, entity_id: str) -> list[MemoryEntry]:
        """Get every version of an entity's memory, oldest first."""
        validate_entity_type(entity_type)
        rows = await self.sqlite.fetch_all(
            """
            SELECT * FROM memory_entries
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY version ASC
            """,
            (entity_type, entity_id),
        )
        return [self._row_to_entry(row) for row in rows]

    async def get_relevant_memories(
        self,
        entity_type: str,
        entity_id: str,
        context: str,
        limit: int = 5,
    ) -> list[MemoryEntry]:
        """Rank an entity's current memories against a context string."""
        memories = await self.query(entity_type, entity_id, MemoryFilter())
        return self.ranker.rank(memories, context, limit)

    async def get_analytics(self, entity_type: str, entity_id: str) -> MemoryAnalytics:
        """Summarize every stored version of an entity's memories."""
        validate_entity_type(entity_type)
        row = await self.sqlite.fetch_one(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(is_current), 0) AS current,
                COALESCE(SUM(memory_kind = 'hard'), 0) AS hard,
                COALESCE(SUM(memory_kind = 'soft'), 0) AS soft,
                COALESCE(SUM(memory_kind = 'ephemeral'), 0) AS ephemeral,
                COALESCE(AVG(relevance_score), 0.0) AS avg_relevance,
                MAX(updated_at) AS last_updated
            FROM memory_entries
            WHERE entity_type = ? AND entity_id = ?
            """,
            (entity_type, entity_id),
        )
        row = row or {}
        return MemoryAnalytics(
            entity_type=entity_type,
            entity_id=entity_id,
            total_memories=row.get("total", 0),
            current_memories=row.get("current", 0),
            hard_memories=row.get("hard", 0),
            soft_memories=row.get("soft", 0),
            ephemeral_memories=row.get("ephemeral", 0),
            avg_relevance=row.get("avg_relevance", 0.0),
            last_updated=row.get("last_updated"),
        )

    # ========== Helper Methods ==========

    @staticmethod
    def _coerce_filter(filter: MemoryFilter | dict[str, Any] | None) -> MemoryFilter:
        if filter is None:
            return MemoryFilter()
        if isinstance(filter, MemoryFilter):
            return filter
        kind = filter.get("kind")
        if kind is not None:
            validate_memory_kind(kind)
        try:
            return MemoryFilter.model_validate(filter)
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid memory filter: {e}") from e

    @staticmethod
    def _coerce_update(update: MemoryUpdate | dict[str, Any]) -> dict[str, Any]:
        """Column changes carried by an update."""
        if isinstance(update, dict):
            if update.get("kind") is not None:
                validate_memory_kind(update["kind"])
            try:
                update = MemoryUpdate.model_validate(update)
            except ValidationError as e:
                raise InvalidArgumentError(f"Invalid memory update: {e}") from e

        changes = update.model_dump(exclude_unset=True)
        if "kind" in changes:
            changes["memory_kind"] = changes.pop("kind")
        # None clears last_used_scene; for every other field it means "leave as is"
        return {
            name: value
            for name, value in changes.items()
            if value is not None or name == "last_used_scene"
        }

    @staticmethod
    def _entry_to_params(entry: MemoryEntry) -> tuple[Any, ...]:
        return (
            entry.id,
            entry.entity_type,
            entry.entity_id,
            entry.text,
            entry.memory_kind,
            entry.version,
            int(entry.is_current),
            SQLiteStorage.serialize_json(entry.tags),
            entry.last_used_scene,
            int(entry.editable),
            int(entry.used_recently),
            entry.relevance_score,
            entry.created_by,
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
        )

    @staticmethod
    def _row_to_entry(row: dict[str, Any]) -> MemoryEntry:
        """Convert a database row to a MemoryEntry."""
        return MemoryEntry(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            text=row["text"],
            memory_kind=row["memory_kind"],
            version=row["version"],
            is_current=bool(row["is_current"]),
            tags=SQLiteStorage.deserialize_json(row["tags"], default=[]),
            last_used_scene=row["last_used_scene"],
            editable=bool(row["editable"]),
            used_recently=bool(row["used_recently"]),
            relevance_score=row["relevance_score"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
