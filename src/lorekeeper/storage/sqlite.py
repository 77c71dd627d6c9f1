"""SQLite storage implementation for Lorekeeper.

Provides async SQLite operations with migration support and transaction management.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from lorekeeper.core.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    MigrationError,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class SQLiteStorage:
    """Async SQLite storage with migration support.

    This class provides the database plumbing shared by the memory store and
    the narrative repositories:
    - Connection management
    - Migration execution
    - Query helpers
    - Write transactions that take the database write lock up front

    Attributes:
        db_path: Path to the SQLite database file.
        busy_timeout: Seconds a connection waits on a locked database.
        _conn: Active database connection (when connected).
    """

    def __init__(self, db_path: str | Path, busy_timeout: float = 5.0):
        """Initialize SQLite storage.

        Args:
            db_path: Path to the SQLite database file.
            busy_timeout: Seconds to wait for a competing writer to finish.
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None
        # A shared connection carries one transaction at a time.
        self._tx_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the database by running migrations.

        Creates the database file and parent directories if they don't exist,
        then runs all pending migrations.

        Raises:
            DatabaseError: If database initialization fails.
            MigrationError: If migrations fail to apply.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            await self._run_migrations()
            logger.info(f"Database initialized at {self.db_path}")
        except MigrationError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to initialize database: {e}") from e

    async def _run_migrations(self) -> None:
        """Run all database migrations in file-name order.

        Each migration is idempotent and uses IF NOT EXISTS clauses.

        Raises:
            MigrationError: If migration execution fails.
        """
        if not MIGRATIONS_DIR.exists():
            raise MigrationError(f"Migrations directory not found: {MIGRATIONS_DIR}")

        migration_files = sorted(MIGRATIONS_DIR.glob("*.sql"))

        if not migration_files:
            logger.warning("No migration files found")
            return

        try:
            async with aiosqlite.connect(self.db_path) as conn:
                for migration_file in migration_files:
                    logger.debug(f"Running migration: {migration_file.name}")
                    await conn.executescript(migration_file.read_text())
                    await conn.commit()
        except Exception as e:
            raise MigrationError(f"Migration failed: {e}") from e

    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        return conn

    async def connect(self) -> None:
        """Establish a persistent connection to the database.

        Raises:
            DatabaseConnectionError: If connection fails.
        """
        if self._conn is not None:
            logger.warning("Already connected to database")
            return

        try:
            self._conn = await self._open()
            logger.debug("Connected to database")
        except Exception as e:
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e

    async def disconnect(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("Disconnected from database")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for database connections.

        Reuses the persistent connection if one is open, otherwise opens a
        temporary connection that is closed when done.

        Yields:
            Active database connection.
        """
        if self._conn is not None:
            yield self._conn
            return

        try:
            conn = await self._open()
        except Exception as e:
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for write transactions.

        Starts with ``BEGIN IMMEDIATE`` so the database write lock is held
        from the first read inside the transaction. A concurrent writer on
        another connection waits (up to ``busy_timeout``) instead of reading
        state that is about to change. Commits on success, rolls back on error.

        Yields:
            Active database connection within a transaction.

        Example:
            async with storage.transaction() as conn:
                await conn.execute("UPDATE memory_entries ...")
                await conn.execute("INSERT INTO memory_entries ...")
        """
        async with self._tx_lock:
            async with self.connection() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> None:
        """Execute a single write query (INSERT, UPDATE, DELETE).

        Raises:
            DatabaseError: If query execution fails.
        """
        try:
            async with self.transaction() as conn:
                await conn.execute(query, params)
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Query execution failed: {e}") from e

    async def fetch_one(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> dict[str, Any] | None:
        """Fetch a single row from the database.

        Returns:
            Dictionary representation of the row, or None if no rows found.

        Raises:
            DatabaseError: If query execution fails.
        """
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                row = await cursor.fetchone()
                return dict(row) if row is not None else None
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Query failed: {e}") from e

    async def fetch_all(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> list[dict[str, Any]]:
        """Fetch all rows from the database.

        Returns:
            List of dictionaries, one per row.

        Raises:
            DatabaseError: If query execution fails.
        """
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Query failed: {e}") from e

    async def count(self, table: str, where: str = "", params: tuple[Any, ...] = ()) -> int:
        """Count rows in a table, with an optional WHERE clause (without the keyword)."""
        query = f"SELECT COUNT(*) as count FROM {table}"
        if where:
            query += f" WHERE {where}"

        result = await self.fetch_one(query, params)
        return result["count"] if result else 0

    @staticmethod
    def serialize_json(value: Any) -> str | None:
        """Serialize a Python object to a JSON string for storage."""
        if value is None:
            return None
        return json.dumps(value)

    @staticmethod
    def deserialize_json(value: str | None, default: Any = None) -> Any:
        """Deserialize a JSON column, returning ``default`` for NULL."""
        if value is None:
            return default
        return json.loads(value)
