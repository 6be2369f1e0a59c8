"""Memory layer — SQLite persistence and recall engine.

Design mirrors the other aiosqlite stores:
    - All I/O is async
    - JSON serialisation for metadata and embeddings
    - No ORM dependency

Every operation is scoped explicitly by the caller; the store holds no notion
of a current user or session (see ``MemoryManager`` for that).

Connections
-----------
Two connections per store, both in autocommit mode:

    writer  — every INSERT/UPDATE/DELETE, serialised by an asyncio.Lock.
              Multi-statement work runs inside ``BEGIN IMMEDIATE`` and is
              rolled back on any failure, task cancellation included.
    reader  — ``PRAGMA query_only``; serves recall queries.  In WAL mode it
              never blocks behind the writer and never observes a partially
              written batch.

Schema
------
One table: ``memories`` (see ``_SCHEMA_SQL``), with single-column indexes on
agent_id, user_id, type, created_at, importance and expires_at.  Timestamps
are fixed-width ISO-8601 UTC strings, so range filters and ordering run in
SQLite.  ``PRAGMA user_version`` records the layout version.

Missing IDs
-----------
``get_by_id`` returns None for an unknown ID.  ``update_access_time``,
``update_importance`` and ``delete`` treat an unknown ID as a no-op and
return False; True means a row was changed.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Sequence

import aiosqlite

from lumos_memory.config import StoreConfig
from lumos_memory.exceptions import (
    MemoryValidationError,
    PersistenceError,
    TransactionError,
)
from lumos_memory.logging import get_logger
from lumos_memory.memory.models import (
    Importance,
    MemoryEntry,
    MemoryType,
    QueryOptions,
    format_timestamp,
    parse_timestamp,
    utcnow,
    validate_embedding,
    validate_metadata,
)
from lumos_memory.memory.ranking import Ranker, SubstringRanker

log = get_logger(__name__)

SCHEMA_VERSION = 1

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS memories (
    id                TEXT PRIMARY KEY,
    agent_id          TEXT NOT NULL,
    user_id           TEXT,
    session_id        TEXT,
    type              TEXT NOT NULL,
    content           TEXT NOT NULL,
    metadata          TEXT,            -- JSON object of scalars
    embedding         BLOB,            -- JSON array of floats
    created_at        TIMESTAMP NOT NULL,
    last_accessed_at  TIMESTAMP,
    access_count      INTEGER NOT NULL DEFAULT 0,
    importance        INTEGER NOT NULL,
    expires_at        TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_memories_agent_id   ON memories (agent_id);
CREATE INDEX IF NOT EXISTS idx_memories_user_id    ON memories (user_id);
CREATE INDEX IF NOT EXISTS idx_memories_type       ON memories (type);
CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories (created_at);
CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories (importance);
CREATE INDEX IF NOT EXISTS idx_memories_expires_at ON memories (expires_at);
"""

_COLUMNS = (
    "id, agent_id, user_id, session_id, type, content, metadata, embedding, "
    "created_at, last_accessed_at, access_count, importance, expires_at"
)

_INSERT_SQL = f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"

_ORDER_BY = "ORDER BY importance DESC, created_at DESC, rowid DESC"


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def _prepare_row(entry: MemoryEntry, now_ts: str) -> tuple[str, tuple[Any, ...]]:
    """Validate *entry* and return (id, insert parameters).  Never mutates it."""
    if not isinstance(entry, MemoryEntry):
        raise MemoryValidationError("entry", "expected a MemoryEntry", type(entry).__name__)
    if not isinstance(entry.agent_id, str) or not entry.agent_id:
        raise MemoryValidationError("agent_id", "must be a non-empty string", entry.agent_id)
    if not isinstance(entry.content, str):
        raise MemoryValidationError("content", "must be a string", type(entry.content).__name__)
    if not isinstance(entry.access_count, int) or entry.access_count < 0:
        raise MemoryValidationError("access_count", "must be >= 0", entry.access_count)

    memory_type = MemoryType.parse(entry.type)
    importance = Importance.parse(entry.importance)
    metadata = validate_metadata(entry.metadata)
    embedding = validate_embedding(entry.embedding)

    memory_id = entry.id or str(uuid.uuid4())
    params = (
        memory_id,
        entry.agent_id,
        entry.user_id or None,
        entry.session_id or None,
        memory_type.value,
        entry.content,
        json.dumps(metadata, ensure_ascii=False) if metadata is not None else None,
        json.dumps(embedding).encode() if embedding is not None else None,
        format_timestamp(entry.created_at) if entry.created_at else now_ts,
        format_timestamp(entry.last_accessed_at) if entry.last_accessed_at else None,
        entry.access_count,
        int(importance),
        format_timestamp(entry.expires_at) if entry.expires_at else None,
    )
    return memory_id, params


def _row_to_entry(row: Sequence[Any]) -> MemoryEntry:
    embedding = row[7]
    if isinstance(embedding, (bytes, bytearray, memoryview)):
        embedding = bytes(embedding).decode()
    return MemoryEntry(
        id=row[0],
        agent_id=row[1],
        user_id=row[2],
        session_id=row[3],
        type=MemoryType(row[4]),
        content=row[5],
        metadata=json.loads(row[6]) if row[6] else None,
        embedding=json.loads(embedding) if embedding else None,
        created_at=parse_timestamp(row[8]),
        last_accessed_at=parse_timestamp(row[9]),
        access_count=row[10],
        importance=Importance(row[11]),
        expires_at=parse_timestamp(row[12]),
    )


def _json_type(value: Any) -> str:
    """SQLite ``json_type()`` name for a non-null metadata scalar."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "real"
    return "text"


def _require_agent(agent_id: str) -> None:
    if not isinstance(agent_id, str) or not agent_id:
        raise MemoryValidationError("agent_id", "must be a non-empty string", agent_id)


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------


class MemoryStore:
    """Async SQLite store for MemoryEntry records.

    Usage::

        store = MemoryStore(Path("~/.lumos/memory.db"))
        await store.init()

        memory_id = await store.store(MemoryEntry(agent_id="a1", content="hello"))
        entry = await store.get_by_id(memory_id)
        recent = await store.query("a1", "user-1", QueryOptions(limit=10))
        await store.update_importance(memory_id, Importance.CRITICAL)
        await store.delete(memory_id)
        removed = await store.prune()

        await store.close()

    Or as ``async with MemoryStore(path) as store: ...``.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        ranker: Ranker | None = None,
        journal_mode: str = "wal",
        synchronous: str = "normal",
        busy_timeout: float = 5.0,
    ) -> None:
        self._db_path = Path(db_path).expanduser()
        self._ranker: Ranker = ranker or SubstringRanker()
        self._journal_mode = journal_mode
        self._synchronous = synchronous
        self._busy_timeout = busy_timeout
        self._writer: aiosqlite.Connection | None = None
        self._reader: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: StoreConfig, *, ranker: Ranker | None = None) -> "MemoryStore":
        return cls(
            config.db_path,
            ranker=ranker,
            journal_mode=config.journal_mode,
            synchronous=config.synchronous,
            busy_timeout=config.busy_timeout_seconds,
        )

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def ranker(self) -> Ranker:
        return self._ranker

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def init(self) -> None:
        """Open both connections and create the schema if needed."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._writer = await aiosqlite.connect(
                str(self._db_path), timeout=self._busy_timeout, isolation_level=None
            )
            await self._writer.execute(f"PRAGMA journal_mode={self._journal_mode}")
            await self._writer.execute(f"PRAGMA synchronous={self._synchronous}")
            await self._writer.executescript(_SCHEMA_SQL)
            await self._check_schema_version(self._writer)

            self._reader = await aiosqlite.connect(
                str(self._db_path), timeout=self._busy_timeout, isolation_level=None
            )
            await self._reader.execute("PRAGMA query_only=ON")
        except aiosqlite.Error as exc:
            await self.close()
            raise PersistenceError("init", exc) from exc
        except PersistenceError:
            await self.close()
            raise
        log.info(
            "memory_store_initialized",
            path=str(self._db_path),
            journal_mode=self._journal_mode,
        )

    async def close(self) -> None:
        for conn in (self._reader, self._writer):
            if conn is not None:
                await conn.close()
        self._reader = None
        self._writer = None

    async def __aenter__(self) -> "MemoryStore":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _check_schema_version(self, conn: aiosqlite.Connection) -> None:
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        version = row[0] if row else 0
        if version == 0:
            await conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
        elif version > SCHEMA_VERSION:
            raise PersistenceError(
                "init",
                f"database schema version {version} is newer than supported {SCHEMA_VERSION}",
            )

    def _writer_conn(self, operation: str) -> aiosqlite.Connection:
        if self._writer is None:
            raise PersistenceError(operation, "store is not initialised (call init())")
        return self._writer

    def _reader_conn(self, operation: str) -> aiosqlite.Connection:
        if self._reader is None:
            raise PersistenceError(operation, "store is not initialised (call init())")
        return self._reader

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock for an explicit IMMEDIATE transaction."""
        conn = self._writer_conn(operation)
        async with self._write_lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
                yield conn
                await conn.commit()
            except BaseException:
                # Shielded so a second cancellation cannot skip the rollback.
                await asyncio.shield(conn.rollback())
                raise

    # ---------------------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------------------

    async def store(self, entry: MemoryEntry) -> str:
        """Insert one memory and return its ID."""
        memory_id, params = _prepare_row(entry, format_timestamp(utcnow()))
        conn = self._writer_conn("store")
        try:
            async with self._write_lock:
                await conn.execute(_INSERT_SQL, params)
        except aiosqlite.Error as exc:
            raise PersistenceError("store", exc, memory_id=memory_id) from exc
        log.debug(
            "memory_stored",
            memory_id=memory_id,
            agent_id=entry.agent_id,
            type=params[4],
            importance=params[11],
        )
        return memory_id

    async def batch_store(self, entries: Iterable[MemoryEntry]) -> list[str]:
        """Insert all *entries* atomically.  Any failure leaves no rows behind."""
        now_ts = format_timestamp(utcnow())
        rows = [_prepare_row(entry, now_ts) for entry in entries]
        if not rows:
            return []

        index = -1
        try:
            async with self._transaction("batch_store") as conn:
                for index, (_, params) in enumerate(rows):
                    await conn.execute(_INSERT_SQL, params)
        except aiosqlite.Error as exc:
            failed_id = rows[index][0] if index >= 0 else None
            log.warning("memory_batch_rolled_back", size=len(rows), index=index, error=str(exc))
            raise TransactionError(
                "batch_store", exc, memory_id=failed_id, index=index if index >= 0 else None
            ) from exc

        log.debug("memory_batch_stored", count=len(rows))
        return [memory_id for memory_id, _ in rows]

    async def update_access_time(self, memory_id: str) -> bool:
        conn = self._writer_conn("update_access_time")
        try:
            async with self._write_lock:
                cursor = await conn.execute(
                    "UPDATE memories SET last_accessed_at = ?, access_count = access_count + 1 "
                    "WHERE id = ?",
                    (format_timestamp(utcnow()), memory_id),
                )
        except aiosqlite.Error as exc:
            raise PersistenceError("update_access_time", exc, memory_id=memory_id) from exc
        return cursor.rowcount > 0

    async def update_importance(self, memory_id: str, importance: Importance | int) -> bool:
        level = Importance.parse(importance)
        conn = self._writer_conn("update_importance")
        try:
            async with self._write_lock:
                cursor = await conn.execute(
                    "UPDATE memories SET importance = ? WHERE id = ?", (int(level), memory_id)
                )
        except aiosqlite.Error as exc:
            raise PersistenceError("update_importance", exc, memory_id=memory_id) from exc
        updated = cursor.rowcount > 0
        log.debug(
            "memory_importance_updated",
            memory_id=memory_id,
            importance=level.name.lower(),
            found=updated,
        )
        return updated

    async def delete(self, memory_id: str) -> bool:
        """Delete one memory.  Returns True if it existed."""
        conn = self._writer_conn("delete")
        try:
            async with self._write_lock:
                cursor = await conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        except aiosqlite.Error as exc:
            raise PersistenceError("delete", exc, memory_id=memory_id) from exc
        deleted = cursor.rowcount > 0
        log.debug("memory_deleted", memory_id=memory_id, found=deleted)
        return deleted

    async def delete_by_agent_and_user(self, agent_id: str, user_id: str | None = None) -> int:
        """Delete an agent's memories for one user, or for every user if *user_id* is empty."""
        _require_agent(agent_id)
        if user_id:
            sql = "DELETE FROM memories WHERE agent_id = ? AND user_id = ?"
            params: tuple[Any, ...] = (agent_id, user_id)
        else:
            sql = "DELETE FROM memories WHERE agent_id = ?"
            params = (agent_id,)

        conn = self._writer_conn("delete_by_agent_and_user")
        try:
            async with self._write_lock:
                cursor = await conn.execute(sql, params)
        except aiosqlite.Error as exc:
            raise PersistenceError("delete_by_agent_and_user", exc) from exc
        count = cursor.rowcount or 0
        log.info("memories_deleted", agent_id=agent_id, user_id=user_id or None, count=count)
        return count

    async def prune(self) -> int:
        """Delete every memory whose expires_at has passed.  Returns the count."""
        try:
            async with self._transaction("prune") as conn:
                cursor = await conn.execute(
                    "DELETE FROM memories WHERE expires_at IS NOT NULL AND expires_at <= ?",
                    (format_timestamp(utcnow()),),
                )
                count = cursor.rowcount or 0
        except aiosqlite.Error as exc:
            raise TransactionError("prune", exc) from exc
        if count:
            log.info("memories_pruned", count=count)
        return count

    # ---------------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------------

    async def get_by_id(self, memory_id: str) -> MemoryEntry | None:
        """Fetch one memory and record the access.  Returns None if not found.

        The returned entry already reflects the bumped access_count and
        last_accessed_at.  Expiry is not checked here.
        """
        try:
            async with self._transaction("get") as conn:
                cursor = await conn.execute(
                    "UPDATE memories SET last_accessed_at = ?, access_count = access_count + 1 "
                    "WHERE id = ?",
                    (format_timestamp(utcnow()), memory_id),
                )
                if cursor.rowcount == 0:
                    return None
                async with conn.execute(
                    f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
                ) as select:
                    row = await select.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError("get", exc, memory_id=memory_id) from exc
        return _row_to_entry(row) if row is not None else None

    async def query(
        self,
        agent_id: str,
        user_id: str | None = None,
        options: QueryOptions | None = None,
    ) -> list[MemoryEntry]:
        """Recall an agent's memories, optionally for one user.

        Ordered by importance (highest first), then newest first.
        """
        options = options or QueryOptions()
        options.validate()
        _require_agent(agent_id)

        where, params = self._scope_filters(agent_id, user_id, options)
        sql = f"SELECT {_COLUMNS} FROM memories WHERE {' AND '.join(where)} {_ORDER_BY} LIMIT ?"
        params.append(options.limit)
        return await self._fetch("query", sql, params)

    async def search_similar(
        self,
        agent_id: str,
        text: str,
        options: QueryOptions | None = None,
    ) -> list[MemoryEntry]:
        """Recall an agent's memories (any user) that match *text*.

        Scoped, filtered and ordered like :meth:`query`; matching is up to
        the configured ranker (content substring by default).
        """
        options = options or QueryOptions()
        options.validate()
        _require_agent(agent_id)
        if not isinstance(text, str) or not text.strip():
            raise MemoryValidationError("text", "search text must be a non-empty string", text)

        where, params = self._scope_filters(agent_id, None, options)
        predicate = self._ranker.candidate_filter(text)
        if predicate is not None:
            clause, extra = predicate
            where.append(clause)
            params.extend(extra)
            limit_sql = " LIMIT ?"
            params.append(options.limit)
        else:
            limit_sql = ""

        sql = f"SELECT {_COLUMNS} FROM memories WHERE {' AND '.join(where)} {_ORDER_BY}{limit_sql}"
        candidates = await self._fetch("search_similar", sql, params)
        results = self._ranker.rank(text, candidates)[: options.limit]
        log.debug(
            "memory_search",
            agent_id=agent_id,
            candidates=len(candidates),
            results=len(results),
        )
        return results

    async def count(
        self,
        agent_id: str,
        user_id: str | None = None,
        *,
        include_expired: bool = False,
    ) -> int:
        """Number of memories recallable in a scope."""
        _require_agent(agent_id)
        options = QueryOptions(include_expired=include_expired)
        where, params = self._scope_filters(agent_id, user_id, options)
        conn = self._reader_conn("count")
        try:
            async with conn.execute(
                f"SELECT COUNT(*) FROM memories WHERE {' AND '.join(where)}", params
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError("count", exc) from exc
        return int(row[0]) if row else 0

    async def stats(self, agent_id: str) -> dict[str, Any]:
        """Per-type and expiry totals for one agent."""
        _require_agent(agent_id)
        conn = self._reader_conn("stats")
        now_ts = format_timestamp(utcnow())
        by_type: dict[str, int] = {}
        try:
            async with conn.execute(
                "SELECT type, COUNT(*) FROM memories WHERE agent_id = ? GROUP BY type ORDER BY type",
                (agent_id,),
            ) as cursor:
                async for row in cursor:
                    by_type[row[0]] = row[1]
            async with conn.execute(
                "SELECT COUNT(*) FROM memories "
                "WHERE agent_id = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (agent_id, now_ts),
            ) as cursor:
                expired_row = await cursor.fetchone()
            async with conn.execute(
                "SELECT COUNT(DISTINCT user_id), COUNT(DISTINCT session_id) "
                "FROM memories WHERE agent_id = ?",
                (agent_id,),
            ) as cursor:
                scope_row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError("stats", exc) from exc
        return {
            "agent_id": agent_id,
            "total": sum(by_type.values()),
            "expired": expired_row[0] if expired_row else 0,
            "users": scope_row[0] if scope_row else 0,
            "sessions": scope_row[1] if scope_row else 0,
            "by_type": by_type,
        }

    # ---------------------------------------------------------------------------
    # Query building
    # ---------------------------------------------------------------------------

    @staticmethod
    def _scope_filters(
        agent_id: str,
        user_id: str | None,
        options: QueryOptions,
    ) -> tuple[list[str], list[Any]]:
        where = ["agent_id = ?"]
        params: list[Any] = [agent_id]

        if user_id:
            where.append("user_id = ?")
            params.append(user_id)

        if not options.include_expired:
            where.append("(expires_at IS NULL OR expires_at > ?)")
            params.append(format_timestamp(utcnow()))

        if options.min_importance is not None:
            where.append("importance >= ?")
            params.append(int(options.min_importance))

        if options.types:
            placeholders = ", ".join("?" for _ in options.types)
            where.append(f"type IN ({placeholders})")
            params.extend(t.value for t in options.types)

        if options.start_time is not None:
            where.append("created_at >= ?")
            params.append(format_timestamp(options.start_time))
        if options.end_time is not None:
            where.append("created_at <= ?")
            params.append(format_timestamp(options.end_time))

        for key, value in (options.metadata or {}).items():
            path = f'$."{key}"'
            if value is None:
                where.append("json_extract(metadata, ?) IS NULL")
                params.append(path)
            else:
                # json_extract folds true/1 and 1.0/1 together; json_type keeps them apart.
                where.append("json_type(metadata, ?) = ? AND json_extract(metadata, ?) = ?")
                params.extend((path, _json_type(value), path, value))

        return where, params

    async def _fetch(self, operation: str, sql: str, params: list[Any]) -> list[MemoryEntry]:
        conn = self._reader_conn(operation)
        try:
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(operation, exc) from exc
        return [_row_to_entry(row) for row in rows]
