"""Memory layer — per-agent memory manager.

MemoryManager gives one agent instance a stateful view of a shared
MemoryStore: it remembers the current user and session so callers do not
have to pass IDs on every call, and it applies the importance/expiry
defaults for each kind of memory.

Policy defaults:
    conversation  MEDIUM, metadata {"role": ...}, default TTL applies
    fact          HIGH, default TTL applies
    preference    HIGH, metadata {"category": ...}, no session, never expires

Errors raised by the store propagate unchanged; nothing is retried here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from lumos_memory.config import ManagerConfig
from lumos_memory.exceptions import MemoryValidationError
from lumos_memory.logging import get_logger
from lumos_memory.memory.models import (
    Importance,
    MemoryEntry,
    MemoryType,
    QueryOptions,
    Scalar,
    utcnow,
)
from lumos_memory.memory.store import MemoryStore

log = get_logger(__name__)


def new_session_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class MemoryScope:
    """The (agent, user, session) triple stamped onto new memories."""

    agent_id: str
    user_id: str
    session_id: str


class MemoryManager:
    """Stateful memory facade for one agent.

    Usage::

        manager = MemoryManager(store, ManagerConfig(agent_id="support-bot"))
        await manager.store_conversation_memory("Hi, I'm Ana", role="user")
        await manager.store_fact_memory("Ana prefers email over phone")
        history = await manager.recall_conversation_history(limit=20)

        manager.set_current_user("user-42")
        manager.start_new_session()
    """

    def __init__(self, store: MemoryStore, config: ManagerConfig | None = None) -> None:
        self._store = store
        self._config = config or ManagerConfig()
        # Replaced wholesale, never mutated, so every call sees one consistent scope.
        self._scope = MemoryScope(
            agent_id=self._config.agent_id,
            user_id=self._config.default_user_id,
            session_id=new_session_id(),
        )

    # ---------------------------------------------------------------------------
    # Scope
    # ---------------------------------------------------------------------------

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def scope(self) -> MemoryScope:
        return self._scope

    @property
    def agent_id(self) -> str:
        return self._scope.agent_id

    @property
    def current_user_id(self) -> str:
        return self._scope.user_id

    @property
    def current_session_id(self) -> str:
        return self._scope.session_id

    def start_new_session(self) -> str:
        """Rotate the session ID.  Memories already stored keep their old one."""
        previous = self._scope.session_id
        self._scope = replace(self._scope, session_id=new_session_id())
        log.debug(
            "memory_session_started",
            agent_id=self._scope.agent_id,
            previous_session_id=previous,
            session_id=self._scope.session_id,
        )
        return self._scope.session_id

    def set_current_user(self, user_id: str) -> None:
        """Switch user.  The previous user's memories stay addressable."""
        if not isinstance(user_id, str) or not user_id:
            raise MemoryValidationError("user_id", "must be a non-empty string", user_id)
        self._scope = replace(self._scope, user_id=user_id)

    # ---------------------------------------------------------------------------
    # Store
    # ---------------------------------------------------------------------------

    async def store_memory(
        self,
        content: str,
        memory_type: MemoryType | str,
        importance: Importance | int = Importance.MEDIUM,
        *,
        metadata: dict[str, Scalar] | None = None,
        ttl_seconds: float | None = None,
    ) -> str:
        """Store a memory in the current scope and return its ID.

        ``ttl_seconds`` overrides ``ManagerConfig.default_ttl_seconds``.
        """
        if not isinstance(content, str) or not content:
            raise MemoryValidationError("content", "memory content cannot be empty")
        scope = self._scope
        entry = MemoryEntry(
            agent_id=scope.agent_id,
            user_id=scope.user_id,
            session_id=scope.session_id,
            type=MemoryType.parse(memory_type),
            content=content,
            importance=Importance.parse(importance),
            metadata=metadata,
            created_at=utcnow(),
            expires_at=self._expires_at(ttl_seconds),
        )
        return await self._store.store(entry)

    async def store_conversation_memory(self, content: str, role: str) -> str:
        return await self.store_memory(
            content,
            MemoryType.CONVERSATION,
            Importance.MEDIUM,
            metadata={"role": role},
        )

    async def store_fact_memory(self, fact: str) -> str:
        return await self.store_memory(fact, MemoryType.FACT, Importance.HIGH)

    async def store_preference_memory(self, preference: str, category: str) -> str:
        """Store a long-lived user preference (no session, no expiry)."""
        if not isinstance(preference, str) or not preference:
            raise MemoryValidationError("content", "memory content cannot be empty")
        scope = self._scope
        entry = MemoryEntry(
            agent_id=scope.agent_id,
            user_id=scope.user_id,
            type=MemoryType.PREFERENCE,
            content=preference,
            importance=Importance.HIGH,
            metadata={"category": category},
            created_at=utcnow(),
        )
        return await self._store.store(entry)

    # ---------------------------------------------------------------------------
    # Recall
    # ---------------------------------------------------------------------------

    async def recall_memories(self, options: QueryOptions | None = None) -> list[MemoryEntry]:
        """Query the current agent/user with arbitrary options."""
        options = options or QueryOptions(limit=self._config.default_limit)
        scope = self._scope
        return await self._store.query(scope.agent_id, scope.user_id, options)

    async def recall_by_type(self, memory_type: MemoryType | str, limit: int = 0) -> list[MemoryEntry]:
        options = QueryOptions(limit=self._limit(limit), types=(MemoryType.parse(memory_type),))
        return await self.recall_memories(options)

    async def recall_conversation_history(self, limit: int = 0) -> list[MemoryEntry]:
        """Conversation turns in recall order (importance, then newest first).

        Sort by ``created_at`` for a chronological transcript.
        """
        return await self.recall_by_type(MemoryType.CONVERSATION, limit)

    async def recall_recent_similar(self, text: str, limit: int = 0) -> list[MemoryEntry]:
        """Memories of this agent (any user) matching *text*."""
        options = QueryOptions(limit=self._limit(limit))
        return await self._store.search_similar(self._scope.agent_id, text, options)

    # ---------------------------------------------------------------------------
    # Importance
    # ---------------------------------------------------------------------------

    async def mark_important(self, memory_id: str) -> bool:
        return await self._store.update_importance(memory_id, Importance.HIGH)

    async def mark_critical(self, memory_id: str) -> bool:
        return await self._store.update_importance(memory_id, Importance.CRITICAL)

    # ---------------------------------------------------------------------------
    # Forget
    # ---------------------------------------------------------------------------

    async def forget_memory(self, memory_id: str) -> bool:
        return await self._store.delete(memory_id)

    async def forget_all_user_memories(self) -> int:
        """Delete every memory of the current user for this agent."""
        scope = self._scope
        return await self._store.delete_by_agent_and_user(scope.agent_id, scope.user_id)

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    def _limit(self, limit: int) -> int:
        return limit if limit > 0 else self._config.default_limit

    def _expires_at(self, ttl_seconds: float | None) -> datetime | None:
        ttl = ttl_seconds if ttl_seconds is not None else self._config.default_ttl_seconds
        if ttl is None:
            return None
        if ttl <= 0:
            raise MemoryValidationError("ttl_seconds", "must be positive", ttl)
        return utcnow() + timedelta(seconds=ttl)
