"""Unit tests — memory/manager.py (MemoryManager)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from lumos_memory.config import ManagerConfig
from lumos_memory.exceptions import MemoryValidationError
from lumos_memory.memory.manager import MemoryManager, MemoryScope
from lumos_memory.memory.models import Importance, MemoryType, QueryOptions
from lumos_memory.memory.store import MemoryStore


@pytest.mark.unit
class TestScope:
    def test_initial_scope_from_config(self, manager: MemoryManager) -> None:
        assert manager.agent_id == "test-agent"
        assert manager.current_user_id == "test-user"
        assert manager.current_session_id
        assert isinstance(manager.scope, MemoryScope)

    def test_default_config(self, store: MemoryStore) -> None:
        m = MemoryManager(store)
        assert m.agent_id == "default-agent"
        assert m.current_user_id == "default-user"

    def test_start_new_session_rotates_id(self, manager: MemoryManager) -> None:
        before = manager.current_session_id
        returned = manager.start_new_session()
        assert returned == manager.current_session_id
        assert returned != before

    def test_scope_is_replaced_not_mutated(self, manager: MemoryManager) -> None:
        old_scope = manager.scope
        manager.set_current_user("someone-else")
        assert old_scope.user_id == "test-user"
        assert manager.scope.user_id == "someone-else"

    def test_set_empty_user_rejected(self, manager: MemoryManager) -> None:
        with pytest.raises(MemoryValidationError):
            manager.set_current_user("")
        assert manager.current_user_id == "test-user"


@pytest.mark.unit
class TestStoreAndRecall:
    async def test_store_and_recall(self, manager: MemoryManager, store: MemoryStore) -> None:
        memory_id = await manager.store_memory(
            "This is a test memory", MemoryType.CONVERSATION, Importance.MEDIUM
        )
        assert memory_id

        memories = await manager.recall_by_type(MemoryType.CONVERSATION, 10)
        assert len(memories) == 1
        assert memories[0].content == "This is a test memory"
        assert memories[0].type is MemoryType.CONVERSATION
        assert memories[0].importance is Importance.MEDIUM
        assert memories[0].agent_id == "test-agent"
        assert memories[0].user_id == "test-user"
        assert memories[0].session_id == manager.current_session_id

        conv_id = await manager.store_conversation_memory("What is the weather today?", "user")
        history = await manager.recall_conversation_history(10)
        assert len(history) == 2
        conv = next(m for m in history if m.id == conv_id)
        assert conv.content == "What is the weather today?"
        assert conv.metadata == {"role": "user"}

        fact_id = await manager.store_fact_memory("Beijing is the capital of China")
        facts = await manager.recall_by_type(MemoryType.FACT, 10)
        assert len(facts) == 1
        assert facts[0].content == "Beijing is the capital of China"
        assert facts[0].importance is Importance.HIGH

        similar = await manager.recall_recent_similar("capital", 10)
        assert len(similar) >= 1

        assert await manager.mark_critical(fact_id) is True
        updated = await store.get_by_id(fact_id)
        assert updated is not None
        assert updated.importance is Importance.CRITICAL

    async def test_empty_content_rejected(self, manager: MemoryManager, store: MemoryStore) -> None:
        with pytest.raises(MemoryValidationError):
            await manager.store_memory("", MemoryType.FACT)
        assert await store.count("test-agent") == 0

    async def test_string_type_and_importance(self, manager: MemoryManager) -> None:
        await manager.store_memory("buy milk", "task", "low")
        tasks = await manager.recall_by_type("task")
        assert tasks[0].importance is Importance.LOW

    async def test_unknown_type_rejected(self, manager: MemoryManager) -> None:
        with pytest.raises(MemoryValidationError):
            await manager.store_memory("x", "dream")

    async def test_recall_memories_with_options(self, manager: MemoryManager) -> None:
        await manager.store_memory("low one", MemoryType.FACT, Importance.LOW)
        await manager.store_memory("critical one", MemoryType.FACT, Importance.CRITICAL)
        results = await manager.recall_memories(QueryOptions(min_importance=Importance.HIGH))
        assert [m.content for m in results] == ["critical one"]

    async def test_non_positive_limit_uses_default(self, store: MemoryStore) -> None:
        m = MemoryManager(store, ManagerConfig(agent_id="a", default_user_id="u", default_limit=3))
        for i in range(5):
            await m.store_conversation_memory(f"turn {i}", "user")
        assert len(await m.recall_conversation_history(0)) == 3
        assert len(await m.recall_conversation_history(-1)) == 3
        assert len(await m.recall_conversation_history(4)) == 4

    async def test_similar_spans_users(self, manager: MemoryManager) -> None:
        await manager.store_fact_memory("alice likes green tea")
        manager.set_current_user("bob")
        await manager.store_fact_memory("bob likes black tea")
        results = await manager.recall_recent_similar("tea")
        assert {m.content for m in results} == {"alice likes green tea", "bob likes black tea"}

    async def test_similar_empty_text_rejected(self, manager: MemoryManager) -> None:
        with pytest.raises(MemoryValidationError):
            await manager.recall_recent_similar("")


@pytest.mark.unit
class TestSessions:
    async def test_memories_keep_their_session(self, manager: MemoryManager) -> None:
        first_session = manager.current_session_id
        await manager.store_memory("Memory in first session", MemoryType.CONVERSATION)

        second_session = manager.start_new_session()
        await manager.store_memory("Memory in second session", MemoryType.CONVERSATION)

        memories = await manager.recall_memories(QueryOptions(types=(MemoryType.CONVERSATION,)))
        assert len(memories) == 2
        by_session = {m.session_id: m.content for m in memories}
        assert by_session[first_session] == "Memory in first session"
        assert by_session[second_session] == "Memory in second session"


@pytest.mark.unit
class TestUserSwitch:
    async def test_recall_is_per_user(self, store: MemoryStore) -> None:
        m = MemoryManager(store, ManagerConfig(agent_id="test-agent", default_user_id="user1"))
        await m.store_memory("User1's memory", MemoryType.CONVERSATION)
        m.set_current_user("user2")
        await m.store_memory("User2's memory", MemoryType.CONVERSATION)

        m.set_current_user("user1")
        assert [e.content for e in await m.recall_by_type(MemoryType.CONVERSATION, 10)] == [
            "User1's memory"
        ]
        m.set_current_user("user2")
        assert [e.content for e in await m.recall_by_type(MemoryType.CONVERSATION, 10)] == [
            "User2's memory"
        ]


@pytest.mark.unit
class TestPreferences:
    async def test_preference_defaults(self, manager: MemoryManager) -> None:
        memory_id = await manager.store_preference_memory("Replies in French", "language")
        prefs = await manager.recall_by_type(MemoryType.PREFERENCE)
        assert len(prefs) == 1
        pref = prefs[0]
        assert pref.id == memory_id
        assert pref.importance is Importance.HIGH
        assert pref.metadata == {"category": "language"}
        assert pref.session_id is None
        assert pref.expires_at is None

    async def test_preference_ignores_default_ttl(self, store: MemoryStore) -> None:
        m = MemoryManager(store, ManagerConfig(default_ttl_seconds=60))
        await m.store_preference_memory("Dark mode", "ui")
        prefs = await m.recall_by_type(MemoryType.PREFERENCE)
        assert prefs[0].expires_at is None


@pytest.mark.unit
class TestExpiry:
    async def test_default_ttl_applied(self, store: MemoryStore) -> None:
        m = MemoryManager(store, ManagerConfig(default_ttl_seconds=3600))
        before = datetime.now(timezone.utc)
        await m.store_fact_memory("short-lived")
        entry = (await m.recall_by_type(MemoryType.FACT))[0]
        assert entry.expires_at is not None
        assert before + timedelta(seconds=3590) < entry.expires_at
        assert entry.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=3600)

    async def test_no_ttl_by_default(self, manager: MemoryManager) -> None:
        await manager.store_fact_memory("forever")
        entry = (await manager.recall_by_type(MemoryType.FACT))[0]
        assert entry.expires_at is None

    async def test_explicit_ttl_overrides_default(self, store: MemoryStore) -> None:
        m = MemoryManager(store, ManagerConfig(default_ttl_seconds=3600))
        await m.store_memory("brief", MemoryType.TASK, ttl_seconds=5)
        entry = (await m.recall_by_type(MemoryType.TASK))[0]
        assert entry.expires_at is not None
        assert entry.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=5)

    async def test_expired_memories_not_recalled(self, manager: MemoryManager, store: MemoryStore) -> None:
        await manager.store_memory("fleeting", MemoryType.TASK, ttl_seconds=0.001)
        await asyncio.sleep(0.01)
        await manager.store_memory("lasting", MemoryType.TASK)
        results = await manager.recall_by_type(MemoryType.TASK)
        assert [m.content for m in results] == ["lasting"]
        assert await store.prune() == 1

    @pytest.mark.parametrize("ttl", [0, -10])
    async def test_non_positive_ttl_rejected(self, manager: MemoryManager, ttl: float) -> None:
        with pytest.raises(MemoryValidationError):
            await manager.store_memory("x", MemoryType.TASK, ttl_seconds=ttl)


@pytest.mark.unit
class TestImportanceAndForget:
    async def test_mark_important(self, manager: MemoryManager) -> None:
        memory_id = await manager.store_conversation_memory("remember this", "user")
        assert await manager.mark_important(memory_id) is True
        entry = (await manager.recall_conversation_history())[0]
        assert entry.importance is Importance.HIGH

    async def test_mark_missing_returns_false(self, manager: MemoryManager) -> None:
        assert await manager.mark_important("ghost") is False
        assert await manager.mark_critical("ghost") is False

    async def test_forget_memory(self, manager: MemoryManager) -> None:
        memory_id = await manager.store_memory("Memory to forget", MemoryType.CONVERSATION)
        assert await manager.forget_memory(memory_id) is True
        assert await manager.recall_by_type(MemoryType.CONVERSATION) == []
        assert await manager.forget_memory(memory_id) is False

    async def test_forget_all_user_memories(self, manager: MemoryManager, store: MemoryStore) -> None:
        await manager.store_memory("mine 1", MemoryType.CONVERSATION)
        await manager.store_fact_memory("mine 2")
        manager.set_current_user("other-user")
        await manager.store_fact_memory("theirs")
        manager.set_current_user("test-user")

        assert await manager.forget_all_user_memories() == 2
        assert await manager.recall_memories() == []
        assert await store.count("test-agent") == 1
