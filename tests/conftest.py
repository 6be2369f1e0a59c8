"""Shared pytest fixtures for the lumos-memory test suite."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import structlog

import lumos_memory.config as config_module
from lumos_memory.config import ManagerConfig, Settings, override_settings
from lumos_memory.memory.manager import MemoryManager
from lumos_memory.memory.store import MemoryStore


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Generator[Settings, None, None]:
    settings = Settings(
        store={"db_path": str(tmp_path / "memory.db")},
        logging={"level": "debug", "format": "console"},
    )
    original = config_module._settings
    override_settings(settings)
    yield settings
    config_module._settings = original


# ---------------------------------------------------------------------------
# Store / manager
# ---------------------------------------------------------------------------


@pytest.fixture
async def store(tmp_path: Path) -> AsyncGenerator[MemoryStore, None]:
    s = MemoryStore(tmp_path / "memory_test.db")
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def manager(store: MemoryStore) -> MemoryManager:
    return MemoryManager(
        store,
        ManagerConfig(agent_id="test-agent", default_user_id="test-user"),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture
def restore_logging() -> Generator[None, None, None]:
    """Undo configure_logging() so later tests keep pytest's handlers."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()
