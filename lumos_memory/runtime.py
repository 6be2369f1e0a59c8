"""Lumos Memory — Process wiring.

``open_memory()`` builds the whole subsystem from a Settings object:

    1. Configure logging from ``settings.logging``
    2. Open the MemoryStore (``settings.store``)
    3. Build a MemoryManager for ``settings.manager``
    4. Start the PruneScheduler when ``settings.prune.enabled``

and tears it down in reverse order on exit.

Usage::

    async with open_memory(Settings.load()) as memory:
        await memory.manager.store_fact_memory("Ana prefers email")
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from lumos_memory.config import Settings, get_settings
from lumos_memory.logging import bind_memory_context, configure_logging, get_logger
from lumos_memory.memory.maintenance import PruneScheduler
from lumos_memory.memory.manager import MemoryManager
from lumos_memory.memory.ranking import Ranker
from lumos_memory.memory.store import MemoryStore

log = get_logger(__name__)


@dataclass
class MemoryRuntime:
    settings: Settings
    store: MemoryStore
    manager: MemoryManager
    scheduler: PruneScheduler | None = None  # None if prune.enabled=False


@asynccontextmanager
async def open_memory(
    settings: Settings | None = None,
    *,
    ranker: Ranker | None = None,
    setup_logging: bool = True,
) -> AsyncIterator[MemoryRuntime]:
    if settings is None:
        settings = get_settings()

    if setup_logging:
        configure_logging(
            level=settings.logging.level,
            format=settings.logging.format,
            log_file=str(settings.logging.file) if settings.logging.file else None,
        )

    store = MemoryStore.from_config(settings.store, ranker=ranker)
    await store.init()

    scheduler: PruneScheduler | None = None
    try:
        manager = MemoryManager(store, settings.manager)
        bind_memory_context(agent_id=manager.agent_id)

        if settings.prune.enabled:
            scheduler = PruneScheduler.from_config(store, settings.prune)
            await scheduler.start()

        log.info(
            "memory_ready",
            db_path=str(store.db_path),
            agent_id=manager.agent_id,
            prune_enabled=scheduler is not None,
        )
        yield MemoryRuntime(settings=settings, store=store, manager=manager, scheduler=scheduler)
    finally:
        log.info("memory_stopping")
        if scheduler is not None:
            await scheduler.stop()
        await store.close()
