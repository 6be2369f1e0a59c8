"""Memory layer — background maintenance.

PruneScheduler removes expired memories on a fixed cadence so that pruning
competes with foreground writes a bounded number of times per hour instead
of once per stored memory.

Usage::

    scheduler = PruneScheduler(store, interval_seconds=3600)
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio

from lumos_memory.config import PruneConfig
from lumos_memory.exceptions import MemoryStoreError
from lumos_memory.logging import get_logger
from lumos_memory.memory.store import MemoryStore

log = get_logger(__name__)


class PruneScheduler:
    """Periodically calls ``MemoryStore.prune()``."""

    def __init__(self, store: MemoryStore, interval_seconds: float = 3600.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.total_pruned = 0

    @classmethod
    def from_config(cls, store: MemoryStore, config: PruneConfig) -> "PruneScheduler":
        return cls(store, interval_seconds=config.interval_seconds)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="memory_prune_scheduler")
        log.debug("prune_scheduler_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        log.debug("prune_scheduler_stopped", runs=self.runs, total_pruned=self.total_pruned)

    # ---------------------------------------------------------------------------
    # Work
    # ---------------------------------------------------------------------------

    async def run_once(self) -> int:
        """Prune now.  Store errors propagate to the caller."""
        removed = await self._store.prune()
        self.runs += 1
        self.total_pruned += removed
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except MemoryStoreError as exc:
                log.warning("memory_prune_failed", error=str(exc))
