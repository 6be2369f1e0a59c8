"""Memory layer — SQLite memory store, per-agent manager, rankers, pruning."""

from lumos_memory.memory.maintenance import PruneScheduler
from lumos_memory.memory.manager import MemoryManager, MemoryScope
from lumos_memory.memory.models import (
    Importance,
    MemoryEntry,
    MemoryType,
    QueryOptions,
    default_query_options,
)
from lumos_memory.memory.ranking import Ranker, SubstringRanker
from lumos_memory.memory.store import MemoryStore

__all__ = [
    "Importance",
    "MemoryEntry",
    "MemoryManager",
    "MemoryScope",
    "MemoryStore",
    "MemoryType",
    "PruneScheduler",
    "QueryOptions",
    "Ranker",
    "SubstringRanker",
    "default_query_options",
]
