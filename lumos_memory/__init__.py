"""Lumos Memory — Persistent agent memory over an embedded SQLite store.

Lets a conversational agent remember, recall, prioritise and forget discrete
pieces of information across sessions and users.

Architecture layers (bottom to top):
    1. Models    — MemoryEntry, MemoryType, Importance, QueryOptions
    2. Store     — aiosqlite persistence, indexing, filtered/ordered recall
    3. Manager   — per-agent facade with current user/session and policy defaults
    4. Maintenance — periodic pruning of expired entries
    5. Runtime   — open_memory() wires the layers above from Settings
    6. CLI       — operator commands for inspecting and maintaining a store
"""

__version__ = "0.1.0"
__schema_version__ = 1
__author__ = "Lumos Memory Contributors"
__license__ = "Apache-2.0"

from lumos_memory.memory.manager import MemoryManager
from lumos_memory.memory.models import Importance, MemoryEntry, MemoryType, QueryOptions
from lumos_memory.memory.store import MemoryStore

__all__ = [
    "__version__",
    "__schema_version__",
    "Importance",
    "MemoryEntry",
    "MemoryManager",
    "MemoryStore",
    "MemoryType",
    "QueryOptions",
]
