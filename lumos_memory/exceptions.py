"""Lumos Memory — Exception hierarchy.

All exceptions raised by the subsystem inherit from LumosError so that callers
can catch the full family with a single except clause when needed.

Hierarchy:
    LumosError
    └── MemoryStoreError
        ├── MemoryValidationError
        └── PersistenceError
            └── TransactionError

A missing memory ID is not an error: ``MemoryStore.get_by_id`` returns None
and the single-row mutators return False.
"""

from __future__ import annotations

from typing import Any


class LumosError(Exception):
    """Base exception for all Lumos Memory errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


class MemoryStoreError(LumosError):
    """Base for all memory store errors."""


class MemoryValidationError(MemoryStoreError):
    """Input was rejected before reaching the database."""

    def __init__(self, field: str, reason: str, value: Any = None) -> None:
        super().__init__(
            f"Invalid {field}: {reason}",
            context={"field": field, "reason": reason, "value": value},
        )
        self.field = field
        self.reason = reason


class PersistenceError(MemoryStoreError):
    """A SQLite read or write failed (I/O error, constraint violation)."""

    def __init__(
        self,
        operation: str,
        cause: BaseException | str,
        memory_id: str | None = None,
    ) -> None:
        target = f" (memory '{memory_id}')" if memory_id else ""
        super().__init__(
            f"Memory {operation} failed{target}: {cause}",
            context={"operation": operation, "memory_id": memory_id, "cause": str(cause)},
        )
        self.operation = operation
        self.memory_id = memory_id


class TransactionError(PersistenceError):
    """A multi-statement operation failed and was rolled back in full."""

    def __init__(
        self,
        operation: str,
        cause: BaseException | str,
        memory_id: str | None = None,
        index: int | None = None,
    ) -> None:
        super().__init__(operation, cause, memory_id=memory_id)
        if index is not None:
            self.message = f"{self.message} [entry #{index}]"
            self.args = (self.message,)
        self.context["index"] = index
        self.index = index
