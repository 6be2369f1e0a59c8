"""Memory layer — data models.

All memory state is represented with plain Python dataclasses so that it
can be serialised to JSON and persisted in SQLite without an ORM.

Key classes
-----------
MemoryType      — classifies recall semantics (conversation, fact, ...)
Importance      — ordered retention priority, LOW < MEDIUM < HIGH < CRITICAL
MemoryEntry     — one persisted memory record
QueryOptions    — filters and cap for a recall query

Timestamps are timezone-aware UTC.  A naive datetime is taken to be UTC.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Iterable, Union

from lumos_memory.exceptions import MemoryValidationError

Scalar = Union[str, int, float, bool, None]

_SCALAR_TYPES = (str, int, float, bool, type(None))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MemoryType(str, Enum):
    """Category of a memory, used to filter recall."""

    CONVERSATION = "conversation"
    FACT = "fact"
    TASK = "task"
    PREFERENCE = "preference"

    @classmethod
    def parse(cls, value: "MemoryType | str") -> "MemoryType":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise MemoryValidationError(
                "type", f"unknown memory type (expected one of: {allowed})", value
            ) from None


class Importance(IntEnum):
    """Retention priority.  Recall orders by importance, highest first."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: "Importance | int | str") -> "Importance":
        if isinstance(value, str):
            if value.upper() in cls.__members__:
                return cls[value.upper()]
            if not value.isdigit():
                raise MemoryValidationError("importance", "unknown importance level", value)
            value = int(value)
        if isinstance(value, bool):
            raise MemoryValidationError("importance", "must be an integer level", value)
        try:
            return cls(value)
        except ValueError:
            raise MemoryValidationError(
                "importance", "must be between 1 (low) and 4 (critical)", value
            ) from None


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 so that string order equals time order in SQLite."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def validate_metadata(metadata: dict[str, Any] | None) -> dict[str, Scalar] | None:
    """Check that *metadata* is a flat map of string keys to JSON scalars."""
    if metadata is None:
        return None
    if not isinstance(metadata, dict):
        raise MemoryValidationError("metadata", "must be a mapping", type(metadata).__name__)
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            raise MemoryValidationError("metadata", "keys must be non-empty strings", key)
        if '"' in key:
            raise MemoryValidationError("metadata", "keys must not contain double quotes", key)
        if not isinstance(value, _SCALAR_TYPES):
            raise MemoryValidationError(
                "metadata", f"value for '{key}' is not a JSON scalar", type(value).__name__
            )
        if isinstance(value, float) and not math.isfinite(value):
            raise MemoryValidationError("metadata", f"value for '{key}' is not finite", value)
    return dict(metadata)


def validate_embedding(embedding: Iterable[float] | None) -> list[float] | None:
    if embedding is None:
        return None
    try:
        values = [float(x) for x in embedding]
    except (TypeError, ValueError):
        raise MemoryValidationError("embedding", "must be a sequence of numbers") from None
    if not all(math.isfinite(x) for x in values):
        raise MemoryValidationError("embedding", "contains NaN or infinite values")
    return values


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class MemoryEntry:
    """One memory record.

    ``id`` and ``created_at`` may be left empty; the store fills them in on
    insertion.  Content, metadata and embedding are never updated in place:
    an "update" is a delete followed by a fresh store.
    """

    agent_id: str
    content: str
    type: MemoryType = MemoryType.CONVERSATION
    importance: Importance = Importance.MEDIUM
    id: str = ""
    user_id: str | None = None
    session_id: str | None = None
    metadata: dict[str, Scalar] | None = None
    embedding: list[float] | None = None
    created_at: datetime | None = None
    last_accessed_at: datetime | None = None
    access_count: int = 0
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) <= (now or utcnow())

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation for API responses."""
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "type": MemoryType(self.type).value,
            "content": self.content,
            "metadata": dict(self.metadata) if self.metadata is not None else None,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "created_at": format_timestamp(self.created_at) if self.created_at else None,
            "last_accessed_at": (
                format_timestamp(self.last_accessed_at) if self.last_accessed_at else None
            ),
            "access_count": self.access_count,
            "importance": int(self.importance),
            "expires_at": format_timestamp(self.expires_at) if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MemoryEntry":
        """Inverse of :meth:`to_dict`.  Unknown keys are ignored."""
        return cls(
            id=d.get("id") or "",
            agent_id=d["agent_id"],
            user_id=d.get("user_id"),
            session_id=d.get("session_id"),
            type=MemoryType.parse(d.get("type", MemoryType.CONVERSATION.value)),
            content=d["content"],
            metadata=validate_metadata(d.get("metadata")),
            embedding=validate_embedding(d.get("embedding")),
            created_at=parse_timestamp(d.get("created_at")),
            last_accessed_at=parse_timestamp(d.get("last_accessed_at")),
            access_count=int(d.get("access_count", 0)),
            importance=Importance.parse(d.get("importance", Importance.MEDIUM)),
            expires_at=parse_timestamp(d.get("expires_at")),
        )


@dataclass
class QueryOptions:
    """Filters applied by ``MemoryStore.query`` and ``search_similar``."""

    limit: int = 50
    include_expired: bool = False
    min_importance: Importance | None = None
    types: tuple[MemoryType, ...] = ()
    start_time: datetime | None = None   # inclusive, on created_at
    end_time: datetime | None = None     # inclusive, on created_at
    metadata: dict[str, Scalar] | None = None  # equality match per key

    def __post_init__(self) -> None:
        self.types = tuple(MemoryType.parse(t) for t in self.types)
        if self.min_importance is not None:
            self.min_importance = Importance.parse(self.min_importance)

    def validate(self) -> None:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise MemoryValidationError("limit", "must be a positive integer", self.limit)
        if (
            self.start_time is not None
            and self.end_time is not None
            and ensure_utc(self.start_time) > ensure_utc(self.end_time)
        ):
            raise MemoryValidationError("time range", "start_time is after end_time")
        validate_metadata(self.metadata)


def default_query_options() -> QueryOptions:
    return QueryOptions()
