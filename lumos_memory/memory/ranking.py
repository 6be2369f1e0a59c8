"""Memory layer — recall rankers.

A Ranker decides which in-scope memories match a recall text and in what
order.  The store asks it for an optional SQL predicate first so that the
result cap can stay inside SQLite, then hands it the fetched candidates.

The shipped ranker matches on content substrings.  The ``embedding`` column
is stored but not used yet; a vector ranker can implement the same protocol
by returning ``None`` from ``candidate_filter`` and scoring embeddings in
``rank``.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from lumos_memory.memory.models import MemoryEntry

_LIKE_ESCAPE = "\\"


@runtime_checkable
class Ranker(Protocol):
    def candidate_filter(self, text: str) -> tuple[str, list[Any]] | None:
        """SQL predicate (and its parameters) narrowing the candidates, or None."""

    def rank(self, text: str, candidates: Sequence[MemoryEntry]) -> list[MemoryEntry]:
        """Return the matching candidates, best first."""


def escape_like(text: str) -> str:
    return (
        text.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


class SubstringRanker:
    """Keyword recall: content contains the text, case-insensitively.

    SQLite's LIKE folds ASCII case only, so ``rank`` re-checks with
    ``str.casefold`` and keeps the store's importance/recency order.
    """

    def candidate_filter(self, text: str) -> tuple[str, list[Any]]:
        return f"content LIKE ? ESCAPE '{_LIKE_ESCAPE}'", [f"%{escape_like(text)}%"]

    def rank(self, text: str, candidates: Sequence[MemoryEntry]) -> list[MemoryEntry]:
        needle = text.casefold()
        return [c for c in candidates if needle in c.content.casefold()]
