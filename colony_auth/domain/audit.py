"""Append-only audit trail of authentication outcomes."""

from __future__ import annotations

from threading import Lock


class AuditTrail:
    """Thread-safe, append-only sequence of audit lines."""

    def __init__(self) -> None:
        self._entries: list[str] = []
        self._lock = Lock()

    def append(self, *lines: str) -> None:
        """Append one or more lines as a contiguous block."""
        with self._lock:
            self._entries.extend(lines)

    def snapshot(self) -> tuple[str, ...]:
        """Return an immutable copy of the trail in insertion order."""
        with self._lock:
            return tuple(self._entries)

    def page(self, start: int, limit: int) -> tuple[list[str], int | None]:
        """Return up to ``limit`` lines from ``start`` and the next start offset."""
        with self._lock:
            items = self._entries[start : start + limit]
            end = start + len(items)
            next_start = end if end < len(self._entries) else None
        return items, next_start
