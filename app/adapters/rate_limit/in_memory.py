"""In-memory sliding-window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  This is an accepted limitation for single-instance deployments and as a
  fallback, not a bug.
- Thread-safe: uses a lock around shared state. No await happens while the
  lock is held, so each call is also atomic for coroutines on one event loop.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field

from app.adapters.rate_limit.base import AbstractWindowStore, WindowSnapshot

logger = logging.getLogger(__name__)


@dataclass
class _KeyWindow:
    window_ms: int
    entries: deque[tuple[int, str]] = field(default_factory=deque)


class InMemoryWindowStore(AbstractWindowStore):
    """Process-local map from key to an ordered collection of timestamps.

    Entries are appended in arrival order, so the left end of each deque is
    always the oldest entry and pruning stops at the first survivor.
    """

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._windows: dict[str, _KeyWindow] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryWindowStore(keys={len(self._windows)})"

    def _prune_locked(self, window: _KeyWindow, now_ms: int) -> None:
        cutoff = now_ms - window.window_ms
        entries = window.entries
        while entries and entries[0][0] < cutoff:
            entries.popleft()

    async def slide_and_count(
        self,
        key: str,
        *,
        now_ms: int,
        window_ms: int,
        limit: int,
        member: str,
    ) -> WindowSnapshot:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = _KeyWindow(window_ms=window_ms)
                self._windows[key] = window
            window.window_ms = window_ms
            self._prune_locked(window, now_ms)

            entries = window.entries
            count = len(entries)

            if any(entry_member == member for _, entry_member in entries):
                return WindowSnapshot(count=count - 1, oldest_ms=entries[0][0], recorded=True)

            if count < limit:
                entries.append((now_ms, member))
                return WindowSnapshot(count=count, oldest_ms=entries[0][0], recorded=True)

            return WindowSnapshot(count=count, oldest_ms=entries[0][0], recorded=False)

    async def peek(self, key: str, *, now_ms: int, window_ms: int) -> WindowSnapshot:
        cutoff = now_ms - window_ms
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return WindowSnapshot(count=0, oldest_ms=None)
            live = [ts for ts, _ in window.entries if ts >= cutoff]
            return WindowSnapshot(count=len(live), oldest_ms=live[0] if live else None)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    async def cleanup(self, *, now_ms: int) -> int:
        """Prune every key and drop the ones left empty."""

        removed = 0
        with self._lock:
            for key in list(self._windows):
                window = self._windows[key]
                self._prune_locked(window, now_ms)
                if not window.entries:
                    del self._windows[key]
                    removed += 1

        if removed:
            logger.debug(
                "rate_limit.cleanup",
                extra={"backend": self.name, "removed_keys": removed, "keys": len(self._windows)},
            )
        return removed

    async def close(self) -> None:
        with self._lock:
            self._windows.clear()

    def key_count(self) -> int:
        with self._lock:
            return len(self._windows)
