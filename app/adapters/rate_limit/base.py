"""Backing store interfaces for the sliding-window rate limiter.

The limiter facade depends on this abstraction (not the concrete store) so the
deployment can choose between a process-local store and a shared Redis
instance through configuration alone.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowSnapshot:
    """Occupancy of one key's sliding window as seen by an atomic store call.

    Attributes:
        count: Entries inside the window before the current request.
        oldest_ms: Timestamp of the oldest surviving entry (None when empty).
        recorded: Whether the current request was added to the window.
    """

    count: int
    oldest_ms: int | None
    recorded: bool = False


class AbstractWindowStore(ABC):
    """Interface for sliding-window backing stores.

    Every mutating method must be atomic per key: no caller ever performs an
    unguarded read-then-write sequence against the store.
    """

    name: str = "abstract"

    @abstractmethod
    async def slide_and_count(
        self,
        key: str,
        *,
        now_ms: int,
        window_ms: int,
        limit: int,
        member: str,
    ) -> WindowSnapshot:
        """Prune, count and (if under limit) record a request in one step.

        Args:
            key: Fully namespaced rate limit key.
            now_ms: Current time in milliseconds.
            window_ms: Sliding window length in milliseconds.
            limit: Maximum entries allowed inside the window.
            member: Unique id of this request; recording the same member twice
                must not create a second entry.

        Returns:
            WindowSnapshot describing the window before this request.
        """
        raise NotImplementedError

    @abstractmethod
    async def peek(self, key: str, *, now_ms: int, window_ms: int) -> WindowSnapshot:
        """Return the current window occupancy without recording anything."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove every entry under ``key``. Deleting a missing key is a no-op."""
        raise NotImplementedError

    async def cleanup(self, *, now_ms: int) -> int:
        """Reclaim expired entries across all keys.

        Stores with native TTL need nothing here.

        Returns:
            Number of keys removed.
        """
        return 0

    async def ping(self) -> bool:
        """Report whether the store is reachable."""
        return True

    async def close(self) -> None:
        """Release connections and state held by the store."""
        return None
