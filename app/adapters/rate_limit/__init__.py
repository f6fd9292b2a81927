"""Sliding-window backing stores.

This package provides a small abstraction layer so a single instance can run
on an in-memory store while multi-instance deployments share a Redis store,
without changing the limiter or the API layer.
"""

from __future__ import annotations

from app.adapters.rate_limit.base import AbstractWindowStore, WindowSnapshot
from app.adapters.rate_limit.factory import create_window_store
from app.adapters.rate_limit.in_memory import InMemoryWindowStore
from app.adapters.rate_limit.redis_store import RedisWindowStore

__all__ = [
    "AbstractWindowStore",
    "InMemoryWindowStore",
    "RedisWindowStore",
    "WindowSnapshot",
    "create_window_store",
]
