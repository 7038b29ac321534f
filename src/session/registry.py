"""
Session registry.

Process-local store of live orchestrators keyed by their handle.  The
handle stays fixed for the lifetime of the browser tab, across "new
session" restarts that replace the underlying chat session.

Sessions idle for longer than the TTL are dropped, and the least recently
used session is evicted when the registry is full.  Both limits come from
``Settings`` (``session_ttl_seconds``, ``max_sessions``).

For multi-process deployments the registry would need a shared store;
orchestrators hold asyncio tasks, so they are not picklable as-is.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any

from src.core.config import get_settings
from src.core.logging import get_logger
from src.session.orchestrator import SessionOrchestrator

logger = get_logger(__name__)


# ── Registry entry ──────────────────────────────────────


@dataclass
class RegistryEntry:
    orchestrator: SessionOrchestrator
    last_access: float

    def is_expired(self, ttl: float) -> bool:
        return (time.time() - self.last_access) > ttl


# ── Registry ────────────────────────────────────────────


class SessionRegistry:
    """Thread-safe handle -> orchestrator map with idle expiry.

    Parameters
    ----------
    ttl : float
        Seconds a session may sit unused before it is dropped.
    max_size : int
        Maximum number of live sessions. The least recently used one is
        evicted to make room.
    """

    def __init__(self, ttl: float | None = None, max_size: int | None = None) -> None:
        settings = get_settings()
        self._ttl = ttl if ttl is not None else settings.session_ttl_seconds
        self._max_size = max_size if max_size is not None else settings.max_sessions
        # Insertion order is least recently used first
        self._store: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()
        self._evicted = 0
        self._expired = 0

    def create(self, orchestrator: SessionOrchestrator) -> str:
        handle = orchestrator.handle
        with self._lock:
            self._drop_expired()
            self._store.pop(handle, None)
            while self._store and len(self._store) >= self._max_size:
                self._evict_lru()
            self._store[handle] = RegistryEntry(orchestrator, time.time())
            size = len(self._store)
        logger.info("Session registered  handle=%s  size=%d", handle, size)
        return handle

    def get(self, handle: str) -> SessionOrchestrator:
        """Look up a session and mark it used; ``KeyError`` when unknown or expired."""
        with self._lock:
            entry = self._store.pop(handle, None)
            if entry is None:
                raise KeyError(f"Unknown session '{handle}'")
            if entry.is_expired(self._ttl):
                self._expired += 1
                logger.info("Session expired  handle=%s", handle)
                raise KeyError(f"Unknown session '{handle}'")
            entry.last_access = time.time()
            self._store[handle] = entry
            return entry.orchestrator

    def remove(self, handle: str) -> bool:
        """Drop a session. Returns False when it was not registered."""
        with self._lock:
            removed = self._store.pop(handle, None)
        if removed is not None:
            logger.info("Session removed  handle=%s", handle)
        return removed is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    def cleanup_expired(self) -> int:
        """Remove all idle-expired sessions. Returns count removed."""
        with self._lock:
            return self._drop_expired()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._store),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "evicted": self._evicted,
                "expired": self._expired,
            }

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for e in self._store.values() if not e.is_expired(self._ttl))

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            entry = self._store.get(handle)
            return entry is not None and not entry.is_expired(self._ttl)

    # ── Internals (caller holds the lock) ───────────────

    def _drop_expired(self) -> int:
        expired = [h for h, e in self._store.items() if e.is_expired(self._ttl)]
        for handle in expired:
            del self._store[handle]
        if expired:
            self._expired += len(expired)
            logger.info("Dropped %d idle session(s)", len(expired))
        return len(expired)

    def _evict_lru(self) -> None:
        handle = next(iter(self._store))
        del self._store[handle]
        self._evicted += 1
        logger.info("Session evicted (registry full)  handle=%s", handle)


# ── Module-level singleton ──────────────────────────────

_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    """Return the global session registry."""
    return _registry
