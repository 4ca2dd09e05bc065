# src/convocore/storage/memory.py
"""
In-memory state store.

A thread-safe dictionary-backed implementation of
:class:`~convocore.storage.base.BaseStateStore`. Values are deep-copied on
the way in and out, so no caller ever shares a mutable object with the
store, and every key has its own ``asyncio.Lock`` for read-modify-write
cycles.

Usage:
    store = InMemoryStateStore()
    async with store.lock_for("session:abc"):
        state = await store.get("session:abc")
        ...
        await store.put("session:abc", state)
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from typing import Any, Dict, List, Optional

from .base import BaseStateStore

logger = logging.getLogger(__name__)


class InMemoryStateStore(BaseStateStore):
    """Dictionary-backed state store guarded by an RLock."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock = threading.RLock()
        self._stats = {"gets": 0, "hits": 0, "puts": 0, "deletes": 0}

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            self._stats["gets"] += 1
            if key not in self._data:
                return None
            self._stats["hits"] += 1
            return copy.deepcopy(self._data[key])

    async def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._stats["puts"] += 1
            self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        with self._lock:
            self._stats["deletes"] += 1
            existed = self._data.pop(key, None) is not None
        if existed:
            logger.debug("Deleted key '%s' from in-memory store", key)
        return existed

    async def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def lock_for(self, key: str) -> asyncio.Lock:
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {**self._stats, "items": len(self._data)}

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
