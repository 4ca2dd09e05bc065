# src/convocore/storage/base.py
"""
Abstract Base Class for state stores.

The engine keeps live session state, transition histories and
continuity records behind this small key/value interface so that the
backing store can be swapped without touching the lifecycle logic.
"""

import abc
import asyncio
from typing import Any, List, Optional


class BaseStateStore(abc.ABC):
    """
    Abstract key/value store used by the session and continuity layers.

    Implementations must return copies from :meth:`get`; callers persist
    changes explicitly with :meth:`put`.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Retrieve the value stored under ``key``.

        Returns:
            A copy of the stored value, or None if the key is absent.
        """
        pass

    @abc.abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        pass

    @abc.abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove ``key`` from the store.

        Returns:
            True if the key existed, False otherwise.
        """
        pass

    @abc.abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with ``prefix``."""
        pass

    @abc.abstractmethod
    def lock_for(self, key: str) -> asyncio.Lock:
        """
        Return the lock serializing read-modify-write cycles on ``key``.

        The same lock object is returned for the same key for the
        lifetime of the store.
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the store."""
        pass
