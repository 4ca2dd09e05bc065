# src/convocore/storage/__init__.py
"""
State storage for convocore.

Exports the abstract store interface and the in-memory implementation.
"""

from .base import BaseStateStore
from .memory import InMemoryStateStore

__all__ = ["BaseStateStore", "InMemoryStateStore"]
