# src/convocore/memory/__init__.py
"""
Memory block rendering and synchronization for convocore.
"""

from .blocks import (context_correlation, enforce_limit,
                     render_archive_message, render_conversation_history,
                     render_restoration_message, should_write_summary,
                     target_blocks)
from .sync import (BaseBlockWriter, MemorySyncCoordinator,
                   ReasoningServiceBlockWriter)

__all__ = [
    "BaseBlockWriter",
    "MemorySyncCoordinator",
    "ReasoningServiceBlockWriter",
    "context_correlation",
    "enforce_limit",
    "render_archive_message",
    "render_conversation_history",
    "render_restoration_message",
    "should_write_summary",
    "target_blocks",
]
