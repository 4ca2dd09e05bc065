# src/convocore/upstream/__init__.py
"""
Reasoning service integration for convocore.
"""

from .base import BaseAgentDirectory, BaseReasoningClient, InMemoryAgentDirectory
from .http_client import HttpReasoningClient

__all__ = [
    "BaseAgentDirectory",
    "BaseReasoningClient",
    "HttpReasoningClient",
    "InMemoryAgentDirectory",
]
