# src/convocore/__init__.py
"""
convocore - Conversation memory synchronization and session lifecycle engine.

This library selects the prior exchanges relevant to each new message,
tracks every session's lifecycle, phase and quality over time, and keeps
the size-bounded memory blocks held by an external reasoning service
consistent after every turn.
"""

from importlib.metadata import PackageNotFoundError, version

from .api import UPSTREAM_FAILURE_REPLY, ConversationEngine
from .config import EngineConfig, load_config
from .exceptions import (ConfigError, ConsistencyError, ConvoCoreError,
                         IllegalTransitionError, RotationError,
                         SessionNotFoundError, SyncTimeoutError,
                         UpstreamError, ValidationError)
from .ledger import TurnLedger
from .models import (AgentMapping, BlockWriteOutcome,
                     ContextEnrichmentResult, ContinuityRecord,
                     ConversationHistory, Intent, MemoryBlock,
                     MemorySyncResult, QualityMetadata, SessionState,
                     SessionStatus, SessionTransition, SyncStatus,
                     TransitionType, TriggerSource, Turn, TurnReply)

try:
    __version__ = version("convocore")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "0.0.0"

__all__ = [
    "AgentMapping",
    "BlockWriteOutcome",
    "ConfigError",
    "ConsistencyError",
    "ContextEnrichmentResult",
    "ContinuityRecord",
    "ConversationEngine",
    "ConversationHistory",
    "ConvoCoreError",
    "EngineConfig",
    "IllegalTransitionError",
    "Intent",
    "MemoryBlock",
    "MemorySyncResult",
    "QualityMetadata",
    "RotationError",
    "SessionNotFoundError",
    "SessionState",
    "SessionStatus",
    "SessionTransition",
    "SyncStatus",
    "SyncTimeoutError",
    "TransitionType",
    "TriggerSource",
    "Turn",
    "TurnLedger",
    "TurnReply",
    "UPSTREAM_FAILURE_REPLY",
    "UpstreamError",
    "ValidationError",
    "load_config",
    "__version__",
]
