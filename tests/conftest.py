# tests/conftest.py
"""
Shared fixtures for the convocore test suite.

Provides in-memory fakes of the reasoning service and of the memory
block destination, a turn factory and a ready-to-use engine wired with
fast retry settings.
"""

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

# Add src to path for test discovery
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from convocore.config.models import EngineConfig, SyncConfig
from convocore.exceptions import UpstreamError
from convocore.memory.sync import BaseBlockWriter
from convocore.models import (ContextEnrichmentResult, Intent, MemoryBlock,
                              QualityMetadata, Turn)
from convocore.upstream.base import BaseReasoningClient

DEFAULT_REPLY = (
    "I understand your concern about the headache. Based on what you described earlier, "
    "you should rest, stay hydrated and consult a doctor if the pain continues."
)


# =============================================================================
# FAKES
# =============================================================================


class FakeReasoningClient(BaseReasoningClient):
    """Records every message and answers user messages with a canned reply."""

    def __init__(self, reply: str = DEFAULT_REPLY, fail_user_messages: bool = False,
                 fail_system_messages: bool = False):
        self.reply = reply
        self.fail_user_messages = fail_user_messages
        self.fail_system_messages = fail_system_messages
        self.calls: List[Tuple[str, str, str, str]] = []
        self.closed = False

    async def send(self, target_id: str, sender_id: str, message: str, role: str = "user") -> str:
        self.calls.append((target_id, sender_id, message, role))
        if role == "system":
            if self.fail_system_messages:
                raise UpstreamError(target_id, "system channel unavailable")
            return "ok"
        if self.fail_user_messages:
            raise UpstreamError(target_id, "service unavailable")
        return self.reply

    async def close(self) -> None:
        self.closed = True

    def messages_with_role(self, role: str) -> List[Tuple[str, str, str, str]]:
        return [call for call in self.calls if call[3] == role]


class RecordingWriter(BaseBlockWriter):
    """
    Block writer keeping every write in memory.

    ``failures`` maps a block to the number of leading attempts that fail;
    a negative count fails every attempt. ``delays`` makes writes of a
    block sleep before completing.
    """

    def __init__(self, failures: Optional[Dict[MemoryBlock, int]] = None,
                 delays: Optional[Dict[MemoryBlock, float]] = None):
        self.failures = dict(failures or {})
        self.delays = dict(delays or {})
        self.attempts: Dict[MemoryBlock, int] = {}
        self.writes: List[Tuple[str, MemoryBlock, str]] = []

    async def write(self, session_id: str, block: MemoryBlock, content: str) -> None:
        self.attempts[block] = self.attempts.get(block, 0) + 1
        delay = self.delays.get(block)
        if delay:
            await asyncio.sleep(delay)
        remaining = self.failures.get(block, 0)
        if remaining < 0:
            raise RuntimeError(f"write of {block.value} rejected")
        if remaining > 0:
            self.failures[block] = remaining - 1
            raise RuntimeError(f"transient failure writing {block.value}")
        self.writes.append((session_id, block, content))

    def latest(self, block: MemoryBlock) -> Optional[str]:
        for _, written_block, content in reversed(self.writes):
            if written_block == block:
                return content
        return None


# =============================================================================
# FACTORIES
# =============================================================================


def build_turn(
    turn_number: int = 1,
    user_message: str = "I have a headache",
    agent_response: Optional[str] = "Rest and drink water.",
    session_id: str = "s-1",
    complete: bool = True,
    **fields,
) -> Turn:
    """Build a turn; complete turns carry enrichment and quality metadata by default."""
    data = {
        "session_id": session_id,
        "turn_number": turn_number,
        "user_message": user_message,
        "timestamp": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    }
    if complete:
        data.update({
            "agent_response": agent_response,
            "intent": Intent.GENERAL_HEALTH,
            "intent_confidence": 0.7,
            "routed_agent": "General Health",
            "enrichment": ContextEnrichmentResult(
                confidence=0.8, composed_text=f"CURRENT_MESSAGE: {user_message}", reasoning="test"
            ),
            "quality_metadata": QualityMetadata(
                quality=0.75, context_relevance=0.4, confidence=0.8, agent_type="General Health",
                topics=["Pain Management"], context_feedback="Fine.", addressed_concern=True,
            ),
        })
    data.update(fields)
    return Turn(**data)


@pytest.fixture
def make_turn() -> Callable[..., Turn]:
    return build_turn


@pytest.fixture
def fake_client() -> FakeReasoningClient:
    return FakeReasoningClient()


@pytest.fixture
def recording_writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def fast_config() -> EngineConfig:
    """Engine configuration with millisecond retry backoff."""
    return EngineConfig(sync=SyncConfig(base_delay_seconds=0.001, timeout_seconds=5.0))


@pytest.fixture
def engine(fast_config, fake_client, recording_writer):
    from convocore.api import ConversationEngine

    return ConversationEngine(fast_config, reasoning_client=fake_client, block_writer=recording_writer)


@pytest.fixture
def writer_factory() -> Callable[..., RecordingWriter]:
    return RecordingWriter


@pytest.fixture
def client_factory() -> Callable[..., FakeReasoningClient]:
    return FakeReasoningClient
