# tests/memory/test_sync.py
"""
Tests for MemorySyncCoordinator and the reasoning-service block writer.

These tests verify:
- Success only when every targeted block is written and every check passes
- Retry with exponential backoff
- Cancellation of writes still running at the deadline
- Bounded write concurrency
- Restoration of last-known-good content after a partial failure
"""

import asyncio
import time

import pytest

from convocore.config.models import BlockLimitsConfig, SyncConfig
from convocore.exceptions import ValidationError
from convocore.memory import MemorySyncCoordinator, ReasoningServiceBlockWriter
from convocore.memory.sync import BaseBlockWriter
from convocore.models import ConversationHistory, MemoryBlock, SyncStatus
from convocore.upstream import InMemoryAgentDirectory

CHECK_NAMES = {
    "turn_number_consistency",
    "session_id_consistency",
    "response_metadata_consistency",
    "memory_size_limits",
    "bidirectional_integrity",
}


def _history(*turns, session_id="s-1"):
    return ConversationHistory(session_id=session_id, user_id="u-1", turns=list(turns))


class ConcurrencyWriter(BaseBlockWriter):
    """Tracks how many writes overlap."""

    def __init__(self, delay: float = 0.02):
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def write(self, session_id, block, content):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1


class TestSuccessfulSync:
    """A clean synchronization."""

    @pytest.mark.asyncio
    async def test_all_blocks_written(self, make_turn, recording_writer):
        coordinator = MemorySyncCoordinator(recording_writer, SyncConfig(base_delay_seconds=0.001))
        turn = make_turn(1)
        result = await coordinator.synchronize(turn, _history(turn))

        assert result.status == SyncStatus.SYNCHRONIZED
        assert result.success is True
        assert result.targeted_block_ids == [
            MemoryBlock.CONVERSATION_HISTORY, MemoryBlock.ACTIVE_SESSION, MemoryBlock.MEMORY_METADATA,
        ]
        assert set(result.updated_block_ids) == set(result.targeted_block_ids)
        assert set(result.consistency_checks) == CHECK_NAMES
        assert all(result.consistency_checks.values())
        assert result.errors == []
        assert result.rollback_performed is False
        assert {block for _, block, _ in recording_writer.writes} == set(result.targeted_block_ids)
        assert all(o.attempts == 1 for o in result.outcomes)

    @pytest.mark.asyncio
    async def test_summary_written_on_third_turn(self, make_turn, recording_writer):
        coordinator = MemorySyncCoordinator(recording_writer)
        turns = [make_turn(i) for i in (1, 2, 3)]
        result = await coordinator.synchronize(turns[-1], _history(*turns))
        assert MemoryBlock.CONTEXT_SUMMARY in result.updated_block_ids
        assert recording_writer.latest(MemoryBlock.CONTEXT_SUMMARY).startswith(
            "Enhanced Context Summary - Turn 3:"
        )

    @pytest.mark.asyncio
    async def test_last_known_good_tracked(self, make_turn, recording_writer):
        coordinator = MemorySyncCoordinator(recording_writer)
        turn = make_turn(1)
        await coordinator.synchronize(turn, _history(turn))
        assert coordinator.last_known_good("s-1", MemoryBlock.CONVERSATION_HISTORY) == (
            recording_writer.latest(MemoryBlock.CONVERSATION_HISTORY)
        )
        coordinator.forget_session("s-1")
        assert coordinator.last_known_good("s-1", MemoryBlock.CONVERSATION_HISTORY) is None


class TestConsistency:
    """Writes can succeed while the sync still is not a success."""

    @pytest.mark.asyncio
    async def test_missing_quality_metadata(self, make_turn, recording_writer):
        coordinator = MemorySyncCoordinator(recording_writer)
        turn = make_turn(1, quality_metadata=None)
        result = await coordinator.synchronize(turn, _history(turn))
        assert result.status == SyncStatus.PARTIAL
        assert result.success is False
        assert result.consistency_checks["response_metadata_consistency"] is False
        assert result.consistency_checks["bidirectional_integrity"] is False
        assert set(result.updated_block_ids) == set(result.targeted_block_ids)

    @pytest.mark.asyncio
    async def test_session_mismatch(self, make_turn, recording_writer):
        coordinator = MemorySyncCoordinator(recording_writer)
        turn = make_turn(1)
        result = await coordinator.synchronize(turn, _history(turn, session_id="other"))
        assert result.consistency_checks["session_id_consistency"] is False
        assert not result.success

    @pytest.mark.asyncio
    async def test_unrotatable_block_fails_size_check(self, make_turn, recording_writer):
        limits = BlockLimitsConfig(conversation_history=500)
        coordinator = MemorySyncCoordinator(recording_writer, block_limits=limits)
        turn = make_turn(1, session_id="s-" + "x" * 600)
        result = await coordinator.synchronize(turn, _history(turn, session_id=turn.session_id))
        assert result.consistency_checks["memory_size_limits"] is False
        assert MemoryBlock.CONVERSATION_HISTORY not in result.updated_block_ids
        assert any("rotation failed" in error for error in result.errors)

    @pytest.mark.asyncio
    async def test_unexpected_failure_reports_failed(self, make_turn, recording_writer, monkeypatch):
        coordinator = MemorySyncCoordinator(recording_writer)

        def broken_render(*args, **kwargs):
            raise RuntimeError("renderer exploded")

        monkeypatch.setattr(coordinator, "render", broken_render)
        turn = make_turn(1)
        result = await coordinator.synchronize(turn, _history(turn))
        assert result.status == SyncStatus.FAILED
        assert result.success is False
        assert "renderer exploded" in result.errors[0]
        assert set(result.consistency_checks) == CHECK_NAMES


class TestRetries:
    """Exponential backoff."""

    @pytest.mark.asyncio
    async def test_transient_failures_retried_with_backoff(self, make_turn, writer_factory):
        base_delay = 0.05
        writer = writer_factory(failures={MemoryBlock.ACTIVE_SESSION: 2})
        coordinator = MemorySyncCoordinator(writer, SyncConfig(base_delay_seconds=base_delay, max_attempts=3))
        turn = make_turn(1)

        started = time.monotonic()
        result = await coordinator.synchronize(turn, _history(turn))
        elapsed = time.monotonic() - started

        outcome = next(o for o in result.outcomes if o.block == MemoryBlock.ACTIVE_SESSION)
        assert outcome.success is True
        assert outcome.attempts == 3
        # Two waits: base_delay then 2 * base_delay.
        assert elapsed >= 3 * base_delay * 0.99
        assert outcome.elapsed_seconds >= 3 * base_delay * 0.99
        assert result.success is True

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, make_turn, writer_factory):
        writer = writer_factory(failures={MemoryBlock.ACTIVE_SESSION: -1})
        coordinator = MemorySyncCoordinator(writer, SyncConfig(base_delay_seconds=0.001, max_attempts=2))
        turn = make_turn(1)
        result = await coordinator.synchronize(turn, _history(turn))
        outcome = next(o for o in result.outcomes if o.block == MemoryBlock.ACTIVE_SESSION)
        assert outcome.success is False
        assert outcome.attempts == 2
        assert "rejected" in outcome.last_error
        assert writer.attempts[MemoryBlock.ACTIVE_SESSION] == 2
        assert result.status == SyncStatus.PARTIAL
        assert any(error.startswith("Failed to update active_session") for error in result.errors)


class TestDeadline:
    @pytest.mark.asyncio
    async def test_slow_write_cancelled_at_deadline(self, make_turn, writer_factory):
        writer = writer_factory(delays={MemoryBlock.ACTIVE_SESSION: 2.0})
        coordinator = MemorySyncCoordinator(writer, SyncConfig(timeout_seconds=0.1, base_delay_seconds=0.001))
        turn = make_turn(1)

        started = time.monotonic()
        result = await coordinator.synchronize(turn, _history(turn))
        assert time.monotonic() - started < 1.5

        outcome = next(o for o in result.outcomes if o.block == MemoryBlock.ACTIVE_SESSION)
        assert outcome.success is False
        assert "timed out" in outcome.last_error
        assert MemoryBlock.CONVERSATION_HISTORY in result.updated_block_ids
        assert result.status == SyncStatus.PARTIAL
        assert all(block != MemoryBlock.ACTIVE_SESSION for _, block, _ in writer.writes)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_pool_size_bounds_parallel_writes(self, make_turn):
        writer = ConcurrencyWriter()
        coordinator = MemorySyncCoordinator(writer, SyncConfig(pool_size=1))
        turn = make_turn(3)
        await coordinator.synchronize(turn, _history(turn))
        assert writer.max_active == 1

    @pytest.mark.asyncio
    async def test_writes_run_in_parallel(self, make_turn):
        writer = ConcurrencyWriter()
        coordinator = MemorySyncCoordinator(writer, SyncConfig(pool_size=5))
        turn = make_turn(3)
        await coordinator.synchronize(turn, _history(turn))
        assert writer.max_active == 4


class TestRollback:
    """Restoring the last-known-good content."""

    @pytest.mark.asyncio
    async def test_partial_failure_restores_previous_content(self, make_turn, writer_factory):
        writer = writer_factory()
        coordinator = MemorySyncCoordinator(writer, SyncConfig(base_delay_seconds=0.001, max_attempts=1))
        first = make_turn(1)
        await coordinator.synchronize(first, _history(first))
        good_history = writer.latest(MemoryBlock.CONVERSATION_HISTORY)

        writer.failures[MemoryBlock.ACTIVE_SESSION] = -1
        second = make_turn(2, "again")
        result = await coordinator.synchronize(second, _history(first, second))

        assert result.status == SyncStatus.PARTIAL
        assert result.rollback_performed is True
        assert "Rollback performed due to partial update failure" in result.errors
        assert writer.latest(MemoryBlock.CONVERSATION_HISTORY) == good_history
        assert coordinator.last_known_good("s-1", MemoryBlock.CONVERSATION_HISTORY) == good_history

    @pytest.mark.asyncio
    async def test_nothing_to_restore_on_first_turn(self, make_turn, writer_factory):
        writer = writer_factory(failures={MemoryBlock.ACTIVE_SESSION: -1})
        coordinator = MemorySyncCoordinator(writer, SyncConfig(base_delay_seconds=0.001, max_attempts=1))
        turn = make_turn(1)
        result = await coordinator.synchronize(turn, _history(turn))
        assert result.status == SyncStatus.PARTIAL
        assert result.rollback_performed is False

    @pytest.mark.asyncio
    async def test_rollback_disabled(self, make_turn, writer_factory):
        writer = writer_factory()
        config = SyncConfig(base_delay_seconds=0.001, max_attempts=1, enable_rollback=False)
        coordinator = MemorySyncCoordinator(writer, config)
        first = make_turn(1)
        await coordinator.synchronize(first, _history(first))
        writer.failures[MemoryBlock.ACTIVE_SESSION] = -1
        second = make_turn(2)
        result = await coordinator.synchronize(second, _history(first, second))
        assert result.rollback_performed is False
        assert writer.latest(MemoryBlock.CONVERSATION_HISTORY).startswith(
            "SESSION_ID: s-1 | TOTAL_TURNS: 2"
        )


class TestReasoningServiceBlockWriter:
    @pytest.mark.asyncio
    async def test_writes_update_envelope_to_context_extractor(self, fake_client):
        writer = ReasoningServiceBlockWriter(fake_client, InMemoryAgentDirectory())
        writer.register_session("s-1", "u-1")
        await writer.write("s-1", MemoryBlock.MEMORY_METADATA, "META")
        assert fake_client.calls == [(
            "context-extractor-u-1",
            "identity-u-1",
            "BIDIRECTIONAL_UPDATE|BLOCK:memory_metadata|OPERATION:ENHANCED_REPLACE|CONTENT:META",
            "system",
        )]

    @pytest.mark.asyncio
    async def test_unregistered_session_rejected(self, fake_client):
        writer = ReasoningServiceBlockWriter(fake_client, InMemoryAgentDirectory())
        writer.register_session("s-1", "u-1")
        writer.unregister_session("s-1")
        with pytest.raises(ValidationError):
            await writer.write("s-1", MemoryBlock.ACTIVE_SESSION, "x")
