# tests/sessions/test_session_manager.py
"""
Tests for SessionManager.

Covers the lifecycle operations against the in-memory store, the
append-only transition history, best-effort notices and continuity.
"""

import pytest

from convocore.exceptions import (ConsistencyError, ConvoCoreError,
                                  IllegalTransitionError,
                                  SessionNotFoundError)
from convocore.models import (MemoryBlock, SessionStatus, TransitionType,
                              TriggerSource)
from convocore.sessions import ContinuityStore, SessionManager
from convocore.storage import InMemoryStateStore
from convocore.upstream import InMemoryAgentDirectory


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def manager(store, fake_client):
    return SessionManager(
        store,
        ContinuityStore(store),
        reasoning_client=fake_client,
        directory=InMemoryAgentDirectory(),
    )


class TestInit:
    def test_requires_store(self):
        with pytest.raises(ConvoCoreError):
            SessionManager(None, None)


class TestStart:
    """Session creation."""

    @pytest.mark.asyncio
    async def test_start_activates(self, manager):
        state = await manager.start("u-1", "s-1")
        assert state.status == SessionStatus.ACTIVE
        assert state.total_turns == 0
        assert (await manager.get_state("s-1")).status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_start_records_two_transitions(self, manager):
        await manager.start("u-1", "s-1")
        transitions = await manager.get_transitions("s-1")
        assert [t.type for t in transitions] == [TransitionType.INITIALIZATION, TransitionType.ACTIVATION]
        assert transitions[0].from_status is None
        activation = transitions[1]
        assert activation.reason == "Session initialization completed"
        assert activation.trigger_source == TriggerSource.SYSTEM
        assert activation.automatic is True

    @pytest.mark.asyncio
    async def test_duplicate_id_raises(self, manager):
        await manager.start("u-1", "s-1")
        with pytest.raises(ConsistencyError):
            await manager.start("u-2", "s-1")

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            await manager.get_state("missing")
        with pytest.raises(SessionNotFoundError):
            await manager.get_transitions("missing")


class TestPauseResume:
    """Pause and resume, including the restoration notice."""

    @pytest.mark.asyncio
    async def test_pause_then_resume(self, manager, fake_client):
        await manager.start("u-1", "s-1")
        pause = await manager.pause("s-1", "user stepped away")
        assert pause.type == TransitionType.PAUSE
        assert pause.memory_operation == "context_preserved"
        assert pause.preserved_context.startswith("Session Context Preservation:")
        state = await manager.get_state("s-1")
        assert state.status == SessionStatus.PAUSED
        assert state.flags["wasPaused"] is True

        resume = await manager.resume("s-1")
        assert resume.type == TransitionType.RESUME
        assert resume.reason == "Session resumed by user"
        assert (await manager.get_state("s-1")).status == SessionStatus.ACTIVE

        notices = fake_client.messages_with_role("system")
        assert len(notices) == 1
        target, sender, message, _ = notices[0]
        assert target == "context-extractor-u-1"
        assert sender == "identity-u-1"
        assert message.startswith("CONTEXT_RESTORATION: Session resumed: s-1")

    @pytest.mark.asyncio
    async def test_resume_active_session_is_rejected(self, manager):
        await manager.start("u-1", "s-1")
        with pytest.raises(IllegalTransitionError):
            await manager.resume("s-1")
        assert (await manager.get_state("s-1")).status == SessionStatus.ACTIVE
        assert len(await manager.get_transitions("s-1")) == 2

    @pytest.mark.asyncio
    async def test_pause_twice_is_rejected(self, manager):
        await manager.start("u-1", "s-1")
        await manager.pause("s-1", "break")
        with pytest.raises(ConsistencyError):
            await manager.pause("s-1", "again")

    @pytest.mark.asyncio
    async def test_failed_notice_does_not_fail_resume(self, store, client_factory):
        client = client_factory(fail_system_messages=True)
        manager = SessionManager(store, ContinuityStore(store), reasoning_client=client,
                                 directory=InMemoryAgentDirectory())
        await manager.start("u-1", "s-1")
        await manager.pause("s-1", "break")
        record = await manager.resume("s-1")
        assert record.to_status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_notices_skipped_without_client(self, store):
        manager = SessionManager(store, ContinuityStore(store))
        await manager.start("u-1", "s-1")
        await manager.pause("s-1", "break")
        assert (await manager.resume("s-1")).type == TransitionType.RESUME


class TestTurnUpdates:
    @pytest.mark.asyncio
    async def test_update_for_turn(self, manager, make_turn):
        await manager.start("u-1", "s-1")
        state = await manager.update_for_turn("s-1", make_turn(1, topic_tag="headache"), 400)
        assert state.total_turns == 1
        assert state.current_topic == "headache"
        assert state.memory_usage.conversation_history_size == 400

    @pytest.mark.asyncio
    async def test_update_requires_active(self, manager, make_turn):
        await manager.start("u-1", "s-1")
        await manager.pause("s-1", "break")
        with pytest.raises(ConsistencyError):
            await manager.update_for_turn("s-1", make_turn(1))

    @pytest.mark.asyncio
    async def test_record_memory_usage(self, manager):
        await manager.start("u-1", "s-1")
        state = await manager.record_memory_usage("s-1", {
            MemoryBlock.CONVERSATION_HISTORY: 1600,
            MemoryBlock.ACTIVE_SESSION: 400,
        })
        assert state.memory_usage.conversation_history_size == 1600
        assert state.memory_usage.active_session_size == 400
        assert state.memory_usage.efficiency == pytest.approx(1 - 2000 / 46000)
        assert state.memory_usage.rotation_triggered is False

    @pytest.mark.asyncio
    async def test_record_memory_usage_unknown_session(self, manager):
        assert await manager.record_memory_usage("missing", {}) is None


class TestEndAndArchive:
    """Closure, continuity and archival."""

    @pytest.mark.asyncio
    async def test_end_closes_session(self, manager, fake_client):
        await manager.start("u-1", "s-1")
        record = await manager.end("s-1", "user finished")
        assert record.type == TransitionType.TERMINATION

        with pytest.raises(SessionNotFoundError):
            await manager.get_state("s-1")
        closed = await manager.find_closed("s-1")
        assert closed.status == SessionStatus.ENDED
        assert closed.closure.reason == "user finished"
        assert closed.flags["properlyEnded"] is True

        archive_notices = [m for m in fake_client.messages_with_role("system") if m[2].startswith("SESSION_ARCHIVE:")]
        assert len(archive_notices) == 1

    @pytest.mark.asyncio
    async def test_end_records_continuity(self, manager, store):
        await manager.start("u-1", "s-1")
        await manager.end("s-1", "done")
        record = await ContinuityStore(store).get("u-1")
        assert [s.session_id for s in record.sessions] == ["s-1"]

    @pytest.mark.asyncio
    async def test_end_paused_session_is_rejected(self, manager):
        await manager.start("u-1", "s-1")
        await manager.pause("s-1", "break")
        with pytest.raises(IllegalTransitionError):
            await manager.end("s-1", "done")

    @pytest.mark.asyncio
    async def test_archive_after_end(self, manager):
        await manager.start("u-1", "s-1")
        await manager.end("s-1", "done")
        record = await manager.archive("s-1")
        assert record.type == TransitionType.ARCHIVAL
        assert record.automatic is True
        closed = await manager.find_closed("s-1")
        assert closed.status == SessionStatus.ARCHIVED
        types = [t.type for t in await manager.get_transitions("s-1")]
        assert types == [TransitionType.INITIALIZATION, TransitionType.ACTIVATION,
                         TransitionType.TERMINATION, TransitionType.ARCHIVAL]

    @pytest.mark.asyncio
    async def test_archive_active_session_is_rejected(self, manager):
        await manager.start("u-1", "s-1")
        with pytest.raises(IllegalTransitionError):
            await manager.archive("s-1")

    @pytest.mark.asyncio
    async def test_archive_twice_is_rejected(self, manager):
        await manager.start("u-1", "s-1")
        await manager.end("s-1", "done")
        await manager.archive("s-1")
        with pytest.raises(IllegalTransitionError):
            await manager.archive("s-1")

    @pytest.mark.asyncio
    async def test_archive_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            await manager.archive("missing")

    @pytest.mark.asyncio
    async def test_archive_ended(self, manager):
        for sid in ("s-1", "s-2", "s-3"):
            await manager.start("u-1", sid)
        await manager.end("s-1", "done")
        await manager.end("s-2", "done")
        records = await manager.archive_ended()
        assert sorted(r.session_id for r in records) == ["s-1", "s-2"]
        assert await manager.archive_ended() == []

    @pytest.mark.asyncio
    async def test_ended_id_cannot_be_reused(self, manager):
        await manager.start("u-1", "s-1")
        await manager.end("s-1", "done")
        with pytest.raises(ConsistencyError):
            await manager.start("u-1", "s-1")
