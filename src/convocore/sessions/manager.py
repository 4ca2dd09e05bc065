# src/convocore/sessions/manager.py
"""
Session lifecycle management for convocore.

This module defines the SessionManager class, responsible for moving
sessions through their lifecycle (start, pause, resume, end, archive),
folding completed turns into the live session state and keeping the
append-only transition history of every session. All state lives in the
injected state store under the keys::

    session:<id>       live SessionState (removed when the session ends)
    closed:<id>        final SessionState of an ended or archived session
    transitions:<id>   list of SessionTransition records
"""

import logging
from typing import Dict, List, Optional

from ..config.models import BlockLimitsConfig, SessionConfig
from ..exceptions import (ConsistencyError, ConvoCoreError,
                          IllegalTransitionError, SessionNotFoundError)
from ..logging_config import log_display
from ..memory.blocks import (render_archive_message,
                             render_restoration_message)
from ..models import (MemoryBlock, SessionClosure, SessionState,
                      SessionStatus, SessionTransition, TriggerSource, Turn)
from ..storage.base import BaseStateStore
from ..upstream.base import BaseAgentDirectory, BaseReasoningClient
from . import state_machine
from .continuity import ContinuityStore

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
CLOSED_PREFIX = "closed:"
TRANSITIONS_PREFIX = "transitions:"


class SessionManager:
    """
    Manages SessionState objects, interacting with a state store.

    Every read-modify-write of a session's state happens under the
    store's lock for that session key, so lifecycle operations and turn
    updates on one session never interleave.
    """

    def __init__(
        self,
        store: BaseStateStore,
        continuity: ContinuityStore,
        reasoning_client: Optional[BaseReasoningClient] = None,
        directory: Optional[BaseAgentDirectory] = None,
        config: Optional[SessionConfig] = None,
        block_limits: Optional[BlockLimitsConfig] = None,
    ):
        """
        Initializes the SessionManager.

        Args:
            store: State store holding live states and transition histories.
            continuity: Per-user continuity ledger.
            reasoning_client: Client used for best-effort restore and archive
                notices. Notices are skipped when None.
            directory: Agent directory resolving the notice recipients.
            config: Phase thresholds and flag triggers.
            block_limits: Limits used for memory-usage statistics.
        """
        if store is None:
            raise ConvoCoreError("SessionManager requires a valid state store instance.")
        self._store = store
        self._continuity = continuity
        self._client = reasoning_client
        self._directory = directory
        self._config = config or SessionConfig()
        self._limits = block_limits or BlockLimitsConfig()
        logger.debug("SessionManager initialized with store: %s", type(store).__name__)

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}"

    @staticmethod
    def _closed_key(session_id: str) -> str:
        return f"{CLOSED_PREFIX}{session_id}"

    @staticmethod
    def _transitions_key(session_id: str) -> str:
        return f"{TRANSITIONS_PREFIX}{session_id}"

    async def _append_transitions(self, session_id: str, *records: SessionTransition) -> None:
        key = self._transitions_key(session_id)
        async with self._store.lock_for(key):
            history: List[SessionTransition] = await self._store.get(key) or []
            history.extend(records)
            await self._store.put(key, history)
        for record in records:
            logger.info("Session %s transition: %s", session_id, record.summary)

    async def _load(self, session_id: str) -> SessionState:
        state = await self._store.get(self._key(session_id))
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    # -- lifecycle ----------------------------------------------------------

    async def start(self, user_id: str, session_id: str) -> SessionState:
        """
        Create a session, inherit continuity from the user's earlier sessions
        and activate it.

        Raises:
            ConsistencyError: If the session id is already in use.
        """
        key = self._key(session_id)
        async with self._store.lock_for(key):
            if await self._store.get(key) is not None or await self._store.get(self._closed_key(session_id)) is not None:
                raise ConsistencyError(f"Session '{session_id}' already exists.")

            opening = state_machine.initialization_record(session_id, user_id)
            state = SessionState(session_id=session_id, user_id=user_id, status=SessionStatus.INITIALIZING)
            record = await self._continuity.find(user_id)
            state = ContinuityStore.apply_to(state, record)
            state, activation = state_machine.apply_transition(
                state,
                SessionStatus.ACTIVE,
                "Session initialization completed",
                trigger=TriggerSource.SYSTEM,
                automatic=True,
            )
            await self._store.put(key, state)
        await self._append_transitions(session_id, opening, activation)
        logger.info("Started session %s for user %s (previous sessions: %s)",
                    session_id, user_id, state.flags.get("previousSessionCount", 0))
        return state

    async def get_state(self, session_id: str) -> SessionState:
        """
        Return the live state of a session.

        Raises:
            SessionNotFoundError: If the session is unknown or has ended.
        """
        return await self._load(session_id)

    async def find_closed(self, session_id: str) -> Optional[SessionState]:
        """Final state of an ended or archived session, if any."""
        return await self._store.get(self._closed_key(session_id))

    async def update_for_turn(
        self,
        session_id: str,
        turn: Turn,
        history_block_size: Optional[int] = None,
    ) -> SessionState:
        """
        Fold a completed turn into the live state.

        Raises:
            SessionNotFoundError: If the session is unknown or has ended.
            ConsistencyError: If the session is not ACTIVE.
        """
        key = self._key(session_id)
        async with self._store.lock_for(key):
            state = await self._load(session_id)
            if state.status != SessionStatus.ACTIVE:
                raise ConsistencyError(
                    f"Session '{session_id}' is {state.status.value}; turns require an ACTIVE session."
                )
            updated = state_machine.recompute_for_turn(
                state, turn, self._config, self._limits, history_block_size
            )
            await self._store.put(key, updated)
        for flag in (state_machine.FLAG_ARCHIVAL_REQUIRED, state_machine.FLAG_QUALITY_ISSUES):
            if updated.flags.get(flag) and not state.flags.get(flag):
                logger.warning("Session %s raised flag %s at turn %d", session_id, flag, updated.total_turns)
        return updated

    async def record_memory_usage(self, session_id: str, sizes: Dict[MemoryBlock, int]) -> Optional[SessionState]:
        """Record the sizes of the blocks written for the latest turn."""
        key = self._key(session_id)
        async with self._store.lock_for(key):
            state = await self._store.get(key)
            if state is None:
                return None
            usage = state.memory_usage.model_copy()
            fields = {
                MemoryBlock.CONVERSATION_HISTORY: "conversation_history_size",
                MemoryBlock.ACTIVE_SESSION: "active_session_size",
                MemoryBlock.CONTEXT_SUMMARY: "context_summary_size",
                MemoryBlock.MEMORY_METADATA: "memory_metadata_size",
            }
            for block, size in sizes.items():
                setattr(usage, fields[block], size)
            used = (usage.conversation_history_size + usage.active_session_size
                    + usage.context_summary_size + usage.memory_metadata_size)
            capacity = sum(self._limits.limit_for(block) for block in fields)
            usage.efficiency = state_machine.memory_efficiency(used, capacity)
            history_limit = self._limits.conversation_history
            usage.rotation_triggered = (usage.rotation_triggered
                                        or usage.conversation_history_size >= history_limit * self._limits.rotation_threshold)
            state.memory_usage = usage
            state = state_machine.evaluate_flags(state, self._config)
            await self._store.put(key, state)
            return state

    async def pause(self, session_id: str, reason: str, trigger: TriggerSource = TriggerSource.USER) -> SessionTransition:
        """
        Pause an ACTIVE session, preserving a snapshot of its context.

        Raises:
            SessionNotFoundError: If the session is unknown or has ended.
            IllegalTransitionError: If the session is not ACTIVE.
        """
        key = self._key(session_id)
        async with self._store.lock_for(key):
            state = await self._load(session_id)
            updated, record = state_machine.apply_transition(
                state,
                SessionStatus.PAUSED,
                reason,
                trigger=trigger,
                preserved_context=state_machine.preservation_snapshot(state),
                memory_operation="context_preserved",
            )
            await self._store.put(key, updated)
        await self._append_transitions(session_id, record)
        return record

    async def resume(self, session_id: str, trigger: TriggerSource = TriggerSource.USER) -> SessionTransition:
        """
        Resume a PAUSED session and send the restoration notice.

        Raises:
            SessionNotFoundError: If the session is unknown or has ended.
            IllegalTransitionError: If the session is not PAUSED.
        """
        key = self._key(session_id)
        async with self._store.lock_for(key):
            state = await self._load(session_id)
            updated, record = state_machine.apply_transition(
                state,
                SessionStatus.ACTIVE,
                "Session resumed by user",
                trigger=trigger,
                preserved_context=state.preserved_context,
                memory_operation="context_restored",
            )
            await self._store.put(key, updated)
        await self._append_transitions(session_id, record)
        await self._notify(updated.user_id, render_restoration_message(updated), "context restoration")
        return record

    async def end(self, session_id: str, reason: str, trigger: TriggerSource = TriggerSource.USER) -> SessionTransition:
        """
        End an ACTIVE session.

        Records the closure, sends the archive notice, appends the session to
        the user's continuity record and removes the live state.

        Raises:
            SessionNotFoundError: If the session is unknown or has ended.
            IllegalTransitionError: If the session is not ACTIVE.
        """
        key = self._key(session_id)
        async with self._store.lock_for(key):
            state = await self._load(session_id)
            updated, record = state_machine.apply_transition(
                state, SessionStatus.ENDED, reason, trigger=trigger, memory_operation="session_archived"
            )
            updated.duration_minutes = state_machine.duration_minutes(updated.created_at)
            resolved = state_machine.resolution_achieved(updated, self._config)
            updated.closure = SessionClosure(
                reason=reason,
                final_topic=updated.current_topic,
                resolution_achieved=resolved,
                notes=f"Session ended after {updated.total_turns} turns",
                recommended_follow_ups=state_machine.follow_up_recommendations(updated, self._config),
            )
            await self._store.put(self._closed_key(session_id), updated)
            await self._store.delete(key)
        await self._append_transitions(session_id, record)
        await self._notify(updated.user_id, render_archive_message(updated), "session archive")
        await self._continuity.record_session(updated, resolved)
        log_display(logger, logging.INFO, "Ended session %s: %s", session_id, updated.summary)
        return record

    async def archive(self, session_id: str, trigger: TriggerSource = TriggerSource.SYSTEM) -> SessionTransition:
        """
        Archive an ENDED session.

        Raises:
            SessionNotFoundError: If the session was never started.
            IllegalTransitionError: If the session has not ended, or is already archived.
        """
        closed_key = self._closed_key(session_id)
        async with self._store.lock_for(closed_key):
            state = await self._store.get(closed_key)
            if state is None:
                live = await self._store.get(self._key(session_id))
                if live is None:
                    raise SessionNotFoundError(session_id)
                raise IllegalTransitionError(live.status.value, SessionStatus.ARCHIVED.value)
            updated, record = state_machine.apply_transition(
                state, SessionStatus.ARCHIVED, "Session lifecycle completed",
                trigger=trigger, automatic=True, memory_operation="session_archived",
            )
            await self._store.put(closed_key, updated)
        await self._append_transitions(session_id, record)
        return record

    async def archive_ended(self) -> List[SessionTransition]:
        """Archive every ENDED session still waiting for archival."""
        records = []
        for key in await self._store.keys(CLOSED_PREFIX):
            state = await self._store.get(key)
            if state is not None and state.status == SessionStatus.ENDED:
                records.append(await self.archive(state.session_id))
        if records:
            logger.info("Archived %d ended sessions", len(records))
        return records

    async def get_transitions(self, session_id: str) -> List[SessionTransition]:
        """
        Return the transition history of a session, oldest first.

        Raises:
            SessionNotFoundError: If the session was never started.
        """
        history = await self._store.get(self._transitions_key(session_id))
        if not history:
            raise SessionNotFoundError(session_id)
        return history

    async def _notify(self, user_id: str, message: str, purpose: str) -> None:
        if self._client is None or self._directory is None:
            return
        try:
            agents = await self._directory.get_agents(user_id)
            await self._client.send(agents.context_extractor_id, agents.identity_id, message, role="system")
        except Exception as e:
            logger.warning("Failed to send %s message for user %s: %s", purpose, user_id, e)
