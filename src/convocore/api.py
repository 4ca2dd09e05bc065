# src/convocore/api.py
"""
Core API Facade for the convocore library.

This module defines the ConversationEngine class, the primary entry point
for applications. It wires the turn ledger, context composer, intent
router, reasoning client, response analyzer, session manager and memory
sync coordinator together and exposes the session and turn operations.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .analysis import BaseResponseAnalyzer, KeywordResponseAnalyzer
from .config import EngineConfig, load_config
from .context import ContextComposer, RelevanceRanker
from .context.vocabulary import detect_emotional_state, detect_topic
from .exceptions import ConsistencyError, SessionNotFoundError, UpstreamError
from .ledger import TurnLedger
from .memory import (BaseBlockWriter, MemorySyncCoordinator,
                     ReasoningServiceBlockWriter, context_correlation,
                     render_conversation_history)
from .models import (ContinuityRecord, ConversationHistory, SessionState,
                     SessionStatus, SessionTransition, TurnReply)
from .routing import IntentRouter
from .sessions import ContinuityStore, SessionManager
from .sessions.state_machine import FLAG_ROTATION_TRIGGERED
from .storage import BaseStateStore, InMemoryStateStore
from .upstream import (BaseAgentDirectory, BaseReasoningClient,
                       HttpReasoningClient, InMemoryAgentDirectory)

logger = logging.getLogger(__name__)

UPSTREAM_FAILURE_REPLY = (
    "I apologize, but I'm having trouble processing your request right now. Please try again."
)


class ConversationEngine:
    """
    Main class for interacting with the convocore conversation engine.

    Handles session lifecycle, context enrichment, agent routing and memory
    synchronization for every turn. Use the ``create`` classmethod to build
    an instance from configuration.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        store: Optional[BaseStateStore] = None,
        reasoning_client: Optional[BaseReasoningClient] = None,
        directory: Optional[BaseAgentDirectory] = None,
        analyzer: Optional[BaseResponseAnalyzer] = None,
        block_writer: Optional[BaseBlockWriter] = None,
    ):
        """
        Initializes the engine from an already validated configuration.

        Args:
            config: Engine configuration; defaults are used when None.
            store: State store for sessions, transitions and continuity.
            reasoning_client: Client of the reasoning service.
            directory: Agent directory resolving each user's agents.
            analyzer: Response analyzer scoring agent replies.
            block_writer: Destination of memory blocks. Defaults to writing
                through the reasoning client.
        """
        self.config = config or EngineConfig()
        self._store = store or InMemoryStateStore()
        self._client = reasoning_client or HttpReasoningClient(self.config.upstream)
        self._directory = directory or InMemoryAgentDirectory()
        self._analyzer = analyzer or KeywordResponseAnalyzer()
        self._writer = block_writer or ReasoningServiceBlockWriter(self._client, self._directory)

        self._ledger = TurnLedger()
        self._composer = ContextComposer(RelevanceRanker(self.config.relevance), self.config.session)
        self._router = IntentRouter()
        self._continuity = ContinuityStore(self._store)
        self._sessions = SessionManager(
            self._store,
            self._continuity,
            reasoning_client=self._client,
            directory=self._directory,
            config=self.config.session,
            block_limits=self.config.blocks,
        )
        self._sync = MemorySyncCoordinator(self._writer, self.config.sync, self.config.blocks)
        self._turn_locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    async def create(
        cls,
        config: Optional[EngineConfig] = None,
        config_file_path: Optional[Union[str, Path]] = None,
        config_overrides: Optional[Dict[str, Any]] = None,
        env_prefix: Optional[str] = "CONVOCORE",
        **components: Any,
    ) -> "ConversationEngine":
        """
        Asynchronously creates and initializes a ConversationEngine.

        Args:
            config: Validated configuration. When None, configuration is
                loaded with confy from the packaged defaults, the optional
                file, the environment and ``config_overrides``.
            config_file_path: Optional TOML file layered over the defaults.
            config_overrides: Dictionary merged last.
            env_prefix: Environment variable prefix.
            **components: Component overrides passed to ``__init__``
                (store, reasoning_client, directory, analyzer, block_writer).

        Raises:
            ConfigError: If the configuration cannot be loaded or is invalid.
        """
        if config is None:
            config = load_config(config_file_path, config_overrides, env_prefix)
        log_level = config.log_level.upper()
        logging.getLogger("convocore").setLevel(logging.getLevelName(log_level))
        logger.info("convocore logger level set to: %s", log_level)
        instance = cls(config, **components)
        logger.info("ConversationEngine components initialization complete.")
        return instance

    def _turn_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._turn_locks.get(session_id)
        if lock is None:
            lock = self._turn_locks[session_id] = asyncio.Lock()
        return lock

    # -- sessions -----------------------------------------------------------

    async def start_session(self, user_id: str, session_id: str) -> SessionState:
        """
        Start a new session for ``user_id``.

        Raises:
            ConsistencyError: If the session id is already in use.
        """
        state = await self._sessions.start(user_id, session_id)
        await self._ledger.open_session(session_id, user_id)
        if isinstance(self._writer, ReasoningServiceBlockWriter):
            self._writer.register_session(session_id, user_id)
        return state

    async def pause_session(self, session_id: str, reason: str) -> SessionTransition:
        async with self._turn_lock(session_id):
            record = await self._sessions.pause(session_id, reason)
            await self._ledger.set_status(session_id, SessionStatus.PAUSED)
        return record

    async def resume_session(self, session_id: str) -> SessionTransition:
        """
        Resume a paused session.

        Raises:
            IllegalTransitionError: If the session is not PAUSED.
        """
        async with self._turn_lock(session_id):
            record = await self._sessions.resume(session_id)
            await self._ledger.set_status(session_id, SessionStatus.ACTIVE)
        return record

    async def end_session(self, session_id: str, reason: str) -> SessionTransition:
        async with self._turn_lock(session_id):
            record = await self._sessions.end(session_id, reason)
            if self._ledger.has_session(session_id):
                await self._ledger.set_status(session_id, SessionStatus.ENDED)
            self._sync.forget_session(session_id)
            if isinstance(self._writer, ReasoningServiceBlockWriter):
                self._writer.unregister_session(session_id)
        return record

    async def archive_session(self, session_id: str) -> SessionTransition:
        """
        Archive an ended session; its history is kept and marked ARCHIVED.

        Raises:
            IllegalTransitionError: If the session has not ended or is already archived.
        """
        record = await self._sessions.archive(session_id)
        await self._retire_history(session_id)
        return record

    async def archive_ended_sessions(self) -> List[SessionTransition]:
        """Archive every ended session that is still waiting for archival."""
        records = await self._sessions.archive_ended()
        for record in records:
            await self._retire_history(record.session_id)
        return records

    async def _retire_history(self, session_id: str) -> None:
        if self._ledger.has_session(session_id):
            await self._ledger.set_status(session_id, SessionStatus.ARCHIVED)
            self._ledger.release_lock(session_id)
        self._turn_locks.pop(session_id, None)

    async def get_history(self, session_id: str) -> ConversationHistory:
        """
        Return a snapshot of the session's turns.

        Raises:
            SessionNotFoundError: If the session is unknown.
        """
        return self._ledger.snapshot(session_id)

    async def get_session_state(self, session_id: str) -> SessionState:
        """
        Return the live state of a session, or its final state once ended.

        Raises:
            SessionNotFoundError: If the session is unknown.
        """
        try:
            return await self._sessions.get_state(session_id)
        except SessionNotFoundError:
            closed = await self._sessions.find_closed(session_id)
            if closed is None:
                raise
            return closed

    async def get_continuity(self, user_id: str) -> ContinuityRecord:
        """
        Return the continuity record of ``user_id``.

        Raises:
            ValidationError: If none of the user's sessions has ended yet.
        """
        return await self._continuity.get(user_id)

    async def get_transitions(self, session_id: str) -> List[SessionTransition]:
        return await self._sessions.get_transitions(session_id)

    # -- turns --------------------------------------------------------------

    async def submit_turn(self, session_id: str, user_message: str) -> TurnReply:
        """
        Process one user message end to end.

        The message is recorded, enriched with relevant prior turns, routed
        to the agent handling its intent and answered. The reply is analyzed,
        the turn completed, the session state recomputed and the memory
        blocks synchronized. Calls on the same session are serialized.

        Args:
            session_id: An ACTIVE session.
            user_message: The user's message.

        Returns:
            The reply with enrichment, quality and synchronization metadata.
            When the reasoning service fails the reply is a fixed apology and
            ``upstream_failed`` is True; the turn is still recorded.

        Raises:
            SessionNotFoundError: If the session is unknown or has ended.
            ConsistencyError: If the session is not ACTIVE.
            ValidationError: If the user's agents cannot be resolved.
        """
        async with self._turn_lock(session_id):
            state = await self._sessions.get_state(session_id)
            if state.status != SessionStatus.ACTIVE:
                raise ConsistencyError(
                    f"Session '{session_id}' is {state.status.value}; turns require an ACTIVE session."
                )
            agents = await self._directory.get_agents(state.user_id)

            emotional_state = detect_emotional_state(user_message)
            pending = await self._ledger.append_turn(
                session_id, user_message, topic_tag=detect_topic(user_message), emotional_state=emotional_state
            )
            turn_number = pending.turn_number
            logger.debug("Session %s: processing turn %d", session_id, turn_number)

            enrichment = self._composer.enrich(
                self._ledger.prior_turns(session_id, turn_number), user_message, turn_number
            )
            classification = self._router.classify(user_message)
            target_id = self._router.target_for(classification.intent, agents)

            upstream_failed = False
            try:
                reply = await self._client.send(target_id, agents.identity_id, enrichment.composed_text)
            except UpstreamError as e:
                logger.warning("Session %s turn %d: reasoning service failed: %s", session_id, turn_number, e)
                reply = UPSTREAM_FAILURE_REPLY
                upstream_failed = True
            except Exception as e:
                # The pending turn must still be completed.
                logger.error("Session %s turn %d: unexpected error calling the reasoning service: %s",
                             session_id, turn_number, e, exc_info=True)
                reply = UPSTREAM_FAILURE_REPLY
                upstream_failed = True

            quality = self._analyzer.analyze(
                reply,
                user_message,
                enrichment.composed_text,
                agent_type=classification.agent_type,
                emotional_state=emotional_state,
                context_confidence=enrichment.confidence,
            )
            turn = await self._ledger.complete_turn(
                session_id,
                turn_number,
                reply,
                quality_metadata=quality,
                enrichment=enrichment,
                intent=classification.intent,
                intent_confidence=classification.confidence,
                routed_agent=classification.agent_type,
                context_correlation=context_correlation(quality, enrichment.confidence),
            )

            history = self._ledger.snapshot(session_id)
            state = await self._sessions.update_for_turn(
                session_id, turn, len(render_conversation_history(history))
            )
            sync = await self._sync.synchronize(turn, history)
            updated = await self._sessions.record_memory_usage(
                session_id, {o.block: o.content_length for o in sync.outcomes if o.success}
            )
            if updated is not None:
                state = updated
            if state.flags.get(FLAG_ROTATION_TRIGGERED):
                await self._ledger.mark_archived(session_id, keep_recent=self.config.relevance.max_relevant_turns)

            logger.info("Session %s turn %d answered by %s (quality %.2f, sync %s)",
                        session_id, turn_number, classification.agent_type, quality.quality, sync.status.value)
            return TurnReply(
                session_id=session_id,
                turn_number=turn_number,
                reply_text=reply,
                confidence=quality.confidence,
                relevant_turn_count=enrichment.relevant_turn_count,
                context_confidence=enrichment.confidence,
                quality=quality.quality,
                phase=state.phase,
                intent=classification.intent,
                routed_agent=classification.agent_type,
                upstream_failed=upstream_failed,
                sync=sync,
            )

    async def close(self) -> None:
        """Release network and storage resources."""
        logger.info("Closing ConversationEngine resources...")
        await self._client.close()
        await self._store.close()
        logger.info("ConversationEngine resources closed.")

    async def __aenter__(self) -> "ConversationEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
