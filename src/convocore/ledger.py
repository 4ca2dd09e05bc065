# src/convocore/ledger.py
"""
Append-only ledger of conversation turns.

The TurnLedger owns the authoritative ordered history of every session.
Turn numbers are assigned under a per-session ``asyncio.Lock`` so that
they stay gapless and strictly increasing even when several turns are
submitted concurrently. Completing a turn (recording the agent reply and
its quality metadata) is write-once: the pending turn is replaced by its
completed copy exactly once.

Readers receive :class:`ConversationHistory` snapshots. Turns are frozen
models, so a snapshot never changes underneath its reader.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .exceptions import ConsistencyError, SessionNotFoundError, ValidationError
from .models import (ContextEnrichmentResult, ConversationHistory, Intent,
                     QualityMetadata, SessionStatus, Turn, utc_now)

logger = logging.getLogger(__name__)


class TurnLedger:
    """In-memory, per-session ordered turn log."""

    def __init__(self) -> None:
        self._histories: Dict[str, ConversationHistory] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _history(self, session_id: str) -> ConversationHistory:
        history = self._histories.get(session_id)
        if history is None:
            raise SessionNotFoundError(session_id)
        return history

    def has_session(self, session_id: str) -> bool:
        return session_id in self._histories

    async def open_session(self, session_id: str, user_id: str) -> ConversationHistory:
        """
        Create the empty history of a new session.

        Raises:
            ConsistencyError: If the session already has a history.
        """
        async with self._lock(session_id):
            if session_id in self._histories:
                raise ConsistencyError(f"Session '{session_id}' already has a conversation history.")
            history = ConversationHistory(session_id=session_id, user_id=user_id)
            self._histories[session_id] = history
            logger.debug("Opened conversation history for session %s (user %s)", session_id, user_id)
            return history.model_copy(update={"turns": list(history.turns)})

    async def append_turn(
        self,
        session_id: str,
        user_message: str,
        topic_tag: Optional[str] = None,
        emotional_state: Optional[str] = None,
    ) -> Turn:
        """
        Record a new pending turn and assign its number.

        Returns:
            The pending turn, numbered ``total_turns + 1``.

        Raises:
            SessionNotFoundError: If the session has no history.
            ConsistencyError: If the session no longer accepts turns.
        """
        async with self._lock(session_id):
            history = self._history(session_id)
            if history.status in (SessionStatus.ENDED, SessionStatus.ARCHIVED):
                raise ConsistencyError(f"Session '{session_id}' is {history.status.value} and accepts no turns.")
            turn = Turn(
                session_id=session_id,
                turn_number=len(history.turns) + 1,
                user_message=user_message,
                topic_tag=topic_tag,
                emotional_state=emotional_state,
            )
            history.turns = [*history.turns, turn]
            history.last_updated = turn.timestamp
            logger.debug("Appended turn %d to session %s", turn.turn_number, session_id)
            return turn

    async def complete_turn(
        self,
        session_id: str,
        turn_number: int,
        agent_response: str,
        quality_metadata: Optional[QualityMetadata] = None,
        enrichment: Optional[ContextEnrichmentResult] = None,
        intent: Optional[Intent] = None,
        intent_confidence: Optional[float] = None,
        routed_agent: Optional[str] = None,
        context_correlation: Optional[float] = None,
    ) -> Turn:
        """
        Attach the agent reply and its analysis to a pending turn.

        Raises:
            SessionNotFoundError: If the session has no history.
            ValidationError: If the turn does not exist.
            ConsistencyError: If the turn was already completed.
        """
        async with self._lock(session_id):
            history = self._history(session_id)
            current = history.get_turn(turn_number)
            if current is None:
                raise ValidationError(f"Turn {turn_number} does not exist in session '{session_id}'.")
            if current.is_complete:
                raise ConsistencyError(f"Turn {turn_number} of session '{session_id}' is already complete.")
            completed = current.model_copy(update={
                "agent_response": agent_response,
                "quality_metadata": quality_metadata,
                "enrichment": enrichment,
                "intent": intent,
                "intent_confidence": intent_confidence,
                "routed_agent": routed_agent,
                "context_correlation": context_correlation,
            })
            turns = list(history.turns)
            turns[turn_number - 1] = completed
            history.turns = turns
            history.last_updated = utc_now()
            return completed

    def snapshot(self, session_id: str) -> ConversationHistory:
        """
        Return an immutable view of the session's history.

        Raises:
            SessionNotFoundError: If the session has no history.
        """
        history = self._history(session_id)
        return history.model_copy(update={"turns": list(history.turns)})

    def prior_turns(self, session_id: str, turn_number: int) -> List[Turn]:
        """Live turns recorded before ``turn_number``; archived turns are left out."""
        return [t for t in self._history(session_id).turns if t.turn_number < turn_number and not t.archived]

    async def set_status(self, session_id: str, status: SessionStatus) -> None:
        async with self._lock(session_id):
            history = self._history(session_id)
            history.status = status
            history.last_updated = utc_now()
        logger.debug("History of session %s is now %s", session_id, status.value)

    async def mark_archived(self, session_id: str, keep_recent: int) -> int:
        """
        Flag every turn except the ``keep_recent`` most recent as archived.

        Archived turns stay in the history and keep their numbers, but
        they are no longer offered for ranking and are left out of the
        rendered history block.

        Returns:
            Number of turns newly flagged.
        """
        async with self._lock(session_id):
            history = self._history(session_id)
            cutoff = len(history.turns) - max(0, keep_recent)
            flagged = 0
            turns = []
            for turn in history.turns:
                if turn.turn_number <= cutoff and not turn.archived:
                    turn = turn.model_copy(update={"archived": True})
                    flagged += 1
                turns.append(turn)
            history.turns = turns
        if flagged:
            logger.info("Archived %d turns of session %s", flagged, session_id)
        return flagged

    def release_lock(self, session_id: str) -> None:
        """Forget the append lock of a session that accepts no more turns."""
        self._locks.pop(session_id, None)
