# src/convocore/sessions/continuity.py
"""
Cross-session continuity ledger.

Keeps, per user, the summaries of ended sessions together with running
analytics. A new session consults the ledger at start to inherit the
last topic discussed and to learn whether the user has established
patterns (three or more prior sessions).
"""

import logging
from collections import Counter
from typing import Optional

from ..exceptions import ValidationError
from ..models import (ContinuityRecord, SessionState, SessionSummary,
                      utc_now)
from ..storage.base import BaseStateStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "continuity:"


class ContinuityStore:
    """Per-user ledger of ended-session summaries, backed by a state store."""

    def __init__(self, store: BaseStateStore):
        self._store = store

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{KEY_PREFIX}{user_id}"

    async def find(self, user_id: str) -> Optional[ContinuityRecord]:
        """Return the user's record, or None if no session has ended yet."""
        return await self._store.get(self._key(user_id))

    async def get(self, user_id: str) -> ContinuityRecord:
        """
        Return the user's record.

        Raises:
            ValidationError: If no session of this user has ever ended.
        """
        record = await self.find(user_id)
        if record is None:
            raise ValidationError(f"No continuity record for user '{user_id}'.")
        return record

    async def record_session(self, state: SessionState, resolution_achieved: bool) -> ContinuityRecord:
        """
        Append the summary of an ended session and refresh the analytics.

        Args:
            state: Final state of the session.
            resolution_achieved: Outcome of the closure heuristic.

        Returns:
            The updated record.
        """
        key = self._key(state.user_id)
        async with self._store.lock_for(key):
            record = await self._store.get(key) or ContinuityRecord(user_id=state.user_id)
            summary = SessionSummary(
                session_id=state.session_id,
                started_at=state.created_at,
                duration_minutes=state.duration_minutes,
                total_turns=state.total_turns,
                primary_topic=state.current_topic,
                topics=list(state.primary_topics),
                resolution_achieved=resolution_achieved,
                last_agent_type=state.last_agent_type,
                quality=state.quality.overall,
            )
            record.sessions.append(summary)

            analytics = record.analytics
            analytics.total_sessions += 1
            analytics.average_quality = sum(s.quality for s in record.sessions) / len(record.sessions)
            analytics.resolutions_achieved += int(resolution_achieved)
            analytics.first_session_at = analytics.first_session_at or summary.started_at
            analytics.last_session_at = utc_now()
            topic_counts = Counter(t for s in record.sessions for t in s.topics)
            analytics.common_topics = [topic for topic, _ in topic_counts.most_common(3)]

            await self._store.put(key, record)
        logger.info(
            "Recorded session %s for user %s (%d sessions, avg quality %.2f)",
            state.session_id, state.user_id, analytics.total_sessions, analytics.average_quality,
        )
        return record

    @staticmethod
    def apply_to(state: SessionState, record: Optional[ContinuityRecord]) -> SessionState:
        """Return a copy of ``state`` carrying what the user's earlier sessions left behind."""
        if record is None or not record.sessions:
            return state
        updated = state.model_copy(deep=True)
        last = record.last_session
        flags = dict(updated.flags)
        flags["hasPreviousContext"] = True
        flags["previousSessionCount"] = len(record.sessions)
        if last is not None and last.primary_topic:
            updated.current_topic = last.primary_topic
            if last.primary_topic not in updated.primary_topics:
                updated.primary_topics = [*updated.primary_topics, last.primary_topic]
        if record.has_established_patterns:
            flags["hasEstablishedPatterns"] = True
            agents = Counter(s.last_agent_type for s in record.sessions if s.last_agent_type)
            flags["preferredAgents"] = [agent for agent, _ in agents.most_common()]
        updated.flags = flags
        updated.related_session_ids = [s.session_id for s in record.sessions]
        return updated
