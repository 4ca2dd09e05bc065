# src/convocore/sessions/state_machine.py
"""
Session lifecycle transitions and per-turn state recomputation.

The legal lifecycle edges form a closed table::

    None          -> INITIALIZING   INITIALIZATION
    INITIALIZING  -> ACTIVE         ACTIVATION
    ACTIVE        -> PAUSED         PAUSE
    PAUSED        -> ACTIVE         RESUME
    ACTIVE        -> ENDED          TERMINATION
    ENDED         -> ARCHIVED       ARCHIVAL

Anything else raises :class:`IllegalTransitionError` and leaves the state
untouched. The functions below that take a ``SessionState`` and return
one never mutate their argument.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..config.models import BlockLimitsConfig, SessionConfig
from ..exceptions import IllegalTransitionError
from ..models import (AgentInteraction, ArchivalMetadata, EngagementLevel,
                      SessionState, SessionStatus, SessionTransition,
                      TransitionType, TriggerSource, Turn, UserEngagement,
                      utc_now)

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[Tuple[Optional[SessionStatus], SessionStatus], TransitionType] = {
    (None, SessionStatus.INITIALIZING): TransitionType.INITIALIZATION,
    (SessionStatus.INITIALIZING, SessionStatus.ACTIVE): TransitionType.ACTIVATION,
    (SessionStatus.ACTIVE, SessionStatus.PAUSED): TransitionType.PAUSE,
    (SessionStatus.PAUSED, SessionStatus.ACTIVE): TransitionType.RESUME,
    (SessionStatus.ACTIVE, SessionStatus.ENDED): TransitionType.TERMINATION,
    (SessionStatus.ENDED, SessionStatus.ARCHIVED): TransitionType.ARCHIVAL,
}

FLAG_ARCHIVAL_REQUIRED = "archivalRequired"
FLAG_LONG_RUNNING = "longRunning"
FLAG_QUALITY_ISSUES = "qualityIssues"
FLAG_ROTATION_TRIGGERED = "rotationTriggered"
FLAG_WAS_PAUSED = "wasPaused"
FLAG_PROPERLY_ENDED = "properlyEnded"


def transition_type(from_status: Optional[SessionStatus], to_status: SessionStatus) -> TransitionType:
    """Look up the edge ``from_status -> to_status``.

    Raises:
        IllegalTransitionError: If the edge is not in the table.
    """
    try:
        return TRANSITIONS[(from_status, to_status)]
    except KeyError:
        source = from_status.value if from_status else "None"
        raise IllegalTransitionError(source, to_status.value) from None


def apply_transition(
    state: SessionState,
    to_status: SessionStatus,
    reason: str,
    trigger: TriggerSource = TriggerSource.SYSTEM,
    automatic: bool = False,
    preserved_context: Optional[str] = None,
    memory_operation: Optional[str] = None,
) -> Tuple[SessionState, SessionTransition]:
    """
    Move ``state`` along a legal edge.

    Returns:
        The updated copy of the state and the transition record.

    Raises:
        IllegalTransitionError: If the edge is not legal; ``state`` is unchanged.
    """
    kind = transition_type(state.status, to_status)
    updated = state.model_copy(deep=True)
    updated.status = to_status
    updated.last_activity = utc_now()

    if to_status == SessionStatus.PAUSED:
        updated.flags[FLAG_WAS_PAUSED] = True
        updated.preserved_context = preserved_context
    elif to_status == SessionStatus.ENDED:
        updated.flags[FLAG_PROPERLY_ENDED] = True
    elif to_status == SessionStatus.ARCHIVED:
        updated.archival = ArchivalMetadata(reason="Session lifecycle completed")

    record = SessionTransition(
        session_id=state.session_id,
        user_id=state.user_id,
        from_status=state.status,
        to_status=to_status,
        type=kind,
        reason=reason,
        trigger_source=trigger,
        turn_number=state.total_turns,
        automatic=automatic,
        preserved_context=preserved_context,
        memory_operation=memory_operation,
    )
    logger.debug("Session %s: %s", state.session_id, record.summary)
    return updated, record


def initialization_record(session_id: str, user_id: str, reason: str = "Session started by user") -> SessionTransition:
    """The ``None -> INITIALIZING`` record that opens every transition history."""
    return SessionTransition(
        session_id=session_id,
        user_id=user_id,
        from_status=None,
        to_status=SessionStatus.INITIALIZING,
        type=transition_type(None, SessionStatus.INITIALIZING),
        reason=reason,
        trigger_source=TriggerSource.USER,
        automatic=True,
    )


# =============================================================================
# Per-turn recomputation
# =============================================================================


def phase_for(turn_count: int, config: Optional[SessionConfig] = None) -> str:
    """Conversation phase for a session that has seen ``turn_count`` turns."""
    config = config or SessionConfig()
    for phase, upper_bound in sorted(config.phase_thresholds.items(), key=lambda item: item[1]):
        if turn_count <= upper_bound:
            return phase
    return config.final_phase


def compute_complexity(total_turns: int, topic_count: int, interaction_count: int) -> float:
    complexity = 0.1
    complexity += min(0.4, total_turns * 0.02)
    complexity += min(0.3, topic_count * 0.1)
    complexity += min(0.2, interaction_count * 0.05)
    return min(1.0, complexity)


def update_engagement(engagement: UserEngagement, message: Optional[str]) -> UserEngagement:
    updated = engagement.model_copy()
    if message is not None:
        updated.average_message_length = (engagement.average_message_length + len(message)) / 2.0
        if "?" in message:
            updated.questions_asked = engagement.questions_asked + 1
        updated.active_participation = True

    if updated.average_message_length > 100 and updated.questions_asked > 2:
        updated.level = EngagementLevel.HIGH
    elif updated.average_message_length > 50:
        updated.level = EngagementLevel.MEDIUM
    else:
        updated.level = EngagementLevel.LOW
    return updated


def duration_minutes(created_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or utc_now()
    return max(0, int((now - created_at).total_seconds() // 60))


def memory_efficiency(used: int, limit: int) -> float:
    if limit <= 0:
        return 1.0
    return max(0.0, 1.0 - used / limit)


def recompute_for_turn(
    state: SessionState,
    turn: Turn,
    session_config: Optional[SessionConfig] = None,
    block_limits: Optional[BlockLimitsConfig] = None,
    history_block_size: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SessionState:
    """
    Fold one completed turn into the session state.

    Args:
        state: Current state (not modified).
        turn: The turn just completed.
        session_config: Phase thresholds and flag triggers.
        block_limits: Limits used for memory-usage statistics.
        history_block_size: Rendered size of the history block, if known.
        now: Clock override.

    Returns:
        A new SessionState reflecting the turn.
    """
    session_config = session_config or SessionConfig()
    block_limits = block_limits or BlockLimitsConfig()
    now = now or utc_now()

    updated = state.model_copy(deep=True)
    updated.total_turns = state.total_turns + 1
    updated.last_activity = now
    updated.duration_minutes = duration_minutes(state.created_at, now)
    updated.phase = phase_for(updated.total_turns, session_config)

    if turn.topic_tag:
        updated.current_topic = turn.topic_tag
        if turn.topic_tag not in updated.primary_topics:
            updated.primary_topics = [*updated.primary_topics, turn.topic_tag]

    if turn.routed_agent:
        updated.agent_interactions = [
            *updated.agent_interactions,
            AgentInteraction(
                agent_type=turn.routed_agent,
                turn_number=turn.turn_number,
                interaction_time=turn.timestamp,
                intent_handled=turn.intent.value if turn.intent else None,
                response_quality=turn.quality_metadata.quality if turn.quality_metadata else None,
                handoff_occurred=bool(state.last_agent_type and state.last_agent_type != turn.routed_agent),
            ),
        ]
        updated.last_agent_type = turn.routed_agent

    updated.complexity_score = compute_complexity(
        updated.total_turns, len(updated.primary_topics), len(updated.agent_interactions)
    )
    updated.engagement = update_engagement(state.engagement, turn.user_message)

    quality = updated.quality.model_copy()
    if turn.quality_metadata is not None:
        quality.agent_performance = (quality.agent_performance + turn.quality_metadata.quality) / 2.0
        updated.requires_follow_up = turn.quality_metadata.requires_follow_up
    quality.overall = (quality.agent_performance + quality.context_continuity) / 2.0
    updated.quality = quality

    if history_block_size is not None:
        usage = updated.memory_usage.model_copy()
        usage.conversation_history_size = history_block_size
        usage.efficiency = memory_efficiency(history_block_size, block_limits.conversation_history)
        usage.rotation_triggered = history_block_size >= block_limits.conversation_history * block_limits.rotation_threshold
        usage.archival_trigger_turns = session_config.archival_trigger_turns
        updated.memory_usage = usage

    return evaluate_flags(updated, session_config)


def evaluate_flags(state: SessionState, session_config: Optional[SessionConfig] = None) -> SessionState:
    """Set the advisory boundary flags; flags once raised stay raised."""
    session_config = session_config or SessionConfig()
    flags = dict(state.flags)
    if state.total_turns >= session_config.archival_trigger_turns:
        flags[FLAG_ARCHIVAL_REQUIRED] = True
    if state.duration_minutes > session_config.long_running_minutes:
        flags[FLAG_LONG_RUNNING] = True
    if state.quality.overall < session_config.quality_issue_threshold:
        flags[FLAG_QUALITY_ISSUES] = True
    if state.memory_usage.rotation_triggered:
        flags[FLAG_ROTATION_TRIGGERED] = True
    state.flags = flags
    return state


# =============================================================================
# Closure
# =============================================================================


def resolution_achieved(state: SessionState, session_config: Optional[SessionConfig] = None) -> bool:
    session_config = session_config or SessionConfig()
    return (state.total_turns >= session_config.resolution_min_turns
            and state.quality.overall > session_config.resolution_quality)


def follow_up_recommendations(state: SessionState, session_config: Optional[SessionConfig] = None) -> list[str]:
    session_config = session_config or SessionConfig()
    recommendations = []
    if state.complexity_score > session_config.high_complexity_threshold:
        recommendations.append("Schedule follow-up for complex health concern")
    if state.total_turns > 10 and not resolution_achieved(state, session_config):
        recommendations.append("Consider specialist consultation")
    if state.current_topic and "pain" in state.current_topic:
        recommendations.append("Monitor pain levels and symptoms")
    return recommendations


def preservation_snapshot(state: SessionState) -> str:
    """Text kept on the pause transition so a resumed session can be restored."""
    return (
        "Session Context Preservation:\n"
        f"Topic: {state.current_topic}\n"
        f"Phase: {state.phase}\n"
        f"Duration: {state.duration_minutes} minutes\n"
        f"Turns: {state.total_turns}\n"
        f"Last Agent: {state.last_agent_type}\n"
    )
