# src/convocore/memory/blocks.py
"""
Text renderers for the memory blocks kept by the reasoning service.

The reasoning service parses memory blocks by convention rather than as
structured data, so every renderer here produces flat ``KEY: value |``
segments whose key names, order and delimiters must not change::

    SESSION_ID: s-1 | TOTAL_TURNS: 2 | STATUS: ACTIVE
    TURN_1: USER: ... | ENRICHED: ...... | INTENT: GENERAL_HEALTH (0.70) | AGENT: ... | ...
    TURN_2: USER: ...

Missing values render as ``N/A``, booleans as ``true``/``false`` and
timestamps as ``YYYY-MM-DD HH:MM:SS``. Field values are flattened onto a
single line so the history block stays one turn per line.

This module also enforces block size limits (rotation) and derives the
response/context feedback recorded with each synchronization.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

from ..config.models import BlockLimitsConfig, SyncConfig
from ..exceptions import RotationError
from ..models import (ConversationHistory, MemoryBlock, QualityMetadata,
                      SessionState, Turn, utc_now)

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
ENRICHED_DIGEST_CHARS = 200

HISTORY_TRUNCATION_MARKER = "[TRUNCATED - Showing most recent turns]"
CONTENT_TRUNCATION_MARKER = "\n[TRUNCATED - Content exceeded memory limit]"
# Space left free below the limit when trimming.
HISTORY_TRIM_BUFFER = 200
CONTENT_TRIM_BUFFER = 100

_WHITESPACE_RUN = re.compile(r"\s*\n\s*")


# =============================================================================
# Value formatting
# =============================================================================


def fmt_bool(value: Optional[bool]) -> str:
    if value is None:
        return NOT_AVAILABLE
    return "true" if value else "false"


def fmt_score(value: Optional[float]) -> str:
    return NOT_AVAILABLE if value is None else f"{value:.2f}"


def fmt_time(value: Optional[datetime]) -> str:
    return NOT_AVAILABLE if value is None else value.strftime(TIMESTAMP_FORMAT)


def fmt_text(value: Optional[str]) -> str:
    """Single-line rendering of a free-text value."""
    if value is None or value == "":
        return NOT_AVAILABLE
    return _WHITESPACE_RUN.sub(" ", value).strip() or NOT_AVAILABLE


def agent_label(turn: Turn) -> Optional[str]:
    if turn.quality_metadata is not None and turn.quality_metadata.agent_type:
        return turn.quality_metadata.agent_type
    return turn.routed_agent


# =============================================================================
# Block renderers
# =============================================================================


def render_history_header(history: ConversationHistory) -> str:
    return f"SESSION_ID: {history.session_id} | TOTAL_TURNS: {history.total_turns} | STATUS: {history.status.value}"


def render_history_line(turn: Turn) -> str:
    if turn.enrichment is not None:
        enriched = fmt_text(turn.enrichment.composed_text[:ENRICHED_DIGEST_CHARS]) + "..."
    else:
        enriched = NOT_AVAILABLE
    intent = turn.intent.value if turn.intent else NOT_AVAILABLE
    qm = turn.quality_metadata
    return (
        f"TURN_{turn.turn_number}: USER: {fmt_text(turn.user_message)} | "
        f"ENRICHED: {enriched} | "
        f"INTENT: {intent} ({fmt_score(turn.intent_confidence)}) | "
        f"AGENT: {fmt_text(turn.routed_agent)} | RESPONSE: {fmt_text(turn.agent_response)} | "
        f"RESPONSE_QUALITY: {fmt_score(qm.quality if qm else None)} | "
        f"CONTEXT_UTILIZATION: {fmt_score(qm.context_relevance if qm else None)} | "
        f"FEEDBACK: {fmt_text(qm.context_feedback if qm else None)} | "
        f"TIMESTAMP: {fmt_time(turn.timestamp)}"
    )


def render_conversation_history(history: ConversationHistory) -> str:
    lines = [render_history_header(history)]
    lines.extend(render_history_line(turn) for turn in history.turns if not turn.archived)
    return "\n".join(lines)


def render_active_session(turn: Turn, now: Optional[datetime] = None) -> str:
    qm = turn.quality_metadata
    context_confidence = turn.enrichment.confidence if turn.enrichment else None
    return (
        f"SESSION_ID: {turn.session_id} | STATUS: active | TURNS: {turn.turn_number} | "
        f"LAST_AGENT: {fmt_text(agent_label(turn))} | "
        f"RESPONSE_QUALITY: {fmt_score(qm.quality if qm else None)} | "
        f"CONTEXT_CONFIDENCE: {fmt_score(context_confidence)} | "
        f"PATTERNS_DETECTED: {fmt_text(qm.patterns if qm else None)} | "
        f"NEEDS_FOLLOWUP: {fmt_bool(qm.requires_follow_up if qm else None)} | "
        f"UPDATED: {fmt_time(now or utc_now())}"
    )


def render_context_summary(turn: Turn) -> str:
    qm = turn.quality_metadata
    context_confidence = turn.enrichment.confidence if turn.enrichment else None
    topics = ", ".join(qm.topics) if qm and qm.topics else NOT_AVAILABLE
    return (
        f"Enhanced Context Summary - Turn {turn.turn_number}: User discussed {topics}. "
        f"Agent ({fmt_text(agent_label(turn))}) provided {qm.quality_level if qm else NOT_AVAILABLE} response "
        f"with {fmt_score(qm.quality if qm else None)} quality score. "
        f"Context confidence: {fmt_score(context_confidence)}. "
        f"Feedback: {fmt_text(qm.context_feedback if qm else None)}. "
        f"Response addressed concern: {fmt_bool(qm.addressed_concern if qm else None)}. "
        f"Follow-up needed: {fmt_bool(qm.requires_follow_up if qm else None)}."
    )


def render_memory_metadata(turn: Turn, correlation: float, patterns_updated: bool,
                           now: Optional[datetime] = None) -> str:
    qm = turn.quality_metadata
    return (
        f"MEMORY_STATUS: enhanced_bidirectional | TURN: {turn.turn_number} | "
        f"RESPONSE_ANALYSIS: completed | QUALITY_SCORE: {fmt_score(qm.quality if qm else None)} | "
        f"CONTEXT_CORRELATION: {fmt_score(correlation)} | FEEDBACK_GENERATED: true | "
        f"PATTERNS_UPDATED: {fmt_bool(patterns_updated)} | CONSISTENCY: verified | "
        f"UPDATED: {fmt_time(now or utc_now())}"
    )


def render_update_message(block: MemoryBlock, content: str) -> str:
    """Envelope carrying a block replacement to the context extractor."""
    return f"BIDIRECTIONAL_UPDATE|BLOCK:{block.value}|OPERATION:ENHANCED_REPLACE|CONTENT:{content}"


def render_restoration_message(state: SessionState) -> str:
    return (
        f"CONTEXT_RESTORATION: Session resumed: {state.session_id}\n"
        f"Previous topic: {state.current_topic}\n"
        f"Session duration: {state.duration_minutes} minutes"
    )


def render_archive_message(state: SessionState) -> str:
    return (
        f"SESSION_ARCHIVE: Session Archive: {state.session_id}\n"
        f"Duration: {state.duration_minutes} minutes\n"
        f"Turns: {state.total_turns}\n"
        f"Topics: {', '.join(state.primary_topics)}\n"
        f"Quality: {state.quality.overall:.2f}"
    )


# =============================================================================
# Rotation
# =============================================================================


def truncate_history(content: str, limit: int) -> str:
    """Keep the header line and as many of the most recent turn lines as fit."""
    lines = content.split("\n")
    header: List[str] = []
    body = lines
    if lines and lines[0].startswith("SESSION_ID:"):
        header, body = [lines[0]], lines[1:]

    budget = limit - HISTORY_TRIM_BUFFER
    size = sum(len(line) + 1 for line in header)
    kept: List[str] = []
    for line in reversed(body):
        if size + len(line) + 1 > budget:
            break
        kept.append(line)
        size += len(line) + 1
    kept.reverse()
    return "\n".join([*header, *kept, HISTORY_TRUNCATION_MARKER])


def enforce_limit(block: MemoryBlock, content: str, limit: int) -> str:
    """
    Reduce ``content`` to fit within ``limit`` characters.

    Raises:
        RotationError: If the block cannot be brought under its limit.
    """
    if len(content) <= limit:
        return content
    if block == MemoryBlock.CONVERSATION_HISTORY:
        reduced = truncate_history(content, limit)
    else:
        reduced = content[:max(0, limit - CONTENT_TRIM_BUFFER)] + CONTENT_TRUNCATION_MARKER
    if len(reduced) > limit:
        raise RotationError(block.value, limit, len(reduced))
    logger.info("Rotated %s block from %d to %d chars", block.value, len(content), len(reduced))
    return reduced


def within_limits(contents: Dict[MemoryBlock, str], limits: BlockLimitsConfig) -> bool:
    return all(len(text) <= limits.limit_for(block) for block, text in contents.items())


# =============================================================================
# Targeting and feedback
# =============================================================================


def should_write_summary(turn: Turn, config: Optional[SyncConfig] = None) -> bool:
    config = config or SyncConfig()
    if turn.turn_number % config.summary_every_n_turns == 0:
        return True
    qm = turn.quality_metadata
    return qm is not None and qm.quality >= config.high_quality_threshold


def target_blocks(turn: Turn, config: Optional[SyncConfig] = None) -> List[MemoryBlock]:
    blocks = [MemoryBlock.CONVERSATION_HISTORY, MemoryBlock.ACTIVE_SESSION]
    if should_write_summary(turn, config):
        blocks.append(MemoryBlock.CONTEXT_SUMMARY)
    blocks.append(MemoryBlock.MEMORY_METADATA)
    return blocks


def context_correlation(quality: Optional[QualityMetadata], context_confidence: Optional[float]) -> float:
    """How strongly the reply's quality tracks the context it was given."""
    if quality is None or context_confidence is None:
        return 0.5
    correlation = 0.0
    if context_confidence > 0.8 and quality.quality > 0.8:
        correlation += 0.4
    correlation += quality.context_relevance * 0.3
    if quality.addressed_concern:
        correlation += 0.3
    return min(1.0, correlation)


def pattern_updates(quality: Optional[QualityMetadata]) -> List[str]:
    if quality is None:
        return []
    updates = []
    if quality.quality > 0.9:
        updates.append("High-quality response pattern identified")
    if quality.agent_type == "General Health" and quality.medical_accuracy > 0.9:
        updates.append("Excellent medical response pattern")
    if quality.emotional_appropriateness > 0.8:
        updates.append("Strong emotional appropriateness pattern")
    if quality.context_relevance > 0.8:
        updates.append("Effective context utilization pattern")
    return updates


def context_improvements(quality: Optional[QualityMetadata], context_confidence: Optional[float]) -> str:
    if quality is None:
        return "Current context selection is performing well"
    improvements = []
    if quality.quality < 0.6 and context_confidence is not None and context_confidence < 0.7:
        improvements.append("Improve context selection confidence for better response quality.")
    if "insufficient" in quality.context_feedback:
        improvements.append("Increase relevant context turns for comprehensive responses.")
    if quality.agent_type == "General Health" and quality.medical_accuracy < 0.8:
        improvements.append("Enhance medical context history for better accuracy.")
    return " ".join(improvements) if improvements else "Current context selection is performing well"


def optimization_suggestions(quality: Optional[QualityMetadata]) -> str:
    if quality is None:
        return "Memory usage is optimized for current patterns"
    suggestions = []
    if quality.quality > 0.9:
        suggestions.append("High-quality response pattern - consider preserving context approach.")
    if quality.context_relevance < 0.6:
        suggestions.append("Consider expanding context selection window.")
    if quality.requires_follow_up:
        suggestions.append("Prepare enhanced context for follow-up questions.")
    return " ".join(suggestions) if suggestions else "Memory usage is optimized for current patterns"
