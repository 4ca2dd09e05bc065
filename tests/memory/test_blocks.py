# tests/memory/test_blocks.py
"""
Tests for the memory block renderers and rotation.

The reasoning service parses these blocks by convention, so the exact
key names, order and delimiters are asserted verbatim.
"""

from datetime import datetime, timezone

import pytest

from convocore.config.models import SyncConfig
from convocore.exceptions import RotationError
from convocore.memory import blocks
from convocore.models import (ConversationHistory, MemoryBlock,
                              QualityMetadata, SessionState)

NOW = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)


class TestFormatting:
    def test_values(self):
        assert blocks.fmt_bool(True) == "true"
        assert blocks.fmt_bool(False) == "false"
        assert blocks.fmt_bool(None) == "N/A"
        assert blocks.fmt_score(0.7) == "0.70"
        assert blocks.fmt_score(None) == "N/A"
        assert blocks.fmt_time(NOW) == "2024-05-06 07:08:09"
        assert blocks.fmt_text("") == "N/A"

    def test_text_flattened_to_one_line(self):
        assert blocks.fmt_text("line one\n\n  line two") == "line one line two"


class TestHistoryBlock:
    """The conversation history grammar."""

    def test_completed_line(self, make_turn):
        turn = make_turn(1, "hi", agent_response="Rest well.")
        assert blocks.render_history_line(turn) == (
            "TURN_1: USER: hi | ENRICHED: CURRENT_MESSAGE: hi... | INTENT: GENERAL_HEALTH (0.70) | "
            "AGENT: General Health | RESPONSE: Rest well. | RESPONSE_QUALITY: 0.75 | "
            "CONTEXT_UTILIZATION: 0.40 | FEEDBACK: Fine. | TIMESTAMP: 2024-01-02 03:04:05"
        )

    def test_pending_line_uses_not_available(self, make_turn):
        line = blocks.render_history_line(make_turn(2, "hello", complete=False))
        assert line == (
            "TURN_2: USER: hello | ENRICHED: N/A | INTENT: N/A (N/A) | AGENT: N/A | RESPONSE: N/A | "
            "RESPONSE_QUALITY: N/A | CONTEXT_UTILIZATION: N/A | FEEDBACK: N/A | "
            "TIMESTAMP: 2024-01-02 03:04:05"
        )

    def test_enriched_digest_truncated(self, make_turn):
        turn = make_turn(1, "x" * 500)
        segment = blocks.render_history_line(turn).split(" | ")[1]
        assert segment == "ENRICHED: " + ("CURRENT_MESSAGE: " + "x" * 500)[:200] + "..."

    def test_full_block(self, make_turn):
        history = ConversationHistory(session_id="s-1", user_id="u-1",
                                      turns=[make_turn(1), make_turn(2, "again")])
        lines = blocks.render_conversation_history(history).split("\n")
        assert lines[0] == "SESSION_ID: s-1 | TOTAL_TURNS: 2 | STATUS: ACTIVE"
        assert lines[1].startswith("TURN_1: USER: I have a headache | ")
        assert lines[2].startswith("TURN_2: USER: again | ")
        assert len(lines) == 3

    def test_archived_turns_left_out(self, make_turn):
        history = ConversationHistory(session_id="s-1", user_id="u-1", turns=[
            make_turn(1, archived=True), make_turn(2, archived=True), make_turn(3, "latest"),
        ])
        lines = blocks.render_conversation_history(history).split("\n")
        assert lines[0] == "SESSION_ID: s-1 | TOTAL_TURNS: 3 | STATUS: ACTIVE"
        assert len(lines) == 2
        assert lines[1].startswith("TURN_3: USER: latest | ")

    def test_multiline_message_stays_on_one_line(self, make_turn):
        history = ConversationHistory(session_id="s-1", user_id="u-1",
                                      turns=[make_turn(1, "first\nsecond")])
        assert len(blocks.render_conversation_history(history).split("\n")) == 2


class TestOtherBlocks:
    def test_active_session(self, make_turn):
        text = blocks.render_active_session(make_turn(3), now=NOW)
        assert text == (
            "SESSION_ID: s-1 | STATUS: active | TURNS: 3 | LAST_AGENT: General Health | "
            "RESPONSE_QUALITY: 0.75 | CONTEXT_CONFIDENCE: 0.80 | "
            "PATTERNS_DETECTED: Standard response pattern | NEEDS_FOLLOWUP: false | "
            "UPDATED: 2024-05-06 07:08:09"
        )

    def test_context_summary(self, make_turn):
        assert blocks.render_context_summary(make_turn(1)) == (
            "Enhanced Context Summary - Turn 1: User discussed Pain Management. "
            "Agent (General Health) provided Good response with 0.75 quality score. "
            "Context confidence: 0.80. Feedback: Fine.. Response addressed concern: true. "
            "Follow-up needed: false."
        )

    def test_memory_metadata(self, make_turn):
        assert blocks.render_memory_metadata(make_turn(4), 0.5, False, now=NOW) == (
            "MEMORY_STATUS: enhanced_bidirectional | TURN: 4 | RESPONSE_ANALYSIS: completed | "
            "QUALITY_SCORE: 0.75 | CONTEXT_CORRELATION: 0.50 | FEEDBACK_GENERATED: true | "
            "PATTERNS_UPDATED: false | CONSISTENCY: verified | UPDATED: 2024-05-06 07:08:09"
        )

    def test_update_envelope(self):
        assert blocks.render_update_message(MemoryBlock.ACTIVE_SESSION, "X") == (
            "BIDIRECTIONAL_UPDATE|BLOCK:active_session|OPERATION:ENHANCED_REPLACE|CONTENT:X"
        )

    def test_restoration_and_archive_notices(self):
        state = SessionState(session_id="s-1", user_id="u-1", current_topic="fever",
                             duration_minutes=12, total_turns=3, primary_topics=["fever", "pain"])
        assert blocks.render_restoration_message(state) == (
            "CONTEXT_RESTORATION: Session resumed: s-1\nPrevious topic: fever\nSession duration: 12 minutes"
        )
        archive = blocks.render_archive_message(state)
        assert archive.startswith("SESSION_ARCHIVE: Session Archive: s-1\n")
        assert "Topics: fever, pain\n" in archive
        assert archive.endswith("Quality: 0.80")


class TestRotation:
    """Size limits."""

    def test_content_within_limit_unchanged(self):
        assert blocks.enforce_limit(MemoryBlock.ACTIVE_SESSION, "short", 200) == "short"

    def test_plain_block_truncated_with_marker(self):
        reduced = blocks.enforce_limit(MemoryBlock.ACTIVE_SESSION, "a" * 500, 200)
        assert reduced == "a" * 100 + blocks.CONTENT_TRUNCATION_MARKER
        assert len(reduced) <= 200

    def test_history_keeps_header_and_recent_turns(self, make_turn):
        history = ConversationHistory(session_id="s-1", user_id="u-1",
                                      turns=[make_turn(i) for i in range(1, 11)])
        content = blocks.render_conversation_history(history)
        limit = 1200
        reduced = blocks.enforce_limit(MemoryBlock.CONVERSATION_HISTORY, content, limit)
        lines = reduced.split("\n")
        assert len(reduced) <= limit
        assert lines[0].startswith("SESSION_ID: s-1")
        assert lines[-1] == blocks.HISTORY_TRUNCATION_MARKER
        kept = [line for line in lines[1:-1]]
        assert kept and kept[-1].startswith("TURN_10: ")
        assert not any(line.startswith("TURN_1: ") for line in kept)

    def test_irreducible_history_raises(self):
        header = "SESSION_ID: " + "x" * 600 + " | TOTAL_TURNS: 1 | STATUS: ACTIVE"
        content = header + "\nTURN_1: USER: hi"
        with pytest.raises(RotationError) as exc_info:
            blocks.enforce_limit(MemoryBlock.CONVERSATION_HISTORY, content, 500)
        assert exc_info.value.block == "conversation_history"
        assert exc_info.value.limit == 500


class TestTargeting:
    def test_summary_on_cadence(self, make_turn):
        low = QualityMetadata(quality=0.5)
        assert blocks.target_blocks(make_turn(1, quality_metadata=low)) == [
            MemoryBlock.CONVERSATION_HISTORY, MemoryBlock.ACTIVE_SESSION, MemoryBlock.MEMORY_METADATA,
        ]
        assert MemoryBlock.CONTEXT_SUMMARY in blocks.target_blocks(make_turn(3, quality_metadata=low))

    def test_summary_on_high_quality(self, make_turn):
        high = QualityMetadata(quality=0.85)
        assert MemoryBlock.CONTEXT_SUMMARY in blocks.target_blocks(make_turn(1, quality_metadata=high))

    def test_custom_cadence(self, make_turn):
        config = SyncConfig(summary_every_n_turns=2)
        assert blocks.should_write_summary(make_turn(2, quality_metadata=QualityMetadata(quality=0.1)), config)


class TestFeedback:
    def test_correlation_without_data(self):
        assert blocks.context_correlation(None, 0.9) == 0.5
        assert blocks.context_correlation(QualityMetadata(), None) == 0.5

    def test_correlation(self):
        quality = QualityMetadata(quality=0.9, context_relevance=0.5, addressed_concern=True)
        assert blocks.context_correlation(quality, 0.85) == pytest.approx(0.4 + 0.15 + 0.3)

    def test_pattern_updates(self):
        quality = QualityMetadata(quality=0.95, context_relevance=0.9, agent_type="General Health",
                                  medical_accuracy=0.95, emotional_appropriateness=0.5)
        assert blocks.pattern_updates(quality) == [
            "High-quality response pattern identified",
            "Excellent medical response pattern",
            "Effective context utilization pattern",
        ]

    def test_improvements_and_suggestions(self):
        quality = QualityMetadata(quality=0.5, context_relevance=0.4, requires_follow_up=True,
                                  context_feedback="Response indicates insufficient context provided.")
        improvements = blocks.context_improvements(quality, 0.5)
        assert "Improve context selection confidence" in improvements
        assert "Increase relevant context turns" in improvements
        suggestions = blocks.optimization_suggestions(quality)
        assert suggestions == ("Consider expanding context selection window. "
                               "Prepare enhanced context for follow-up questions.")
