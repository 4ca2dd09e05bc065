# src/convocore/context/composer.py
"""
Context composition for a new conversation turn.

The ContextComposer turns a session's prior turns and the new user
message into a :class:`ContextEnrichmentResult`: it asks the
:class:`RelevanceRanker` for the relevant turns and renders the
sectioned enrichment text handed to the reasoning service::

    CURRENT_MESSAGE: ...

    RELEVANT_CONTEXT: Turn 1: ... Turn 3: ...

    TOPIC_CONTEXT: ...

    MEDICAL_CONTEXT: ...

    EMOTIONAL_CONTEXT: ...

    CONVERSATION_FLOW: ...

    CONTEXT_CONFIDENCE: 0.87
    CONTEXT_REASONING: ...

Two fixed results bypass ranking: the initial bundle for a session with
no prior turns (confidence 0.8) and the fallback bundle used when
enrichment raises (confidence 0.3).
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import List, Optional, Sequence

from ..config.models import SessionConfig
from ..models import ContextEnrichmentResult, ConversationPatterns, Turn
from ..sessions.state_machine import phase_for
from .relevance import RankingResult, RelevanceRanker
from .vocabulary import (count_follow_up_indicators, emotional_terms,
                         extract_keywords, medical_terms)

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.3
INITIAL_REASONING = "New conversation - no previous context available"
FALLBACK_REASONING = "enrichment failed"


def describe_duration(minutes: int) -> str:
    """Render a duration the way session digests and patterns report it."""
    if minutes < 1:
        return "Less than 1 minute"
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{minutes // 60} hours {minutes % 60} minutes"


class ContextComposer:
    """Builds enrichment results from ranked prior turns."""

    def __init__(
        self,
        ranker: Optional[RelevanceRanker] = None,
        session_config: Optional[SessionConfig] = None,
    ) -> None:
        self.ranker = ranker or RelevanceRanker()
        self.session_config = session_config or SessionConfig()

    def enrich(
        self,
        prior_turns: Sequence[Turn],
        message: str,
        current_turn_number: int,
    ) -> ContextEnrichmentResult:
        """
        Produce the enrichment result for ``message``.

        Args:
            prior_turns: Turns recorded before the current one, in order.
            message: The new user message.
            current_turn_number: Number assigned to the new turn.

        Returns:
            The composed result. Never raises; internal failures yield the
            fallback bundle.
        """
        if not prior_turns:
            return self.initial_result(message)
        try:
            ranking = self.ranker.rank(prior_turns, message, current_turn_number)
            patterns = self.analyze_patterns(prior_turns, message)
            return ContextEnrichmentResult(
                selected_turn_numbers=ranking.turn_numbers,
                confidence=ranking.confidence,
                composed_text=self.compose_text(ranking, message),
                reasoning=self.selection_reasoning(ranking),
                context_used=self.context_description(ranking),
                patterns=patterns,
            )
        except Exception as e:
            logger.error("Context enrichment failed for turn %d: %s", current_turn_number, e, exc_info=True)
            return self.fallback_result(message)

    # -- fixed bundles ------------------------------------------------------

    def initial_result(self, message: str) -> ContextEnrichmentResult:
        text = (
            f"CURRENT_MESSAGE: {message}\n\n"
            "RELEVANT_CONTEXT: Starting new health consultation session\n\n"
            "TOPIC_CONTEXT: Initial health inquiry\n\n"
            f"MEDICAL_CONTEXT: {self.medical_context([], message)}\n\n"
            "EMOTIONAL_CONTEXT: Beginning of conversation\n\n"
            "CONVERSATION_FLOW: New session initialization"
        )
        return ContextEnrichmentResult(
            confidence=INITIAL_CONFIDENCE,
            composed_text=text,
            reasoning=INITIAL_REASONING,
            context_used="Initial session context",
        )

    def fallback_result(self, message: str) -> ContextEnrichmentResult:
        text = (
            f"CURRENT_MESSAGE: {message}\n\n"
            "RELEVANT_CONTEXT: Context enrichment temporarily unavailable\n\n"
            "TOPIC_CONTEXT: General health discussion\n\n"
            "MEDICAL_CONTEXT: Basic processing\n\n"
            "EMOTIONAL_CONTEXT: Neutral\n\n"
            "CONVERSATION_FLOW: Continuing conversation"
        )
        return ContextEnrichmentResult(
            confidence=FALLBACK_CONFIDENCE,
            composed_text=text,
            reasoning=FALLBACK_REASONING,
            context_used="Fallback context due to processing error",
        )

    # -- sections -----------------------------------------------------------

    def compose_text(self, ranking: RankingResult, message: str) -> str:
        turns = ranking.turns
        sections = [f"CURRENT_MESSAGE: {message}"]
        if turns:
            digest = " ".join(f"Turn {t.turn_number}: {t.user_message}" for t in turns)
            sections.append(f"RELEVANT_CONTEXT: {digest}")
        sections.append(f"TOPIC_CONTEXT: {self.topic_context(turns)}")
        sections.append(f"MEDICAL_CONTEXT: {self.medical_context(turns, message)}")
        sections.append(f"EMOTIONAL_CONTEXT: {self.emotional_context(turns, message)}")
        sections.append(f"CONVERSATION_FLOW: {self.flow_context(turns, message)}")
        sections.append(
            f"CONTEXT_CONFIDENCE: {ranking.confidence:.2f}\n"
            f"CONTEXT_REASONING: {self.selection_reasoning(ranking)}"
        )
        return "\n\n".join(sections)

    @staticmethod
    def topic_context(turns: Sequence[Turn]) -> str:
        if not turns:
            return "New conversation topic"
        counts = Counter(t.topic_tag for t in turns if t.topic_tag)
        if not counts:
            return "General health discussion"
        topic, count = counts.most_common(1)[0]
        return f"Continuing discussion about {topic} (referenced in {count} previous turns)"

    @staticmethod
    def medical_context(turns: Sequence[Turn], message: str) -> str:
        terms = set(medical_terms(message))
        for turn in turns:
            terms |= medical_terms(turn.text)
        if not terms:
            return "No specific medical context"
        return "Medical context includes: " + ", ".join(sorted(terms))

    @staticmethod
    def emotional_context(turns: Sequence[Turn], message: str) -> str:
        terms = set(emotional_terms(message))
        for turn in turns:
            terms |= emotional_terms(turn.text)
        if not terms:
            return "Neutral emotional state"
        return "Emotional context includes: " + ", ".join(sorted(terms))

    @staticmethod
    def flow_context(turns: Sequence[Turn], message: str) -> str:
        if not turns:
            return "Starting new conversation"
        if count_follow_up_indicators(message):
            return f"Following up on previous discussion (referencing {len(turns)} recent turns)"
        if extract_keywords(turns[-1].text) & extract_keywords(message):
            return "Continuing related topic from previous discussion"
        return "New topic in ongoing conversation"

    @staticmethod
    def selection_reasoning(ranking: RankingResult) -> str:
        if not ranking.selected:
            return "No relevant context found"
        return (
            f"Selected {len(ranking.selected)} turns with average relevance score "
            f"{ranking.mean_score:.2f} based on topic, medical, and temporal relevance"
        )

    @staticmethod
    def context_description(ranking: RankingResult) -> str:
        if not ranking.selected:
            return "No previous context"
        return f"Selected {len(ranking.selected)} relevant turns for context enrichment"

    # -- patterns -----------------------------------------------------------

    def analyze_patterns(self, turns: Sequence[Turn], message: str) -> ConversationPatterns:
        """Summarize topic, routing and emotional patterns across ``turns``."""
        topic_progression: List[str] = [t.topic_tag for t in turns if t.topic_tag]
        agent_routing = Counter(t.routed_agent for t in turns if t.routed_agent)
        emotional_progression = [t.emotional_state for t in turns if t.emotional_state]

        minutes = 0
        if len(turns) >= 2:
            stamps = sorted(t.timestamp for t in turns)
            minutes = int((stamps[-1] - stamps[0]).total_seconds() // 60)

        return ConversationPatterns(
            topic_frequency=dict(Counter(topic_progression)),
            topic_progression=topic_progression,
            agent_routing=dict(agent_routing),
            emotional_progression=emotional_progression,
            current_phase=phase_for(len(turns), self.session_config),
            increasing_complexity=len(turns) > 3 and len(turns[-1].user_message) > len(turns[0].user_message),
            topic_shift_detected=len(turns) > 1 and bool(extract_keywords(message)),
            depth=len(turns),
            total_turns=len(turns),
            session_duration=describe_duration(minutes),
        )
