# src/convocore/analysis/quality.py
"""
Keyword-based response quality analysis.

The :class:`KeywordResponseAnalyzer` scores agent replies with fixed
vocabularies and a pair of regular expressions (vague and confident
language). Scores start from a base value and are nudged up or down by
the presence of indicators, then clamped to [0, 1].
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Set

from ..models import QualityMetadata
from .base import BaseResponseAnalyzer

logger = logging.getLogger(__name__)

# =============================================================================
# Vocabularies
# =============================================================================

MEDICAL_ADVICE_KEYWORDS = (
    "recommend", "suggest", "should", "prescribe", "treatment", "therapy",
    "medication", "dose", "consult", "see a doctor", "medical attention",
)

SAFETY_WARNING_KEYWORDS = (
    "urgent", "emergency", "serious", "danger", "warning", "caution",
    "immediate", "call 911", "seek help", "go to hospital",
)

EMPATHY_KEYWORDS = (
    "understand", "sorry", "concerned", "support", "help", "care",
    "feel", "worry", "anxiety", "difficult", "challenging",
)

FOLLOW_UP_KEYWORDS = (
    "follow up", "check back", "monitor", "track", "update", "let me know",
    "continue", "progress", "improvement", "changes",
)

DISCLAIMER_KEYWORDS = ("consult", "see a doctor", "medical professional")
HEDGING_KEYWORDS = ("i think", "it seems", "it appears")
CONTEXT_REFERENCE_KEYWORDS = ("based on", "considering", "given that")
HISTORICAL_REFERENCE_KEYWORDS = ("previous", "earlier", "before")
MEDICAL_REFERENCE_KEYWORDS = ("symptom", "condition", "treatment", "medication")
COPING_KEYWORDS = ("try", "practice", "technique")

TOPIC_KEYWORDS = (
    ("Pain Management", ("headache", "pain")),
    ("Mental Health", ("anxiety", "stress")),
    ("Treatment", ("medication", "treatment")),
    ("Sleep", ("sleep", "rest")),
)
DEFAULT_TOPIC = "General Health Discussion"

HEALTH_AGENT_TYPES = ("General Health", "Mental Health")

VAGUE_RESPONSE_PATTERN = re.compile(
    r"\b(maybe|perhaps|might|could be|not sure|unclear)\b", re.IGNORECASE
)
CONFIDENT_RESPONSE_PATTERN = re.compile(
    r"\b(definitely|certainly|clearly|obviously|exactly|precisely)\b", re.IGNORECASE
)
_NON_LETTERS = re.compile(r"[^a-zA-Z\s]")


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def extract_key_terms(text: Optional[str]) -> Set[str]:
    """Lowercased words of ``text`` with every non-letter removed."""
    if not text:
        return set()
    return set(_NON_LETTERS.sub("", text.lower()).split())


class KeywordResponseAnalyzer(BaseResponseAnalyzer):
    """Default analyzer built on keyword vocabularies."""

    def analyze(
        self,
        agent_response: Optional[str],
        user_message: str,
        enriched_context: Optional[str],
        *,
        agent_type: Optional[str] = None,
        emotional_state: Optional[str] = None,
        context_confidence: Optional[float] = None,
    ) -> QualityMetadata:
        try:
            response = agent_response or ""
            lowered = response.lower()
            return QualityMetadata(
                quality=self.response_quality(response, user_message),
                context_relevance=self.context_relevance(agent_response, enriched_context),
                confidence=self.response_confidence(lowered),
                medical_accuracy=self.medical_accuracy(lowered, agent_type),
                emotional_appropriateness=self.emotional_appropriateness(
                    lowered, user_message, emotional_state
                ),
                sentiment=self.sentiment(lowered),
                topics=self.addressed_topics(lowered),
                patterns=self.response_patterns(lowered, agent_type),
                addressed_concern=self.concern_addressed(response, user_message),
                requires_follow_up=_contains_any(lowered, FOLLOW_UP_KEYWORDS),
                agent_type=agent_type,
                medical_advice_level=self.medical_advice_level(lowered),
                safety_warnings=_contains_any(lowered, SAFETY_WARNING_KEYWORDS),
                context_utilization=self.context_utilization(
                    agent_response, enriched_context, context_confidence
                ),
                context_feedback=self.context_feedback(lowered, context_confidence),
            )
        except Exception as e:
            logger.error("Response analysis failed: %s", e, exc_info=True)
            return QualityMetadata(
                quality=0.5,
                context_relevance=0.5,
                confidence=0.5,
                agent_type=agent_type,
                context_utilization="Analysis failed",
                context_feedback="Unable to generate feedback",
            )

    # -- scores -------------------------------------------------------------

    @staticmethod
    def response_quality(response: str, user_message: str) -> float:
        if not response.strip():
            return 0.0
        quality = 0.5
        length = len(response)
        if 50 < length < 1000:
            quality += 0.2
        elif 20 < length < 2000:
            quality += 0.1
        if not VAGUE_RESPONSE_PATTERN.search(response):
            quality += 0.15
        if CONFIDENT_RESPONSE_PATTERN.search(response):
            quality += 0.1
        if extract_key_terms(response) & extract_key_terms(user_message):
            quality += 0.15
        return min(1.0, quality)

    @staticmethod
    def context_relevance(response: Optional[str], enriched_context: Optional[str]) -> float:
        if response is None or enriched_context is None:
            return 0.3
        relevance = 0.0
        context_terms = extract_key_terms(enriched_context)
        if context_terms:
            overlap = context_terms & extract_key_terms(response)
            relevance += len(overlap) / len(context_terms) * 0.6
        lowered = response.lower()
        if _contains_any(lowered, CONTEXT_REFERENCE_KEYWORDS):
            relevance += 0.2
        if _contains_any(lowered, HISTORICAL_REFERENCE_KEYWORDS):
            relevance += 0.2
        return min(1.0, relevance)

    @staticmethod
    def response_confidence(lowered: str) -> float:
        confidence = 0.5
        if CONFIDENT_RESPONSE_PATTERN.search(lowered):
            confidence += 0.3
        if VAGUE_RESPONSE_PATTERN.search(lowered):
            confidence -= 0.2
        if _contains_any(lowered, MEDICAL_ADVICE_KEYWORDS):
            confidence += 0.1
        if _contains_any(lowered, HEDGING_KEYWORDS):
            confidence -= 0.1
        return _clamp(confidence)

    @staticmethod
    def medical_accuracy(lowered: str, agent_type: Optional[str]) -> float:
        accuracy = 0.7
        if agent_type in HEALTH_AGENT_TYPES:
            if "consult" in lowered and "doctor" in lowered:
                accuracy += 0.15
            if _contains_any(lowered, SAFETY_WARNING_KEYWORDS):
                accuracy += 0.1
            if _is_specific_advice(lowered) and not _contains_any(lowered, DISCLAIMER_KEYWORDS):
                accuracy -= 0.2
        return _clamp(accuracy)

    @staticmethod
    def emotional_appropriateness(lowered: str, user_message: str, emotional_state: Optional[str]) -> float:
        appropriateness = 0.6
        empathy_count = sum(1 for keyword in EMPATHY_KEYWORDS if keyword in lowered)
        if empathy_count:
            appropriateness += min(0.3, empathy_count * 0.1)
        if emotional_state and "anxious" in emotional_state.lower() and "understand" in lowered:
            appropriateness += 0.1
        # Clinical tone in reply to a worried user.
        if "symptom" in lowered and "feel" not in lowered and "worried" in (user_message or "").lower():
            appropriateness -= 0.1
        return _clamp(appropriateness)

    # -- descriptive fields -------------------------------------------------

    @staticmethod
    def sentiment(lowered: str) -> str:
        if _contains_any(lowered, EMPATHY_KEYWORDS):
            return "Empathetic"
        if _contains_any(lowered, MEDICAL_ADVICE_KEYWORDS):
            return "Professional"
        if _contains_any(lowered, SAFETY_WARNING_KEYWORDS):
            return "Cautionary"
        return "Neutral"

    @staticmethod
    def addressed_topics(lowered: str) -> List[str]:
        topics = [topic for topic, keywords in TOPIC_KEYWORDS if _contains_any(lowered, keywords)]
        return topics or [DEFAULT_TOPIC]

    @staticmethod
    def response_patterns(lowered: str, agent_type: Optional[str]) -> str:
        patterns = []
        if agent_type == "General Health":
            if _contains_any(lowered, MEDICAL_ADVICE_KEYWORDS):
                patterns.append("Medical advice pattern.")
            if _contains_any(lowered, DISCLAIMER_KEYWORDS):
                patterns.append("Appropriate disclaimers.")
        elif agent_type == "Mental Health":
            if _contains_any(lowered, EMPATHY_KEYWORDS):
                patterns.append("Empathetic response pattern.")
            if _contains_any(lowered, COPING_KEYWORDS):
                patterns.append("Coping strategies provided.")
        return " ".join(patterns) if patterns else "Standard response pattern"

    @staticmethod
    def medical_advice_level(lowered: str) -> str:
        if _is_specific_advice(lowered):
            return "Specific"
        if _contains_any(lowered, MEDICAL_ADVICE_KEYWORDS):
            return "General"
        if "consult" in lowered or "see a doctor" in lowered:
            return "Referral"
        return "None"

    @staticmethod
    def concern_addressed(response: str, user_message: str) -> bool:
        overlap = extract_key_terms(user_message) & extract_key_terms(response)
        return bool(overlap) and len(response) > 50

    def context_utilization(
        self,
        response: Optional[str],
        enriched_context: Optional[str],
        context_confidence: Optional[float],
    ) -> str:
        if response is None or enriched_context is None:
            return "Unable to analyze context utilization"
        lowered = response.lower()
        notes = []
        if context_confidence is not None and context_confidence > 0.8:
            if self.context_relevance(response, enriched_context) > 0.7:
                notes.append("Excellent use of high-confidence context.")
            else:
                notes.append("Missed opportunity to use high-confidence context.")
        if "RELEVANT_CONTEXT:" in enriched_context and _contains_any(
            lowered, HISTORICAL_REFERENCE_KEYWORDS + ("last time",)
        ):
            notes.append("Good utilization of historical context.")
        if "MEDICAL_CONTEXT:" in enriched_context and _contains_any(lowered, MEDICAL_REFERENCE_KEYWORDS):
            notes.append("Appropriate use of medical context.")
        return " ".join(notes) if notes else "Limited context utilization detected."

    @staticmethod
    def context_feedback(lowered: str, context_confidence: Optional[float]) -> str:
        feedback = []
        if "more information" in lowered or "tell me more" in lowered:
            feedback.append("Response indicates insufficient context provided.")
        if "when did" in lowered or "how long" in lowered:
            feedback.append("Timeline context would be beneficial.")
        if "getting worse" in lowered or "improving" in lowered:
            feedback.append("Symptom progression tracking would improve responses.")
        if context_confidence is not None and context_confidence < 0.6:
            feedback.append("Low context confidence may have impacted response quality.")
        return " ".join(feedback) if feedback else "Context selection appears appropriate for this response."


def _is_specific_advice(lowered: str) -> bool:
    return "take" in lowered and ("mg" in lowered or "pill" in lowered)
