# src/convocore/routing/intent.py
"""
Keyword intent classification and agent selection.

Every user message is classified into one of three coarse intents and
routed to the agent of the user's mapping that handles it:

- MENTAL_HEALTH: stress, anxiety or depression (mental health agent)
- EMERGENCY: emergency, urgent or 911 (general health agent)
- GENERAL_HEALTH: everything else (general health agent)

Usage:
    router = IntentRouter()
    classification = router.classify("I feel stressed today")
    target_id = router.target_for(classification.intent, mapping)
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..models import AgentMapping, Intent

logger = logging.getLogger(__name__)

GENERAL_HEALTH_AGENT = "General Health"
MENTAL_HEALTH_AGENT = "Mental Health"

# Checked in order; the first matching pattern decides the intent.
INTENT_PATTERNS: List[Tuple[Intent, re.Pattern, float]] = [
    (Intent.MENTAL_HEALTH, re.compile(r"stress|anxiety|depression", re.IGNORECASE), 0.8),
    (Intent.EMERGENCY, re.compile(r"emergency|urgent|911", re.IGNORECASE), 0.9),
]
DEFAULT_INTENT = Intent.GENERAL_HEALTH
DEFAULT_CONFIDENCE = 0.7


class IntentClassification(BaseModel):
    """Result of classifying one user message."""

    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    agent_type: str
    matched_pattern: Optional[str] = None


class IntentRouter:
    """Chooses the responding agent for a user message."""

    def classify(self, message: str) -> IntentClassification:
        for intent, pattern, confidence in INTENT_PATTERNS:
            match = pattern.search(message or "")
            if match:
                return IntentClassification(
                    intent=intent,
                    confidence=confidence,
                    agent_type=self.agent_type_for(intent),
                    matched_pattern=match.group(0).lower(),
                )
        return IntentClassification(
            intent=DEFAULT_INTENT,
            confidence=DEFAULT_CONFIDENCE,
            agent_type=self.agent_type_for(DEFAULT_INTENT),
        )

    @staticmethod
    def agent_type_for(intent: Intent) -> str:
        if intent == Intent.MENTAL_HEALTH:
            return MENTAL_HEALTH_AGENT
        return GENERAL_HEALTH_AGENT

    @staticmethod
    def target_for(intent: Intent, mapping: AgentMapping) -> str:
        """Agent id in ``mapping`` that handles ``intent``."""
        if intent == Intent.MENTAL_HEALTH:
            return mapping.mental_health_id
        return mapping.general_health_id
