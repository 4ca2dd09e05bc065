# src/convocore/analysis/base.py
"""
Abstract base class for agent response analyzers.
"""

import abc
from typing import Optional

from ..models import QualityMetadata


class BaseResponseAnalyzer(abc.ABC):
    """
    Scores an agent reply against the user message and the enriched context.

    Implementations are pure and local: they must not perform I/O and must
    return a result for any input.
    """

    @abc.abstractmethod
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
        """
        Analyze one agent reply.

        Args:
            agent_response: The reply text.
            user_message: The user message the reply answers.
            enriched_context: The enrichment text the agent received.
            agent_type: Name of the responding agent type, if known.
            emotional_state: Emotional state tagged on the turn, if any.
            context_confidence: Confidence of the enrichment result, if any.

        Returns:
            Quality metadata with every score in [0, 1].
        """
        pass
