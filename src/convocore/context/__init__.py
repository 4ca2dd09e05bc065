# src/convocore/context/__init__.py
"""
Context ranking and composition for convocore.

Selects the prior turns relevant to a new message and renders the
enrichment bundle sent to the reasoning service.
"""

from .composer import (FALLBACK_CONFIDENCE, INITIAL_CONFIDENCE,
                       ContextComposer, describe_duration)
from .relevance import RankingResult, RelevanceRanker, ScoredTurn

__all__ = [
    "ContextComposer",
    "FALLBACK_CONFIDENCE",
    "INITIAL_CONFIDENCE",
    "RankingResult",
    "RelevanceRanker",
    "ScoredTurn",
    "describe_duration",
]
