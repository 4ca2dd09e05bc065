# src/convocore/context/relevance.py
"""
Relevance ranking of prior conversation turns.

Five lexical strategies score the turns of a session against the new
user message. Each strategy only scores the turns it considers
candidates; a turn's final score is the maximum over strategies of
``weight * score``:

- **Recency**: the last ``recent_turns_window`` turns, decaying by
  ``recency_decay`` per turn of distance with a ``minimum_score`` floor.
- **Topic**: turns sharing a keyword with the message, or whose topic tag
  occurs in the message. Jaccard similarity of keyword sets plus a boost
  for the topic tag.
- **Medical**: turns containing any medical term of the message, scored
  by the fraction of the message's medical terms they share.
- **Emotional**: as medical, over the emotional vocabulary.
- **Follow-up**: every turn when the message carries follow-up
  indicators, favouring early turns that introduced the subject.

The top ``max_relevant_turns`` by score are kept and returned in
chronological order.

Example::

    ranker = RelevanceRanker(RelevanceConfig(max_relevant_turns=5))
    result = ranker.rank(history.turns, "My headache is worse today", 4)
    result.turn_numbers   # e.g. [1, 2, 3]
    result.confidence     # mean score of the selected turns
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..config.models import RelevanceConfig
from ..models import Turn
from .vocabulary import (count_follow_up_indicators, emotional_terms,
                         extract_keywords, medical_terms)

logger = logging.getLogger(__name__)


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class ScoredTurn:
    """
    A prior turn with its per-strategy and final relevance scores.

    Attributes:
        turn: The scored turn.
        score: Weighted maximum over the strategies that scored the turn.
        strategy_scores: Unweighted score per strategy name.
    """

    turn: Turn
    score: float = 0.0
    strategy_scores: Dict[str, float] = field(default_factory=dict)

    @property
    def turn_number(self) -> int:
        return self.turn.turn_number

    @property
    def strongest_strategy(self) -> Optional[str]:
        if not self.strategy_scores:
            return None
        return max(self.strategy_scores, key=self.strategy_scores.__getitem__)


@dataclass
class RankingResult:
    """Selected turns in chronological order plus ranking statistics."""

    selected: List[ScoredTurn] = field(default_factory=list)
    candidate_count: int = 0

    @property
    def turn_numbers(self) -> List[int]:
        return [s.turn_number for s in self.selected]

    @property
    def turns(self) -> List[Turn]:
        return [s.turn for s in self.selected]

    @property
    def mean_score(self) -> float:
        if not self.selected:
            return 0.0
        return sum(s.score for s in self.selected) / len(self.selected)

    @property
    def confidence(self) -> float:
        return min(1.0, self.mean_score)


# =============================================================================
# Ranker
# =============================================================================


class RelevanceRanker:
    """Scores prior turns against a new message and selects the most relevant."""

    def __init__(self, config: Optional[RelevanceConfig] = None) -> None:
        self.config = config or RelevanceConfig()

    # -- strategies ---------------------------------------------------------

    def recency_score(self, turn: Turn, current_turn_number: int) -> float:
        distance = current_turn_number - turn.turn_number
        return max(self.config.minimum_score, 1.0 - distance * self.config.recency_decay)

    def topic_score(self, turn: Turn, message: str, message_keywords: Optional[set] = None) -> float:
        current = message_keywords if message_keywords is not None else extract_keywords(message)
        turn_keywords = extract_keywords(turn.text)
        if not current or not turn_keywords:
            return self.config.minimum_score
        shared = current & turn_keywords
        score = len(shared) / len(current | turn_keywords)
        if self._tag_in_message(turn, message):
            score += self.config.topic_match_boost
        return min(1.0, score)

    def medical_score(self, turn: Turn, message_terms: set) -> float:
        if not message_terms:
            return self.config.minimum_score
        return min(1.0, len(message_terms & medical_terms(turn.text)) / len(message_terms))

    def emotional_score(self, turn: Turn, message_terms: set) -> float:
        if not message_terms:
            return self.config.minimum_score
        return min(1.0, len(message_terms & emotional_terms(turn.text)) / len(message_terms))

    def follow_up_score(self, turn: Turn, indicator_count: int) -> float:
        if indicator_count == 0:
            return self.config.minimum_score
        return min(1.0, indicator_count * self.config.follow_up_increment + 1.0 / max(1, turn.turn_number))

    @staticmethod
    def _tag_in_message(turn: Turn, message: str) -> bool:
        return bool(turn.topic_tag) and turn.topic_tag.lower() in message.lower()

    # -- ranking ------------------------------------------------------------

    def score_turns(self, turns: Sequence[Turn], message: str, current_turn_number: int) -> List[ScoredTurn]:
        """
        Score every candidate turn; turns no strategy selects are omitted.

        Returns:
            Scored candidates in ledger order.
        """
        weights = self.config.weights
        message_keywords = extract_keywords(message)
        message_medical = medical_terms(message)
        message_emotional = emotional_terms(message)
        indicator_count = count_follow_up_indicators(message)
        recent_numbers = {t.turn_number for t in turns[-self.config.recent_turns_window:]}

        scored: List[ScoredTurn] = []
        for turn in turns:
            strategy_scores: Dict[str, float] = {}
            text = turn.text.lower()

            if turn.turn_number in recent_numbers:
                strategy_scores["recency"] = self.recency_score(turn, current_turn_number)

            if message_keywords & extract_keywords(text) or self._tag_in_message(turn, message):
                strategy_scores["topic"] = self.topic_score(turn, message, message_keywords)

            if message_medical and any(term in text for term in message_medical):
                strategy_scores["medical"] = self.medical_score(turn, message_medical)

            if message_emotional and any(term in text for term in message_emotional):
                strategy_scores["emotional"] = self.emotional_score(turn, message_emotional)

            if indicator_count:
                strategy_scores["follow_up"] = self.follow_up_score(turn, indicator_count)

            if not strategy_scores:
                continue
            final = max(getattr(weights, name) * value for name, value in strategy_scores.items())
            scored.append(ScoredTurn(turn=turn, score=final, strategy_scores=strategy_scores))
        return scored

    def rank(self, turns: Sequence[Turn], message: str, current_turn_number: int) -> RankingResult:
        """Select the most relevant prior turns, returned in chronological order."""
        scored = self.score_turns(turns, message, current_turn_number)
        best = sorted(scored, key=lambda s: (s.score, s.turn_number), reverse=True)
        selected = sorted(best[: self.config.max_relevant_turns], key=lambda s: s.turn_number)
        logger.debug(
            "Ranked %d candidate turns for turn %d; selected %s",
            len(scored), current_turn_number, [s.turn_number for s in selected],
        )
        return RankingResult(selected=selected, candidate_count=len(scored))
