# src/convocore/context/vocabulary.py
"""
Fixed vocabularies and lexical helpers for context ranking.

Term matching is a case-insensitive substring test, so "pain" matches
"painful" and "back" matches "background". Keyword extraction splits on
non-word characters and drops short words and stop-words.
"""

import re
from typing import FrozenSet, Optional, Set, Tuple

MEDICAL_TERMS: Tuple[str, ...] = (
    "pain", "headache", "fever", "symptom", "medication", "doctor", "hospital",
    "treatment", "diagnosis", "prescription", "illness", "disease", "injury",
    "blood", "pressure", "heart", "chest", "stomach", "back", "leg", "arm",
)

EMOTIONAL_TERMS: Tuple[str, ...] = (
    "anxious", "worried", "stressed", "depressed", "happy", "sad", "angry",
    "frustrated", "scared", "nervous", "calm", "relaxed", "upset", "mood",
)

FOLLOW_UP_INDICATORS: Tuple[str, ...] = (
    "still", "again", "more", "worse", "better", "continue", "update",
    "follow", "now", "today", "yesterday", "since", "after",
)

STOP_WORDS: FrozenSet[str] = frozenset(
    {"the", "and", "but", "for", "are", "you", "have", "that", "with"}
)

_WORD_SPLIT = re.compile(r"\W+")


def extract_keywords(text: Optional[str]) -> Set[str]:
    """Lowercased words longer than two characters, minus stop-words."""
    if not text:
        return set()
    return {
        word for word in _WORD_SPLIT.split(text.lower())
        if len(word) > 2 and word not in STOP_WORDS
    }


def find_terms(text: Optional[str], vocabulary: Tuple[str, ...]) -> Set[str]:
    """Vocabulary terms occurring anywhere in ``text``."""
    if not text:
        return set()
    lowered = text.lower()
    return {term for term in vocabulary if term in lowered}


def medical_terms(text: Optional[str]) -> Set[str]:
    return find_terms(text, MEDICAL_TERMS)


def emotional_terms(text: Optional[str]) -> Set[str]:
    return find_terms(text, EMOTIONAL_TERMS)


def count_follow_up_indicators(text: Optional[str]) -> int:
    return len(find_terms(text, FOLLOW_UP_INDICATORS))


def detect_topic(text: Optional[str]) -> Optional[str]:
    """
    Tag a message with its primary topic.

    The first medical term in vocabulary order wins, then the first
    emotional term. Returns None for messages with neither.
    """
    lowered = (text or "").lower()
    for vocabulary in (MEDICAL_TERMS, EMOTIONAL_TERMS):
        for term in vocabulary:
            if term in lowered:
                return term
    return None


def detect_emotional_state(text: Optional[str]) -> Optional[str]:
    """Comma-separated emotional terms found in ``text``, sorted."""
    found = emotional_terms(text)
    return ", ".join(sorted(found)) if found else None
