# tests/context/test_vocabulary.py
"""Tests for the lexical helpers behind context ranking."""

from convocore.context.vocabulary import (count_follow_up_indicators,
                                          detect_emotional_state,
                                          detect_topic, emotional_terms,
                                          extract_keywords, medical_terms)


class TestKeywords:
    def test_drops_short_words_and_stop_words(self):
        assert extract_keywords("The pain and the fever!") == {"pain", "fever"}

    def test_empty(self):
        assert extract_keywords("") == set()
        assert extract_keywords(None) == set()


class TestTermMatching:
    """Terms match as case-insensitive substrings."""

    def test_medical_substring_match(self):
        assert medical_terms("My BACK is painful") == {"back", "pain"}

    def test_emotional_terms(self):
        assert emotional_terms("I am Worried and a bit sad") == {"worried", "sad"}

    def test_follow_up_indicators(self):
        assert count_follow_up_indicators("It is still worse today") == 3
        assert count_follow_up_indicators("Hello there") == 0


class TestTopicDetection:
    def test_medical_term_wins(self):
        assert detect_topic("I feel nervous and have a headache") == "headache"

    def test_first_medical_term_in_vocabulary_order(self):
        assert detect_topic("chest pain") == "pain"

    def test_emotional_fallback(self):
        assert detect_topic("I am nervous") == "nervous"

    def test_no_topic(self):
        assert detect_topic("hello") is None

    def test_emotional_state_sorted(self):
        assert detect_emotional_state("sad and anxious") == "anxious, sad"
        assert detect_emotional_state("fine") is None
