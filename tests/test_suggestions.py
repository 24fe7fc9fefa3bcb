"""
Tests for suggestions.py — keyword follow-up questions.
"""

from foliochat.storage.models import HistoryItem
from foliochat.suggestions import (
    FALLBACK_QUESTIONS,
    KeywordSuggestionStrategy,
    SuggestionStrategy,
    discussed_topics,
)


def test_role_reply_suggests_awards_and_skills():
    s = KeywordSuggestionStrategy()
    result = s.suggest("What does he do?", "He is an AI specialist at Microsoft.", [])
    assert result == ["What awards has he won?", "What are his key skills?"]


def test_role_keyword_in_message_triggers_rule():
    s = KeywordSuggestionStrategy()
    result = s.suggest("What is his role?", "He leads AI solution sales.", [])
    assert "What awards has he won?" in result


def test_discussed_topics_are_skipped():
    history = [HistoryItem("user", "Any award?"), HistoryItem("model", "Yes, a Platinum Club award.")]
    assert "achievements" in discussed_topics(history)

    result = KeywordSuggestionStrategy().suggest("Role?", "He works at Microsoft.", history)
    assert "What awards has he won?" not in result
    assert "What are his key skills?" in result


def test_at_most_three_and_deduplicated():
    reply = "At Microsoft he won a Platinum award, has a degree, Azure skills and pharma experience."
    result = KeywordSuggestionStrategy().suggest("", reply, [])
    assert len(result) == 3
    assert len(set(result)) == 3


def test_fallback_when_nothing_matches():
    result = KeywordSuggestionStrategy().suggest("hi", "Hello there!", [])
    assert result == [q for q, _ in FALLBACK_QUESTIONS]


def test_fallback_filters_discussed_topics():
    history = [HistoryItem("user", "How do I contact him? LinkedIn?")]
    result = KeywordSuggestionStrategy().suggest("thanks", "You're welcome.", history)
    assert "How can I contact him?" not in result


def test_strategy_is_replaceable():
    class Fixed(SuggestionStrategy):
        def suggest(self, user_message, reply, history):
            return ["Fixed?"]

    assert Fixed().suggest("a", "b", []) == ["Fixed?"]
