"""
Follow-up suggestions returned alongside each reply.

The default strategy is a small keyword heuristic: look at what the
assistant just said (and what the visitor asked), skip topics the
conversation already covered, and offer up to three short questions.
Swap in any object with a matching suggest() to change the behaviour.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Sequence

from foliochat.storage.models import HistoryItem

MAX_SUGGESTIONS = 3


class SuggestionStrategy(abc.ABC):
    """Produces follow-up questions for a completed exchange."""

    @abc.abstractmethod
    def suggest(self, user_message: str, reply: str, history: Sequence[HistoryItem]) -> list[str]:
        ...


@dataclass(frozen=True)
class TopicRule:
    """
    Fires when any trigger word appears in the reply (or, for
    message_triggers, in the user's message). Each question is paired with
    the topic it would open; questions whose topic was already discussed
    are skipped. A topic of None means "always offer".
    """
    triggers: tuple[str, ...]
    questions: tuple[tuple[str, str | None], ...]
    message_triggers: tuple[str, ...] = ()


# Topic name → words that mark it as already discussed in history.
DISCUSSED_MARKERS: dict[str, tuple[str, ...]] = {
    "experience": ("experience", "career"),
    "education": ("education", "degree"),
    "achievements": ("achievement", "award"),
    "skills": ("skill", "technical"),
    "contact": ("contact", "linkedin"),
}

DEFAULT_RULES: tuple[TopicRule, ...] = (
    # Role
    TopicRule(
        triggers=("microsoft",),
        message_triggers=("role",),
        questions=(
            ("What awards has he won?", "achievements"),
            ("What are his key skills?", "skills"),
        ),
    ),
    # Awards
    TopicRule(
        triggers=("award", "platinum"),
        questions=(
            ("Tell me about his career journey", "experience"),
            ("What deals did he close?", None),
        ),
    ),
    # Education
    TopicRule(
        triggers=("education", "degree"),
        questions=(
            ("Is he technical?", "skills"),
            ("What certifications does he have?", None),
        ),
    ),
    # Technical
    TopicRule(
        triggers=("technical", "azure"),
        questions=(
            ("What industries has he worked in?", None),
            ("Where did he study?", "education"),
        ),
    ),
    # Industry
    TopicRule(
        triggers=("healthcare", "pharma"),
        questions=(
            ("What AI solutions does he specialize in?", None),
            ("How long has he been at Microsoft?", None),
        ),
    ),
)

FALLBACK_QUESTIONS: tuple[tuple[str, str | None], ...] = (
    ("What's his experience?", "experience"),
    ("Key achievements?", "achievements"),
    ("How can I contact him?", "contact"),
)


def discussed_topics(history: Sequence[HistoryItem], markers: dict[str, tuple[str, ...]] = DISCUSSED_MARKERS) -> set[str]:
    """Topics whose marker words appear anywhere in the history."""
    text = " ".join(item.content.lower() for item in history)
    return {topic for topic, words in markers.items() if any(w in text for w in words)}


@dataclass
class KeywordSuggestionStrategy(SuggestionStrategy):
    rules: Sequence[TopicRule] = DEFAULT_RULES
    fallback: Sequence[tuple[str, str | None]] = FALLBACK_QUESTIONS
    markers: dict[str, tuple[str, ...]] = field(default_factory=lambda: dict(DISCUSSED_MARKERS))
    limit: int = MAX_SUGGESTIONS

    def suggest(self, user_message: str, reply: str, history: Sequence[HistoryItem]) -> list[str]:
        message_lower = user_message.lower()
        reply_lower = reply.lower()
        discussed = discussed_topics(history, self.markers)

        candidates: list[str] = []
        for rule in self.rules:
            if any(t in reply_lower for t in rule.triggers) or any(
                t in message_lower for t in rule.message_triggers
            ):
                candidates.extend(q for q, topic in rule.questions if topic is None or topic not in discussed)

        if not candidates:
            candidates = [q for q, topic in self.fallback if topic is None or topic not in discussed]

        # dict.fromkeys keeps first-seen order while dropping duplicates
        return list(dict.fromkeys(candidates))[: self.limit]
