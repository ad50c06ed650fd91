"""
Keyword-based content moderation for a child audience.

Every category is a case-insensitive alternation anchored on word
boundaries, so "kill" is flagged but "skill" is not. Categories are checked
in order and the first match wins.

The word list is deliberately blunt: "death" blocks a history question about
a famous person's death just as it blocks a violent request. Narrowing the
list is a product decision.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Pattern

CATEGORY_VIOLENCE_SELF_HARM = "violence_self_harm"
CATEGORY_HATE_DISCRIMINATION = "hate_discrimination"
CATEGORY_PROFANITY = "profanity"


def _word_pattern(words: Iterable[str]) -> Pattern[str]:
    alternation = "|".join(re.escape(word) for word in words)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


CATEGORY_PATTERNS: list[tuple[str, Pattern[str]]] = [
    (
        CATEGORY_VIOLENCE_SELF_HARM,
        _word_pattern(
            [
                "violence",
                "violent",
                "kill",
                "death",
                "die",
                "dead",
                "suicide",
                "drug",
                "alcohol",
                "sex",
                "nude",
                "porn",
            ]
        ),
    ),
    (
        CATEGORY_HATE_DISCRIMINATION,
        _word_pattern(["hate", "racist", "discrimination"]),
    ),
    (
        CATEGORY_PROFANITY,
        _word_pattern(["damn", "hell", "shit", "fuck", "ass", "bitch"]),
    ),
]

CATEGORY_REASONS: dict[str, str] = {
    CATEGORY_VIOLENCE_SELF_HARM: "Content mentions violence, self-harm or adult topics",
    CATEGORY_HATE_DISCRIMINATION: "Content contains hateful or discriminatory language",
    CATEGORY_PROFANITY: "Content contains profanity",
}

# Shown in place of a model reply that failed moderation.
SAFE_REDIRECT_MESSAGE = (
    "I cannot provide that information. "
    "Let's focus on your homework and learning instead!"
)


@dataclass(frozen=True)
class FilterVerdict:
    safe: bool
    reason: str | None = None
    category: str | None = None


SAFE_VERDICT = FilterVerdict(safe=True)


def classify(text: str | None) -> FilterVerdict:
    """
    Classify a single piece of text.

    Returns an unsafe verdict naming the first matching category, or a safe
    verdict when no category matches. Empty text is safe.
    """
    if not text:
        return SAFE_VERDICT
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return FilterVerdict(
                safe=False,
                reason=CATEGORY_REASONS[category],
                category=category,
            )
    return SAFE_VERDICT


__all__ = [
    "CATEGORY_HATE_DISCRIMINATION",
    "CATEGORY_PATTERNS",
    "CATEGORY_PROFANITY",
    "CATEGORY_VIOLENCE_SELF_HARM",
    "FilterVerdict",
    "SAFE_REDIRECT_MESSAGE",
    "classify",
]
