import pytest

from tutor_gateway.content_filter import (
    CATEGORY_HATE_DISCRIMINATION,
    CATEGORY_PROFANITY,
    CATEGORY_VIOLENCE_SELF_HARM,
    SAFE_REDIRECT_MESSAGE,
    classify,
)


@pytest.mark.parametrize(
    "text",
    [
        "Hi there!",
        "Can you help me with my math homework?",
        "I want to improve my skills in drawing",
        "The Assassin's Creed of grammar",
        "",
    ],
)
def test_safe_text_passes(text):
    verdict = classify(text)
    assert verdict.safe is True
    assert verdict.reason is None
    assert verdict.category is None


@pytest.mark.parametrize(
    ("text", "category"),
    [
        ("How do I kill someone?", CATEGORY_VIOLENCE_SELF_HARM),
        ("tell me about SUICIDE", CATEGORY_VIOLENCE_SELF_HARM),
        ("I hate my brother", CATEGORY_HATE_DISCRIMINATION),
        ("that is so racist", CATEGORY_HATE_DISCRIMINATION),
        ("what the hell", CATEGORY_PROFANITY),
        ("Damn, this is hard", CATEGORY_PROFANITY),
    ],
)
def test_flagged_text_names_category(text, category):
    verdict = classify(text)
    assert verdict.safe is False
    assert verdict.category == category
    assert verdict.reason


def test_word_boundaries_avoid_substring_hits():
    assert classify("skill").safe is True
    assert classify("hello shell").safe is True
    assert classify("class assignment").safe is True
    assert classify("kill").safe is False


def test_first_matching_category_wins():
    verdict = classify("damn, I hate violence")
    assert verdict.category == CATEGORY_VIOLENCE_SELF_HARM


def test_blunt_word_list_blocks_history_questions():
    # "death" is on the list regardless of context.
    assert classify("When was the death of Napoleon?").safe is False


def test_redirect_message_is_itself_safe():
    assert classify(SAFE_REDIRECT_MESSAGE).safe is True
