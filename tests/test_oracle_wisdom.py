import pytest

from schemas.oracle import MealItem
from services.oracle_wisdom import (
    DEFAULT_WISDOM,
    QUICK_ORACLE_QUESTIONS,
    enhance_question_with_context,
    enhance_question_with_system_context,
    get_oracle_wisdom,
)


@pytest.mark.parametrize(
    "question,fragment",
    [
        ("What are oxalates?", "naturally occurring compounds"),
        ("How much per day?", "under 40-50mg"),
        ("Is SPINACH bad?", "750mg per cup"),
        ("Should I take a calcium supplement?", "Calcium citrate"),
        ("Does boiling help?", "Discard"),
        ("Ideas for breakfast", "white rice porridge"),
    ],
)
def test_wisdom_matches_keywords(question, fragment):
    assert fragment.lower() in get_oracle_wisdom(question).lower()


def test_wisdom_default_for_unrelated_question():
    assert get_oracle_wisdom("Tell me a joke") == DEFAULT_WISDOM


def test_oxalate_rule_needs_a_question_word():
    # "oxalate" alone is not enough; this falls through to the limit rule
    assert "under 40-50mg" in get_oracle_wisdom("my oxalate limit")


def test_system_context_wrapping():
    assert enhance_question_with_system_context("q") == "q"
    assert enhance_question_with_system_context("q", "") == "q"
    assert enhance_question_with_system_context("q", "ctx") == "[System Context: ctx]\n\nUser Question: q"


def test_meal_context_without_items_is_untouched():
    assert enhance_question_with_context("q") == "q"
    assert enhance_question_with_context("q", [MealItem(name="Kale", oxalate_mg=2)]) == (
        "Today I've eaten: Kale (2.0mg oxalate). Total oxalate today: 2.0mg. q"
    )


def test_quick_questions():
    assert len(QUICK_ORACLE_QUESTIONS) == 10
    assert all(q.endswith("?") for q in QUICK_ORACLE_QUESTIONS)
