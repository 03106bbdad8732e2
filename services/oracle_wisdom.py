from __future__ import annotations

from typing import Iterable, Optional

from schemas.oracle import MealItem

QUICK_ORACLE_QUESTIONS = [
    "What are oxalates and why should I limit them?",
    "What's a safe daily oxalate limit for me?",
    "Which foods are highest in oxalates?",
    "How can I reduce oxalate absorption?",
    "What cooking methods help reduce oxalates?",
    "Can I eat spinach on a low-oxalate diet?",
    "What are good low-oxalate breakfast ideas?",
    "Should I take calcium with high-oxalate foods?",
    "What are symptoms of high oxalate intake?",
    "How do I meal prep for low-oxalate eating?",
]

DEFAULT_WISDOM = (
    "The Oracle hears your question. I specialize in oxalate wisdom - ask me about foods, "
    "daily limits, cooking methods, or managing a low-oxalate lifestyle!"
)

# (keyword groups, answer): every group must match at least one keyword
_WISDOM_RULES: list[tuple[tuple[tuple[str, ...], ...], str]] = [
    (
        (("oxalate",), ("what", "explain")),
        "The Oracle says: Oxalates are naturally occurring compounds in plants that can form "
        "crystals in some people's bodies. A low-oxalate diet typically limits intake to "
        "40-50mg per day to prevent kidney stones and other issues.",
    ),
    (
        (("limit", "daily", "much"),),
        "The Oracle recommends: Most people on low-oxalate diets should stay under 40-50mg per "
        "day. Some may need to go as low as 20mg. Work with a healthcare provider to find your "
        "ideal limit.",
    ),
    (
        (("spinach", "high oxalate"),),
        "The Oracle warns: Spinach is extremely high in oxalates (750mg per cup). It's best "
        "avoided on low-oxalate diets. Try lettuce, cabbage, or bok choy instead.",
    ),
    (
        (("calcium", "supplement"),),
        "The Oracle advises: Taking calcium with meals can help bind oxalates in your digestive "
        "system, reducing absorption. Calcium citrate is often preferred over calcium carbonate.",
    ),
    (
        (("cook", "boil", "prepare"),),
        "The Oracle teaches: Boiling vegetables can reduce oxalates by 30-90%. Always discard "
        "the cooking water. Steaming and roasting are less effective but still help.",
    ),
    (
        (("breakfast",),),
        "The Oracle suggests: Great low-oxalate breakfast options include eggs, white rice "
        "porridge, coconut yogurt, bananas, and herbal teas. Avoid nuts, berries, and whole grains.",
    ),
]


def get_oracle_wisdom(question: str) -> str:
    """Deterministic local answer used when the Oracle endpoint is unavailable."""
    lowered = question.lower()
    for groups, answer in _WISDOM_RULES:
        if all(any(keyword in lowered for keyword in group) for group in groups):
            return answer
    return DEFAULT_WISDOM


def enhance_question_with_system_context(question: str, system_context: Optional[str] = None) -> str:
    if not system_context:
        return question
    return f"[System Context: {system_context}]\n\nUser Question: {question}"


def enhance_question_with_context(
    question: str,
    current_meal: Iterable[MealItem] = (),
    recent_food: Optional[str] = None,
) -> str:
    """Prefix the question with what the user is looking at and has eaten today."""
    context = ""
    if recent_food:
        context += f"I'm currently looking at {recent_food}. "

    items = list(current_meal)
    if items:
        described = ", ".join(f"{item.name} ({item.oxalate_mg:.1f}mg oxalate)" for item in items)
        total = sum(item.oxalate_mg for item in items)
        context += f"Today I've eaten: {described}. Total oxalate today: {total:.1f}mg. "

    return context + question
