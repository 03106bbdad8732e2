from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

MAX_QUESTION_LENGTH = 1_200
MAX_SYSTEM_CONTEXT_LENGTH = 500
MAX_MEAL_ITEMS = 50


class MealItem(BaseModel):
    """One food in today's meal log, used to give the Oracle context."""

    name: str = Field(..., min_length=1, max_length=120)
    oxalate_mg: float = Field(..., ge=0)


class OracleQuestionRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=MAX_QUESTION_LENGTH)
    system_context: Optional[str] = Field(default=None, max_length=MAX_SYSTEM_CONTEXT_LENGTH)
    current_meal: List[MealItem] = Field(default_factory=list, max_length=MAX_MEAL_ITEMS)
    recent_food: Optional[str] = Field(default=None, max_length=120)


class OracleAnswerResponse(BaseModel):
    allowed: bool
    text: Optional[str] = None
    source: Optional[str] = None
    remaining: int


class ChatMessageView(BaseModel):
    id: str
    text: str
    is_user: bool
    timestamp: int


class QuickQuestionsResponse(BaseModel):
    questions: List[str]
