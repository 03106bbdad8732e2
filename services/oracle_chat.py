from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional
from uuid import uuid4

from core.cache import ResponseCache
from core.limits import UsageLimitEngine
from schemas.oracle import MealItem
from services.oracle_client import CONNECTION_MESSAGE, ChatResponse, OracleClient
from services.oracle_wisdom import enhance_question_with_context, get_oracle_wisdom

logger = logging.getLogger("oxalate-app")

WELCOME_MESSAGE = (
    "Welcome, seeker of oxalate wisdom! I am the Oxalate Oracle, your guide through the "
    "mysteries of low-oxalate living. Ask me anything about foods, daily limits, cooking "
    "methods, or managing your oxalate journey."
)
LIMIT_REACHED_MESSAGE = (
    "You've asked all of today's Oracle questions. Upgrade to Premium for unlimited "
    "questions, or come back tomorrow."
)


@dataclass
class ChatMessage:
    text: str
    is_user: bool
    timestamp: int
    id: str = field(default_factory=lambda: uuid4().hex[:12])


@dataclass(frozen=True)
class OracleReply:
    allowed: bool
    text: str
    source: Optional[str] = None  # "cache", "api" or "fallback"


class OracleChat:
    """One Oracle conversation: history plus the ask flow.

    A question consumes one Oracle question from the usage engine before the
    endpoint is called; the gate and the increment are the same synchronous
    call, so no await separates the check from the commit.
    """

    def __init__(
        self,
        client: OracleClient,
        cache: ResponseCache,
        usage: UsageLimitEngine,
        *,
        time_func: Callable[[], float] = time.time,
    ):
        self._client = client
        self._cache = cache
        self._usage = usage
        self._time_func = time_func
        self.messages: List[ChatMessage] = []
        self.is_loading = False
        self.streaming_message_id: Optional[str] = None
        self.clear_chat()

    def _now_ms(self) -> int:
        return int(self._time_func() * 1000)

    def add_message(self, text: str, is_user: bool) -> ChatMessage:
        message = ChatMessage(text=text, is_user=is_user, timestamp=self._now_ms())
        self.messages.append(message)
        return message

    def clear_chat(self) -> None:
        self.messages = [ChatMessage(id="welcome", text=WELCOME_MESSAGE, is_user=False, timestamp=self._now_ms())]
        self.streaming_message_id = None

    async def send_message(
        self,
        text: str,
        system_context: Optional[str] = None,
        *,
        current_meal: Iterable[MealItem] = (),
        recent_food: Optional[str] = None,
    ) -> Optional[OracleReply]:
        """Ask the Oracle. Returns None while another question is in flight."""
        if self.is_loading or self.streaming_message_id:
            return None

        if not self._usage.increment_oracle_questions():
            return OracleReply(allowed=False, text=LIMIT_REACHED_MESSAGE)

        self.add_message(text, is_user=True)
        question = enhance_question_with_context(text, current_meal, recent_food)

        cached = self._cache.get_cached_response(question)
        if cached is not None:
            self.add_message(cached, is_user=False)
            return OracleReply(allowed=True, text=cached, source="cache")

        placeholder = self.add_message("", is_user=False)
        self.is_loading = True
        self.streaming_message_id = placeholder.id

        def on_token(token: str) -> None:
            placeholder.text += token

        try:
            response = await self._client.query(question, system_context, on_token=on_token)
        except Exception:
            logger.exception("oracle_query_unhandled_error")
            response = ChatResponse(error=CONNECTION_MESSAGE)
        finally:
            self.is_loading = False
            self.streaming_message_id = None

        if response.ok:
            placeholder.text = response.text
            self._cache.set_cached_response(question, response.text)
            return OracleReply(allowed=True, text=response.text, source="api")

        logger.info("oracle_fallback_wisdom", extra={"reason": response.error})
        wisdom = get_oracle_wisdom(text)
        self.messages = [m for m in self.messages if m.id != placeholder.id]
        self.add_message(wisdom, is_user=False)
        return OracleReply(allowed=True, text=wisdom, source="fallback")
