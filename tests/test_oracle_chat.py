import asyncio
from datetime import datetime, timezone

import httpx

from core.cache import ResponseCache
from core.limits import UsageLimitEngine
from core.plans import SubscriptionTier
from schemas.oracle import MealItem
from services.oracle_chat import LIMIT_REACHED_MESSAGE, WELCOME_MESSAGE, OracleChat
from services.oracle_client import ChatResponse, OracleClient
from services.oracle_wisdom import get_oracle_wisdom

NOW = datetime(2025, 6, 15, 9, 0, tzinfo=timezone.utc)


class FakeOracleClient:
    def __init__(self, response: ChatResponse, tokens=()):
        self.response = response
        self.tokens = list(tokens)
        self.questions = []

    async def query(self, question, system_context=None, *, on_token=None):
        self.questions.append((question, system_context))
        for token in self.tokens:
            on_token(token)
        return self.response


def _chat(response: ChatResponse, tier=SubscriptionTier.FREE, tokens=()):
    client = FakeOracleClient(response, tokens)
    usage = UsageLimitEngine(lambda: tier, clock=lambda: NOW)
    chat = OracleChat(client, ResponseCache(time_func=lambda: 1000.0), usage, time_func=lambda: 1000.0)
    return chat, client, usage


def test_chat_starts_with_welcome_message():
    chat, _, _ = _chat(ChatResponse(text="x"))

    assert len(chat.messages) == 1
    assert chat.messages[0].id == "welcome"
    assert chat.messages[0].text == WELCOME_MESSAGE
    assert chat.messages[0].is_user is False


def test_answer_from_api_is_cached_and_consumes_quota():
    chat, client, usage = _chat(ChatResponse(text="Spinach is very high."), tokens=["Spinach ", "is"])

    reply = asyncio.run(chat.send_message("Is spinach ok?", "short answers"))

    assert reply.allowed is True
    assert reply.source == "api"
    assert reply.text == "Spinach is very high."
    assert client.questions == [("Is spinach ok?", "short answers")]
    assert [m.text for m in chat.messages[1:]] == ["Is spinach ok?", "Spinach is very high."]
    assert usage.get_remaining_oracle_questions() == 4
    assert chat.is_loading is False
    assert chat.streaming_message_id is None

    again = asyncio.run(chat.send_message("  IS SPINACH OK?  "))
    assert again.source == "cache"
    assert len(client.questions) == 1
    assert usage.get_remaining_oracle_questions() == 3


def test_failed_query_falls_back_to_local_wisdom():
    chat, _, _ = _chat(ChatResponse(error="Oracle Error: 500"), tokens=["partial"])

    reply = asyncio.run(chat.send_message("What about breakfast?"))

    assert reply.source == "fallback"
    assert reply.text == get_oracle_wisdom("What about breakfast?")
    assert [m.text for m in chat.messages[1:]] == ["What about breakfast?", reply.text]
    assert "partial" not in [m.text for m in chat.messages]


def test_limit_reached_does_not_call_oracle():
    chat, client, usage = _chat(ChatResponse(text="answer"))
    for _ in range(5):
        usage.increment_oracle_questions()

    reply = asyncio.run(chat.send_message("One more?"))

    assert reply.allowed is False
    assert reply.text == LIMIT_REACHED_MESSAGE
    assert client.questions == []
    assert len(chat.messages) == 1


def test_premium_is_never_limited():
    chat, client, usage = _chat(ChatResponse(text="answer"), tier=SubscriptionTier.PREMIUM)

    for i in range(8):
        assert asyncio.run(chat.send_message(f"question {i}")).allowed is True

    assert len(client.questions) == 8


def test_meal_context_is_prepended():
    chat, client, _ = _chat(ChatResponse(text="answer"))
    meal = [MealItem(name="Almonds", oxalate_mg=122), MealItem(name="Rice", oxalate_mg=2.5)]

    asyncio.run(chat.send_message("Am I over?", current_meal=meal, recent_food="Beets"))

    question, _ = client.questions[0]
    assert question.startswith("I'm currently looking at Beets. ")
    assert "Almonds (122.0mg oxalate), Rice (2.5mg oxalate)" in question
    assert "Total oxalate today: 124.5mg." in question
    assert question.endswith("Am I over?")


def test_busy_chat_ignores_new_questions():
    chat, client, usage = _chat(ChatResponse(text="answer"))
    chat.is_loading = True

    assert asyncio.run(chat.send_message("hello?")) is None
    assert client.questions == []
    assert usage.get_remaining_oracle_questions() == 5


def test_clear_chat_resets_history():
    chat, _, _ = _chat(ChatResponse(text="answer"))
    asyncio.run(chat.send_message("hi"))

    chat.clear_chat()

    assert [m.id for m in chat.messages] == ["welcome"]


def test_empty_endpoint_answer_falls_back_and_is_not_cached():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"text": ""}))
    client = OracleClient("https://oracle.test/predict", client=httpx.AsyncClient(transport=transport))
    cache = ResponseCache(time_func=lambda: 1000.0)
    usage = UsageLimitEngine(lambda: SubscriptionTier.FREE, clock=lambda: NOW)
    chat = OracleChat(client, cache, usage, time_func=lambda: 1000.0)

    reply = asyncio.run(chat.send_message("Is spinach ok?"))

    assert reply.source == "fallback"
    assert reply.text == get_oracle_wisdom("Is spinach ok?")
    assert cache.get_cached_response("Is spinach ok?") is None
    assert len(cache) == 0


class BrokenOracleClient:
    async def query(self, question, system_context=None, *, on_token=None):
        on_token("half an ans")
        raise RuntimeError("decoder blew up")


def test_unexpected_client_error_falls_back_and_drops_placeholder():
    usage = UsageLimitEngine(lambda: SubscriptionTier.FREE, clock=lambda: NOW)
    chat = OracleChat(BrokenOracleClient(), ResponseCache(), usage, time_func=lambda: 1000.0)

    reply = asyncio.run(chat.send_message("Ideas for breakfast?"))

    assert reply.allowed is True
    assert reply.source == "fallback"
    assert [m.text for m in chat.messages[1:]] == ["Ideas for breakfast?", reply.text]
    assert chat.is_loading is False
    assert chat.streaming_message_id is None
    assert usage.get_remaining_oracle_questions() == 4
