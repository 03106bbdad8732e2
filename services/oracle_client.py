"""HTTP client for the Oxalate Oracle chatbot endpoint.

The endpoint answers either with a stream of ``data:`` frames or with a single
JSON object. Failures never propagate: ``query`` returns a ChatResponse whose
``error`` carries a user-facing message, and the caller decides on a fallback.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from services.oracle_wisdom import enhance_question_with_system_context

logger = logging.getLogger("oxalate-app")

TIMEOUT_MESSAGE = (
    "The Oracle is taking longer than usual. Let me try to help with my built-in wisdom instead."
)
CONNECTION_MESSAGE = "Failed to connect to the Oxalate Oracle"
EMPTY_MESSAGE = "The Oracle returned an empty answer."

_TEXT_KEYS = ("text", "answer", "response", "message")


@dataclass(frozen=True)
class ChatResponse:
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.text is not None


class OracleResponseError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _status_message(status_code: int) -> str:
    if status_code in (502, 503):
        return "The Oxalate Oracle is temporarily unavailable. Please try again in a moment."
    if status_code == 429:
        return "Too many questions at once. Please wait a moment before asking again."
    return f"Oracle Error: {status_code}"


def extract_text(result: Any) -> str:
    """Pick the answer out of the JSON reply formats the endpoint has used.

    An object carrying one of the answer keys with only empty values yields
    ``""``; objects without any answer key are returned as their JSON dump.
    """
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        for key in _TEXT_KEYS:
            value = result.get(key)
            if value:
                return str(value)
        if any(key in result for key in _TEXT_KEYS):
            return ""
    return json.dumps(result, ensure_ascii=False)


def parse_stream_frame(data: str) -> tuple[Optional[str], bool]:
    """Return (token, done) for the payload of one ``data:`` frame."""
    if data.strip() == "[DONE]":
        return None, True
    try:
        frame = json.loads(data)
    except ValueError:
        return data, False

    if isinstance(frame, str):
        return frame, False
    if not isinstance(frame, dict):
        return data, False

    event = frame.get("event")
    if event == "end":
        return None, True
    if event not in (None, "token"):
        # start / metadata / sourceDocuments frames carry no text
        return None, False
    token = frame.get("data", frame.get("token"))
    return (token if isinstance(token, str) else None), False


class OracleClient:
    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._timeout_s = timeout_s
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def query(
        self,
        question: str,
        system_context: Optional[str] = None,
        *,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> ChatResponse:
        payload = {"question": enhance_question_with_system_context(question, system_context)}
        try:
            text = await asyncio.wait_for(self._post(payload, on_token), timeout=self._timeout_s)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("oracle_timeout", extra={"timeout_s": self._timeout_s})
            return ChatResponse(error=TIMEOUT_MESSAGE)
        except OracleResponseError as exc:
            logger.warning("oracle_bad_response", extra={"status": exc.status_code})
            return ChatResponse(error=exc.message)
        except (httpx.HTTPError, ValueError):
            logger.exception("oracle_request_failed")
            return ChatResponse(error=CONNECTION_MESSAGE)
        return ChatResponse(text=text)

    async def _post(self, payload: dict, on_token: Optional[Callable[[str], None]]) -> str:
        headers = {"Accept": "text/event-stream, application/json"}
        async with self._client.stream("POST", self._url, json=payload, headers=headers) as response:
            if response.status_code >= 400:
                raise OracleResponseError(_status_message(response.status_code), response.status_code)

            if "text/event-stream" in response.headers.get("content-type", ""):
                text = await self._read_stream(response, on_token)
            else:
                text = extract_text(json.loads(await response.aread()))

        if not text:
            raise OracleResponseError(EMPTY_MESSAGE)
        return text

    @staticmethod
    async def _read_stream(response: httpx.Response, on_token: Optional[Callable[[str], None]]) -> str:
        tokens: list[str] = []
        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue
            data = line[5:]
            if data.startswith(" "):
                data = data[1:]
            if not data:
                continue

            token, done = parse_stream_frame(data)
            if done:
                break
            if token:
                tokens.append(token)
                if on_token is not None:
                    on_token(token)
        return "".join(tokens)
