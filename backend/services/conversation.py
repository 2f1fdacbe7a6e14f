"""
Conversation surface.

Client-side chat state: an append-only transcript, a busy flag that allows
one turn in flight, and the transport that posts the text-only history to
POST /api/chat. Any transport failure becomes an assistant message.
"""

import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

GREETING = (
    "Hello! I'm your AI assistant for company metrics and data. "
    "Ask me about ARR, revenue, cash, valuation or headcount for any portfolio company."
)
_GENERIC_FAILURE = "Sorry, I encountered an error processing your request."
_KEY_FAILURE = (
    "⚠️ Anthropic API key not configured. Please add your ANTHROPIC_API_KEY "
    "to the .env file to enable model responses."
)
_MODEL_FAILURE = "⚠️ There was an issue connecting to the model provider. Please check your API key and try again."

SendFn = Callable[[dict], Awaitable[dict]]


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    message: str
    is_user: bool
    timestamp: str
    type: str = "text"  # text|chart
    chart_data: Optional[dict] = None
    chart_title: Optional[str] = None
    chart_type: Optional[str] = None


class ChatTransportError(Exception):
    pass


def _now() -> str:
    return datetime.datetime.utcnow().isoformat()


def _text_message(text: str, is_user: bool) -> ConversationMessage:
    return ConversationMessage(id=uuid.uuid4().hex, message=text, is_user=is_user, timestamp=_now())


def _failure_text(exc: Exception) -> str:
    detail = str(exc)
    if "API key" in detail:
        return _KEY_FAILURE
    if "Anthropic" in detail:
        return _MODEL_FAILURE
    return _GENERIC_FAILURE


class HttpChatTransport:
    """Posts chat payloads to the backend with httpx."""

    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0) -> None:
        self._url = url
        self._client = client
        self._timeout = timeout

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._url, json=payload)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._url, json=payload)

    async def __call__(self, payload: dict) -> dict:
        response = await self._post(payload)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error:
            raise ChatTransportError(
                data.get("error") or data.get("detail") or f"Failed to get response (HTTP {response.status_code})"
            )
        return data


class ConversationSurface:
    def __init__(self, send: SendFn, greeting: Optional[str] = GREETING) -> None:
        self._send = send
        self._transcript: list[ConversationMessage] = []
        if greeting:
            self._transcript.append(_text_message(greeting, is_user=False))
        self.busy = False

    @property
    def transcript(self) -> tuple[ConversationMessage, ...]:
        return tuple(self._transcript)

    def history(self) -> list[dict]:
        """Text messages only, in the {role, content} shape the endpoint takes."""
        return [
            {"role": "user" if m.is_user else "assistant", "content": m.message}
            for m in self._transcript
            if m.type == "text"
        ]

    async def submit(self, text: str) -> Optional[ConversationMessage]:
        """Send one user message. Returns the reply, or None if the input was dropped."""
        text = text.strip()
        if self.busy or not text:
            return None

        self._transcript.append(_text_message(text, is_user=True))
        self.busy = True
        try:
            try:
                data = await self._send({"message": text, "messages": self.history()})
                reply = ConversationMessage(
                    id=uuid.uuid4().hex,
                    message=data.get("message", ""),
                    is_user=False,
                    timestamp=data.get("timestamp") or _now(),
                    type=data.get("type") or "text",
                    chart_data=data.get("chart_data"),
                    chart_title=data.get("chart_title"),
                    chart_type=data.get("chart_type"),
                )
            except Exception as exc:
                logger.error("Error sending message: %s", exc)
                reply = _text_message(_failure_text(exc), is_user=False)
            self._transcript.append(reply)
            return reply
        finally:
            self.busy = False
