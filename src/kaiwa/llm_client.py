"""Streaming client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Optional, Sequence

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Wrap transport or API failures when talking to the text-generation provider."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class LLMRefusalError(LLMError):
    """The model declined to produce the requested dialogue."""

    def __init__(self, detail: Any):
        super().__init__(status.HTTP_502_BAD_GATEWAY, detail)


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None

    def asdict(self) -> dict[str, Optional[str]]:
        payload: dict[str, Optional[str]] = {"event": self.event, "data": self.data}
        if self.event_id is not None:
            payload["id"] = self.event_id
        return payload


def parse_sse_event(lines: Iterable[str]) -> ServerSentEvent:
    event_name: Optional[str] = None
    event_id: Optional[str] = None
    data_lines: list[str] = []

    for line in lines:
        field, _, value = line.partition(":")
        value = value.lstrip(" ")
        if field == "event":
            event_name = value or None
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            event_id = value or None

    data = "\n".join(data_lines)
    return ServerSentEvent(data=data, event=event_name or "message", event_id=event_id)


async def iter_sse_events(
    response: httpx.Response,
) -> AsyncGenerator[ServerSentEvent, None]:
    """Parse a `text/event-stream` response body into events."""

    buffer: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if buffer:
                yield parse_sse_event(buffer)
                buffer.clear()
            continue
        if line.startswith(":"):
            continue
        buffer.append(line)
    if buffer:
        yield parse_sse_event(buffer)


class CompletionClient:
    """Stream chat completions from the configured provider."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        # An explicit transport bypasses the shared pool (used by tests).
        self._transport = transport
        self._private_client: httpx.AsyncClient | None = None

    @property
    def provider(self) -> str:
        return self._settings.llm_provider

    @property
    def model(self) -> str:
        return self._settings.resolved_llm_model

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    def _build_http_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
        if self._transport is not None:
            return httpx.AsyncClient(timeout=timeout, transport=self._transport)
        limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
        return httpx.AsyncClient(timeout=timeout, limits=limits, http2=True)

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._transport is not None:
            if self._private_client is None:
                self._private_client = self._build_http_client()
            return self._private_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                client = self._build_http_client()
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        api_key = self._settings.llm_api_key
        if api_key is None:
            raise LLMError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                f"No API key configured for LLM provider '{self.provider}'",
            )
        headers = {
            "Authorization": f"Bearer {api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.provider == "openrouter":
            if self._settings.openrouter_app_url:
                referer = str(self._settings.openrouter_app_url)
                headers["HTTP-Referer"] = referer
                headers["Referer"] = referer
            if self._settings.openrouter_app_name:
                headers["X-Title"] = self._settings.openrouter_app_name
        return headers

    @property
    def _base_url(self) -> str:
        return self._settings.llm_base_url.rstrip("/")

    def build_payload(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        response_format: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Return the streaming chat-completions request body."""

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "temperature": self._settings.llm_temperature,
            "stream": True,
        }
        if response_format is not None:
            payload["response_format"] = response_format
        return payload

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Optional[str]], None]:
        """Yield raw SSE payload dictionaries for a prebuilt request body."""

        url = f"{self._base_url}/chat/completions"
        headers = self._headers

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise LLMError(response.status_code, detail)

                logger.debug(
                    "Streaming completion from %s (model=%s)",
                    self.provider,
                    payload.get("model"),
                )
                async for event in iter_sse_events(response):
                    yield event.asdict()
        except httpx.HTTPError as exc:
            raise LLMError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def aclose(self) -> None:
        if self._private_client is not None:
            await self._private_client.aclose()
            self._private_client = None
            return
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "The LLM provider returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
            return error or payload
        return payload


__all__ = [
    "CompletionClient",
    "LLMError",
    "LLMRefusalError",
    "ServerSentEvent",
    "iter_sse_events",
    "parse_sse_event",
]
