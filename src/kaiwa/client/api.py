"""HTTP client for the practice service."""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator, Optional, Union

import httpx

from ..llm_client import iter_sse_events
from ..schemas.conversation import Conversation, GenerateRequest, PartialLLMConversation
from ..schemas.events import CompleteEvent, ProgressEvent
from ..schemas.practice import Practice, PracticeDetail, PracticeListItem
from ..schemas.readings import AlignResponse


class ApiError(Exception):
    """Raised for non-success responses and generation error events."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


def _error_from_response(response: httpx.Response) -> ApiError:
    try:
        payload = response.json()
    except ValueError:
        return ApiError(response.status_code, response.text)
    if isinstance(payload, dict) and "detail" in payload:
        return ApiError(response.status_code, payload["detail"])
    return ApiError(response.status_code, payload)


class PracticeApiClient:
    """Thin async wrapper over the practice HTTP endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 300.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )

    async def __aenter__(self) -> "PracticeApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response

    async def list_practices(self) -> list[PracticeListItem]:
        response = await self._request("GET", "/api/practices")
        return [PracticeListItem.model_validate(item) for item in response.json()]

    async def get_practice(self, practice_id: str) -> PracticeDetail:
        response = await self._request("GET", f"/api/practices/{practice_id}")
        return PracticeDetail.model_validate(response.json())

    async def rename_practice(self, practice_id: str, title: str) -> Practice:
        response = await self._request(
            "PATCH", f"/api/practices/{practice_id}", json={"title": title}
        )
        return Practice.model_validate(response.json())

    async def delete_practice(self, practice_id: str) -> None:
        await self._request("DELETE", f"/api/practices/{practice_id}")

    async def get_conversation(self, conversation_id: str) -> Conversation:
        response = await self._request("GET", f"/api/conversations/{conversation_id}")
        return Conversation.model_validate(response.json())

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"/api/conversations/{conversation_id}")

    async def align(self, text: str, reading: Optional[str]) -> AlignResponse:
        response = await self._request(
            "POST", "/api/readings/align", json={"text": text, "reading": reading}
        )
        return AlignResponse.model_validate(response.json())

    async def generate(
        self, request: GenerateRequest
    ) -> AsyncGenerator[Union[ProgressEvent, CompleteEvent], None]:
        """Yield progress drafts and the final result; raise `ApiError` on an error event."""

        body = request.model_dump(by_alias=True, exclude_none=True)
        async with self._client.stream(
            "POST",
            "/api/conversations/generate",
            json=body,
            headers={"Accept": "text/event-stream"},
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise _error_from_response(response)
            async for event in iter_sse_events(response):
                if event.event == "progress":
                    yield ProgressEvent(
                        data=PartialLLMConversation.model_validate_json(event.data)
                    )
                elif event.event == "complete":
                    yield CompleteEvent.model_validate_json(event.data)
                    return
                elif event.event == "error":
                    payload = json.loads(event.data)
                    raise ApiError(
                        int(payload.get("status", 500)),
                        payload.get("detail", "Generation failed"),
                    )


__all__ = ["ApiError", "PracticeApiClient"]
