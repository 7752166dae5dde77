"""
OpenAI-compatible chat-completion provider over httpx.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import httpx

from src.providers.chat.base import ChatMessage
from src.providers.http_errors import extract_error_detail
from src.shared.errors import UpstreamRequestError
from src.shared.observability import get_logger
from src.shared.observability.metrics import chat_completion_latency_ms

logger = get_logger(__name__)


class OpenAIChatProvider:
    """ChatModel for the OpenAI ``/chat/completions`` endpoint."""

    COMPLETIONS_ENDPOINT = "/chat/completions"

    def __init__(self, client: httpx.AsyncClient, *, model_id: str):
        self._client = client
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    async def complete(
        self,
        messages: List[ChatMessage],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not messages:
            raise ValueError("At least one message is required.")

        payload: Dict[str, Any] = {
            "model": self._model_id,
            "messages": [message.to_payload() for message in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": response_format,
        }
        payload = {key: value for key, value in payload.items() if value is not None}

        start = time.perf_counter()
        try:
            response = await self._client.post(self.COMPLETIONS_ENDPOINT, json=payload)
        except httpx.TimeoutException as exc:
            raise UpstreamRequestError("chat", None, f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamRequestError("chat", None, str(exc)) from exc
        finally:
            chat_completion_latency_ms.labels(model_id=self._model_id).observe(
                (time.perf_counter() - start) * 1000
            )

        if response.status_code >= 400:
            detail = extract_error_detail(response)
            logger.warning(
                "chat_completion_rejected",
                model_id=self._model_id,
                status=response.status_code,
                detail=detail,
            )
            raise UpstreamRequestError("chat", response.status_code, detail)

        body = response.json()
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamRequestError(
                "chat", response.status_code, "response has no completion choice"
            ) from exc
        return content or ""
