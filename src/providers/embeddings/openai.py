"""
OpenAI-compatible embedding provider over httpx.

Calls ``POST {base_url}/embeddings`` with a single input and validates the
returned vector before handing it to the pipeline.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List

import httpx

from src.providers.embeddings.contracts import validate_embedding
from src.providers.http_errors import extract_error_detail
from src.shared.errors import UpstreamRequestError
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    embedding_error_total,
    embedding_latency_ms,
    embedding_request_total,
)

logger = get_logger(__name__)


class OpenAIEmbeddingProvider:
    """EmbeddingProvider for the OpenAI ``/embeddings`` endpoint."""

    EMBEDDINGS_ENDPOINT = "/embeddings"

    def __init__(self, client: httpx.AsyncClient, *, model_id: str, dims: int):
        self._client = client
        self._model_id = model_id
        self._dims = dims

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def model_id(self) -> str:
        return self._model_id

    async def embed_query(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Query text must be non-empty.")

        payload: Dict[str, Any] = {"model": self._model_id, "input": text}
        embedding_request_total.labels(model_id=self._model_id).inc()
        start = time.perf_counter()
        try:
            response = await self._client.post(self.EMBEDDINGS_ENDPOINT, json=payload)
        except httpx.HTTPError as exc:
            embedding_error_total.labels(
                model_id=self._model_id, error_type=type(exc).__name__
            ).inc()
            raise UpstreamRequestError("embeddings", None, str(exc)) from exc

        embedding_latency_ms.labels(model_id=self._model_id).observe(
            (time.perf_counter() - start) * 1000
        )
        if response.status_code >= 400:
            embedding_error_total.labels(
                model_id=self._model_id, error_type=f"http_{response.status_code}"
            ).inc()
            raise UpstreamRequestError(
                "embeddings", response.status_code, extract_error_detail(response)
            )

        body = response.json()
        try:
            raw_vector = body["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            raw_vector = None
        return validate_embedding(raw_vector, expected_dims=self._dims)
