# Network clients for Qdrant, the model API and the Supabase listing store.
# Built once at process start and handed to the pipeline by parameter.

from typing import Optional

import httpx
from qdrant_client import AsyncQdrantClient

from .config import Config, Settings
from .observability import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Owns the long-lived async clients used by the chat pipeline"""

    def __init__(self, config: Config, settings: Settings):
        self.config = config
        self.settings = settings
        self._qdrant_client: Optional[AsyncQdrantClient] = None
        self._model_http: Optional[httpx.AsyncClient] = None
        self._supabase_http: Optional[httpx.AsyncClient] = None

    # Qdrant
    def get_qdrant_client(self) -> AsyncQdrantClient:
        """Get or create the async Qdrant client"""
        if self._qdrant_client is None:
            logger.info(
                "Initializing Qdrant client",
                host=self.settings.qdrant_host,
                port=self.settings.qdrant_port,
            )
            self._qdrant_client = AsyncQdrantClient(
                host=self.settings.qdrant_host,
                port=self.settings.qdrant_port,
                api_key=self.settings.qdrant_api_key,
                timeout=self.settings.qdrant_timeout,
            )
        return self._qdrant_client

    async def close_qdrant(self) -> None:
        if self._qdrant_client:
            logger.info("Closing Qdrant client")
            await self._qdrant_client.close()
            self._qdrant_client = None

    # OpenAI-compatible model API
    def get_model_http_client(self) -> httpx.AsyncClient:
        """HTTP client shared by the embedding and chat providers"""
        if self._model_http is None:
            timeout = max(
                self.config.embedding.timeout_seconds,
                self.config.generation.timeout_seconds,
            )
            logger.info(
                "Initializing model API client",
                base_url=self.settings.openai_base_url,
            )
            self._model_http = httpx.AsyncClient(
                base_url=self.settings.openai_base_url.rstrip("/"),
                timeout=httpx.Timeout(timeout),
                headers={
                    "Authorization": f"Bearer {self.settings.openai_api_key}",
                    "content-type": "application/json",
                },
            )
        return self._model_http

    # Supabase PostgREST
    def get_supabase_http_client(self) -> httpx.AsyncClient:
        if self._supabase_http is None:
            logger.info(
                "Initializing listing store client",
                url=self.settings.supabase_url,
            )
            key = self.settings.supabase_key
            self._supabase_http = httpx.AsyncClient(
                base_url=f"{self.settings.supabase_url.rstrip('/')}/rest/v1",
                timeout=httpx.Timeout(15.0),
                headers={
                    "apikey": key,
                    "Authorization": f"Bearer {key}",
                    "Accept": "application/json",
                },
            )
        return self._supabase_http

    async def close_http(self) -> None:
        for name in ("_model_http", "_supabase_http"):
            client = getattr(self, name)
            if client is not None:
                await client.aclose()
                setattr(self, name, None)

    # Lifecycle management
    async def close_all(self) -> None:
        """Close all connections gracefully"""
        logger.info("Closing all connections")
        await self.close_qdrant()
        await self.close_http()
        logger.info("All connections closed")
