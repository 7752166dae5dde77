"""
Structured listing store (Supabase PostgREST over httpx).

Used for the two things vector search cannot answer: exact price extremes
for a tenant and the listing allow-list of a restricted agent.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

import httpx

from src.providers.http_errors import extract_error_detail
from src.shared.errors import UpstreamRequestError
from src.shared.observability import get_logger

logger = get_logger(__name__)


class ListingStore(Protocol):
    async def get_min_price(self, client_id: str) -> Optional[float]:
        ...

    async def get_max_price(self, client_id: str) -> Optional[float]:
        ...

    async def get_listing_ids_for_agent(self, user_id: str) -> List[str]:
        ...


class SupabaseListingStore:
    """
    ListingStore backed by the ``listings`` and ``agent_listings`` tables.

    The client is expected to carry the PostgREST base URL
    (``{SUPABASE_URL}/rest/v1``) and auth headers; see
    ``ConnectionManager.get_supabase_http_client``.
    """

    LISTINGS_TABLE = "/listings"
    AGENT_LISTINGS_TABLE = "/agent_listings"

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def get_min_price(self, client_id: str) -> Optional[float]:
        return await self._price_extreme(client_id, ascending=True)

    async def get_max_price(self, client_id: str) -> Optional[float]:
        return await self._price_extreme(client_id, ascending=False)

    async def get_listing_ids_for_agent(self, user_id: str) -> List[str]:
        rows = await self._select(
            self.AGENT_LISTINGS_TABLE,
            {"select": "listing_id", "user_id": f"eq.{user_id}"},
        )
        return [str(row["listing_id"]) for row in rows if row.get("listing_id")]

    async def _price_extreme(self, client_id: str, *, ascending: bool) -> Optional[float]:
        direction = "asc" if ascending else "desc"
        rows = await self._select(
            self.LISTINGS_TABLE,
            {
                "select": "price",
                "client_id": f"eq.{client_id}",
                "price": "not.is.null",
                "order": f"price.{direction}",
                "limit": "1",
            },
        )
        if not rows:
            return None
        price = rows[0].get("price")
        return float(price) if price is not None else None

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        try:
            response = await self._client.get(table, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamRequestError("listing_store", None, str(exc)) from exc
        if response.status_code >= 400:
            raise UpstreamRequestError(
                "listing_store", response.status_code, extract_error_detail(response)
            )
        body = response.json()
        if not isinstance(body, list):
            raise UpstreamRequestError(
                "listing_store", response.status_code, "expected a JSON array"
            )
        return body
