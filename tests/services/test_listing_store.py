import httpx
import pytest

from src.services.listing_store import SupabaseListingStore
from src.shared.errors import UpstreamRequestError


def _store(handler):
    client = httpx.AsyncClient(
        base_url="http://supabase.test/rest/v1", transport=httpx.MockTransport(handler)
    )
    return SupabaseListingStore(client)


@pytest.mark.asyncio
async def test_min_price_query_shape():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"price": 185000}])

    price = await _store(handler).get_min_price("demo-realty")

    assert price == 185000.0
    request = seen[0]
    assert request.url.path == "/rest/v1/listings"
    params = request.url.params
    assert params["client_id"] == "eq.demo-realty"
    assert params["price"] == "not.is.null"
    assert params["order"] == "price.asc"
    assert params["limit"] == "1"


@pytest.mark.asyncio
async def test_max_price_orders_descending():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"price": "990000.5"}])

    assert await _store(handler).get_max_price("demo-realty") == 990000.5
    assert seen[0].url.params["order"] == "price.desc"


@pytest.mark.asyncio
async def test_no_priced_listings_returns_none():
    store = _store(lambda request: httpx.Response(200, json=[]))

    assert await store.get_min_price("demo-realty") is None


@pytest.mark.asyncio
async def test_agent_allow_list():
    def handler(request):
        assert request.url.path == "/rest/v1/agent_listings"
        assert request.url.params["user_id"] == "eq.agent-1"
        return httpx.Response(
            200, json=[{"listing_id": "ap-1"}, {"listing_id": None}, {"listing_id": 7}]
        )

    assert await _store(handler).get_listing_ids_for_agent("agent-1") == ["ap-1", "7"]


@pytest.mark.asyncio
async def test_error_status_raises_upstream_error():
    store = _store(
        lambda request: httpx.Response(401, json={"message": "Invalid API key"})
    )

    with pytest.raises(UpstreamRequestError) as exc_info:
        await store.get_min_price("demo-realty")

    assert exc_info.value.status == 401
    assert exc_info.value.detail == "Invalid API key"


@pytest.mark.asyncio
async def test_transport_failure_raises_upstream_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamRequestError) as exc_info:
        await _store(handler).get_listing_ids_for_agent("agent-1")

    assert exc_info.value.status is None
