"""
Hybrid search: three scoped vector queries issued concurrently.

Slots:
    listing      targeted at the listing the visitor is looking at
    development  targeted at the development in context (or the tenant default)
    broad        the whole tenant collection, narrowed by the merged filters

Every query is scoped to the tenant, and to the caller's listing allow-list
when the caller's role is restricted. A failing slot is logged and returns
no matches; the other slots are unaffected.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from qdrant_client.models import FieldCondition, Filter, MatchAny, MatchValue, Range

from src.query.filters import FilterOp, FilterSet, RangePredicate, filters_to_dict
from src.query.models import (
    UNRESTRICTED,
    ExternalContext,
    RawMatchSets,
    VectorMatch,
    Visibility,
)
from src.services.tenant_config import TenantConfig
from src.shared.config import RetrievalConfig
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    vector_search_latency_ms,
    vector_search_matches,
    vector_search_total,
)
from src.shared.observability.tracing import get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)

SLOT_LISTING = "listing"
SLOT_DEVELOPMENT = "development"
SLOT_BROAD = "broad"


@dataclass(frozen=True)
class SearchScope:
    """Where a query runs and which payload constraints it always carries."""

    collection: str
    client_id: str
    namespace: Optional[str] = None
    allowed_listing_ids: Optional[Sequence[str]] = None


class VectorIndex(Protocol):
    """Abstract interface for vector queries."""

    async def query(
        self,
        scope: SearchScope,
        vector: Sequence[float],
        *,
        top_k: int,
        filters: Optional[FilterSet] = None,
        include_metadata: bool = True,
    ) -> List[VectorMatch]:
        ...


class QdrantVectorIndex:
    """
    VectorIndex over a Qdrant collection per tenant.

    Tenant, namespace and allow-list are payload conditions; the filter set
    is translated field by field (literals to ``MatchValue``, ranges to
    ``Range``).
    """

    def __init__(
        self,
        qdrant_client,
        *,
        tenant_field: str = "client_id",
        namespace_field: str = "namespace",
        listing_field: str = "listing_id",
        query_vector_name: Optional[str] = None,
    ):
        self.client = qdrant_client
        self.tenant_field = tenant_field
        self.namespace_field = namespace_field
        self.listing_field = listing_field
        self.query_vector_name = query_vector_name

    async def query(
        self,
        scope: SearchScope,
        vector: Sequence[float],
        *,
        top_k: int,
        filters: Optional[FilterSet] = None,
        include_metadata: bool = True,
    ) -> List[VectorMatch]:
        query_kwargs: Dict[str, Any] = {
            "collection_name": scope.collection,
            "query": list(vector),
            "limit": top_k,
            "query_filter": self.build_filter(scope, filters),
            "with_payload": include_metadata,
            "with_vectors": False,
        }
        if self.query_vector_name:
            query_kwargs["using"] = self.query_vector_name

        response = await self.client.query_points(**query_kwargs)
        return [
            VectorMatch(
                id=str(point.id),
                score=float(point.score),
                metadata=dict(point.payload or {}),
            )
            for point in response.points
        ]

    def build_filter(self, scope: SearchScope, filters: Optional[FilterSet]) -> Filter:
        must: List[FieldCondition] = [
            FieldCondition(key=self.tenant_field, match=MatchValue(value=scope.client_id))
        ]
        if scope.namespace:
            must.append(
                FieldCondition(
                    key=self.namespace_field, match=MatchValue(value=scope.namespace)
                )
            )
        if scope.allowed_listing_ids is not None:
            must.append(
                FieldCondition(
                    key=self.listing_field,
                    match=MatchAny(any=list(scope.allowed_listing_ids)),
                )
            )
        for key, value in (filters or {}).items():
            must.append(_field_condition(key, value))
        return Filter(must=must)


def _field_condition(key: str, value: Any) -> FieldCondition:
    if isinstance(value, RangePredicate):
        if value.op is FilterOp.LT:
            return FieldCondition(key=key, range=Range(lt=value.value))
        if value.op is FilterOp.GT:
            return FieldCondition(key=key, range=Range(gt=value.value))
        raise ValueError(f"Unhandled filter operator: {value.op!r}")
    return FieldCondition(key=key, match=MatchValue(value=value))


class HybridSearchOrchestrator:
    """Runs the listing, development and broad queries for one request."""

    def __init__(self, index: VectorIndex, retrieval: Optional[RetrievalConfig] = None):
        self.index = index
        self.retrieval = retrieval or RetrievalConfig()

    async def search(
        self,
        vector: Sequence[float],
        tenant: TenantConfig,
        *,
        external_context: Optional[ExternalContext] = None,
        visibility: Visibility = UNRESTRICTED,
        filters: Optional[FilterSet] = None,
    ) -> RawMatchSets:
        """
        Issue up to three queries concurrently and return their raw matches.

        Args:
            vector: Query embedding
            tenant: Tenant configuration (collection, namespace, default development)
            external_context: Listing or development the visitor is looking at
            visibility: Caller's listing allow-list, if restricted
            filters: Merged query + onboarding filters for the broad query

        Returns:
            RawMatchSets; all slots are empty when a restricted caller has no
            visible listings
        """
        if visibility.sees_nothing:
            logger.info(
                "hybrid_search_skipped",
                reason="empty_allow_list",
                client_id=tenant.client_id,
            )
            return RawMatchSets()

        scope = SearchScope(
            collection=tenant.index_name,
            client_id=tenant.client_id,
            namespace=tenant.namespace,
            allowed_listing_ids=visibility.allowed_listing_ids,
        )
        listing_id = external_context.listing_id if external_context else None
        development_id = development_in_scope(external_context, tenant)

        with tracer.start_as_current_span("hybrid_search") as span:
            span.set_attribute("client_id", tenant.client_id)
            span.set_attribute("has_listing_context", listing_id is not None)
            span.set_attribute("has_development_context", development_id is not None)

            listing, development, broad = await asyncio.gather(
                self._run_slot(
                    SLOT_LISTING,
                    scope,
                    vector,
                    self.retrieval.listing_top_k,
                    {"listing_id": listing_id} if listing_id else None,
                    enabled=listing_id is not None,
                ),
                self._run_slot(
                    SLOT_DEVELOPMENT,
                    scope,
                    vector,
                    self.retrieval.development_top_k,
                    {"development_id": development_id} if development_id else None,
                    enabled=development_id is not None,
                ),
                self._run_slot(
                    SLOT_BROAD,
                    scope,
                    vector,
                    self.retrieval.broad_top_k,
                    filters or {},
                    enabled=True,
                ),
            )
            result = RawMatchSets(listing=listing, development=development, broad=broad)
            span.set_attribute("matches_total", result.total)

        logger.info(
            "hybrid_search_completed",
            client_id=tenant.client_id,
            listing_matches=len(listing),
            development_matches=len(development),
            broad_matches=len(broad),
            filters=filters_to_dict(filters or {}),
        )
        return result

    async def _run_slot(
        self,
        slot: str,
        scope: SearchScope,
        vector: Sequence[float],
        top_k: int,
        filters: Optional[FilterSet],
        *,
        enabled: bool,
    ) -> List[VectorMatch]:
        if not enabled:
            return []

        start_time = time.time()
        try:
            matches = await self.index.query(
                scope, vector, top_k=top_k, filters=filters, include_metadata=True
            )
        except Exception as exc:
            vector_search_total.labels(slot=slot, status="error").inc()
            logger.error(
                "vector_search_failed",
                slot=slot,
                collection=scope.collection,
                client_id=scope.client_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return []

        latency_ms = (time.time() - start_time) * 1000
        vector_search_total.labels(slot=slot, status="success").inc()
        vector_search_latency_ms.labels(slot=slot).observe(latency_ms)
        vector_search_matches.labels(slot=slot).observe(len(matches))
        return list(matches)


def development_in_scope(
    external_context: Optional[ExternalContext], tenant: TenantConfig
) -> Optional[str]:
    """Development from the UI context, falling back to the tenant default."""
    if external_context is not None and external_context.development_id:
        return external_context.development_id
    return tenant.default_development_id
