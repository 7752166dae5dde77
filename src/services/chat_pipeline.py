"""
RagPipeline: one chat turn from question to answer.

    filters -> hybrid search -> re-rank -> budgeted prompt -> completion

Collaborators are passed in explicitly; ``build_pipeline`` wires the
production ones from a ``ConnectionManager``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Union

import httpx

from src.providers.chat.base import ChatMessage, TurnRole
from src.providers.chat.openai import OpenAIChatProvider
from src.providers.embeddings.base import EmbeddingProvider
from src.providers.embeddings.contracts import validate_embedding
from src.providers.embeddings.openai import OpenAIEmbeddingProvider
from src.providers.tokenizer_service import TokenizerService
from src.query.aggregate import AggregateQueryHelper
from src.query.filters import (
    FilterSet,
    extract_listing_code,
    extract_onboarding_filters,
    extract_query_filters,
    merge_filters,
)
from src.query.hybrid_search import (
    HybridSearchOrchestrator,
    QdrantVectorIndex,
    development_in_scope,
)
from src.query.models import (
    UNRESTRICTED,
    ExternalContext,
    RawMatchSets,
    UserContext,
    VectorMatch,
    Visibility,
)
from src.query.ranking import RankingContext, ReRanker
from src.services.context_budget_manager import (
    CONTEXT_SEPARATOR,
    ChatHistory,
    ContextBudgetManager,
)
from src.services.listing_store import ListingStore, SupabaseListingStore
from src.services.relevance import quick_relevance_check
from src.services.response_generator import ResponseGenerator
from src.services.tenant_config import (
    FileTenantConfigProvider,
    TenantConfig,
    TenantConfigProvider,
)
from src.shared.config import BudgetConfig, Config, Settings
from src.shared.connections import ConnectionManager
from src.shared.errors import MissingQueryError, RealtyRagError, UpstreamRequestError
from src.shared.observability import bind_tenant, get_logger
from src.shared.observability.metrics import chat_requests_total

logger = get_logger(__name__)

SUGGESTION_COUNT = 3
SUGGESTIONS_PROMPT = """
Based on the following context, generate exactly three distinct, relevant, and concise questions a user might ask.
Format the output as a JSON object with a "questions" key holding an array of strings. For example: {{"questions": ["Question 1", "Question 2", "Question 3"]}}.
If you cannot generate three relevant questions from the context, return {{"questions": []}}.

Context:
{context}
"""


@dataclass
class ChatRequest:
    client_id: str
    query: str
    external_context: Optional[ExternalContext] = None
    user_context: Optional[UserContext] = None
    chat_history: ChatHistory = None
    onboarding_answers: Union[Mapping[str, Any], str, None] = None


class RagPipeline:
    def __init__(
        self,
        *,
        tenants: TenantConfigProvider,
        embedder: EmbeddingProvider,
        orchestrator: HybridSearchOrchestrator,
        reranker: ReRanker,
        listing_store: ListingStore,
        generator: ResponseGenerator,
        tokenizer: TokenizerService,
        budget: Optional[BudgetConfig] = None,
    ):
        self.tenants = tenants
        self.embedder = embedder
        self.orchestrator = orchestrator
        self.reranker = reranker
        self.listing_store = listing_store
        self.aggregates = AggregateQueryHelper(listing_store)
        self.generator = generator
        self.tokenizer = tokenizer
        self.budget = budget or BudgetConfig()

    def get_tenant(self, client_id: str) -> TenantConfig:
        tenant = self.tenants.get(client_id)
        bind_tenant(tenant.client_id)
        return tenant

    async def generate_response(self, request: ChatRequest) -> str:
        """
        Answer one visitor question.

        Raises:
            MissingQueryError: empty question
            TenantNotFoundError: unknown client id
            PromptTemplateMissingError: tenant has no system prompt
            ModelOverloadedError / ModelInvocationError: model failure
        """
        query = (request.query or "").strip()
        if not query:
            raise MissingQueryError()

        tenant = self.get_tenant(request.client_id)
        try:
            answer = await self._answer(tenant, query, request)
        except RealtyRagError as exc:
            chat_requests_total.labels(
                client_id=tenant.client_id, status=exc.error_code
            ).inc()
            raise
        chat_requests_total.labels(client_id=tenant.client_id, status="success").inc()
        return answer

    async def _answer(self, tenant: TenantConfig, query: str, request: ChatRequest) -> str:
        if tenant.relevance_screen:
            verdict = quick_relevance_check(query, tenant.client_name)
            if not verdict.is_relevant:
                logger.info("query_rejected_off_topic", client_id=tenant.client_id)
                return verdict.suggested_response or ""

        aggregate_answer = await self.aggregates.answer(query, tenant.client_id)

        onboarding_filters = extract_onboarding_filters(request.onboarding_answers)
        merged_filters = merge_filters(extract_query_filters(query), onboarding_filters)

        raw = await self.retrieve(
            tenant,
            query,
            external_context=request.external_context,
            user_context=request.user_context,
            filters=merged_filters,
        )
        matches = self.rank(tenant, raw, query, request.external_context, onboarding_filters)

        budget = ContextBudgetManager.from_config(self.tokenizer, self.budget)
        assembled = budget.assemble(
            tenant=tenant,
            question=query,
            matches=matches,
            chat_history=request.chat_history,
            onboarding_answers=request.onboarding_answers,
            aggregate_answer=aggregate_answer,
        )
        logger.info(
            "prompt_assembled",
            client_id=tenant.client_id,
            matches=len(matches),
            context_tokens=assembled.context_tokens,
            history_tokens=assembled.history_tokens,
            turns=len(assembled.turns),
        )
        return await self.generator.generate(assembled.system_prompt, assembled.turns, query)

    async def retrieve(
        self,
        tenant: TenantConfig,
        text: str,
        *,
        external_context: Optional[ExternalContext] = None,
        user_context: Optional[UserContext] = None,
        filters: Optional[FilterSet] = None,
    ) -> RawMatchSets:
        """
        Embed ``text`` and run the hybrid search.

        An unreachable embedding service yields empty match sets, so the
        answer falls back to the no-context notice. A malformed vector is
        still an input error.
        """
        try:
            embedding = await self.embedder.embed_query(text)
        except (UpstreamRequestError, httpx.HTTPError) as exc:
            logger.error(
                "embedding_failed",
                client_id=tenant.client_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return RawMatchSets()

        vector = validate_embedding(embedding)
        visibility = await self.resolve_visibility(user_context)
        return await self.orchestrator.search(
            vector,
            tenant,
            external_context=external_context,
            visibility=visibility,
            filters=filters,
        )

    def rank(
        self,
        tenant: TenantConfig,
        raw: RawMatchSets,
        query: str,
        external_context: Optional[ExternalContext],
        onboarding_filters=None,
    ) -> List[VectorMatch]:
        # Re-extract now that the scoped listing's price is known, so relative
        # price phrases ("mais barato") count toward the filter boost.
        ranking_filters = merge_filters(
            extract_query_filters(query, raw.current_listing_price),
            onboarding_filters or {},
        )
        context = RankingContext(
            context_listing_id=external_context.listing_id if external_context else None,
            query_listing_id=extract_listing_code(query),
            development_id=development_in_scope(external_context, tenant),
            filters=ranking_filters,
        )
        return self.reranker.rank(raw, context)

    async def resolve_visibility(self, user_context: Optional[UserContext]) -> Visibility:
        """Listing allow-list for restricted roles; a failed lookup hides everything."""
        if user_context is None or not user_context.role.is_restricted:
            return UNRESTRICTED
        try:
            listing_ids = await self.listing_store.get_listing_ids_for_agent(
                user_context.user_id
            )
        except Exception as exc:
            logger.error(
                "agent_listing_lookup_failed",
                user_id=user_context.user_id,
                error=str(exc),
            )
            return Visibility(allowed_listing_ids=())
        return Visibility(allowed_listing_ids=tuple(listing_ids))

    async def suggest_questions(
        self,
        client_id: str,
        *,
        external_context: Optional[ExternalContext] = None,
        chat_history: ChatHistory = None,
        user_context: Optional[UserContext] = None,
    ) -> List[str]:
        """
        Three follow-up questions grounded in retrieved context.

        Returns ``[]`` when nothing is retrieved or the model output cannot
        be used.
        """
        tenant = self.get_tenant(client_id)
        search_query = suggestion_search_query(external_context, chat_history)

        raw = await self.retrieve(
            tenant,
            search_query,
            external_context=external_context,
            user_context=user_context,
        )
        matches = self.rank(tenant, raw, search_query, external_context)
        texts = [m.text for m in matches if m.text]
        if not texts:
            return []

        prompt = SUGGESTIONS_PROMPT.format(context=CONTEXT_SEPARATOR.join(texts))
        try:
            content = await self.generator.complete(
                [ChatMessage(role=TurnRole.SYSTEM, content=prompt)],
                response_format={"type": "json_object"},
            )
            return parse_suggestions(content)
        except (RealtyRagError, ValueError) as exc:
            logger.warning(
                "suggested_questions_failed",
                client_id=tenant.client_id,
                error=str(exc),
            )
            return []


def suggestion_search_query(
    external_context: Optional[ExternalContext], chat_history: ChatHistory
) -> str:
    if external_context is not None and external_context.listing_id:
        return f"information about {external_context.listing_id}"
    if isinstance(chat_history, str) and chat_history.strip():
        return chat_history.strip()
    if chat_history and not isinstance(chat_history, str):
        text = " ".join(
            str(turn.get("text") or turn.get("content") or "") for turn in chat_history
        ).strip()
        if text:
            return text
    return "general information"


def parse_suggestions(content: str) -> List[str]:
    """
    Accept either a bare JSON array or ``{"questions": [...]}``.

    Raises:
        ValueError: content is not JSON
    """
    parsed = json.loads(content)
    if isinstance(parsed, dict):
        parsed = parsed.get("questions")
    if not isinstance(parsed, list):
        return []
    questions = [q.strip() for q in parsed if isinstance(q, str) and q.strip()]
    return questions[:SUGGESTION_COUNT]


def build_pipeline(
    connections: ConnectionManager,
    config: Config,
    settings: Settings,
    *,
    tenants: Optional[TenantConfigProvider] = None,
) -> RagPipeline:
    """Wire the production collaborators."""
    model_http = connections.get_model_http_client()
    index = QdrantVectorIndex(
        connections.get_qdrant_client(),
        tenant_field=config.retrieval.tenant_field,
    )
    return RagPipeline(
        tenants=tenants or FileTenantConfigProvider(settings.resolved_tenant_config_dir),
        embedder=OpenAIEmbeddingProvider(
            model_http,
            model_id=config.embedding.model_name,
            dims=config.embedding.dims,
        ),
        orchestrator=HybridSearchOrchestrator(index, config.retrieval),
        reranker=ReRanker(config.retrieval),
        listing_store=SupabaseListingStore(connections.get_supabase_http_client()),
        generator=ResponseGenerator(
            OpenAIChatProvider(model_http, model_id=config.generation.model_name),
            config.generation,
        ),
        tokenizer=TokenizerService(config.tokenizer),
        budget=config.budget,
    )


__all__ = [
    "ChatRequest",
    "RagPipeline",
    "build_pipeline",
    "parse_suggestions",
    "suggestion_search_query",
]
