"""
Superlative price questions ("o mais barato", "preço máximo") answered from
the structured listing store instead of vector search.

The answer is a short sentence that the context budgeter appends to the
retrieved context; it never drives re-ranking.
"""

from enum import Enum
from typing import Optional, Tuple

from src.services.listing_store import ListingStore
from src.shared.observability import get_logger
from src.shared.observability.metrics import aggregate_lookup_total

logger = get_logger(__name__)


class AggregateKind(str, Enum):
    MIN = "min"
    MAX = "max"


# Checked in order; a query naming both extremes is treated as MIN.
AGGREGATE_TRIGGERS: Tuple[Tuple[AggregateKind, Tuple[str, ...]], ...] = (
    (AggregateKind.MIN, ("mais barato", "preço mais baixo", "preço mínimo")),
    (AggregateKind.MAX, ("mais caro", "preço mais alto", "preço máximo")),
)

FOUND_MESSAGES = {
    AggregateKind.MIN: "A propriedade com o preço mais baixo disponível é de {price}€.",
    AggregateKind.MAX: "A propriedade com o preço mais alto disponível é de {price}€.",
}
NOT_FOUND_MESSAGES = {
    AggregateKind.MIN: "Não foi possível encontrar o preço mínimo nos documentos fornecidos.",
    AggregateKind.MAX: "Não foi possível encontrar o preço máximo nos documentos fornecidos.",
}
LOOKUP_ERROR_MESSAGE = "Ocorreu um erro ao tentar obter informações de preço."


def detect_aggregate_kind(query: str) -> Optional[AggregateKind]:
    if not query:
        return None
    text = query.lower()
    for kind, phrases in AGGREGATE_TRIGGERS:
        if any(phrase in text for phrase in phrases):
            return kind
    return None


def format_price(price: float) -> str:
    """250000.0 -> "250000", 199999.5 -> "199999.5"."""
    if float(price).is_integer():
        return str(int(price))
    return str(price)


class AggregateQueryHelper:
    def __init__(self, store: ListingStore):
        self.store = store

    async def answer(self, query: str, client_id: str) -> Optional[str]:
        """
        Sentence answering a superlative price query, or None when the query
        is not one.

        A store failure is logged and turned into a notice string; it does
        not fail the chat request.
        """
        kind = detect_aggregate_kind(query)
        if kind is None:
            return None

        try:
            if kind is AggregateKind.MIN:
                price = await self.store.get_min_price(client_id)
            elif kind is AggregateKind.MAX:
                price = await self.store.get_max_price(client_id)
            else:
                raise ValueError(f"Unhandled aggregate kind: {kind!r}")
        except Exception as exc:
            aggregate_lookup_total.labels(kind=kind.value, status="error").inc()
            logger.error(
                "aggregate_lookup_failed",
                kind=kind.value,
                client_id=client_id,
                error=str(exc),
            )
            return LOOKUP_ERROR_MESSAGE

        if price is None:
            aggregate_lookup_total.labels(kind=kind.value, status="not_found").inc()
            logger.info("aggregate_lookup_empty", kind=kind.value, client_id=client_id)
            return NOT_FOUND_MESSAGES[kind]

        aggregate_lookup_total.labels(kind=kind.value, status="found").inc()
        return FOUND_MESSAGES[kind].format(price=format_price(price))
