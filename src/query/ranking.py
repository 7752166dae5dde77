"""
Result merging and re-ranking.

Targeted matches (listing, then development) are trusted first; broad
matches are appended only when their id is new. Each candidate then gets
additive boosts on top of its vector score:

    + context_listing   metadata listing_id == listing in UI context
    + query_listing     metadata listing_id == listing code named in the query
    + development       metadata development_id == development in scope
    + per_filter * k    k = filters the metadata satisfies

Sorting is stable, so ties keep merge order, and the list is capped.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from src.query.filters import FilterSet, count_satisfied
from src.query.models import RawMatchSets, VectorMatch
from src.shared.config import BoostWeights, RetrievalConfig
from src.shared.observability import get_logger
from src.shared.observability.metrics import ranking_candidates_total

logger = get_logger(__name__)


@dataclass(frozen=True)
class RankingContext:
    """Per-request signals the boosts compare metadata against."""

    context_listing_id: Optional[str] = None
    query_listing_id: Optional[str] = None
    development_id: Optional[str] = None
    filters: Optional[FilterSet] = None


def merge_match_sets(raw: RawMatchSets) -> List[VectorMatch]:
    """Targeted matches first, then broad matches whose id was not yet seen."""
    merged: List[VectorMatch] = []
    seen = set()
    for match in _chain(raw.listing, raw.development, raw.broad):
        if match.id in seen:
            continue
        seen.add(match.id)
        merged.append(match)
    return merged


def _chain(*groups: Iterable[VectorMatch]) -> Iterable[VectorMatch]:
    for group in groups:
        yield from group


class ReRanker:
    """Applies boost weights to merged matches and keeps the best ones."""

    def __init__(self, retrieval: Optional[RetrievalConfig] = None):
        retrieval = retrieval or RetrievalConfig()
        self.boosts: BoostWeights = retrieval.boosts
        self.max_results = retrieval.max_results

    def rank(self, raw: RawMatchSets, context: RankingContext) -> List[VectorMatch]:
        """
        Merge, boost, sort and cap.

        Args:
            raw: Matches from the three hybrid search slots
            context: Listing/development ids and filters for the boosts

        Returns:
            At most ``max_results`` matches, highest adjusted score first
        """
        candidates = merge_match_sets(raw)
        ranking_candidates_total.observe(len(candidates))
        if not candidates:
            return []

        rescored = [match.with_score(self.score(match, context)) for match in candidates]
        # sorted() is stable: equal scores keep merge order
        ranked = sorted(rescored, key=lambda m: m.score, reverse=True)
        ranked = ranked[: self.max_results]

        logger.debug(
            "reranked_matches",
            candidates=len(candidates),
            kept=len(ranked),
            top_score=ranked[0].score,
        )
        return ranked

    def score(self, match: VectorMatch, context: RankingContext) -> float:
        score = match.score
        listing_id = match.listing_id
        if context.context_listing_id and listing_id == context.context_listing_id:
            score += self.boosts.context_listing
        if context.query_listing_id and listing_id == context.query_listing_id:
            score += self.boosts.query_listing
        if context.development_id and match.development_id == context.development_id:
            score += self.boosts.development
        if context.filters:
            score += self.boosts.per_filter * count_satisfied(
                context.filters, match.metadata
            )
        return score
