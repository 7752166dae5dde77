"""
Per-request retrieval types: scoping hints, caller role, vector matches.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ContextType(str, Enum):
    LISTING = "listing"
    DEVELOPMENT = "development"


@dataclass(frozen=True)
class ExternalContext:
    """UI hint that the visitor is looking at a listing or development."""

    type: ContextType
    value: str

    @property
    def listing_id(self) -> Optional[str]:
        return self.value if self.type is ContextType.LISTING else None

    @property
    def development_id(self) -> Optional[str]:
        return self.value if self.type is ContextType.DEVELOPMENT else None


class UserRole(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"
    PROMOTER = "promoter"
    VISITOR = "visitor"

    @property
    def is_restricted(self) -> bool:
        """Restricted roles only see listings on their allow-list."""
        return self is UserRole.PROMOTER


@dataclass(frozen=True)
class UserContext:
    user_id: str
    role: UserRole


@dataclass(frozen=True)
class Visibility:
    """
    Resolved listing visibility for the caller.

    ``allowed_listing_ids`` is None for unrestricted callers; a restricted
    caller with an empty allow-list sees nothing.
    """

    allowed_listing_ids: Optional[Sequence[str]] = None

    @property
    def restricted(self) -> bool:
        return self.allowed_listing_ids is not None

    @property
    def sees_nothing(self) -> bool:
        return self.allowed_listing_ids is not None and not self.allowed_listing_ids


UNRESTRICTED = Visibility()


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return str(self.metadata.get("text") or "")

    @property
    def listing_id(self) -> Optional[str]:
        return self.metadata.get("listing_id")

    @property
    def development_id(self) -> Optional[str]:
        return self.metadata.get("development_id")

    def with_score(self, score: float) -> "VectorMatch":
        return replace(self, score=score)


@dataclass
class RawMatchSets:
    """The three hybrid search slots, before merging."""

    listing: List[VectorMatch] = field(default_factory=list)
    development: List[VectorMatch] = field(default_factory=list)
    broad: List[VectorMatch] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.listing) + len(self.development) + len(self.broad)

    @property
    def current_listing_price(self) -> Optional[float]:
        """Price of the in-scope listing, from the first targeted match carrying one."""
        for match in self.listing:
            price = match.metadata.get("price_eur")
            if price is not None and not isinstance(price, bool):
                try:
                    return float(price)
                except (TypeError, ValueError):
                    continue
        return None
