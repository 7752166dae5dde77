"""
Structured filter extraction from Portuguese natural-language queries.

Filters are produced by an ordered table of ``FilterRule`` records applied to
the lower-cased query text. Rules later in the table overwrite earlier ones
for the same field (e.g. "mais de 3 quartos" first matches the exact bedroom
rule, then the "more than" rule replaces it).

A filter set maps a metadata field to either a literal (equality / boolean
flag) or a ``RangePredicate``. The same filter set drives the broad vector
query and the filter-satisfaction boost in re-ranking.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from numbers import Real
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Union

from src.shared.observability import get_logger

logger = get_logger(__name__)


class FilterOp(str, Enum):
    LT = "lt"
    GT = "gt"


@dataclass(frozen=True)
class RangePredicate:
    """Numeric comparison against a metadata field."""

    op: FilterOp
    value: float

    def is_satisfied_by(self, candidate: Any) -> bool:
        number = _as_number(candidate)
        if number is None:
            return False
        if self.op is FilterOp.LT:
            return number < self.value
        if self.op is FilterOp.GT:
            return number > self.value
        raise ValueError(f"Unhandled filter operator: {self.op!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op.value, "value": self.value}


FilterValue = Union[RangePredicate, bool, int, float, str]
FilterSet = Dict[str, FilterValue]


@dataclass(frozen=True)
class ExtractionContext:
    """Facts about the conversation that some rules need."""

    current_listing_price: Optional[float] = None


RuleTransform = Callable[["re.Match[str]", ExtractionContext], Optional[FilterValue]]


@dataclass(frozen=True)
class FilterRule:
    name: str
    pattern: Pattern[str]
    field: str
    transform: RuleTransform

    def apply(self, text: str, context: ExtractionContext) -> Optional[FilterValue]:
        match = self.pattern.search(text)
        if match is None:
            return None
        return self.transform(match, context)


# ---- number parsing ----

_THOUSANDS_DOT = re.compile(r"^\d{1,3}(?:\.\d{3})+(?:,\d+)?$")


def parse_european_number(raw: str) -> Optional[float]:
    """
    Parse a number written with European separators.

    "300.000,50" -> 300000.5, "300.000" -> 300000.0, "85,5" -> 85.5,
    "1.5" -> 1.5. Returns None when the text is not a number.
    """
    if raw is None:
        return None
    text = raw.strip().strip(".,")
    if not text:
        return None
    if _THOUSANDS_DOT.match(text) or "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Real):
        return float(value)
    if isinstance(value, str):
        return parse_european_number(value)
    return None


# ---- rule transforms ----


def _exact_int(match: "re.Match[str]", _: ExtractionContext) -> Optional[FilterValue]:
    return int(match.group(1))


def _range_int(op: FilterOp) -> RuleTransform:
    def transform(match, _):
        return RangePredicate(op, int(match.group(1)))

    return transform


def _range_number(op: FilterOp) -> RuleTransform:
    def transform(match, _):
        value = parse_european_number(match.group(1))
        if value is None:
            return None
        return RangePredicate(op, value)

    return transform


def _relative_to_current_price(op: FilterOp) -> RuleTransform:
    def transform(_, context):
        if context.current_listing_price is None:
            return None
        return RangePredicate(op, float(context.current_listing_price))

    return transform


def _flag(_: "re.Match[str]", __: ExtractionContext) -> Optional[FilterValue]:
    return True


_NUMBER = r"(\d[\d.,]*)"
_EURO = r"\s*(?:€|euros?\b)"
_SQM = r"\s*(?:m²|m2\b|metros quadrados)"


def _rule(name: str, pattern: str, field: str, transform: RuleTransform) -> FilterRule:
    return FilterRule(name, re.compile(pattern), field, transform)


FILTER_RULES: List[FilterRule] = [
    # Bedrooms: exact, then typology, then the "more/less than" forms override
    _rule("bedrooms_exact", r"\b(\d+)\s*quartos?\b", "num_bedrooms", _exact_int),
    _rule("bedrooms_typology", r"\bt(\d{1,2})\b", "num_bedrooms", _exact_int),
    _rule(
        "bedrooms_more_than",
        r"mais de\s*(\d+)\s*quartos?",
        "num_bedrooms",
        _range_int(FilterOp.GT),
    ),
    _rule(
        "bedrooms_less_than",
        r"menos de\s*(\d+)\s*quartos?",
        "num_bedrooms",
        _range_int(FilterOp.LT),
    ),
    # Bathrooms
    _rule(
        "bathrooms_exact",
        r"\b(\d+)\s*casas?\s*de\s*banho",
        "num_bathrooms",
        _exact_int,
    ),
    # Area and price ceilings
    _rule(
        "area_less_than",
        r"menos de\s*" + _NUMBER + _SQM,
        "total_area_sqm",
        _range_number(FilterOp.LT),
    ),
    _rule(
        "price_less_than",
        r"menos de\s*" + _NUMBER + _EURO,
        "price_eur",
        _range_number(FilterOp.LT),
    ),
    # Relative to the listing the visitor is looking at
    _rule(
        "price_cheaper_than_current",
        r"mais (?:barato|baixo)",
        "price_eur",
        _relative_to_current_price(FilterOp.LT),
    ),
    _rule(
        "price_dearer_than_current",
        r"mais (?:caro|alto)",
        "price_eur",
        _relative_to_current_price(FilterOp.GT),
    ),
    # Amenities
    _rule("pool", r"piscina", "has_pool", _flag),
    _rule("garden", r"jardim", "has_garden", _flag),
    _rule("garage", r"garagem", "has_garage", _flag),
    _rule("elevator", r"elevador", "has_elevator", _flag),
    _rule("balcony", r"varanda", "has_balcony", _flag),
    _rule("terrace", r"terraço", "has_terrace", _flag),
    _rule("gym", r"ginásio", "has_gym", _flag),
    _rule(
        "ev_charging",
        r"carregamento elétrico",
        "has_electric_car_charging",
        _flag,
    ),
    _rule("pets", r"animais permitidos", "pets_allowed", _flag),
]


def extract_query_filters(
    query: str,
    current_listing_price: Optional[float] = None,
    *,
    rules: Optional[List[FilterRule]] = None,
) -> FilterSet:
    """
    Extract a filter set from free text. Never raises on unrecognised text.

    Args:
        query: Raw query text
        current_listing_price: Price of the listing currently in scope, enables
            the "mais barato"/"mais caro" relative rules
        rules: Rule table override (defaults to ``FILTER_RULES``)

    Returns:
        Mapping of metadata field to literal or ``RangePredicate``
    """
    if not query:
        return {}
    text = query.lower()
    context = ExtractionContext(current_listing_price=current_listing_price)
    filters: FilterSet = {}
    for rule in rules if rules is not None else FILTER_RULES:
        value = rule.apply(text, context)
        if value is not None:
            filters[rule.field] = value
    return filters


def extract_onboarding_filters(
    onboarding_answers: Union[Mapping[str, Any], str, None],
) -> FilterSet:
    """Run the query rules over the serialized onboarding answers."""
    if not onboarding_answers:
        return {}
    if isinstance(onboarding_answers, str):
        text = onboarding_answers
    else:
        text = json.dumps(onboarding_answers, ensure_ascii=False, default=str)
    return extract_query_filters(text)


def merge_filters(query_filters: FilterSet, onboarding_filters: FilterSet) -> FilterSet:
    """Onboarding filters overlaid by query filters; the query wins on conflict."""
    merged: FilterSet = dict(onboarding_filters)
    for key, value in query_filters.items():
        if key in onboarding_filters and onboarding_filters[key] != value:
            logger.info(
                "filter_override",
                field=key,
                onboarding_value=_describe(onboarding_filters[key]),
                query_value=_describe(value),
            )
        merged[key] = value
    return merged


def filter_satisfied(expected: FilterValue, actual: Any) -> bool:
    """Whether a metadata value satisfies one filter predicate."""
    if isinstance(expected, RangePredicate):
        return expected.is_satisfied_by(actual)
    if isinstance(expected, bool):
        return isinstance(actual, bool) and actual == expected
    if isinstance(actual, bool) or actual is None:
        return False
    return actual == expected


def count_satisfied(filters: FilterSet, metadata: Mapping[str, Any]) -> int:
    return sum(
        1
        for key, expected in filters.items()
        if filter_satisfied(expected, metadata.get(key))
    )


_LISTING_CODE = re.compile(r"\bap-\d+\b")


def extract_listing_code(query: str) -> Optional[str]:
    """Listing code mentioned in the query text (e.g. "AP-102" -> "ap-102")."""
    if not query:
        return None
    match = _LISTING_CODE.search(query.lower())
    return match.group(0) if match else None


def filters_to_dict(filters: FilterSet) -> Dict[str, Any]:
    """JSON-friendly view of a filter set (for logs and diagnostics)."""
    return {key: _describe(value) for key, value in filters.items()}


def _describe(value: FilterValue) -> Any:
    if isinstance(value, RangePredicate):
        return value.to_dict()
    return value
