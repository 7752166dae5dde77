import pytest

from src.query.filters import (
    FILTER_RULES,
    FilterOp,
    RangePredicate,
    count_satisfied,
    extract_listing_code,
    extract_onboarding_filters,
    extract_query_filters,
    filter_satisfied,
    filters_to_dict,
    merge_filters,
    parse_european_number,
)


def test_budget_and_typology_scenario():
    filters = extract_query_filters("Tenho menos de 300.000€ para gastar, procuro T2")

    assert filters == {
        "price_eur": RangePredicate(FilterOp.LT, 300000),
        "num_bedrooms": 2,
    }


@pytest.mark.parametrize(
    "query",
    ["", "Olá, bom dia!", "Qual é o horário de atendimento?", "???", "12345"],
)
def test_unrecognised_text_yields_empty_filters(query):
    assert extract_query_filters(query) == {}


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("300.000,50", 300000.5),
        ("300.000", 300000.0),
        ("1.250.000", 1250000.0),
        ("85,5", 85.5),
        ("120", 120.0),
        ("abc", None),
        ("", None),
    ],
)
def test_parse_european_number(raw, expected):
    assert parse_european_number(raw) == expected


def test_price_with_decimal_cents():
    filters = extract_query_filters("algo por menos de 300.000,50 euros")

    assert filters["price_eur"] == RangePredicate(FilterOp.LT, 300000.5)


def test_exact_bedrooms_and_bathrooms():
    filters = extract_query_filters("Procuro casa com 3 quartos e 2 casas de banho")

    assert filters == {"num_bedrooms": 3, "num_bathrooms": 2}


def test_more_than_bedrooms_overrides_exact_rule():
    filters = extract_query_filters("Quero mais de 3 quartos")

    assert filters["num_bedrooms"] == RangePredicate(FilterOp.GT, 3)


def test_less_than_bedrooms():
    filters = extract_query_filters("menos de 4 quartos por favor")

    assert filters["num_bedrooms"] == RangePredicate(FilterOp.LT, 4)


def test_area_ceiling_is_not_mistaken_for_price():
    filters = extract_query_filters("menos de 120 m² se possível")

    assert filters == {"total_area_sqm": RangePredicate(FilterOp.LT, 120)}


def test_amenity_flags():
    filters = extract_query_filters(
        "Com piscina, jardim, garagem, elevador, varanda, terraço, ginásio, "
        "carregamento elétrico e animais permitidos"
    )

    assert filters == {
        "has_pool": True,
        "has_garden": True,
        "has_garage": True,
        "has_elevator": True,
        "has_balcony": True,
        "has_terrace": True,
        "has_gym": True,
        "has_electric_car_charging": True,
        "pets_allowed": True,
    }


def test_relative_price_needs_current_listing_price():
    assert "price_eur" not in extract_query_filters("Há algum mais barato?")

    cheaper = extract_query_filters("Há algum mais barato?", current_listing_price=250000)
    dearer = extract_query_filters("E um mais caro?", current_listing_price=250000)

    assert cheaper["price_eur"] == RangePredicate(FilterOp.LT, 250000)
    assert dearer["price_eur"] == RangePredicate(FilterOp.GT, 250000)


def test_rule_table_override():
    only_pool = [rule for rule in FILTER_RULES if rule.name == "pool"]

    assert extract_query_filters("T3 com piscina", rules=only_pool) == {"has_pool": True}


def test_onboarding_answers_run_through_same_rules():
    filters = extract_onboarding_filters(
        {"tipologia": "3 quartos", "orcamento": "menos de 400.000€", "extras": ["piscina"]}
    )

    assert filters == {
        "num_bedrooms": 3,
        "price_eur": RangePredicate(FilterOp.LT, 400000),
        "has_pool": True,
    }


def test_onboarding_answers_empty():
    assert extract_onboarding_filters(None) == {}
    assert extract_onboarding_filters({}) == {}


def test_query_filters_override_onboarding_filters():
    query = {"num_bedrooms": 2, "has_pool": True}
    onboarding = {"num_bedrooms": 3, "price_eur": RangePredicate(FilterOp.LT, 400000)}

    merged = merge_filters(query, onboarding)

    assert merged == {
        "num_bedrooms": 2,
        "has_pool": True,
        "price_eur": RangePredicate(FilterOp.LT, 400000),
    }
    # inputs untouched
    assert onboarding["num_bedrooms"] == 3


def test_merge_with_empty_sides():
    assert merge_filters({}, {"has_pool": True}) == {"has_pool": True}
    assert merge_filters({"has_pool": True}, {}) == {"has_pool": True}


def test_filter_satisfaction_semantics():
    lt = RangePredicate(FilterOp.LT, 300000)

    assert filter_satisfied(lt, 250000)
    assert not filter_satisfied(lt, 300000)
    assert not filter_satisfied(lt, None)
    assert filter_satisfied(RangePredicate(FilterOp.GT, 2), 3)
    assert filter_satisfied(2, 2)
    assert not filter_satisfied(2, 3)
    assert filter_satisfied(True, True)
    assert not filter_satisfied(True, 1)
    assert not filter_satisfied(1, True)


def test_count_satisfied():
    filters = {
        "num_bedrooms": 2,
        "price_eur": RangePredicate(FilterOp.LT, 300000),
        "has_pool": True,
    }

    assert count_satisfied(filters, {"num_bedrooms": 2, "price_eur": 200000}) == 2
    assert count_satisfied(filters, {}) == 0


def test_extract_listing_code():
    assert extract_listing_code("Fale-me do AP-102, por favor") == "ap-102"
    assert extract_listing_code("Qual o preço?") is None


def test_filters_to_dict_is_json_friendly():
    described = filters_to_dict(
        {"price_eur": RangePredicate(FilterOp.LT, 1000), "has_pool": True}
    )

    assert described == {"price_eur": {"op": "lt", "value": 1000}, "has_pool": True}
