import pytest

from src.services.relevance import quick_relevance_check


@pytest.mark.parametrize(
    "query",
    [
        "Dá-me uma receita de bolo",
        "Qual o resultado do jogo de futebol?",
        "Recommend a good movie",
        "Que tempo vai fazer amanhã?",
    ],
)
def test_off_topic_queries_are_refused(query):
    verdict = quick_relevance_check(query, "Demo Imobiliária")

    assert not verdict.is_relevant
    assert "Demo Imobiliária" in verdict.suggested_response


@pytest.mark.parametrize(
    "query",
    [
        "Tem T2 com piscina?",
        "Quanto custa o apartamento?",
        "Há garagem para o carro?",
        "O empreendimento tem ginásio?",
        "Olá, bom dia",
        "O prédio tem carregamento elétrico?",
    ],
)
def test_real_estate_or_neutral_queries_pass(query):
    verdict = quick_relevance_check(query, "Demo Imobiliária")

    assert verdict.is_relevant
    assert verdict.suggested_response is None


def test_plural_off_topic_word_matches():
    assert not quick_relevance_check("receitas fáceis", "X").is_relevant
