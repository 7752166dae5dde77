"""
Keyword screen for obviously off-topic questions.

A query is refused without calling the model only when it names an
off-topic subject and nothing real-estate related. Matching is on whole
words: off-topic words must match exactly (an optional plural "s" is
allowed), real-estate words match as prefixes so plurals and derived forms
count ("quartos", "apartamentos").
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

OFF_TOPIC_KEYWORDS: FrozenSet[str] = frozenset(
    {
        "receita", "recipe", "cozinhar", "cooking", "comida", "food",
        "ingredientes", "ingredients", "pão", "bread", "bolo", "cake",
        "restaurante", "restaurant", "medicina", "medicine", "saúde", "health",
        "desporto", "sports", "futebol", "football", "música", "music",
        "filme", "movie", "livro", "book", "jogo", "game", "viagem", "travel",
        "motor", "carro", "car", "auto", "tempo", "weather", "exercício",
        "fitness", "treino", "workout", "escola", "school", "trabalho", "job",
        "moda", "fashion", "beleza", "beauty", "tecnologia", "technology",
        "computador", "computer", "software", "hardware", "internet", "web",
    }
)

REAL_ESTATE_KEYWORDS: Tuple[str, ...] = (
    "apartamento", "apartment", "casa", "house", "imóve", "property",
    "propriedade", "preço", "price", "comprar", "buy", "vender", "sell",
    "arrendar", "rent", "metro", "square", "quarto", "bedroom", "sala",
    "living", "cozinha", "kitchen", "garagem", "garage", "varanda", "balcony",
    "elevador", "elevator", "localização", "location", "bairro",
    "neighborhood", "investimento", "investment", "empreendimento", "moradia",
    "t0", "t1", "t2", "t3", "t4", "t5", "piscina", "jardim", "terraço",
    "ginásio", "gym",
)

REFUSAL_TEMPLATE = (
    "Desculpe, mas sou um assistente especializado em imobiliário da "
    "{client_name}. Posso ajudar com questões relacionadas com propriedades, "
    "apartamentos, investimentos imobiliários e informações sobre os nossos "
    "empreendimentos. Como posso ajudar com as suas necessidades imobiliárias?"
)

_WORD = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class RelevanceVerdict:
    is_relevant: bool
    reason: str
    suggested_response: Optional[str] = None


def _is_off_topic_word(word: str) -> bool:
    return word in OFF_TOPIC_KEYWORDS or (
        word.endswith("s") and word[:-1] in OFF_TOPIC_KEYWORDS
    )


def quick_relevance_check(query: str, client_name: str) -> RelevanceVerdict:
    words = _WORD.findall((query or "").lower())
    has_off_topic = any(_is_off_topic_word(word) for word in words)
    has_real_estate = any(
        word.startswith(keyword) for word in words for keyword in REAL_ESTATE_KEYWORDS
    )
    if has_off_topic and not has_real_estate:
        return RelevanceVerdict(
            is_relevant=False,
            reason="Query contains off-topic keywords",
            suggested_response=REFUSAL_TEMPLATE.format(client_name=client_name),
        )
    return RelevanceVerdict(
        is_relevant=True, reason="No obvious off-topic keywords detected"
    )
