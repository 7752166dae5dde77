# Shared fixtures: in-process doubles for the vector index, embedding model,
# chat model and listing store (no network).

import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["ENV"] = "development"
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("SUPABASE_KEY", "test-key")

from src.providers.tokenizer_service import TokenizerBackend, TokenizerService  # noqa: E402
from src.query.models import VectorMatch  # noqa: E402
from src.services.tenant_config import TenantConfig, TenantPrompts  # noqa: E402
from src.shared.errors import UpstreamRequestError  # noqa: E402

TEMPLATE = (
    "Preferências: {onboardingAnswers}\n"
    "Histórico: {chatHistory}\n"
    "Contexto: {context}\n"
    "Pergunta: {question}"
)


class WordTokenizerBackend(TokenizerBackend):
    """One token per whitespace-separated word."""

    def __init__(self):
        self._vocab: Dict[str, int] = {}
        self._words: List[str] = []

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    def encode(self, text: str) -> List[int]:
        ids = []
        for word in text.split():
            if word not in self._vocab:
                self._vocab[word] = len(self._words)
                self._words.append(word)
            ids.append(self._vocab[word])
        return ids

    def decode(self, token_ids: List[int]) -> str:
        return " ".join(self._words[i] for i in token_ids)


class FakeVectorIndex:
    """
    Returns canned matches per slot. The slot is inferred from the filter:
    ``listing_id`` -> listing, ``development_id`` -> development, else broad.
    """

    def __init__(self, listing=None, development=None, broad=None, fail=()):
        self.results = {
            "listing": list(listing or []),
            "development": list(development or []),
            "broad": list(broad or []),
        }
        self.fail = set(fail)
        self.calls = []

    @staticmethod
    def slot_for(filters) -> str:
        filters = filters or {}
        if "listing_id" in filters:
            return "listing"
        if "development_id" in filters:
            return "development"
        return "broad"

    async def query(self, scope, vector, *, top_k, filters=None, include_metadata=True):
        slot = self.slot_for(filters)
        self.calls.append(
            {"slot": slot, "scope": scope, "top_k": top_k, "filters": dict(filters or {})}
        )
        if slot in self.fail:
            raise ConnectionError(f"{slot} index unavailable")
        return list(self.results[slot])


class FakeEmbedder:
    def __init__(self, vector=None, dims: int = 3, error: Optional[Exception] = None):
        self.vector = vector if vector is not None else [0.1, 0.2, 0.3]
        self.error = error
        self._dims = dims
        self.texts: List[str] = []

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def model_id(self) -> str:
        return "fake-embedding"

    async def embed_query(self, text: str):
        self.texts.append(text)
        if self.error:
            raise self.error
        return self.vector


class FakeChatModel:
    """Plays back scripted outcomes: strings are answers, exceptions are raised."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or ["resposta"])
        self.calls = []

    @property
    def model_id(self) -> str:
        return "fake-chat"

    async def complete(self, messages, *, max_tokens=None, temperature=None, response_format=None):
        self.calls.append(
            {
                "messages": list(messages),
                "max_tokens": max_tokens,
                "response_format": response_format,
            }
        )
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def overloaded(status: int = 503) -> UpstreamRequestError:
    return UpstreamRequestError("chat", status, "model overloaded")


class FakeListingStore:
    def __init__(
        self,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        agent_listings: Optional[Dict[str, List[str]]] = None,
        error: Optional[Exception] = None,
    ):
        self.min_price = min_price
        self.max_price = max_price
        self.agent_listings = agent_listings or {}
        self.error = error
        self.calls = []

    async def get_min_price(self, client_id):
        self.calls.append(("min", client_id))
        if self.error:
            raise self.error
        return self.min_price

    async def get_max_price(self, client_id):
        self.calls.append(("max", client_id))
        if self.error:
            raise self.error
        return self.max_price

    async def get_listing_ids_for_agent(self, user_id):
        self.calls.append(("agent", user_id))
        if self.error:
            raise self.error
        return list(self.agent_listings.get(user_id, []))


def make_match(id, score=0.5, **metadata) -> VectorMatch:
    metadata.setdefault("text", f"texto {id}")
    return VectorMatch(id=id, score=score, metadata=metadata)


@pytest.fixture
def tokenizer():
    return TokenizerService(backend=WordTokenizerBackend())


@pytest.fixture
def tenant():
    return TenantConfig(
        client_id="demo-realty",
        client_name="Demo Imobiliária",
        index_name="demo-realty",
        namespace="listings",
        prompts=TenantPrompts(
            system_instruction=TEMPLATE,
            fallback_response="Tente mais tarde.",
        ),
    )

