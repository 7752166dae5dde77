import pytest

from conftest import WordTokenizerBackend
from src.providers.tokenizer_service import TokenizerService
from src.shared.config import TokenizerConfig


def test_count_tokens_uses_backend():
    service = TokenizerService(backend=WordTokenizerBackend())

    assert service.count_tokens("um dois tres") == 3
    assert service.count_tokens("") == 0
    assert service.count_tokens_batch(["a b", "c"]) == 3
    assert service.backend_name == "WordTokenizerBackend"


def test_truncate_to_token_limit():
    service = TokenizerService(backend=WordTokenizerBackend())

    assert service.truncate_to_token_limit("um dois tres quatro", 2) == "um dois"
    assert service.truncate_to_token_limit("um dois", 5) == "um dois"
    assert service.truncate_to_token_limit("um dois", 0) == ""


def test_unsupported_backend():
    with pytest.raises(ValueError):
        TokenizerService(TokenizerConfig(backend="hf"))
