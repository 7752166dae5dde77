"""
Tokenizer service for deterministic token accounting.

Token counts feed the context budget: the retrieved context block and every
retained chat-history line are charged against the same allowance, so the
counter must be the one the chat model uses. The default backend is tiktoken
with the ``cl100k_base`` encoding used by the gpt-3.5/gpt-4 family.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import tiktoken

from src.shared.config import TokenizerConfig

logger = logging.getLogger(__name__)


class TokenizerBackend(ABC):
    """Abstract base class for tokenizer backends."""

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        """
        Count tokens in text.

        Args:
            text: Input text to tokenize

        Returns:
            Exact token count
        """

    @abstractmethod
    def encode(self, text: str) -> List[int]:
        """Encode text to token IDs."""

    @abstractmethod
    def decode(self, token_ids: List[int]) -> str:
        """Decode token IDs back to text."""


class TiktokenBackend(TokenizerBackend):
    """tiktoken BPE backend (local, deterministic, no network after first load)."""

    def __init__(
        self, *, encoding: str = "cl100k_base", model_name: Optional[str] = None
    ):
        try:
            if model_name:
                self.encoding = tiktoken.encoding_for_model(model_name)
            else:
                self.encoding = tiktoken.get_encoding(encoding)
        except (KeyError, ValueError) as e:
            raise RuntimeError(
                f"tiktoken initialization failed for "
                f"{model_name or encoding!r}: {e}"
            ) from e
        logger.info(
            "tiktoken encoding loaded",
            extra={"encoding": self.encoding.name},
        )

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encoding.encode(text, disallowed_special=()))

    def encode(self, text: str) -> List[int]:
        return self.encoding.encode(text, disallowed_special=())

    def decode(self, token_ids: List[int]) -> str:
        return self.encoding.decode(token_ids)


class TokenizerService:
    """
    Facade over a tokenizer backend.

    Selects the backend from ``TokenizerConfig.backend``; only ``tiktoken``
    is supported for chat-completion models.
    """

    SUPPORTED_BACKENDS = {"tiktoken"}

    def __init__(
        self,
        config: Optional[TokenizerConfig] = None,
        *,
        backend: Optional[TokenizerBackend] = None,
    ):
        config = config or TokenizerConfig()
        if backend is not None:
            self.backend = backend
            self.backend_name = type(backend).__name__
            return

        backend_name = (config.backend or "tiktoken").lower()
        if backend_name not in self.SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported tokenizer backend {config.backend!r}; "
                f"expected one of {sorted(self.SUPPORTED_BACKENDS)}"
            )
        self.backend = TiktokenBackend(encoding=config.encoding)
        self.backend_name = backend_name

    def count_tokens(self, text: str) -> int:
        """Count tokens in ``text`` (0 for empty text)."""
        if not text:
            return 0
        return self.backend.count_tokens(text)

    def count_tokens_batch(self, texts: List[str]) -> int:
        return sum(self.count_tokens(text) for text in texts)

    def truncate_to_token_limit(self, text: str, max_tokens: int) -> str:
        """Cut ``text`` to at most ``max_tokens`` tokens."""
        if max_tokens <= 0:
            return ""
        token_ids = self.backend.encode(text)
        if len(token_ids) <= max_tokens:
            return text
        return self.backend.decode(token_ids[:max_tokens])
