"""
Base embedding provider protocol.

Query-time only: documents are embedded by the ingestion service, so the
pipeline needs a single async ``embed_query`` call whose output matches the
vectors stored in the tenant's collection.
"""

from typing import List, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Protocol for embedding providers.

    The provider returns ``List[float]`` (no numpy arrays) so results can be
    passed straight to the vector index client.
    """

    @property
    def dims(self) -> int:
        """Number of dimensions in the embedding vector."""
        ...

    @property
    def model_id(self) -> str:
        """Model identifier (e.g., "text-embedding-3-small")."""
        ...

    async def embed_query(self, text: str) -> List[float]:
        """
        Generate embedding for a single query.

        Args:
            text: Query text to embed

        Returns:
            Embedding vector as a list of floats

        Raises:
            ValueError: If text is empty
            UpstreamRequestError: If the embedding API call fails
        """
        ...
