from typing import Protocol


class EmbeddingProvider(Protocol):
    """Text-to-vector provider owned by the caller (one per tier family)."""

    async def embed_texts(self, texts: list[str]) -> list[list[float]]: ...
