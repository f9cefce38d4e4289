"""Exceptions raised by the retrieval core."""


class KnowledgeCoreError(Exception):
    """Base exception for retrieval and cache operations."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class ValidationError(KnowledgeCoreError):
    """Invalid search or cache arguments. Never clamped silently."""


class DimensionMismatchError(KnowledgeCoreError):
    """Query vector length does not match the tier's stored dimension."""

    def __init__(self, tier: str, expected: int, actual: int):
        super().__init__(
            f"{tier} embeddings have {expected} dimensions, query has {actual}"
        )
        self.tier = tier
        self.expected = expected
        self.actual = actual


class TransientError(KnowledgeCoreError):
    """Store unavailable or query timed out; safe to retry with backoff."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True)
