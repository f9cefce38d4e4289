"""Deterministic cache keys derived from query text."""

import hashlib
import json
import re
from collections.abc import Mapping
from typing import Any

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    stripped = _PUNCTUATION.sub("", query.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def hash_query(query: str, namespace: str | None = None) -> str:
    """SHA-256 hex of the normalized query.

    ``namespace`` separates keys for embeddings from different providers
    (e.g. help articles) so one cache row never serves two vector spaces.
    """
    normalized = normalize_query(query)
    payload = f"{namespace}:{normalized}" if namespace else normalized
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def response_fingerprint(
    query: str,
    tier: str | None = None,
    context: Mapping[str, Any] | None = None,
) -> str:
    """Fingerprint for a cacheable answer.

    Identical normalized queries with identical context share a fingerprint;
    any change in tier or context (conversation state, persona, ...) yields a
    different one. Context keys are sorted so ordering never matters.
    """
    canonical = json.dumps(
        {"q": normalize_query(query), "tier": tier or None, "context": dict(context or {})},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def dynamic_match_threshold(query: str) -> float:
    """Similarity floor tuned to query length for the knowledge embedding model."""
    words = len(query.split())
    if words < 5:
        return 0.50
    if words < 15:
        return 0.45
    return 0.40
