import os
from functools import lru_cache
from pydantic import BaseModel


class Settings(BaseModel):
    env: str = os.getenv("ENV", "dev")
    port: int = int(os.getenv("PORT", "8080"))
    log_level: str = os.getenv("LOG_LEVEL", "info")

    # Database
    db_url: str | None = os.getenv("DB_URL")

    # Embedding dimensions per tier. Source and chunk vectors come from the
    # knowledge embedding model (Qwen3, truncated to 1024); help articles are
    # embedded by a different provider and are never compared across tiers.
    knowledge_embedding_dim: int = int(os.getenv("KNOWLEDGE_EMBEDDING_DIM", "1024"))
    knowledge_embedding_model: str = os.getenv(
        "KNOWLEDGE_EMBEDDING_MODEL", "qwen/qwen3-embedding-8b"
    )
    help_article_embedding_dim: int = int(
        os.getenv("HELP_ARTICLE_EMBEDDING_DIM", "1536")
    )
    help_article_embedding_model: str = os.getenv(
        "HELP_ARTICLE_EMBEDDING_MODEL", "text-embedding-3-small"
    )

    # IVFFlat index tuning
    ivfflat_lists: int = int(os.getenv("IVFFLAT_LISTS", "100"))
    # Partitions scanned per query; too few silently drops true neighbours
    ivfflat_probes: int = int(os.getenv("IVFFLAT_PROBES", "10"))
    search_timeout_seconds: float = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "5.0"))

    # Caches (TTL is absolute from the last write)
    embedding_cache_ttl_seconds: int = int(
        os.getenv("EMBEDDING_CACHE_TTL_SECONDS", "604800")
    )
    response_cache_ttl_seconds: int = int(
        os.getenv("RESPONSE_CACHE_TTL_SECONDS", "604800")
    )
    response_cache_min_similarity: float = float(
        os.getenv("RESPONSE_CACHE_MIN_SIMILARITY", "0.65")
    )
    response_cache_serve_similarity: float = float(
        os.getenv("RESPONSE_CACHE_SERVE_SIMILARITY", "0.70")
    )

    # Ingestion watchdog (default: 2 hours)
    ingestion_timeout_seconds: int = int(os.getenv("INGESTION_TIMEOUT_SECONDS", "7200"))

    # Context assembly
    max_context_results: int = int(os.getenv("MAX_CONTEXT_RESULTS", "3"))
    context_min_similarity: float = float(os.getenv("CONTEXT_MIN_SIMILARITY", "0.35"))

    # Shared secret for scheduler-invoked maintenance routes.
    # None disables the /internal routes entirely.
    maintenance_token: str | None = os.getenv("MAINTENANCE_TOKEN")

    # Observability
    otel_exporter_otlp_endpoint: str | None = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")


@lru_cache
def get_settings() -> Settings:
    return Settings()
