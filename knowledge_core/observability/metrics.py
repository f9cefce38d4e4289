"""Prometheus metric definitions for retrieval observability."""

from prometheus_client import Counter, Histogram

# --- Bucket configurations ---

SEARCH_LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)

# --- Similarity search metrics ---

SEARCH_DURATION = Histogram(
    "knowledge_core_search_duration_seconds",
    "Vector similarity search latency in seconds",
    ["tier"],
    buckets=SEARCH_LATENCY_BUCKETS,
)

SEARCH_RESULTS = Counter(
    "knowledge_core_search_results_total",
    "Rows returned by similarity search",
    ["tier"],
)

SEARCH_FAILURES = Counter(
    "knowledge_core_search_failures_total",
    "Similarity searches that failed transiently",
    ["tier", "reason"],
)

# --- Cache metrics ---

CACHE_LOOKUPS = Counter(
    "knowledge_core_cache_lookups_total",
    "Cache lookups by outcome",
    ["cache", "outcome"],
)

CACHE_EVICTIONS = Counter(
    "knowledge_core_cache_evictions_total",
    "Expired cache rows removed by the janitor",
    ["cache"],
)

# --- Ingestion lifecycle metrics ---

WATCHDOG_TRANSITIONS = Counter(
    "knowledge_core_watchdog_transitions_total",
    "Stuck records moved to error by the ingestion watchdog",
    ["kind"],
)
