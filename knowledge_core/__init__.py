"""Semantic knowledge retrieval core: tiered vector search and query caches."""
