"""Semantic dedup HTTP server package."""
