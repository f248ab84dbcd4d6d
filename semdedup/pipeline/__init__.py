"""
Semantic dedup text pipeline package.

Provides:
- normalize: text normalization and SHA-256 content addressing
- embedder: embedding provider abstraction (OpenAI-compatible HTTP, sentence-transformers)
"""
