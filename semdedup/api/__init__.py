"""Semantic dedup REST API package.

Mount point: /api/v1/
Auth:        optional X-API-Key header (shared secret from settings)
"""
