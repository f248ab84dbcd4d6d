"""Persistence for semantic dedup.

Provides:
- models: cluster tables and read-only CRM source mappings
- session: async engine and session factory
- sources: candidate message sources (chat messages, conversation segments)
- store: cluster store (already-clustered lookup, cluster persistence)
"""
