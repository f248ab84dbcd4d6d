"""Semantic dedup for inbound CRM messages.

Collapses exact and near-duplicate client messages into canonical clusters so
downstream language-model calls run once per distinct intent instead of once
per message.
"""

__version__ = "0.1.0"
