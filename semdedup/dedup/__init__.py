"""Near-duplicate detection and clustering pipeline.

Stages, run in order by pipeline.SemanticDedupPipeline:
  Stage 1 (Exact): length filter + SHA-256 digest dedup within the batch.
  Stage 2 (Embedding): one vector per new normalized message, failures per item.
  Stage 3 (Cluster): greedy single-linkage threshold clustering on cosine similarity.
"""
