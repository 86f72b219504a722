"""
anime-spine - catalog reconciliation and enrichment pipeline.

Turns periodic releases of the manami anime-offline-database into a
retrieval corpus: snapshot diff, work planning, provider fetch, synopsis
synthesis, embedding and artifact build, with durable per-entity state so
an interrupted run resumes where it stopped.
"""

__version__ = "0.1.0"
