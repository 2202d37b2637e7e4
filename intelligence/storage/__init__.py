"""
Storage boundary for the intelligence pipeline.

Usage:
    from intelligence.storage import InMemoryStore, PostgresStore, PipelineStore
"""

from intelligence.storage.base import PipelineStore
from intelligence.storage.memory import InMemoryStore
from intelligence.storage.postgres import PostgresStore


__all__ = [
    "PipelineStore",
    "InMemoryStore",
    "PostgresStore",
]
