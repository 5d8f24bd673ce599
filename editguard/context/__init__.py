"""Context store: conversation context and the execution similarity index."""

from editguard.context.base import BaseContextStore
from editguard.context.memory_store import InMemoryContextStore
from editguard.context.pg_store import PgContextStore
from editguard.context.policy import should_store
from editguard.context.resilient import ResilientContextStore
from editguard.context.similarity import similarity_score
from editguard.context.storage_store import StorageContextStore

__all__ = [
    "BaseContextStore",
    "InMemoryContextStore",
    "PgContextStore",
    "ResilientContextStore",
    "StorageContextStore",
    "should_store",
    "similarity_score",
]
