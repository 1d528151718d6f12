"""
Document store backends.

Every backend implements DocumentStore over the same Mongo-style query
representation (NativeQuery):

- MemoryDocumentStore: in-process, the default and the test double
- PostgresDocumentStore: JSONB tables through psycopg
- MongoDocumentStore: pymongo

create_store() picks one from configuration (DOCBASE_STORE).
"""

from docbase.config import Config, config as default_config
from docbase.errors import InvalidArgument
from docbase.store.base import DocumentStore, NativeQuery
from docbase.store.memory import MemoryDocumentStore


def create_store(config: Config = None) -> DocumentStore:
    """Build the configured store backend."""
    config = config or default_config
    backend = config.store_backend
    if backend == "memory":
        return MemoryDocumentStore()
    if backend == "postgres":
        from docbase.store.postgres import PostgresDocumentStore

        return PostgresDocumentStore(config.database_url)
    if backend == "mongo":
        from docbase.store.mongo import MongoDocumentStore

        return MongoDocumentStore.from_url(config.mongodb_url, config.mongodb_database)
    raise InvalidArgument(f"Unknown store backend {backend!r}", field="DOCBASE_STORE")


__all__ = [
    "DocumentStore",
    "MemoryDocumentStore",
    "NativeQuery",
    "create_store",
]
