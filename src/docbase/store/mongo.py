"""
MongoDB document store.

A thin mapping of the store contract onto a pymongo Database. The shared
query representation is already Mongo's own, so filters and sorts pass
through unchanged; only errors need translating.
"""

import logging
from contextlib import contextmanager
from typing import Any, Mapping

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    ServerSelectionTimeoutError,
    WTimeoutError,
)

from docbase.errors import DuplicateKey, StoreUnavailable, Timeout
from docbase.store.base import DocumentStore, NativeQuery

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors(collection: str, key: Any = None):
    try:
        yield
    except DuplicateKeyError as exc:
        raise DuplicateKey(collection, key) from exc
    except (ExecutionTimeout, NetworkTimeout, WTimeoutError) as exc:
        raise Timeout(f"MongoDB operation timed out: {exc}") from exc
    except (ServerSelectionTimeoutError, AutoReconnect, ConnectionFailure) as exc:
        raise StoreUnavailable(f"MongoDB unavailable: {exc}") from exc


class MongoDocumentStore(DocumentStore):
    """
    Document store backed by MongoDB.

    Args:
        database: A pymongo Database handle
        client: The owning client, closed by close() when given
    """

    def __init__(self, database: Database, client: MongoClient = None):
        self.database = database
        self.client = client

    @classmethod
    def from_url(cls, url: str, database_name: str, **client_kwargs) -> "MongoDocumentStore":
        # tz_aware so stored datetimes come back as UTC-aware values
        client_kwargs.setdefault("tz_aware", True)
        client_kwargs.setdefault("serverSelectionTimeoutMS", 5000)
        client = MongoClient(url, **client_kwargs)
        return cls(client[database_name], client=client)

    def find(self, collection: str, query: NativeQuery) -> list[dict]:
        with _translate_errors(collection):
            cursor = self.database[collection].find(query.filter)
            if query.sort:
                cursor = cursor.sort(list(query.sort))
            if query.limit is not None:
                cursor = cursor.limit(query.limit)
            documents = list(cursor)
        logger.debug("find %s matched %d documents", collection, len(documents))
        return documents

    def insert_one(self, collection: str, document: Mapping[str, Any]) -> dict:
        stored = dict(document)
        with _translate_errors(collection, stored.get("_id")):
            self.database[collection].insert_one(stored)
        return stored

    def update_one(
        self, collection: str, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> dict | None:
        with _translate_errors(collection):
            return self.database[collection].find_one_and_update(
                dict(filter),
                dict(update),
                sort=[("_id", ASCENDING)],
                return_document=ReturnDocument.AFTER,
            )

    def delete_one(self, collection: str, filter: Mapping[str, Any]) -> bool:
        with _translate_errors(collection):
            deleted = self.database[collection].find_one_and_delete(
                dict(filter), sort=[("_id", ASCENDING)]
            )
        return deleted is not None

    def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int:
        with _translate_errors(collection):
            return self.database[collection].delete_many(dict(filter)).deleted_count

    def count(self, collection: str, filter: Mapping[str, Any]) -> int:
        with _translate_errors(collection):
            return self.database[collection].count_documents(dict(filter))

    def create_unique_index(self, collection: str, fields: list[str]) -> None:
        with _translate_errors(collection):
            self.database[collection].create_index(
                [(field, ASCENDING) for field in fields], unique=True
            )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
