import copy
import logging
import threading
from typing import Any, Mapping

from docbase.errors import DuplicateKey, InvalidArgument
from docbase.store.base import DocumentStore, NativeQuery
from docbase.store.documents import (
    MISSING,
    apply_update,
    get_path,
    matches,
    sort_documents,
    sort_key,
)

logger = logging.getLogger(__name__)

ID_ORDER = (("_id", 1),)


class MemoryDocumentStore(DocumentStore):
    """
    In-process document store.

    Documents are deep-copied on the way in and out, so callers never share
    state with the store. A single lock serialises writes, which gives the
    same single-document atomicity a real store provides.
    """

    def __init__(self):
        self._collections: dict[str, dict[Any, dict]] = {}
        self._unique_indexes: dict[str, list[tuple[str, ...]]] = {}
        self._lock = threading.RLock()

    def _documents(self, collection: str) -> dict[Any, dict]:
        return self._collections.setdefault(collection, {})

    def _check_unique(self, collection: str, document: Mapping, ignore_id: Any = MISSING) -> None:
        for fields in self._unique_indexes.get(collection, []):
            key = tuple(sort_key(get_path(document, name)) for name in fields)
            for other_id, other in self._documents(collection).items():
                if other_id == ignore_id:
                    continue
                if tuple(sort_key(get_path(other, name)) for name in fields) == key:
                    values = {name: get_path(document, name) for name in fields}
                    raise DuplicateKey(collection, values)

    def _first_match(self, collection: str, filter: Mapping) -> dict | None:
        candidates = [doc for doc in self._documents(collection).values() if matches(doc, filter)]
        if not candidates:
            return None
        return sort_documents(candidates, ID_ORDER)[0]

    def find(self, collection: str, query: NativeQuery) -> list[dict]:
        with self._lock:
            found = [doc for doc in self._documents(collection).values() if matches(doc, query.filter)]
            found = sort_documents(found, query.sort)
            if query.limit is not None:
                found = found[: query.limit]
            logger.debug("find %s matched %d documents", collection, len(found))
            return copy.deepcopy(found)

    def insert_one(self, collection: str, document: Mapping[str, Any]) -> dict:
        if "_id" not in document:
            raise InvalidArgument("Document has no _id", field="id")
        with self._lock:
            documents = self._documents(collection)
            if document["_id"] in documents:
                raise DuplicateKey(collection, document["_id"])
            self._check_unique(collection, document)
            stored = copy.deepcopy(dict(document))
            documents[stored["_id"]] = stored
            return copy.deepcopy(stored)

    def update_one(
        self, collection: str, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> dict | None:
        with self._lock:
            current = self._first_match(collection, filter)
            if current is None:
                return None
            updated = apply_update(current, update)
            if updated.get("_id") != current["_id"]:
                raise InvalidArgument("The _id field is immutable", field="id")
            self._check_unique(collection, updated, ignore_id=current["_id"])
            self._documents(collection)[current["_id"]] = updated
            return copy.deepcopy(updated)

    def delete_one(self, collection: str, filter: Mapping[str, Any]) -> bool:
        with self._lock:
            current = self._first_match(collection, filter)
            if current is None:
                return False
            del self._documents(collection)[current["_id"]]
            return True

    def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int:
        with self._lock:
            documents = self._documents(collection)
            doomed = [doc_id for doc_id, doc in documents.items() if matches(doc, filter)]
            for doc_id in doomed:
                del documents[doc_id]
            return len(doomed)

    def count(self, collection: str, filter: Mapping[str, Any]) -> int:
        with self._lock:
            return sum(1 for doc in self._documents(collection).values() if matches(doc, filter))

    def create_unique_index(self, collection: str, fields: list[str]) -> None:
        with self._lock:
            indexes = self._unique_indexes.setdefault(collection, [])
            if tuple(fields) not in indexes:
                indexes.append(tuple(fields))

    def drop(self, collection: str) -> None:
        """Remove a collection and its indexes."""
        with self._lock:
            self._collections.pop(collection, None)
            self._unique_indexes.pop(collection, None)
