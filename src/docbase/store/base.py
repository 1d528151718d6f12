from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class NativeQuery:
    """
    A query in the stores' shared Mongo-style representation.

    Attributes:
        filter: Filter document ({"seq": {"$gt": 3}}, "$and"/"$or", ...)
        sort: [(field, 1 | -1), ...] applied in order
        limit: Maximum number of documents to return, None for all
    """

    filter: dict = field(default_factory=dict)
    sort: tuple = ()
    limit: int | None = None


class DocumentStore:
    """
    Document store collaborator.

    Every operation addresses a collection by name. Documents carry their
    identifier under ``_id``. Implementations translate backend failures
    into StoreUnavailable, Timeout and DuplicateKey.
    """

    def find(self, collection: str, query: NativeQuery) -> list[dict]:
        """Return documents matching query.filter, ordered and limited."""
        raise NotImplementedError

    def insert_one(self, collection: str, document: Mapping[str, Any]) -> dict:
        """Persist a new document and return it as stored."""
        raise NotImplementedError

    def update_one(
        self, collection: str, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> dict | None:
        """
        Apply ``$set``/``$unset``/``$inc`` to the first match (by ``_id``).

        Returns the updated document, or None when nothing matched.
        """
        raise NotImplementedError

    def delete_one(self, collection: str, filter: Mapping[str, Any]) -> bool:
        """Delete the first match; True when a document was removed."""
        raise NotImplementedError

    def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int:
        """Delete all matches and return how many were removed."""
        raise NotImplementedError

    def count(self, collection: str, filter: Mapping[str, Any]) -> int:
        raise NotImplementedError

    def create_unique_index(self, collection: str, fields: list[str]) -> None:
        """Enforce uniqueness of the given field tuple across the collection."""
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources."""
