"""
Error taxonomy for docbase.

Every failure raised by the service carries a stable ``kind`` plus the
offending field or id, so callers can decide whether to retry, surface the
problem to an end user, or treat it as fatal. Backend exceptions (psycopg,
pymongo) are translated into these at the store boundary.
"""

from typing import Any


class DocbaseError(Exception):
    """Base class for all docbase errors."""

    kind = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self._details = details

    def details(self) -> dict[str, Any]:
        """Structured description of the failure."""
        return {"error": self.kind, "message": self.message, **self._details}


class InvalidArgument(DocbaseError):
    """Malformed request, e.g. limit <= 0 or a reserved field in the payload."""

    kind = "invalid_argument"

    def __init__(self, message: str, field: str = None):
        super().__init__(message, field=field)
        self.field = field


class InvalidCursor(InvalidArgument):
    """Cursor that cannot be decoded or belongs to another sort order."""

    kind = "invalid_cursor"

    def __init__(self, message: str):
        super().__init__(message, field="cursor")


class NotFound(DocbaseError):
    kind = "not_found"

    def __init__(self, collection: str, record_id: Any):
        super().__init__(
            f"No record {record_id!r} in {collection}",
            collection=collection,
            id=str(record_id),
        )
        self.collection = collection
        self.record_id = record_id


class VersionConflict(DocbaseError):
    """Optimistic-concurrency violation: stored version differs from expected."""

    kind = "version_conflict"

    def __init__(self, record_id: Any, expected: int, actual: int | None):
        super().__init__(
            f"Record {record_id!r} is at version {actual}, expected {expected}",
            id=str(record_id),
            expected=expected,
            actual=actual,
        )
        self.record_id = record_id
        self.expected = expected
        self.actual = actual


class DuplicateKey(DocbaseError):
    kind = "duplicate_key"

    def __init__(self, collection: str, key: Any = None):
        super().__init__(
            f"Duplicate key in {collection}: {key!r}",
            collection=collection,
            key=None if key is None else str(key),
        )
        self.collection = collection
        self.key = key


class SchemaMismatch(DocbaseError):
    """A stored document does not fit the expected record shape."""

    kind = "schema_mismatch"

    def __init__(self, field: str, expected: str, actual: Any = None):
        super().__init__(
            f"Field {field!r} should be {expected}, got {type(actual).__name__}",
            field=field,
            expected=expected,
        )
        self.field = field
        self.expected = expected


class StoreUnavailable(DocbaseError):
    kind = "store_unavailable"

    def __init__(self, message: str = "Document store unavailable"):
        super().__init__(message)


class Timeout(DocbaseError):
    kind = "timeout"

    def __init__(self, message: str = "Document store operation timed out"):
        super().__init__(message)
