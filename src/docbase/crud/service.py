import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from docbase.config import config
from docbase.errors import InvalidArgument, NotFound, VersionConflict
from docbase.ident import IdGenerator, UuidGenerator, coerce_id
from docbase.pagination import Direction, Page, PaginationEngine, SortSpec
from docbase.pagination.query import rewrite_filter, store_field
from docbase.projection import (
    ID_FIELD,
    RESERVED_FIELDS,
    UPDATED_AT,
    VERSION,
    Projector,
    Record,
    records_to_dataframe,
)
from docbase.store.base import DocumentStore, NativeQuery
from docbase.store.documents import equality_fields

logger = logging.getLogger(__name__)

ID_ORDER = ((ID_FIELD, 1),)


@dataclass(frozen=True)
class UpdateRequest:
    """
    Partial update of one record.

    Attributes:
        fields: Field values to merge into the stored record (dotted paths
            address nested fields)
        expected_version: Version the caller last read; None skips the check
    """

    fields: dict = field(default_factory=dict)
    expected_version: int | None = None


def _check_version(expected_version: Any) -> None:
    if expected_version is None:
        return
    if isinstance(expected_version, bool) or not isinstance(expected_version, int):
        raise InvalidArgument("expected_version must be an integer", field="expectedVersion")


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds, the precision every backend keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class CrudService:
    """
    Generic create/read/update/delete service for one collection.

    Stamps identifiers and createdAt/updatedAt, and guards updates with a
    version counter when versioning is enabled. Holds no state between calls
    beyond its collaborators.

    Args:
        store: Document store backend
        collection: Collection name
        id_generator: Source of new identifiers (default: random UUIDs)
        projector: Raw document -> Record mapping (default: schema-less)
        versioning: Maintain the version counter (default: DOCBASE_VERSIONING)
        clock: Callable returning the current UTC datetime
        default_limit: Page size when find_many gets no limit
        max_limit: Upper bound applied to requested page sizes
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        *,
        id_generator: IdGenerator = None,
        projector: Projector = None,
        versioning: bool = None,
        clock: Callable[[], datetime] = None,
        default_limit: int = None,
        max_limit: int = None,
    ):
        self.store = store
        self.collection = collection
        self.id_generator = id_generator or UuidGenerator()
        self.projector = projector or Projector()
        self.versioning = config.versioning if versioning is None else versioning
        self.clock = clock or utc_now
        self.default_limit = default_limit or config.default_page_limit
        self.max_limit = max_limit or config.max_page_limit
        self.pagination = PaginationEngine(store, collection, self.projector)

    # =========================================================================
    # Reads
    # =========================================================================

    def find_one(self, filter: Mapping[str, Any] = None) -> Record | None:
        """First matching record by id, or None."""
        documents = self.store.find(
            self.collection,
            NativeQuery(filter=rewrite_filter(filter), sort=ID_ORDER, limit=1),
        )
        return self.projector.project(documents[0]) if documents else None

    def find_by_id(self, record_id: Any) -> Record | None:
        return self.find_one({"id": coerce_id(record_id)})

    def find_many(
        self,
        filter: Mapping[str, Any] = None,
        sort: SortSpec | str | list = None,
        cursor: str = None,
        direction: Direction | str = Direction.FORWARD,
        limit: int = None,
        with_count: bool = False,
    ) -> Page:
        """One page of matching records; see PaginationEngine.fetch_page."""
        if limit is None:
            limit = self.default_limit
        elif isinstance(limit, int) and not isinstance(limit, bool) and limit > self.max_limit:
            logger.debug("clamping page size %d to %d", limit, self.max_limit)
            limit = self.max_limit
        return self.pagination.fetch_page(filter, sort, cursor, direction, limit, with_count)

    def count(self, filter: Mapping[str, Any] = None) -> int:
        return self.store.count(self.collection, rewrite_filter(filter))

    def find_dataframe(
        self,
        filter: Mapping[str, Any] = None,
        sort: SortSpec | str | list = None,
        page_size: int = None,
    ):
        """All matching records as a pandas DataFrame, fetched page by page."""
        pages = self.pagination.iter_pages(filter, sort, page_size or self.max_limit)
        return records_to_dataframe(record for page in pages for record in page)

    # =========================================================================
    # Writes
    # =========================================================================

    def _now(self) -> datetime:
        return self.clock()

    def _check_fields(self, fields: Mapping[str, Any], allow_id: bool) -> None:
        if not isinstance(fields, Mapping):
            raise InvalidArgument("Record fields must be a mapping", field="fields")
        for name in fields:
            if not isinstance(name, str) or not name or name.startswith("$"):
                raise InvalidArgument(f"Invalid field name {name!r}", field=str(name))
            if name in RESERVED_FIELDS:
                raise InvalidArgument(f"{name} is managed by the service", field=name)
            if name == ID_FIELD:
                raise InvalidArgument("Set the identifier through 'id'", field=ID_FIELD)
            if name == "id" and not allow_id:
                raise InvalidArgument("Record ids are immutable", field="id")
        self.projector.check_fields(fields)

    def _new_document(self, fields: Mapping[str, Any]) -> dict:
        self._check_fields(fields, allow_id=True)
        payload = dict(fields)
        if "id" in payload:
            record_id = coerce_id(payload.pop("id"))
        else:
            record_id = self.id_generator.new_id()
        now = self._now()
        record = Record(
            id=record_id,
            fields=payload,
            created_at=now,
            updated_at=now,
            version=1 if self.versioning else None,
        )
        return self.projector.to_document(record)

    def insert(self, fields: Mapping[str, Any]) -> Record:
        """
        Store a new record.

        An ``id`` in ``fields`` is used as-is (so a retried insert cannot
        create a second copy); otherwise one is generated.

        Raises:
            DuplicateKey: the id or a unique index value already exists
        """
        document = self._new_document(fields)
        self.projector.validate(document)
        stored = self.store.insert_one(self.collection, document)
        logger.info("inserted %s into %s", stored[ID_FIELD], self.collection)
        return self.projector.project(stored)

    def insert_many(self, items: Iterable[Mapping[str, Any]]) -> list[Record]:
        """Insert records one at a time; stops at the first failure."""
        return [self.insert(fields) for fields in items]

    def update(self, record_id: Any, request: UpdateRequest | Mapping[str, Any]) -> Record:
        """
        Merge fields into an existing record.

        Raises:
            NotFound: no record with this id
            VersionConflict: versioning is on and the stored version differs
                from request.expected_version; the record is left unchanged
        """
        if not isinstance(request, UpdateRequest):
            request = UpdateRequest(fields=dict(request))
        self._check_fields(request.fields, allow_id=False)
        _check_version(request.expected_version)
        record_id = coerce_id(record_id)

        filter = {ID_FIELD: record_id}
        if self.versioning and request.expected_version is not None:
            filter[VERSION] = request.expected_version
        update = {"$set": {**request.fields, UPDATED_AT: self._now()}}
        if self.versioning:
            update["$inc"] = {VERSION: 1}

        updated = self.store.update_one(self.collection, filter, update)
        if updated is None:
            current = self.store.find(
                self.collection, NativeQuery(filter={ID_FIELD: record_id}, limit=1)
            )
            if not current:
                raise NotFound(self.collection, record_id)
            logger.warning(
                "version conflict on %s/%s: expected %s, stored %s",
                self.collection,
                record_id,
                request.expected_version,
                current[0].get(VERSION),
            )
            raise VersionConflict(record_id, request.expected_version, current[0].get(VERSION))

        logger.info("updated %s in %s", record_id, self.collection)
        return self.projector.project(updated)

    def upsert(
        self,
        filter: Mapping[str, Any],
        fields: Mapping[str, Any],
        expected_version: int = None,
    ) -> Record:
        """
        Update the first record matching ``filter`` or insert a new one.

        The insert branch seeds the new record with the filter's top-level
        equality predicates (including ``id``) and ignores expected_version.
        """
        self._check_fields(fields, allow_id=False)
        _check_version(expected_version)
        existing = self.find_one(filter)
        if existing is not None:
            return self.update(existing.id, UpdateRequest(dict(fields), expected_version))

        seed = {}
        for name, value in equality_fields(filter).items():
            if store_field(name) == ID_FIELD:
                seed["id"] = value
            elif name not in RESERVED_FIELDS and "." not in name:
                seed[name] = value
        return self.insert({**seed, **fields})

    def delete(self, record_id: Any) -> bool:
        """Remove a record; False when it did not exist."""
        deleted = self.store.delete_one(self.collection, {ID_FIELD: coerce_id(record_id)})
        if deleted:
            logger.info("deleted %s from %s", record_id, self.collection)
        return deleted

    def delete_many(self, filter: Mapping[str, Any]) -> int:
        deleted = self.store.delete_many(self.collection, rewrite_filter(filter))
        logger.info("deleted %d records from %s", deleted, self.collection)
        return deleted

    def ensure_unique(self, *fields: str) -> None:
        """Declare a uniqueness constraint; violations raise DuplicateKey."""
        self.store.create_unique_index(self.collection, [store_field(name) for name in fields])
