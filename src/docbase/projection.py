"""
Result projection.

Maps raw store documents to typed Record objects and back. Documents are
schema-less, so typing is enforced here: a Projector can be given a schema of
required fields and their semantic types, and raises SchemaMismatch when a
stored document does not fit.

Raw documents keep the identifier under ``_id`` and the bookkeeping fields
under ``createdAt``, ``updatedAt`` and ``version``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

from bson import ObjectId
from bson.errors import InvalidId

from docbase.errors import InvalidArgument, SchemaMismatch
from docbase.ident import format_id

ID_FIELD = "_id"
CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"
VERSION = "version"

RESERVED_FIELDS = (CREATED_AT, UPDATED_AT, VERSION)


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    DATE = "date"
    IDENTIFIER = "identifier"
    NESTED = "nested"
    ANY = "any"

    def accepts(self, value: Any) -> bool:
        if self is FieldType.ANY:
            return True
        if self is FieldType.STRING:
            return isinstance(value, str)
        if self is FieldType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self is FieldType.BOOL:
            return isinstance(value, bool)
        if self is FieldType.DATE:
            return isinstance(value, datetime)
        if self is FieldType.IDENTIFIER:
            return isinstance(value, (str, ObjectId)) or (
                isinstance(value, int) and not isinstance(value, bool)
            )
        return isinstance(value, (dict, list))


@dataclass
class Record:
    """A stored document with its service-managed bookkeeping fields."""

    id: Any
    fields: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int | None = None

    def __getitem__(self, key: str) -> Any:
        if key == "id":
            return self.id
        if key == CREATED_AT:
            return self.created_at
        if key == UPDATED_AT:
            return self.updated_at
        if key == VERSION:
            return self.version
        return self.fields[key]

    def __contains__(self, key: str) -> bool:
        return key in ("id", *RESERVED_FIELDS) or key in self.fields

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def to_dict(self) -> dict[str, Any]:
        """Flat mapping with the identifier exposed as ``id``."""
        return {
            "id": self.id,
            **self.fields,
            CREATED_AT: self.created_at,
            UPDATED_AT: self.updated_at,
            VERSION: self.version,
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        # pymongo hands back naive UTC datetimes unless tz_aware is set
        return value.replace(tzinfo=timezone.utc)
    return value


class Projector:
    """
    Maps raw documents to Records.

    Args:
        schema: Optional mapping of required field name to FieldType.
    """

    def __init__(self, schema: Mapping[str, FieldType] = None):
        self.schema = dict(schema or {})

    def project(self, raw: Mapping[str, Any]) -> Record:
        if not isinstance(raw, Mapping):
            raise SchemaMismatch("document", "mapping", raw)
        if ID_FIELD not in raw:
            raise SchemaMismatch("id", FieldType.IDENTIFIER.value)

        record_id = raw[ID_FIELD]
        if not FieldType.IDENTIFIER.accepts(record_id):
            raise SchemaMismatch("id", FieldType.IDENTIFIER.value, record_id)

        timestamps = {}
        for name in (CREATED_AT, UPDATED_AT):
            value = raw.get(name)
            if value is not None and not isinstance(value, datetime):
                raise SchemaMismatch(name, FieldType.DATE.value, value)
            timestamps[name] = _as_utc(value) if value is not None else None

        version = raw.get(VERSION)
        if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
            raise SchemaMismatch(VERSION, "integer", version)

        fields = {
            key: value
            for key, value in raw.items()
            if key != ID_FIELD and key not in RESERVED_FIELDS
        }
        for name, field_type in self.schema.items():
            if name not in fields or fields[name] is None:
                raise SchemaMismatch(name, field_type.value)
            if not field_type.accepts(fields[name]):
                raise SchemaMismatch(name, field_type.value, fields[name])

        return Record(
            id=record_id,
            fields=fields,
            created_at=timestamps[CREATED_AT],
            updated_at=timestamps[UPDATED_AT],
            version=version,
        )

    def check_fields(self, fields: Mapping[str, Any]) -> None:
        """Validate incoming values for fields the schema knows about."""
        for name, value in fields.items():
            field_type = self.schema.get(name)
            if field_type is None:
                continue
            if value is None or not field_type.accepts(value):
                raise SchemaMismatch(name, field_type.value, value)

    def validate(self, raw: Mapping[str, Any]) -> None:
        """Raise SchemaMismatch unless ``raw`` projects cleanly."""
        self.project(raw)

    def project_many(self, raws: Iterable[Mapping[str, Any]]) -> list[Record]:
        return [self.project(raw) for raw in raws]

    def to_document(self, record: Record) -> dict[str, Any]:
        """Inverse of project(), used on the write path."""
        document = {ID_FIELD: record.id, **record.fields}
        if record.created_at is not None:
            document[CREATED_AT] = record.created_at
        if record.updated_at is not None:
            document[UPDATED_AT] = record.updated_at
        if record.version is not None:
            document[VERSION] = record.version
        return document


# =============================================================================
# JSON helpers (shared by the HTTP adapter and the CLI)
# =============================================================================


def to_json_compatible(value: Any) -> Any:
    """Render datetimes as ISO-8601 and ObjectIds as "$oid:<hex>"."""
    if isinstance(value, datetime):
        return _as_utc(value).isoformat()
    if isinstance(value, ObjectId):
        return format_id(value)
    if isinstance(value, Mapping):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_compatible(item) for item in value]
    return value


def from_extended_json(value: Any) -> Any:
    """
    Decode {"$date": iso} and {"$oid": hex} wrappers in caller JSON.

    Used on filters and payloads arriving over HTTP, where datetimes and
    ObjectIds have no native JSON form.
    """
    if isinstance(value, Mapping):
        if len(value) == 1 and "$date" in value:
            try:
                return _as_utc(datetime.fromisoformat(str(value["$date"]).replace("Z", "+00:00")))
            except ValueError:
                raise InvalidArgument(f"Invalid $date value {value['$date']!r}")
        if len(value) == 1 and "$oid" in value:
            try:
                return ObjectId(str(value["$oid"]))
            except InvalidId:
                raise InvalidArgument(f"Invalid $oid value {value['$oid']!r}")
        return {key: from_extended_json(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_extended_json(item) for item in value]
    return value


def records_to_dataframe(records: Iterable[Record]):
    """
    Build a pandas DataFrame with one row per record.

    Columns are ``id``, the union of record fields, then the bookkeeping
    fields.
    """
    import pandas as pd

    rows = [record.to_dict() for record in records]
    if not rows:
        return pd.DataFrame(columns=["id", CREATED_AT, UPDATED_AT, VERSION])

    columns = ["id"]
    for row in rows:
        for key in row:
            if key not in columns and key not in RESERVED_FIELDS:
                columns.append(key)
    columns.extend(RESERVED_FIELDS)
    return pd.DataFrame(rows, columns=columns)
