"""
Sort specifications and the query builder.

The builder turns a caller filter, a SortSpec and an optional cursor position
into a NativeQuery. Cursor bounds are expressed as a lexicographic tuple
comparison over the sort fields:

    (f1 > v1) OR (f1 == v1 AND f2 > v2) OR (f1 == v1 AND f2 == v2 AND f3 > v3)

with ">" flipped to "<" for descending fields and for backward traversal.
Range operators never match null, so a null cursor value becomes "$ne null"
and a descending step also admits the null group explicitly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from docbase.errors import InvalidArgument
from docbase.ident import OID_PREFIX, coerce_id
from docbase.store.base import NativeQuery
from docbase.store.documents import MISSING, get_path

ASC = 1
DESC = -1

ID_FIELD = "id"
STORE_ID_FIELD = "_id"


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


def store_field(name: str) -> str:
    """Map the public field name to the stored one ("id" -> "_id")."""
    if name == ID_FIELD:
        return STORE_ID_FIELD
    if name.startswith(ID_FIELD + "."):
        return STORE_ID_FIELD + name[len(ID_FIELD):]
    return name


def _coerce_ids(condition: Any) -> Any:
    if isinstance(condition, str) and condition.startswith(OID_PREFIX):
        return coerce_id(condition)
    if isinstance(condition, (list, tuple)):
        return [_coerce_ids(item) for item in condition]
    if isinstance(condition, Mapping):
        return {key: _coerce_ids(item) for key, item in condition.items()}
    return condition


def rewrite_filter(filter: Mapping[str, Any] | None) -> dict:
    """
    Rename ``id`` predicates to ``_id``, descending into $and/$or/$nor.

    "$oid:<hex>" strings in identifier predicates become ObjectIds, matching
    how ids are stored.
    """
    if filter is None:
        return {}
    if not isinstance(filter, Mapping):
        raise InvalidArgument("Filter must be a mapping", field="filter")
    rewritten = {}
    for key, condition in filter.items():
        if key in ("$and", "$or", "$nor"):
            if not isinstance(condition, (list, tuple)):
                raise InvalidArgument(f"{key} expects a list of filters", field="filter")
            rewritten[key] = [rewrite_filter(clause) for clause in condition]
        elif key.startswith("$"):
            rewritten[key] = condition
        else:
            name = store_field(key)
            rewritten[name] = _coerce_ids(condition) if name == STORE_ID_FIELD else condition
    return rewritten


@dataclass(frozen=True)
class SortField:
    field: str
    direction: int = ASC
    unique: bool = False

    def __post_init__(self):
        if not isinstance(self.field, str) or not self.field:
            raise InvalidArgument("Sort field name must be a non-empty string", field="sort")
        if self.direction not in (ASC, DESC):
            raise InvalidArgument(
                f"Sort direction for {self.field!r} must be 1 or -1", field="sort"
            )

    @property
    def is_id(self) -> bool:
        return store_field(self.field) == STORE_ID_FIELD


class SortSpec:
    """
    Ordered sort fields with a guaranteed total order.

    Unless the fields already include ``id`` or one declared unique, ``id``
    ascending is appended as a tiebreaker so records with equal sort values
    still land on deterministic page boundaries.
    """

    def __init__(self, fields: Iterable[SortField | tuple | str] = ()):
        normalized = []
        for item in fields:
            if isinstance(item, SortField):
                normalized.append(item)
            elif isinstance(item, str):
                normalized.append(_parse_term(item))
            elif isinstance(item, (tuple, list)) and len(item) == 2:
                normalized.append(SortField(item[0], _parse_direction(item[1])))
            else:
                raise InvalidArgument(f"Invalid sort term {item!r}", field="sort")

        seen = set()
        for sort_field in normalized:
            name = store_field(sort_field.field)
            if name in seen:
                raise InvalidArgument(f"Duplicate sort field {sort_field.field!r}", field="sort")
            seen.add(name)

        if not any(f.is_id or f.unique for f in normalized):
            normalized.append(SortField(ID_FIELD, ASC, unique=True))
        self.fields: tuple[SortField, ...] = tuple(normalized)

    @classmethod
    def parse(cls, text: str | None) -> "SortSpec":
        """Parse "seq,-createdAt" style specs; a leading "-" means descending."""
        if not text:
            return cls()
        return cls(term.strip() for term in text.split(",") if term.strip())

    def shape(self) -> list[list]:
        """Field/direction list embedded in cursors."""
        return [[f.field, f.direction] for f in self.fields]

    def store_sort(self) -> list[tuple[str, int]]:
        return [(store_field(f.field), f.direction) for f in self.fields]

    def values_of(self, document: Mapping[str, Any]) -> tuple:
        """Sort-key tuple of a raw store document."""
        values = []
        for name, _ in self.store_sort():
            value = get_path(document, name)
            values.append(None if value is MISSING else value)
        return tuple(values)

    def __iter__(self):
        return iter(self.fields)

    def __len__(self):
        return len(self.fields)

    def __eq__(self, other):
        return isinstance(other, SortSpec) and self.shape() == other.shape()

    def __repr__(self):
        terms = ",".join(("-" if f.direction == DESC else "") + f.field for f in self.fields)
        return f"SortSpec({terms!r})"


def _parse_direction(value: Any) -> int:
    if value in (ASC, DESC):
        return value
    if isinstance(value, str) and value.lower() in ("asc", "ascending"):
        return ASC
    if isinstance(value, str) and value.lower() in ("desc", "descending"):
        return DESC
    raise InvalidArgument(f"Invalid sort direction {value!r}", field="sort")


def _parse_term(term: str) -> SortField:
    if term.startswith("-"):
        return SortField(term[1:], DESC)
    if term.startswith("+"):
        return SortField(term[1:], ASC)
    return SortField(term, ASC)


def _past(name: str, value: Any, ascending: bool) -> dict | None:
    """
    Predicate for values strictly past ``value`` in travel order.

    Null and missing sort lowest, but range operators never match them, so
    the null group is addressed with explicit equality predicates. None when
    nothing lies past the value.
    """
    if ascending:
        if value is None:
            return {name: {"$ne": None}}
        return {name: {"$gt": value}}
    if value is None:
        return None
    if name == STORE_ID_FIELD:
        return {name: {"$lt": value}}
    return {"$or": [{name: {"$lt": value}}, {name: None}]}


class QueryBuilder:
    """Translates filter/sort/cursor/limit requests into NativeQuery objects."""

    def bound(
        self, sort_spec: SortSpec, cursor_values: tuple, direction: Direction
    ) -> dict:
        """Filter clause selecting records strictly after (or before) the cursor."""
        sort = sort_spec.store_sort()
        if len(cursor_values) != len(sort):
            raise InvalidArgument("Cursor does not match the sort specification", field="cursor")

        branches = []
        for index, (name, sort_direction) in enumerate(sort):
            ascending = sort_direction == ASC
            if direction is Direction.BACKWARD:
                ascending = not ascending
            past = _past(name, cursor_values[index], ascending)
            if past is None:
                continue
            clause = {
                prior: {"$eq": value}
                for (prior, _), value in zip(sort[:index], cursor_values[:index])
            }
            clause.update(past)
            branches.append(clause)

        if not branches:
            return {STORE_ID_FIELD: {"$in": []}}
        if len(branches) == 1:
            return branches[0]
        return {"$or": branches}

    def build(
        self,
        filter: Mapping[str, Any] | None,
        sort_spec: SortSpec,
        cursor_values: tuple | None = None,
        direction: Direction = Direction.FORWARD,
        limit: int = None,
    ) -> NativeQuery:
        """
        Build the native query for one page.

        Requests ``limit + 1`` documents so the caller can tell whether a
        further page exists without another round trip. Backward queries
        reverse the sort so the store returns the records nearest the cursor.
        """
        direction = Direction(direction)
        clauses = []
        caller_filter = rewrite_filter(filter)
        if caller_filter:
            clauses.append(caller_filter)
        if cursor_values is not None:
            clauses.append(self.bound(sort_spec, tuple(cursor_values), direction))

        if not clauses:
            native_filter = {}
        elif len(clauses) == 1:
            native_filter = clauses[0]
        else:
            native_filter = {"$and": clauses}

        sort = sort_spec.store_sort()
        if direction is Direction.BACKWARD:
            sort = [(name, -sort_direction) for name, sort_direction in sort]

        return NativeQuery(
            filter=native_filter,
            sort=tuple(sort),
            limit=None if limit is None else limit + 1,
        )
