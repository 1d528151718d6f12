"""
In-process evaluation of the document query language.

Implements the Mongo-style filter operators, ordering and update operators
that the memory store needs, and that the Postgres store reuses on the write
path. Ordering follows MongoDB's type brackets (null < numbers < strings <
objects < arrays < ObjectId < booleans < dates) so results sort the same way
on every backend.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from bson import ObjectId

from docbase.errors import InvalidArgument


class _Missing:
    def __repr__(self):
        return "MISSING"


MISSING = _Missing()

COMPARISON_OPERATORS = {"$gt", "$gte", "$lt", "$lte"}
FIELD_OPERATORS = COMPARISON_OPERATORS | {"$eq", "$ne", "$in", "$nin", "$exists", "$not"}
LOGICAL_OPERATORS = {"$and", "$or", "$nor"}


# =============================================================================
# Paths and ordering
# =============================================================================


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path, returning MISSING when any segment is absent."""
    current: Any = document
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return current


def type_rank(value: Any) -> int:
    if value is None or value is MISSING:
        return 1
    if isinstance(value, bool):
        return 8
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, Mapping):
        return 4
    if isinstance(value, (list, tuple)):
        return 5
    if isinstance(value, ObjectId):
        return 7
    if isinstance(value, datetime):
        return 9
    return 10


def sort_key(value: Any) -> tuple:
    """Total-order key for any supported value."""
    rank = type_rank(value)
    if rank == 1:
        return (rank, 0)
    if rank == 4:
        return (rank, tuple((key, sort_key(item)) for key, item in value.items()))
    if rank == 5:
        return (rank, tuple(sort_key(item) for item in value))
    if rank == 7:
        return (rank, str(value))
    if rank == 9 and value.tzinfo is None:
        return (rank, value.replace(tzinfo=timezone.utc))
    if rank == 10:
        return (rank, type(value).__name__, str(value))
    return (rank, value)


def compare(left: Any, right: Any) -> int | None:
    """
    Compare two values for the range operators.

    Values in different type brackets are incomparable (None), null
    included, so "$lt 10" never matches a null or missing field.
    """
    left_rank, right_rank = type_rank(left), type_rank(right)
    if left_rank != right_rank:
        return None
    left_key, right_key = sort_key(left), sort_key(right)
    if left_key < right_key:
        return -1
    if left_key > right_key:
        return 1
    return 0


def values_equal(left: Any, right: Any) -> bool:
    if left is MISSING:
        left = None
    if type_rank(left) != type_rank(right):
        return False
    return sort_key(left) == sort_key(right)


def sort_documents(
    documents: Iterable[Mapping[str, Any]], sort: Sequence[tuple[str, int]]
) -> list:
    """Sort documents by [(path, 1 | -1), ...] using stable passes."""
    result = list(documents)
    for path, direction in reversed(list(sort)):
        result.sort(key=lambda doc: sort_key(get_path(doc, path)), reverse=direction < 0)
    return result


# =============================================================================
# Filter matching
# =============================================================================


def _is_operator_dict(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and bool(condition)
        and all(str(key).startswith("$") for key in condition)
    )


def _candidates(value: Any) -> list:
    # A scalar predicate matches an array field when any element matches
    if isinstance(value, list):
        return [value, *value]
    return [value]


def _match_equal(value: Any, operand: Any) -> bool:
    if operand is None and value is MISSING:
        return True
    return any(values_equal(candidate, operand) for candidate in _candidates(value))


def _match_operator(value: Any, operator: str, operand: Any) -> bool:
    if operator == "$eq":
        return _match_equal(value, operand)
    if operator == "$ne":
        return not _match_equal(value, operand)
    if operator == "$in":
        if not isinstance(operand, (list, tuple)):
            raise InvalidArgument("$in expects a list")
        return any(_match_equal(value, item) for item in operand)
    if operator == "$nin":
        if not isinstance(operand, (list, tuple)):
            raise InvalidArgument("$nin expects a list")
        return not any(_match_equal(value, item) for item in operand)
    if operator == "$exists":
        return (value is not MISSING) == bool(operand)
    if operator == "$not":
        if not _is_operator_dict(operand):
            raise InvalidArgument("$not expects an operator expression")
        return not _match_condition(value, operand)
    if operator in COMPARISON_OPERATORS:
        if value is MISSING:
            value = None
        for candidate in _candidates(value):
            result = compare(candidate, operand)
            if result is None:
                continue
            if operator == "$gt" and result > 0:
                return True
            if operator == "$gte" and result >= 0:
                return True
            if operator == "$lt" and result < 0:
                return True
            if operator == "$lte" and result <= 0:
                return True
        return False
    raise InvalidArgument(f"Unsupported operator {operator}")


def _match_condition(value: Any, condition: Any) -> bool:
    if _is_operator_dict(condition):
        return all(
            _match_operator(value, operator, operand) for operator, operand in condition.items()
        )
    return _match_equal(value, condition)


def matches(document: Mapping[str, Any], filter: Mapping[str, Any] | None) -> bool:
    """True when the document satisfies the filter."""
    for key, condition in (filter or {}).items():
        if key in LOGICAL_OPERATORS:
            if not isinstance(condition, (list, tuple)):
                raise InvalidArgument(f"{key} expects a list of filters")
            results = (matches(document, clause) for clause in condition)
            if key == "$and" and not all(results):
                return False
            if key == "$or" and not any(results):
                return False
            if key == "$nor" and any(results):
                return False
        elif key.startswith("$"):
            raise InvalidArgument(f"Unsupported operator {key}")
        elif not _match_condition(get_path(document, key), condition):
            return False
    return True


# =============================================================================
# Update operators
# =============================================================================


def _set_path(document: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def _unset_path(document: dict, path: str) -> None:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def apply_update(document: Mapping[str, Any], update: Mapping[str, Any]) -> dict:
    """
    Return a copy of ``document`` with ``$set``, ``$unset`` and ``$inc`` applied.
    """
    unknown = set(update) - {"$set", "$unset", "$inc"}
    if unknown or not update:
        raise InvalidArgument(f"Unsupported update operators: {sorted(unknown) or 'none'}")

    result = copy.deepcopy(dict(document))
    for path, value in update.get("$set", {}).items():
        _set_path(result, path, copy.deepcopy(value))
    for path in update.get("$unset", {}):
        _unset_path(result, path)
    for path, amount in update.get("$inc", {}).items():
        current = get_path(result, path)
        if current is MISSING or current is None:
            current = 0
        if not isinstance(current, (int, float)) or isinstance(current, bool):
            raise InvalidArgument(f"Cannot increment non-numeric field {path}", field=path)
        _set_path(result, path, current + amount)
    return result


def equality_fields(filter: Mapping[str, Any] | None) -> dict:
    """Top-level equality predicates of a filter, as an upsert would copy them."""
    fields = {}
    for key, condition in (filter or {}).items():
        if key.startswith("$"):
            continue
        if _is_operator_dict(condition):
            if set(condition) == {"$eq"}:
                fields[key] = condition["$eq"]
            continue
        fields[key] = condition
    return fields
