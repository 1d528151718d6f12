"""
Record identifiers.

Identifiers are random 128-bit UUIDs rendered as canonical strings. The
generator is an explicit dependency of the CRUD service rather than a global,
so tests can swap in a seeded or sequential one.
"""

import os
import uuid
from typing import Any, Callable

from bson import ObjectId
from bson.errors import InvalidId

from docbase.errors import InvalidArgument

OID_PREFIX = "$oid:"


class IdGenerator:
    """Produces unique identifiers for new records."""

    def new_id(self) -> str:
        raise NotImplementedError


class UuidGenerator(IdGenerator):
    """
    Random version-4 UUIDs.

    Args:
        randbytes: Callable returning n random bytes. Defaults to os.urandom;
            pass random.Random(seed).randbytes for reproducible ids.
    """

    def __init__(self, randbytes: Callable[[int], bytes] = None):
        self.randbytes = randbytes or os.urandom

    def new_id(self) -> str:
        return str(uuid.UUID(bytes=self.randbytes(16), version=4))


class SequenceIdGenerator(IdGenerator):
    """Deterministic ids ("rec-000001", ...) for fixtures and scripts."""

    def __init__(self, prefix: str = "rec", start: int = 1, width: int = 6):
        self.prefix = prefix
        self.width = width
        self._next = start

    def new_id(self) -> str:
        value = f"{self.prefix}-{self._next:0{self.width}d}"
        self._next += 1
        return value


def coerce_id(value: Any) -> str | int | ObjectId:
    """
    Normalise a caller-supplied identifier.

    Strings are kept as-is unless they carry the "$oid:" prefix, in which
    case they are parsed into a bson ObjectId. Ints and ObjectIds pass
    through. Anything else is rejected.
    """
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, bool):
        raise InvalidArgument("Identifier must be a string, int or ObjectId", field="id")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if not value:
            raise InvalidArgument("Identifier must not be empty", field="id")
        if value.startswith(OID_PREFIX):
            try:
                return ObjectId(value[len(OID_PREFIX):])
            except InvalidId:
                raise InvalidArgument(f"Invalid ObjectId {value!r}", field="id")
        return value
    raise InvalidArgument("Identifier must be a string, int or ObjectId", field="id")


def format_id(value: Any) -> str | int:
    """Render an identifier for JSON output; inverse of coerce_id."""
    if isinstance(value, ObjectId):
        return f"{OID_PREFIX}{value}"
    return value
