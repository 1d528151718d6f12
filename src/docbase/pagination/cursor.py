"""
Cursor codec.

A cursor is an opaque, versioned token carrying the sort-key values of one
record together with the sort shape they belong to:

    "v1." + urlsafe_base64(json({"f": [[field, direction], ...], "v": [[tag, value], ...]}))

Values are tagged so decoding restores the exact Python values (an int stays
an int, a datetime keeps its microseconds and offset). Because the sort shape
is embedded, a cursor minted under one SortSpec is rejected under another.
"""

import base64
import binascii
import json
from datetime import datetime
from typing import Any, Sequence

from bson import ObjectId
from bson.errors import InvalidId

from docbase.errors import InvalidArgument, InvalidCursor
from docbase.pagination.query import SortSpec

CURSOR_VERSION = "v1"


def _tag(value: Any) -> list:
    if value is None:
        return ["n", None]
    if isinstance(value, bool):
        return ["b", value]
    if isinstance(value, int):
        return ["i", value]
    if isinstance(value, float):
        return ["f", value]
    if isinstance(value, str):
        return ["s", value]
    if isinstance(value, datetime):
        return ["d", value.isoformat()]
    if isinstance(value, ObjectId):
        return ["o", str(value)]
    raise InvalidArgument(
        f"Cannot paginate on values of type {type(value).__name__}", field="sort"
    )


def _untag(item: Any) -> Any:
    if not isinstance(item, list) or len(item) != 2:
        raise InvalidCursor("Malformed cursor value")
    tag, value = item
    if tag == "n" and value is None:
        return None
    if tag == "b" and isinstance(value, bool):
        return value
    if tag == "i" and isinstance(value, int) and not isinstance(value, bool):
        return value
    if tag == "f" and isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if tag == "s" and isinstance(value, str):
        return value
    if tag == "d" and isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            raise InvalidCursor("Malformed date in cursor")
    if tag == "o" and isinstance(value, str):
        try:
            return ObjectId(value)
        except InvalidId:
            raise InvalidCursor("Malformed ObjectId in cursor")
    raise InvalidCursor(f"Unknown cursor value tag {tag!r}")


class CursorCodec:
    def encode(self, sort_spec: SortSpec, values: Sequence[Any]) -> str:
        """Encode the sort-key values of one record."""
        if len(values) != len(sort_spec):
            raise InvalidArgument("Cursor values do not match the sort specification", field="cursor")
        payload = {"f": sort_spec.shape(), "v": [_tag(value) for value in values]}
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        body = base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")
        return f"{CURSOR_VERSION}.{body}"

    def decode(self, token: str, sort_spec: SortSpec = None) -> tuple:
        """
        Recover the sort-key values from a cursor.

        Raises:
            InvalidCursor: token is malformed, from an unknown version, or
                was produced for a different sort specification
        """
        if not isinstance(token, str):
            raise InvalidCursor("Cursor must be a string")
        version, separator, body = token.partition(".")
        if not separator or version != CURSOR_VERSION:
            raise InvalidCursor("Unrecognised cursor format")

        try:
            raw = base64.b64decode(body + "=" * (-len(body) % 4), altchars=b"-_", validate=True)
            payload = json.loads(raw.decode("utf-8"))
        except (binascii.Error, ValueError):
            raise InvalidCursor("Cursor is not decodable")

        if not isinstance(payload, dict) or set(payload) != {"f", "v"}:
            raise InvalidCursor("Malformed cursor payload")
        shape, tagged = payload["f"], payload["v"]
        if not isinstance(shape, list) or not isinstance(tagged, list) or len(shape) != len(tagged):
            raise InvalidCursor("Malformed cursor payload")
        if sort_spec is not None and shape != sort_spec.shape():
            raise InvalidCursor("Cursor was issued for a different sort order")

        return tuple(_untag(item) for item in tagged)
