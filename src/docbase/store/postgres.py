"""
Postgres document store.

Each collection is a table of (key text primary key, doc jsonb). Filters are
compiled to JSONB expressions with psycopg.sql; updates lock the target row
with SELECT ... FOR UPDATE and apply the update operators in Python, so a
single-document write is atomic within one transaction.

Values without a JSON form are wrapped Mongo-style: datetimes as
{"$date": "<fixed-width UTC ISO-8601>"} (fixed width keeps string order equal
to time order) and ObjectIds as {"$oid": "<hex>"}.
"""

import json
import logging
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Mapping

import psycopg
from bson import ObjectId
from psycopg import sql
from psycopg.errors import QueryCanceled, UniqueViolation
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from docbase import db
from docbase.errors import DuplicateKey, InvalidArgument, StoreUnavailable, Timeout
from docbase.store.base import DocumentStore, NativeQuery
from docbase.store.documents import COMPARISON_OPERATORS, LOGICAL_OPERATORS, apply_update

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
PATH_PART_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

SQL_OPERATORS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}


# =============================================================================
# Value encoding
# =============================================================================


def encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {"$date": value.astimezone(timezone.utc).strftime(DATE_FORMAT)}
    if isinstance(value, ObjectId):
        return {"$oid": str(value)}
    if isinstance(value, Mapping):
        return {key: encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and "$date" in value:
            return datetime.strptime(value["$date"], DATE_FORMAT).replace(tzinfo=timezone.utc)
        if len(value) == 1 and "$oid" in value:
            return ObjectId(value["$oid"])
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def storage_key(record_id: Any) -> str:
    """Primary-key text for an _id; keeps "1", 1 and ObjectIds distinct."""
    return json.dumps(encode_value(record_id), sort_keys=True)


# =============================================================================
# Filter compilation
# =============================================================================


def _path(field: str) -> sql.Composable:
    parts = field.split(".")
    if not all(PATH_PART_PATTERN.match(part) for part in parts):
        raise InvalidArgument(f"Unsupported field name {field!r}", field=field)
    return sql.SQL("(doc #> {})").format(sql.Literal("{" + ",".join(parts) + "}"))


def _join(parts: list, separator: str, empty: str) -> sql.Composable:
    if not parts:
        return sql.SQL(empty)
    return sql.SQL("(") + sql.SQL(separator).join(parts) + sql.SQL(")")


class FilterCompiler:
    """
    Compiles a filter document into a boolean SQL expression.

    Placeholders are emitted left to right and ``params`` collects their
    values in the same order. Every emitted expression is NOT NULL.
    """

    def __init__(self):
        self.params: list = []

    def _value(self, value: Any) -> sql.Composable:
        self.params.append(Jsonb(encode_value(value)))
        return sql.SQL("%s::jsonb")

    def compile(self, filter: Mapping[str, Any] | None) -> sql.Composable:
        clauses = []
        for key, condition in (filter or {}).items():
            if key in LOGICAL_OPERATORS:
                if not isinstance(condition, (list, tuple)):
                    raise InvalidArgument(f"{key} expects a list of filters")
                parts = [self.compile(clause) for clause in condition]
                if key == "$and":
                    clauses.append(_join(parts, " AND ", "TRUE"))
                elif key == "$or":
                    clauses.append(_join(parts, " OR ", "FALSE"))
                else:
                    clauses.append(sql.SQL("NOT ") + _join(parts, " OR ", "FALSE"))
            elif key.startswith("$"):
                raise InvalidArgument(f"Unsupported operator {key}")
            else:
                clauses.append(self._condition(key, condition))
        return _join(clauses, " AND ", "TRUE")

    def _condition(self, field: str, condition: Any) -> sql.Composable:
        if (
            isinstance(condition, Mapping)
            and condition
            and all(str(key).startswith("$") for key in condition)
        ):
            parts = [self._operator(field, op, operand) for op, operand in condition.items()]
            return _join(parts, " AND ", "TRUE")
        return self._equal(field, condition)

    def _equal(self, field: str, value: Any) -> sql.Composable:
        path = _path(field)
        if value is None:
            return sql.SQL("({p} IS NULL OR {p} = 'null'::jsonb)").format(p=path)
        return sql.SQL(
            "COALESCE(({p} = {v} OR (jsonb_typeof({p}) = 'array' "
            "AND {p} @> jsonb_build_array({w}))), false)"
        ).format(p=path, v=self._value(value), w=self._value(value))

    def _operator(self, field: str, operator: str, operand: Any) -> sql.Composable:
        path = _path(field)
        if operator == "$eq":
            return self._equal(field, operand)
        if operator == "$ne":
            return sql.SQL("NOT ") + self._equal(field, operand)
        if operator in ("$in", "$nin"):
            if not isinstance(operand, (list, tuple)):
                raise InvalidArgument(f"{operator} expects a list")
            matched = _join([self._equal(field, item) for item in operand], " OR ", "FALSE")
            return matched if operator == "$in" else sql.SQL("NOT ") + matched
        if operator == "$exists":
            return sql.SQL("({} IS NOT NULL)" if operand else "({} IS NULL)").format(path)
        if operator == "$not":
            return sql.SQL("NOT ") + self._condition(field, operand)
        if operator in COMPARISON_OPERATORS:
            if operand is None:
                # Only null equals null; nothing is strictly above or below it
                if operator in ("$gte", "$lte"):
                    return self._equal(field, None)
                return sql.SQL("FALSE")
            # Values of another JSON type (null included) never match
            return sql.SQL(
                "COALESCE(({p} {op} {v} AND jsonb_typeof({p}) = jsonb_typeof({w})), false)"
            ).format(
                p=path,
                op=sql.SQL(SQL_OPERATORS[operator]),
                v=self._value(operand),
                w=self._value(operand),
            )
        raise InvalidArgument(f"Unsupported operator {operator}")


def compile_sort(sort) -> sql.Composable:
    # Missing and null share one position (jsonb null sorts lowest)
    terms = [
        sql.SQL(
            "COALESCE({}, 'null'::jsonb) ASC" if direction > 0 else "COALESCE({}, 'null'::jsonb) DESC"
        ).format(_path(field))
        for field, direction in sort
    ]
    if not terms:
        return sql.SQL("")
    return sql.SQL(" ORDER BY ") + sql.SQL(", ").join(terms)


# =============================================================================
# Store
# =============================================================================


@contextmanager
def _translate_errors(collection: str, key: Any = None):
    try:
        yield
    except UniqueViolation as exc:
        raise DuplicateKey(collection, key) from exc
    except QueryCanceled as exc:
        raise Timeout(f"Postgres query cancelled: {exc}") from exc
    except psycopg.OperationalError as exc:
        raise StoreUnavailable(f"Postgres unavailable: {exc}") from exc


class PostgresDocumentStore(DocumentStore):
    """
    Document store backed by Postgres JSONB tables.

    Args:
        database_url: Connection string; defaults to DATABASE_URL
        table_prefix: Prepended to every collection's table name
    """

    def __init__(self, database_url: str = None, table_prefix: str = ""):
        self.database_url = database_url
        self.table_prefix = table_prefix
        self._ready: set[str] = set()

    def _table(self, collection: str) -> sql.Identifier:
        name = f"{self.table_prefix}{collection}"
        if not NAME_PATTERN.match(name):
            raise InvalidArgument(f"Invalid collection name {collection!r}", field="collection")
        if name not in self._ready:
            with _translate_errors(collection):
                db.execute(
                    sql.SQL(
                        "CREATE TABLE IF NOT EXISTS {} (key text PRIMARY KEY, doc jsonb NOT NULL)"
                    ).format(sql.Identifier(name)),
                    url=self.database_url,
                )
            self._ready.add(name)
        return sql.Identifier(name)

    def _where(self, filter: Mapping[str, Any] | None) -> tuple[sql.Composable, list]:
        compiler = FilterCompiler()
        condition = compiler.compile(filter)
        return condition, compiler.params

    def find(self, collection: str, query: NativeQuery) -> list[dict]:
        table = self._table(collection)
        condition, params = self._where(query.filter)
        statement = sql.SQL("SELECT doc FROM {} WHERE {}{}").format(
            table, condition, compile_sort(query.sort)
        )
        if query.limit is not None:
            statement += sql.SQL(" LIMIT {}").format(sql.Literal(int(query.limit)))
        with _translate_errors(collection):
            rows = db.fetch_all(statement, tuple(params), url=self.database_url)
        logger.debug("find %s matched %d documents", collection, len(rows))
        return [decode_value(row["doc"]) for row in rows]

    def insert_one(self, collection: str, document: Mapping[str, Any]) -> dict:
        if "_id" not in document:
            raise InvalidArgument("Document has no _id", field="id")
        table = self._table(collection)
        with _translate_errors(collection, document["_id"]):
            row = db.fetch_one(
                sql.SQL("INSERT INTO {} (key, doc) VALUES (%s, %s) RETURNING doc").format(table),
                (storage_key(document["_id"]), Jsonb(encode_value(dict(document)))),
                url=self.database_url,
            )
        return decode_value(row["doc"])

    def update_one(
        self, collection: str, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> dict | None:
        table = self._table(collection)
        condition, params = self._where(filter)
        with _translate_errors(collection):
            with db.get_connection(self.database_url) as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        sql.SQL(
                            "SELECT key, doc FROM {} WHERE {}{} LIMIT 1 FOR UPDATE"
                        ).format(table, condition, compile_sort([("_id", 1)])),
                        tuple(params),
                    )
                    row = cur.fetchone()
                    if row is None:
                        return None
                    current = decode_value(row["doc"])
                    updated = apply_update(current, update)
                    if updated.get("_id") != current.get("_id"):
                        raise InvalidArgument("The _id field is immutable", field="id")
                    cur.execute(
                        sql.SQL("UPDATE {} SET doc = %s WHERE key = %s").format(table),
                        (Jsonb(encode_value(updated)), row["key"]),
                    )
        return updated

    def delete_one(self, collection: str, filter: Mapping[str, Any]) -> bool:
        table = self._table(collection)
        condition, params = self._where(filter)
        statement = sql.SQL(
            "DELETE FROM {t} WHERE key = (SELECT key FROM {t} WHERE {c}{o} LIMIT 1)"
        ).format(t=table, c=condition, o=compile_sort([("_id", 1)]))
        with _translate_errors(collection):
            return db.execute(statement, tuple(params), url=self.database_url) > 0

    def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int:
        table = self._table(collection)
        condition, params = self._where(filter)
        with _translate_errors(collection):
            return db.execute(
                sql.SQL("DELETE FROM {} WHERE {}").format(table, condition),
                tuple(params),
                url=self.database_url,
            )

    def count(self, collection: str, filter: Mapping[str, Any]) -> int:
        table = self._table(collection)
        condition, params = self._where(filter)
        with _translate_errors(collection):
            row = db.fetch_one(
                sql.SQL("SELECT count(*) AS total FROM {} WHERE {}").format(table, condition),
                tuple(params),
                url=self.database_url,
            )
        return row["total"]

    def create_unique_index(self, collection: str, fields: list[str]) -> None:
        table = self._table(collection)
        name = f"{self.table_prefix}{collection}_{'_'.join(f.replace('.', '_') for f in fields)}_key"
        with _translate_errors(collection):
            db.execute(
                sql.SQL("CREATE UNIQUE INDEX IF NOT EXISTS {} ON {} ({})").format(
                    sql.Identifier(name),
                    table,
                    sql.SQL(", ").join(_path(field) for field in fields),
                ),
                url=self.database_url,
            )
