import json

from flask import Blueprint, current_app, jsonify, request

from docbase.crud import CrudService, UpdateRequest
from docbase.errors import InvalidArgument, NotFound
from docbase.pagination import Direction, SortSpec
from docbase.projection import Record, from_extended_json, to_json_compatible

bp = Blueprint("collections", __name__)


def _service(collection: str) -> CrudService:
    return CrudService(current_app.store, collection)


def _serialize(record: Record) -> dict:
    return to_json_compatible(record.to_dict())


def _json_arg(name: str):
    raw = request.args.get(name)
    if raw is None:
        return None
    try:
        return from_extended_json(json.loads(raw))
    except ValueError:
        raise InvalidArgument(f"Query parameter {name!r} must be JSON", field=name)


def _int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgument(f"Query parameter {name!r} must be an integer", field=name)


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidArgument("Request body must be a JSON object", field="body")
    return from_extended_json(data)


@bp.route("/<collection>", methods=["GET"])
def list_records(collection: str):
    """
    List records as a connection.

    Query parameters: filter (JSON), sort ("seq,-createdAt"), first/after for
    forward paging, last/before for backward paging, count=true for totalCount.
    """
    first, last = _int_arg("first"), _int_arg("last")
    after, before = request.args.get("after"), request.args.get("before")
    if first is not None and last is not None:
        raise InvalidArgument("Use either first or last, not both", field="last")
    if after is not None and before is not None:
        raise InvalidArgument("Use either after or before, not both", field="before")

    if last is not None or before is not None:
        direction, limit, cursor = Direction.BACKWARD, last, before
    else:
        direction, limit, cursor = Direction.FORWARD, first, after

    page = _service(collection).find_many(
        filter=_json_arg("filter"),
        sort=SortSpec.parse(request.args.get("sort")),
        cursor=cursor,
        direction=direction,
        limit=limit,
        with_count=request.args.get("count", "false").lower() == "true",
    )
    return jsonify(page.to_dict(_serialize))


@bp.route("/<collection>/<record_id>", methods=["GET"])
def get_record(collection: str, record_id: str):
    """Get record by ID."""
    record = _service(collection).find_by_id(record_id)
    if record is None:
        raise NotFound(collection, record_id)
    return jsonify(_serialize(record))


@bp.route("/<collection>", methods=["POST"])
def create_record(collection: str):
    """Insert a new record."""
    record = _service(collection).insert(_body())
    return jsonify(_serialize(record)), 201


@bp.route("/<collection>/<record_id>", methods=["PATCH"])
def update_record(collection: str, record_id: str):
    """Merge fields into a record, optionally guarded by expectedVersion."""
    data = _body()
    record = _service(collection).update(
        record_id,
        UpdateRequest(
            fields=data.get("fields") or {},
            expected_version=data.get("expectedVersion"),
        ),
    )
    return jsonify(_serialize(record))


@bp.route("/<collection>", methods=["PUT"])
def upsert_record(collection: str):
    """Update the first record matching filter, or insert one."""
    data = _body()
    record = _service(collection).upsert(
        data.get("filter") or {},
        data.get("fields") or {},
        expected_version=data.get("expectedVersion"),
    )
    return jsonify(_serialize(record))


@bp.route("/<collection>/<record_id>", methods=["DELETE"])
def delete_record(collection: str, record_id: str):
    """Delete a record; deleting twice is not an error."""
    deleted = _service(collection).delete(record_id)
    return jsonify({"deleted": deleted})
