"""
Unit tests for in-process filter matching, ordering and update operators.

Run with: pytest src/docbase/store/documents_test.py -v
"""

from datetime import datetime, timezone

import pytest

from docbase.errors import InvalidArgument
from docbase.store.documents import (
    apply_update,
    equality_fields,
    get_path,
    matches,
    MISSING,
    sort_documents,
)

DOC = {
    "_id": "a",
    "seq": 5,
    "name": "widget",
    "tags": ["red", "blue"],
    "meta": {"owner": "ops", "rank": 2},
    "when": datetime(2024, 5, 1, tzinfo=timezone.utc),
    "gone": None,
}


class TestGetPath:
    def test_nested(self):
        assert get_path(DOC, "meta.owner") == "ops"

    def test_array_index(self):
        assert get_path(DOC, "tags.1") == "blue"

    def test_missing(self):
        assert get_path(DOC, "meta.nope") is MISSING
        assert get_path(DOC, "seq.deeper") is MISSING


class TestMatches:
    @pytest.mark.parametrize(
        "filter,expected",
        [
            ({}, True),
            ({"seq": 5}, True),
            ({"seq": 6}, False),
            ({"seq": {"$gt": 4}}, True),
            ({"seq": {"$gte": 5, "$lt": 6}}, True),
            ({"seq": {"$lt": 5}}, False),
            ({"seq": {"$ne": 5}}, False),
            ({"seq": {"$in": [1, 5]}}, True),
            ({"seq": {"$nin": [1, 5]}}, False),
            ({"name": {"$gt": "a"}}, True),
            ({"meta.owner": "ops"}, True),
            ({"tags": "red"}, True),
            ({"tags": {"$in": ["green", "blue"]}}, True),
            ({"missing": None}, True),
            ({"gone": None}, True),
            ({"gone": {"$exists": True}}, True),
            ({"missing": {"$exists": False}}, True),
            ({"seq": {"$not": {"$gt": 10}}}, True),
            ({"$or": [{"seq": 1}, {"name": "widget"}]}, True),
            ({"$and": [{"seq": 5}, {"name": "other"}]}, False),
            ({"$nor": [{"seq": 1}, {"name": "other"}]}, True),
            ({"when": {"$gte": datetime(2024, 1, 1, tzinfo=timezone.utc)}}, True),
        ],
    )
    def test_operators(self, filter, expected):
        assert matches(DOC, filter) is expected

    def test_range_across_types_does_not_match(self):
        assert not matches(DOC, {"name": {"$gt": 1}})
        assert not matches(DOC, {"seq": {"$lt": "z"}})

    def test_bool_is_not_a_number(self):
        assert not matches({"flag": True}, {"flag": 1})

    def test_range_skips_null_and_missing(self):
        assert not matches({"name": "widget"}, {"price": {"$lt": 10}})
        assert not matches({"price": None}, {"price": {"$lt": 10}})
        assert not matches({"price": None}, {"price": {"$gte": 0}})

    def test_range_against_null(self):
        assert not matches(DOC, {"seq": {"$gt": None}})
        assert not matches({"seq": None}, {"seq": {"$gt": None}})
        assert matches({"seq": None}, {"seq": {"$gte": None}})
        assert matches({}, {"seq": {"$lte": None}})
        assert not matches(DOC, {"seq": {"$lte": None}})

    def test_unknown_operator(self):
        with pytest.raises(InvalidArgument):
            matches(DOC, {"seq": {"$regex": "x"}})
        with pytest.raises(InvalidArgument):
            matches(DOC, {"$where": "1"})


class TestSortDocuments:
    def test_multi_key_mixed_directions(self):
        docs = [
            {"_id": 1, "a": 1, "b": "x"},
            {"_id": 2, "a": 2, "b": "y"},
            {"_id": 3, "a": 1, "b": "z"},
            {"_id": 4, "a": 2, "b": "x"},
        ]

        result = sort_documents(docs, [("a", 1), ("b", -1)])

        assert [d["_id"] for d in result] == [3, 1, 2, 4]

    def test_missing_values_sort_first(self):
        docs = [{"_id": 1, "a": 3}, {"_id": 2}, {"_id": 3, "a": None}]

        result = sort_documents(docs, [("a", 1), ("_id", 1)])

        assert [d["_id"] for d in result] == [2, 3, 1]

    def test_type_brackets(self):
        docs = [{"_id": i, "v": v} for i, v in enumerate(["b", 2, True, 1.5])]

        result = sort_documents(docs, [("v", 1)])

        assert [d["v"] for d in result] == [1.5, 2, "b", True]


class TestApplyUpdate:
    def test_set_unset_inc(self):
        result = apply_update(
            DOC,
            {"$set": {"name": "gadget", "meta.owner": "dev"}, "$unset": {"gone": ""}, "$inc": {"seq": 2}},
        )

        assert result["name"] == "gadget"
        assert result["meta"] == {"owner": "dev", "rank": 2}
        assert "gone" not in result
        assert result["seq"] == 7
        # original untouched
        assert DOC["name"] == "widget"

    def test_inc_missing_starts_at_zero(self):
        assert apply_update({"_id": 1}, {"$inc": {"version": 1}})["version"] == 1

    def test_inc_non_numeric(self):
        with pytest.raises(InvalidArgument):
            apply_update(DOC, {"$inc": {"name": 1}})

    @pytest.mark.parametrize("update", [{}, {"name": "x"}, {"$push": {"tags": "x"}}])
    def test_rejects_non_operator_updates(self, update):
        with pytest.raises(InvalidArgument):
            apply_update(DOC, update)


def test_equality_fields():
    filter = {"sku": "A1", "qty": {"$gt": 1}, "kind": {"$eq": "box"}, "$or": [{"x": 1}]}

    assert equality_fields(filter) == {"sku": "A1", "kind": "box"}
