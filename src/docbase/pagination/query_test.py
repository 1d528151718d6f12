"""
Tests for sort specifications and query building.

Run with: pytest src/docbase/pagination/query_test.py -v
"""

import pytest
from bson import ObjectId

from docbase.errors import InvalidArgument
from docbase.pagination.query import (
    ASC,
    DESC,
    Direction,
    QueryBuilder,
    SortField,
    SortSpec,
    rewrite_filter,
)


class TestSortSpec:
    def test_id_tiebreaker_appended(self):
        spec = SortSpec(["-score"])

        assert spec.shape() == [["score", DESC], ["id", ASC]]
        assert spec.store_sort() == [("score", DESC), ("_id", ASC)]

    def test_no_tiebreaker_when_id_present(self):
        assert SortSpec([("id", "desc")]).shape() == [["id", DESC]]

    def test_no_tiebreaker_after_unique_field(self):
        spec = SortSpec([SortField("email", ASC, unique=True)])

        assert spec.shape() == [["email", ASC]]

    def test_empty_spec_sorts_by_id(self):
        assert SortSpec().shape() == [["id", ASC]]

    def test_parse(self):
        assert SortSpec.parse("seq, -createdAt").shape() == [
            ["seq", ASC],
            ["createdAt", DESC],
            ["id", ASC],
        ]
        assert SortSpec.parse(None) == SortSpec()

    @pytest.mark.parametrize(
        "fields",
        [
            ["seq", "-seq"],
            ["id", "_id"],
            [("seq", 2)],
            [("seq", "sideways")],
            [""],
            [42],
        ],
    )
    def test_invalid(self, fields):
        with pytest.raises(InvalidArgument):
            SortSpec(fields)

    def test_values_of_uses_none_for_missing(self):
        spec = SortSpec(["meta.rank", "name"])

        assert spec.values_of({"_id": "a", "meta": {"rank": 3}}) == (3, None, "a")


def test_rewrite_filter_renames_id():
    filter = {"id": "a", "seq": 1, "$or": [{"id": {"$in": ["b"]}}, {"name": "x"}]}

    assert rewrite_filter(filter) == {
        "_id": "a",
        "seq": 1,
        "$or": [{"_id": {"$in": ["b"]}}, {"name": "x"}],
    }


def test_rewrite_filter_coerces_object_ids():
    oid = ObjectId("5f8d0d55b54764421b7156c3")
    filter = {
        "id": "$oid:5f8d0d55b54764421b7156c3",
        "$or": [{"id": {"$in": ["$oid:5f8d0d55b54764421b7156c3", "plain"]}}],
        "note": "$oid:5f8d0d55b54764421b7156c3",
    }

    assert rewrite_filter(filter) == {
        "_id": oid,
        "$or": [{"_id": {"$in": [oid, "plain"]}}],
        "note": "$oid:5f8d0d55b54764421b7156c3",
    }


def test_rewrite_filter_rejects_non_mapping():
    with pytest.raises(InvalidArgument):
        rewrite_filter(["seq"])


class TestQueryBuilder:
    @pytest.fixture
    def builder(self):
        return QueryBuilder()

    def test_first_page(self, builder):
        query = builder.build({"group": "odd"}, SortSpec(["seq"]), limit=10)

        assert query.filter == {"group": "odd"}
        assert query.sort == (("seq", ASC), ("_id", ASC))
        assert query.limit == 11

    def test_forward_bound(self, builder):
        query = builder.build(None, SortSpec(["seq"]), (5, "rec-3"), Direction.FORWARD, 10)

        assert query.filter == {
            "$or": [
                {"seq": {"$gt": 5}},
                {"seq": {"$eq": 5}, "_id": {"$gt": "rec-3"}},
            ]
        }

    def test_descending_field_flips_operator(self, builder):
        bound = builder.bound(SortSpec(["-seq"]), (5, "rec-3"), Direction.FORWARD)

        assert bound["$or"][0] == {"$or": [{"seq": {"$lt": 5}}, {"seq": None}]}
        assert bound["$or"][1]["_id"] == {"$gt": "rec-3"}

    def test_backward_inverts_bound_and_sort(self, builder):
        query = builder.build(
            {"group": "odd"}, SortSpec(["-seq"]), (5, "rec-3"), Direction.BACKWARD, 10
        )

        assert query.filter == {
            "$and": [
                {"group": "odd"},
                {
                    "$or": [
                        {"seq": {"$gt": 5}},
                        {"seq": {"$eq": 5}, "_id": {"$lt": "rec-3"}},
                    ]
                },
            ]
        }
        assert query.sort == (("seq", ASC), ("_id", DESC))

    def test_single_field_bound(self, builder):
        assert builder.bound(SortSpec(["id"]), ("rec-3",), Direction.FORWARD) == {
            "_id": {"$gt": "rec-3"}
        }

    def test_null_cursor_value(self, builder):
        bound = builder.bound(SortSpec(["rank"]), (None, "rec-1"), Direction.FORWARD)

        assert bound["$or"][0] == {"rank": {"$ne": None}}
        assert bound["$or"][1] == {"rank": {"$eq": None}, "_id": {"$gt": "rec-1"}}

    def test_null_cursor_value_descending(self, builder):
        # Nothing sorts below null, so only the tie on rank remains
        bound = builder.bound(SortSpec(["-rank"]), (None, "rec-1"), Direction.FORWARD)

        assert bound == {"rank": {"$eq": None}, "_id": {"$gt": "rec-1"}}

    def test_null_cursor_value_backward(self, builder):
        bound = builder.bound(SortSpec(["rank"]), (None, "rec-1"), Direction.BACKWARD)

        assert bound == {"rank": {"$eq": None}, "_id": {"$lt": "rec-1"}}

    def test_descending_bound_admits_null_group(self, builder):
        bound = builder.bound(SortSpec(["rank"]), (4, "rec-1"), Direction.BACKWARD)

        assert bound["$or"][0] == {"$or": [{"rank": {"$lt": 4}}, {"rank": None}]}

    def test_nothing_past_the_last_position(self, builder):
        bound = builder.bound(SortSpec(["-rank", "-id"]), (None, None), Direction.FORWARD)

        assert bound == {"_id": {"$in": []}}

    def test_cursor_length_mismatch(self, builder):
        with pytest.raises(InvalidArgument):
            builder.bound(SortSpec(["seq"]), (1,), Direction.FORWARD)

    def test_direction_accepts_strings(self, builder):
        query = builder.build(None, SortSpec(), ("rec-1",), "backward", 5)

        assert query.sort == (("_id", DESC),)
        assert query.filter == {"_id": {"$lt": "rec-1"}}
