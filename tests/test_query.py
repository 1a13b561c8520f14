"""
Tests for the query translator.
"""

from datetime import datetime

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from docbus.contracts.messages import DbRequest
from docbus.store.query import (
    build_aggregation_pipeline,
    build_projection,
    build_sort,
    parse_filter,
    translate,
)


class TestParseFilter:
    """Tests for filter parsing."""

    def test_empty_matches_all(self):
        """Empty or missing filters match everything."""
        assert parse_filter("") == {}
        assert parse_filter("   ") == {}
        assert parse_filter(None) == {}

    def test_plain_filter(self):
        """A plain JSON object is the filter."""
        assert parse_filter('{"key": "value"}') == {"key": "value"}

    def test_operators_pass_through(self):
        """Query operators are handed to the store unchanged."""
        raw = '{"$or": [{"a": 1}, {"b": {"$gt": 2}}], "c": {"$in": ["x", "y"]}}'
        assert parse_filter(raw) == {
            "$or": [{"a": 1}, {"b": {"$gt": 2}}],
            "c": {"$in": ["x", "y"]},
        }

    def test_date_marker_becomes_datetime(self):
        """$date markers become UTC datetimes."""
        parsed = parse_filter('{"datetime": {"$gt": {"$date": "2021-05-07T12:00:00.000+02:00"}}}')
        value = parsed["datetime"]["$gt"]
        assert isinstance(value, datetime)
        assert (value.year, value.month, value.day, value.hour) == (2021, 5, 7, 10)

    def test_oid_marker_becomes_object_id(self):
        """$oid markers become ObjectIds."""
        oid = "5f1d7f0e8e4b3c2a1b0c9d8e"
        assert parse_filter(f'{{"_id": {{"$oid": "{oid}"}}}}') == {"_id": ObjectId(oid)}

    def test_malformed_degrades_to_match_all(self, caplog):
        """Malformed filters never raise."""
        assert parse_filter("{not json") == {}
        assert "matching all documents" in caplog.text

    def test_bad_decimal_degrades_to_match_all(self):
        """An unparseable $numberDecimal is treated like any malformed filter."""
        assert parse_filter('{"a": {"$numberDecimal": "nope"}}') == {}

    def test_out_of_range_date_degrades_to_match_all(self):
        """A $date too large for a datetime is treated like any malformed filter."""
        assert parse_filter('{"a": {"$date": 1e400}}') == {}

    def test_deep_nesting_degrades_to_match_all(self):
        """Nesting beyond the recursion limit does not escape the parser."""
        depth = 100000
        assert parse_filter('{"a": ' * depth + "1" + "}" * depth) == {}

    def test_non_object_degrades_to_match_all(self):
        """JSON that is not an object is treated as no filter."""
        assert parse_filter("[1, 2, 3]") == {}
        assert parse_filter('"text"') == {}


class TestFindOptions:
    """Tests for projection and sort."""

    def test_projection_empty_means_all_fields(self):
        """No fields means no projection."""
        assert build_projection([]) is None

    def test_projection_keeps_order(self):
        """Named fields are projected in request order."""
        assert list(build_projection(["b", "a"])) == ["b", "a"]
        assert build_projection(["b", "a"]) == {"b": True, "a": True}

    def test_sort_empty_means_store_order(self):
        """No sort keys leaves store order."""
        assert build_sort([]) is None

    def test_sort_is_descending(self):
        """Every sort key sorts descending."""
        assert build_sort(["datetime", "value"]) == [("datetime", DESCENDING), ("value", DESCENDING)]

    def test_translate_defaults(self):
        """A bare request matches all with no options."""
        query = translate(DbRequest(collection="sensor"))
        assert query.filter == {}
        assert query.projection is None
        assert query.sort is None
        assert query.limit == 0
        assert query.skip == 0

    def test_translate_limit_and_skip(self):
        """Limit and skip become find arguments."""
        query = translate(DbRequest(collection="sensor", limit=5, skip=2))
        assert query.as_kwargs()["limit"] == 5
        assert query.as_kwargs()["skip"] == 2


class TestAggregationPipeline:
    """Tests for the fixed aggregation pipeline."""

    def test_stage_order(self):
        """Stages run match, group, project, then sort."""
        pipeline = build_aggregation_pipeline({"a": 1}, "value")
        assert [next(iter(stage)) for stage in pipeline] == ["$match", "$group", "$project", "$sort"]

    def test_match_uses_filter(self):
        """The match stage is the parsed filter."""
        pipeline = build_aggregation_pipeline({"a": 1}, "value")
        assert pipeline[0] == {"$match": {"a": 1}}

    def test_group_by_timestamp(self):
        """Values group by timestamp with min, avg, max and last."""
        group = build_aggregation_pipeline({}, "value")[1]["$group"]
        assert group == {
            "_id": "$datetime",
            "min": {"$min": "$value"},
            "avg": {"$avg": "$value"},
            "max": {"$max": "$value"},
            "last": {"$last": "$value"},
            "time": {"$last": "$datetime"},
        }

    def test_project_time_to_millis(self):
        """The group time is projected as epoch milliseconds."""
        project = build_aggregation_pipeline({}, "value")[2]["$project"]
        assert project["_id"] == 0
        assert project["time"] == {"$toLong": "$time"}
        assert {"min", "avg", "max", "last"} <= set(project)

    def test_sorted_ascending_by_time(self):
        """Results come out oldest first."""
        assert build_aggregation_pipeline({}, "value")[3] == {"$sort": {"time": ASCENDING}}
