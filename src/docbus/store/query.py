"""
Query Translator

Turns the opaque filter strings and find options of a DbRequest into
pymongo arguments, and builds the fixed aggregation pipeline.
"""

import logging
from dataclasses import dataclass
from typing import Any

from bson import json_util
from bson.errors import BSONError
from pymongo import ASCENDING, DESCENDING

from docbus.contracts.messages import DbRequest
from docbus.store.timestamps import TIMESTAMP_FIELD

logger = logging.getLogger(__name__)

# After the $project stage the grouped timestamp lives in "time"
AGGREGATE_SORT_KEY = "time"


def parse_filter(raw: str | None) -> dict[str, Any]:
    """
    Parse a filter expression.

    Accepts MongoDB Extended JSON, so {"$date": ...} and {"$oid": ...}
    become native values. Empty input matches everything. Malformed input
    is logged and also matches everything; it never raises.
    """
    if raw is None or not raw.strip():
        return {}

    try:
        parsed = json_util.loads(raw)
    except (ValueError, TypeError, ArithmeticError, RecursionError, BSONError) as e:
        # ArithmeticError covers bad $numberDecimal and out-of-range $date
        logger.warning(
            f"No valid JSON filter, matching all documents: {e}",
            extra={"query": raw},
        )
        return {}

    if not isinstance(parsed, dict):
        logger.warning(
            "Filter is not a JSON object, matching all documents",
            extra={"query": raw},
        )
        return {}

    return parsed


def build_projection(fields: list[str] | None) -> dict[str, bool] | None:
    """None (all fields) for an empty list, otherwise exactly the named fields."""
    if not fields:
        return None
    return {name: True for name in fields}


def build_sort(fields: list[str] | None) -> list[tuple[str, int]] | None:
    """None (store default order) for an empty list; every field sorts descending."""
    if not fields:
        return None
    return [(name, DESCENDING) for name in fields]


def build_group_stage(field: str) -> dict[str, Any]:
    """Group by timestamp; min/avg/max/last of the field and the last timestamp."""
    return {
        "_id": f"${TIMESTAMP_FIELD}",
        "min": {"$min": f"${field}"},
        "avg": {"$avg": f"${field}"},
        "max": {"$max": f"${field}"},
        "last": {"$last": f"${field}"},
        "time": {"$last": f"${TIMESTAMP_FIELD}"},
    }


def build_aggregation_pipeline(filter_expr: dict[str, Any], field: str) -> list[dict[str, Any]]:
    """
    Fixed four stage pipeline.

    1. $match the filter
    2. $group by the timestamp field
    3. $project to {min, avg, max, last, time} with time as epoch millis
    4. $sort ascending by time

    The grouping and sort keys are fixed; callers only choose the filter
    and the aggregated field.
    """
    return [
        {"$match": filter_expr},
        {"$group": build_group_stage(field)},
        {
            "$project": {
                "_id": 0,
                "min": "$min",
                "avg": "$avg",
                "max": "$max",
                "last": "$last",
                "time": {"$toLong": "$time"},
            }
        },
        {"$sort": {AGGREGATE_SORT_KEY: ASCENDING}},
    ]


@dataclass
class FindQuery:
    """pymongo find() arguments for one DbRequest."""

    filter: dict[str, Any]
    projection: dict[str, bool] | None
    sort: list[tuple[str, int]] | None
    limit: int
    skip: int

    def as_kwargs(self) -> dict[str, Any]:
        return {
            "filter": self.filter,
            "projection": self.projection,
            "sort": self.sort,
            "limit": self.limit,
            "skip": self.skip,
        }


def translate(request: DbRequest) -> FindQuery:
    """Translate a DbRequest into find() arguments."""
    return FindQuery(
        filter=parse_filter(request.query),
        projection=build_projection(request.fields),
        sort=build_sort(request.sort),
        # pymongo: 0 = no limit (a negative limit would mean "single batch")
        limit=max(request.limit, 0),
        skip=request.skip,
    )
