"""
Conversion between store values and wire values.

On the wire documents are plain JSON: dates travel as
{"$date": "<canonical timestamp>"} and ids as {"$oid": "<hex>"}.
In the store they are native BSON dates and ObjectIds.
"""

import json
from datetime import datetime
from typing import Any

from bson import ObjectId, json_util

from docbus.store.timestamps import format_timestamp


def to_wire(value: Any) -> Any:
    """Convert a store document (or any nested value) to its wire form."""
    if isinstance(value, dict):
        return {key: to_wire(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(item) for item in value]
    if isinstance(value, datetime):
        return {"$date": format_timestamp(value)}
    if isinstance(value, ObjectId):
        return {"$oid": str(value)}
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    # Decimal128, Binary, Regex, ... -> Extended JSON
    return to_wire(json_util.default(value))


def from_wire(value: Any) -> Any:
    """Turn Extended JSON markers ($date, $oid, ...) back into BSON values."""
    return json_util.loads(json.dumps(value))
