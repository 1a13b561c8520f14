"""
Wire Message Models

Pydantic models for every request and reply exchanged over the bus.
Field aliases match the JSON names used on the wire.
"""

from typing import Any

from bson import json_util
from pydantic import BaseModel, ConfigDict, Field, field_validator


class WireModel(BaseModel):
    """Base for bus messages: accepts wire aliases and python names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Dump to the JSON-compatible wire shape."""
        return self.model_dump(by_alias=True)


class DbRequest(WireModel):
    """
    A find or aggregate request against one collection.

    The query is a MongoDB filter in (Extended) JSON, e.g.
    {"key": "value"}, {"key": {"$in": ["a", "b"]}} or
    {"$or": [{"a": 1}, {"b": {"$gt": 2}}]}. An empty query matches all
    documents. A non-empty aggregate field selects the aggregate path.
    """

    collection: str = Field("", description="Collection name")
    query: str = Field("", description="Filter expression as a JSON string")
    fields: list[str] = Field(default_factory=list, description="Fields to project (empty = all)")
    sort: list[str] = Field(default_factory=list, description="Fields to sort by, each descending")
    limit: int = Field(-1, ge=-1, description="Maximum number of documents, -1 = unbounded")
    skip: int = Field(0, ge=0, description="Number of documents to skip")
    aggregate: str = Field("", description="Numeric field to aggregate (empty = plain find)")

    @field_validator("query", mode="before")
    @classmethod
    def _query_to_string(cls, value: Any) -> Any:
        # Callers may send the filter as an object rather than a string
        if isinstance(value, dict):
            return json_util.dumps(value)
        if value is None:
            return ""
        return value

    @property
    def is_aggregate(self) -> bool:
        return bool(self.aggregate)


class DbResponse(WireModel):
    """Documents returned by a find. An empty result is a valid answer."""

    result: list[dict[str, Any]] = Field(default_factory=list, description="Matching documents")


class SaveRequest(WireModel):
    """
    Tagged save envelope.

    The type name is decided once, at the boundary, and names the
    collection the payload is stored in.
    """

    type_name: str = Field(..., alias="typeName", min_length=1, description="Message type / collection")
    payload: dict[str, Any] = Field(default_factory=dict, description="Document to store")


class SaveAck(WireModel):
    """Acknowledgement of a save. The stored document is not re-read."""

    ok: bool = Field(True, description="Save succeeded")
    id: str = Field(..., description="Store identifier of the saved document")


class DataRequest(WireModel):
    """Request handled by the data manipulation pipeline."""

    collection: str = Field("", description="Collection to fetch from")
    query: str = Field("", description="Filter expression as a JSON string")
    operation: str = Field("", description="Transformation operation name or address")
    operation_params: dict[str, Any] = Field(
        default_factory=dict,
        alias="operationParams",
        description="Operation specific parameters",
    )

    @field_validator("query", mode="before")
    @classmethod
    def _query_to_string(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return json_util.dumps(value)
        if value is None:
            return ""
        return value


class DataOperation(WireModel):
    """Input of a transformation hop: fetched data plus parameters."""

    data: dict[str, Any] = Field(default_factory=dict, description="Fetched data under key 'data'")
    params: dict[str, Any] = Field(default_factory=dict, description="Operation parameters")
