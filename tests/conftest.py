"""
Pytest fixtures for docbus tests.

FakeClient stands in for pymongo.MongoClient. It stores documents in
memory and understands the subset of filters and pipeline stages docbus
produces.
"""

from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo.errors import InvalidName, PyMongoError

from docbus.bus.memory import InMemoryBus
from docbus.contracts.addresses import Addresses
from docbus.settings import GatewaySettings
from docbus.store.gateway import DatabaseGateway
from docbus.store.pool import ClientPool


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _matches_condition(value: Any, condition: Any) -> bool:
    value = _normalize(value)
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            operand = _normalize(operand)
            if op == "$eq" and value != operand:
                return False
            if op == "$in" and value not in operand:
                return False
            if op in ("$gt", "$gte", "$lt", "$lte"):
                if value is None:
                    return False
                if op == "$gt" and not value > operand:
                    return False
                if op == "$gte" and not value >= operand:
                    return False
                if op == "$lt" and not value < operand:
                    return False
                if op == "$lte" and not value <= operand:
                    return False
        return True
    return value == _normalize(condition)


def matches(document: dict[str, Any], filter_expr: dict[str, Any]) -> bool:
    for key, condition in filter_expr.items():
        if key == "$and":
            if not all(matches(document, part) for part in condition):
                return False
        elif key == "$or":
            if not any(matches(document, part) for part in condition):
                return False
        elif not _matches_condition(document.get(key), condition):
            return False
    return True


class InsertResult:
    def __init__(self, inserted_id: Any):
        self.inserted_id = inserted_id


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.error: PyMongoError | None = None
        self.find_calls: list[dict[str, Any]] = []

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    def insert_one(self, document: dict[str, Any]) -> InsertResult:
        self._check()
        document = dict(document)
        document.setdefault("_id", ObjectId())
        self.documents.append(document)
        return InsertResult(document["_id"])

    def replace_one(self, filter_expr: dict[str, Any], document: dict[str, Any], upsert: bool = False) -> None:
        self._check()
        for index, existing in enumerate(self.documents):
            if matches(existing, filter_expr):
                self.documents[index] = dict(document)
                return
        if upsert:
            self.documents.append(dict(document))

    def find(self, filter=None, projection=None, sort=None, limit=0, skip=0) -> list[dict[str, Any]]:
        self._check()
        self.find_calls.append(
            {"filter": filter, "projection": projection, "sort": sort, "limit": limit, "skip": skip}
        )
        rows = [dict(doc) for doc in self.documents if matches(doc, filter or {})]
        for key, direction in reversed(sort or []):
            rows.sort(key=lambda doc: _normalize(doc.get(key)), reverse=direction < 0)
        rows = rows[skip:]
        if limit:
            rows = rows[:limit]
        if projection:
            keep = {key for key, include in projection.items() if include} | {"_id"}
            rows = [{key: value for key, value in doc.items() if key in keep} for doc in rows]
        return rows


class FakeDatabase:
    def __init__(self, name: str):
        self.name = name
        self.collections: dict[str, FakeCollection] = {}
        self.commands: list[tuple[str, str, dict[str, Any]]] = []

    def __getitem__(self, name: str) -> FakeCollection:
        if not name:
            raise InvalidName("collection names cannot be empty")
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def command(self, command: str, value: str, **kwargs: Any) -> dict[str, Any]:
        self.commands.append((command, value, kwargs))
        assert command == "aggregate"
        collection = self[value]
        collection._check()
        rows = [dict(doc) for doc in collection.documents]
        for stage in kwargs["pipeline"]:
            rows = run_stage(stage, rows)
        return {"cursor": {"firstBatch": rows, "id": 0, "ns": f"{self.name}.{value}"}, "ok": 1.0}


def _field(expression: str) -> str:
    return expression[1:]


def run_stage(stage: dict[str, Any], rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    (name, stage_body), = stage.items()
    if name == "$match":
        return [row for row in rows if matches(row, stage_body)]

    if name == "$group":
        groups: dict[Any, list[dict[str, Any]]] = {}
        for row in rows:
            groups.setdefault(_normalize(row.get(_field(stage_body["_id"]))), []).append(row)
        result = []
        for key, members in groups.items():
            out: dict[str, Any] = {"_id": key}
            for out_name, accumulator in stage_body.items():
                if out_name == "_id":
                    continue
                (op, expression), = accumulator.items()
                values = [member.get(_field(expression)) for member in members]
                present = [v for v in values if v is not None]
                if op == "$min":
                    out[out_name] = min(present) if present else None
                elif op == "$max":
                    out[out_name] = max(present) if present else None
                elif op == "$avg":
                    out[out_name] = sum(present) / len(present) if present else None
                elif op == "$last":
                    out[out_name] = values[-1]
            result.append(out)
        return result

    if name == "$project":
        result = []
        for row in rows:
            out = {}
            for out_name, expression in stage_body.items():
                if expression == 0:
                    continue
                if isinstance(expression, dict) and "$toLong" in expression:
                    instant = _normalize(row.get(_field(expression["$toLong"])))
                    out[out_name] = int(instant.timestamp() * 1000)
                else:
                    out[out_name] = row.get(_field(expression))
            if stage_body.get("_id") != 0:
                out["_id"] = row.get("_id")
            result.append(out)
        return result

    if name == "$sort":
        for key, direction in reversed(list(stage_body.items())):
            rows = sorted(rows, key=lambda row: row.get(key), reverse=direction < 0)
        return rows

    raise AssertionError(f"Unsupported stage {name}")


class FakeClient:
    """In-memory MongoClient."""

    def __init__(self, **options: Any):
        self.options = options
        self.databases: dict[str, FakeDatabase] = {}
        self.closed = False
        self.close_error: Exception | None = None

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def close(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


@pytest.fixture
def pool():
    """Client pool producing FakeClients."""
    return ClientPool(factory=FakeClient)


@pytest.fixture
def gateway_settings():
    return GatewaySettings(db_name="testdb", pool_name="testPool")


@pytest.fixture
def gateway(gateway_settings, pool):
    """Disconnected gateway on a fake client."""
    return DatabaseGateway(gateway_settings, pool=pool)


@pytest.fixture
def fake_db(gateway, pool, gateway_settings):
    """The FakeDatabase behind the gateway. Holds one pool reference for the test."""
    client = pool.acquire(gateway_settings.pool_name)
    return client[gateway_settings.db_name]


@pytest_asyncio.fixture
async def connected_gateway(gateway, fake_db):
    """Connected gateway; closed after the test."""
    await gateway.connect()
    yield gateway
    await gateway.close()


@pytest.fixture
def addresses():
    return Addresses()


@pytest.fixture
def bus():
    return InMemoryBus()
