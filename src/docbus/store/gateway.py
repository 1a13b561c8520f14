"""
Database Gateway

Owns the connection to one MongoDB database and performs save, find and
aggregate. Every driver call runs in a worker thread so the event loop
never blocks on the store.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, TypeVar

from pymongo.errors import PyMongoError

from docbus.contracts.messages import DbRequest, DbResponse, SaveAck
from docbus.errors import GatewayError
from docbus.settings import GatewaySettings
from docbus.store.codec import from_wire, to_wire
from docbus.store.pool import ClientPool, get_client_pool
from docbus.store.query import build_aggregation_pipeline, parse_filter, translate
from docbus.store.timestamps import TIMESTAMP_FIELD, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GatewayState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class DatabaseGateway:
    """
    Gateway to one MongoDB database.

    Usage:
        gateway = DatabaseGateway(settings.gateway)
        await gateway.connect()
        ack = await gateway.save("sensor", {"value": 3})
        response = await gateway.find(DbRequest(collection="sensor"))
        await gateway.close()
    """

    def __init__(self, settings: GatewaySettings, pool: ClientPool | None = None):
        self.settings = settings
        self.pool = pool or get_client_pool()
        self.state = GatewayState.DISCONNECTED
        self._client: Any = None
        self._db: Any = None

    async def connect(self) -> None:
        if self.state == GatewayState.CONNECTED:
            return
        self._client = self.pool.acquire(self.settings.pool_name, **self.settings.client_options())
        self._db = self._client[self.settings.db_name]
        self.state = GatewayState.CONNECTED
        logger.info(
            f"Gateway connected to {self.settings.host}:{self.settings.port}/{self.settings.db_name}",
            extra={"pool_name": self.settings.pool_name},
        )

    async def close(self) -> None:
        """Release the shared client; a failing driver close propagates."""
        if self.state != GatewayState.CONNECTED:
            return
        self.state = GatewayState.CLOSING
        try:
            await asyncio.to_thread(self.pool.release, self.settings.pool_name)
        finally:
            self._client = None
            self._db = None
            self.state = GatewayState.CLOSED

    async def _run(self, operation: str, collection: str, call: Callable[[], T]) -> T:
        if self.state != GatewayState.CONNECTED:
            raise GatewayError(f"Gateway is {self.state.value}, cannot {operation}")
        try:
            return await asyncio.to_thread(call)
        except PyMongoError as e:
            logger.error(
                f"{operation} on '{collection}' failed: {e}",
                extra={"operation": operation, "collection": collection},
                exc_info=True,
            )
            raise GatewayError(str(e)) from e

    async def save(self, type_name: str, document: dict[str, Any]) -> SaveAck:
        """
        Store a document in the collection named by its type.

        The document gets a fresh `datetime` stamp. A document carrying an
        `_id` replaces the stored one (inserted if absent).
        """
        doc = from_wire(document)
        doc[TIMESTAMP_FIELD] = utc_now()

        def call() -> Any:
            collection = self._db[type_name]
            if "_id" in doc:
                collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)
                return doc["_id"]
            return collection.insert_one(doc).inserted_id

        doc_id = await self._run("save", type_name, call)
        logger.debug(f"Saved document to {type_name}", extra={"collection": type_name, "id": str(doc_id)})
        return SaveAck(id=str(doc_id))

    async def find(self, request: DbRequest) -> DbResponse:
        query = translate(request)

        def call() -> list[dict[str, Any]]:
            return list(self._db[request.collection].find(**query.as_kwargs()))

        rows = await self._run("find", request.collection, call)
        return DbResponse(result=to_wire(rows))

    async def aggregate(self, request: DbRequest) -> dict[str, Any]:
        """
        Run the fixed aggregation pipeline over `request.aggregate`.

        Returns the raw command reply in wire form; rows are under
        cursor.firstBatch.
        """
        pipeline = build_aggregation_pipeline(parse_filter(request.query), request.aggregate)

        def call() -> dict[str, Any]:
            return self._db.command("aggregate", request.collection, pipeline=pipeline, cursor={})

        reply = await self._run("aggregate", request.collection, call)
        return to_wire(dict(reply))

    async def execute(self, request: DbRequest) -> dict[str, Any]:
        """Aggregate when the request names a field, plain find otherwise."""
        if request.is_aggregate:
            return await self.aggregate(request)
        response = await self.find(request)
        return response.to_wire()
