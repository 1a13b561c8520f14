"""
Data Manipulation Pipeline

Fetches documents through the gateway and, when a collection is named,
hands them to a transformation operation:

1. find on the gateway find address (collection + query)
2. wrap the response as {"data": response} with the operation params
3. request the operation address and return its reply

Either hop failing fails the whole request with INTERNAL_ERROR.
"""

import logging
from typing import Any

from docbus.bus.base import MessageBus
from docbus.contracts.addresses import Addresses
from docbus.contracts.messages import DataOperation, DataRequest, DbRequest
from docbus.errors import INTERNAL_ERROR, ReplyError

logger = logging.getLogger(__name__)


class DataPipeline:
    """Find-then-transform composition over the bus."""

    def __init__(
        self,
        bus: MessageBus,
        addresses: Addresses,
        operations: dict[str, str] | None = None,
    ):
        self.bus = bus
        self.addresses = addresses
        self.operations = operations or {}

    def resolve_operation(self, operation: str) -> str:
        """Configured address for an operation name, else the name itself."""
        return self.operations.get(operation, operation)

    async def dispatch(self, request: DataRequest) -> Any:
        find_request = DbRequest(collection=request.collection, query=request.query)
        try:
            latest = await self.bus.request(self.addresses.gateway_find, find_request.to_wire())
        except ReplyError as e:
            logger.warning(
                f"Fetch from '{request.collection}' failed: {e.message}",
                extra={"collection": request.collection, "code": e.code},
            )
            raise ReplyError(INTERNAL_ERROR, e.message) from e

        if not request.collection:
            return latest

        address = self.resolve_operation(request.operation)
        operation = DataOperation(data={"data": latest}, params=request.operation_params)
        try:
            return await self.bus.request(address, operation.to_wire())
        except ReplyError as e:
            logger.warning(
                f"Operation '{request.operation}' failed: {e.message}",
                extra={"operation": request.operation, "address": address, "code": e.code},
            )
            raise ReplyError(INTERNAL_ERROR, e.message) from e
