"""
Gateway Endpoints

Binds the gateway save/find/aggregate addresses to a DatabaseGateway.
One message, one store operation, one reply.
"""

import logging
from typing import Any

from docbus.bus.base import BusMessage, MessageBus
from docbus.contracts.addresses import Addresses
from docbus.contracts.messages import DbRequest, SaveRequest
from docbus.errors import BAD_REQUEST, ReplyError
from docbus.service.base import BusService, parse_message
from docbus.store.gateway import DatabaseGateway

logger = logging.getLogger(__name__)


class GatewayEndpoints(BusService):
    """Serves DatabaseGateway operations on the bus."""

    def __init__(self, bus: MessageBus, gateway: DatabaseGateway, addresses: Addresses):
        super().__init__(bus)
        self.gateway = gateway
        self.addresses = addresses

    async def start(self) -> None:
        await self._bind(self.addresses.gateway_save, self.handle_save)
        await self._bind(self.addresses.gateway_find, self.handle_find)
        await self._bind(self.addresses.gateway_aggregate, self.handle_aggregate)

    async def handle_save(self, message: BusMessage) -> dict[str, Any]:
        request = parse_message(SaveRequest, message)
        ack = await self.gateway.save(request.type_name, request.payload)
        return ack.to_wire()

    async def handle_find(self, message: BusMessage) -> dict[str, Any]:
        """Find, or aggregate when the request names a field."""
        request = parse_message(DbRequest, message)
        return await self.gateway.execute(request)

    async def handle_aggregate(self, message: BusMessage) -> dict[str, Any]:
        request = parse_message(DbRequest, message)
        if not request.is_aggregate:
            raise ReplyError(BAD_REQUEST, "Aggregate request without a field to aggregate")
        return await self.gateway.aggregate(request)
