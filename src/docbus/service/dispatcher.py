"""
Request Dispatcher

Front door for clients: dispatcher save is forwarded to the gateway,
dispatcher find goes through the data pipeline.
"""

import logging
from typing import Any

from docbus.bus.base import BusMessage, MessageBus
from docbus.contracts.addresses import Addresses
from docbus.contracts.messages import DataRequest, SaveRequest
from docbus.errors import INTERNAL_ERROR, ReplyError
from docbus.service.base import BusService, parse_message
from docbus.service.pipeline import DataPipeline

logger = logging.getLogger(__name__)


class RequestDispatcher(BusService):
    """
    Routes client requests to the gateway and the pipeline.

    Malformed bodies fail with BAD_REQUEST; gateway and pipeline failures
    fail with INTERNAL_ERROR and the downstream message.
    """

    def __init__(self, bus: MessageBus, addresses: Addresses, pipeline: DataPipeline):
        super().__init__(bus)
        self.addresses = addresses
        self.pipeline = pipeline

    async def start(self) -> None:
        await self._bind(self.addresses.dispatcher_save, self.handle_save)
        await self._bind(self.addresses.dispatcher_find, self.handle_find)

    async def handle_save(self, message: BusMessage) -> Any:
        request = parse_message(SaveRequest, message)
        try:
            return await self.bus.request(self.addresses.gateway_save, request.to_wire())
        except ReplyError as e:
            logger.warning(
                f"Save of {request.type_name} failed: {e.message}",
                extra={"type_name": request.type_name, "code": e.code},
            )
            raise ReplyError(INTERNAL_ERROR, e.message) from e

    async def handle_find(self, message: BusMessage) -> Any:
        request = parse_message(DataRequest, message)
        return await self.pipeline.dispatch(request)
