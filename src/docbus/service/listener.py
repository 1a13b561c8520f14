"""
Data Listener

Fan-in of data published elsewhere on the bus: every message seen on a
listening address is forwarded to the gateway save address.
"""

import logging
from typing import Any

from docbus.bus.base import BusMessage, MessageBus
from docbus.contracts.addresses import Addresses
from docbus.contracts.messages import SaveRequest
from docbus.errors import BAD_REQUEST, ReplyError
from docbus.service.base import BusService, parse_message

logger = logging.getLogger(__name__)


class DataListener(BusService):
    """
    Saves everything published to the listening addresses.

    Messages are expected in save envelope form ({"typeName", "payload"}).
    An address with a configured type name also accepts raw documents,
    which are wrapped into an envelope of that type.
    """

    def __init__(
        self,
        bus: MessageBus,
        addresses: Addresses,
        listening_addresses: list[str],
        listening_types: dict[str, str] | None = None,
    ):
        super().__init__(bus)
        self.addresses = addresses
        self.listening_addresses = listening_addresses
        self.listening_types = listening_types or {}

    async def start(self) -> None:
        for address in self.listening_addresses:
            await self._subscribe(address, self.handle_message)

    def to_save_request(self, message: BusMessage) -> SaveRequest:
        body: Any = message.body
        type_name = self.listening_types.get(message.address)
        if type_name and not (isinstance(body, dict) and "typeName" in body):
            if not isinstance(body, dict):
                raise ReplyError(BAD_REQUEST, f"Expected a document on {message.address}")
            return SaveRequest(type_name=type_name, payload=body)
        return parse_message(SaveRequest, message)

    async def handle_message(self, message: BusMessage) -> None:
        request = self.to_save_request(message)
        await self.bus.publish(self.addresses.gateway_save, request.to_wire())
        logger.debug(
            f"Forwarded {request.type_name} from {message.address}",
            extra={"address": message.address, "type_name": request.type_name},
        )
