"""
Shared plumbing for bus-facing services.
"""

import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from docbus.bus.base import BusMessage, Handler, MessageBus
from docbus.errors import BAD_REQUEST, ReplyError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def parse_message(model: type[M], message: BusMessage) -> M:
    """
    Validate a message body against a wire model.

    Raises:
        ReplyError: BAD_REQUEST when the body does not fit the model
    """
    try:
        return model.model_validate(message.body)
    except ValidationError as e:
        logger.warning(
            f"Malformed {model.__name__} on {message.address}",
            extra={"address": message.address, "errors": e.errors(include_url=False)},
        )
        raise ReplyError(BAD_REQUEST, f"Malformed {model.__name__}: {e}") from e


class BusService:
    """
    Base for components that bind handlers to bus addresses.

    Keeps track of what it registered so stop() can undo it.
    """

    def __init__(self, bus: MessageBus):
        self.bus = bus
        self._bindings: list[tuple[str, Handler]] = []

    async def _bind(self, address: str, handler: Handler) -> None:
        await self.bus.register(address, handler)
        self._bindings.append((address, handler))
        logger.info(f"{type(self).__name__} listening on {address}", extra={"address": address})

    async def _subscribe(self, address: str, handler: Handler) -> None:
        await self.bus.subscribe(address, handler)
        self._bindings.append((address, handler))
        logger.info(f"{type(self).__name__} subscribed to {address}", extra={"address": address})

    @property
    def bound_addresses(self) -> list[str]:
        return [address for address, _handler in self._bindings]

    async def start(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        for address, handler in self._bindings:
            await self.bus.unregister(address, handler)
        self._bindings.clear()
