"""
Message bus interface.

Components only talk to each other through a MessageBus: request/reply
hops to named addresses and fire-and-forget publishes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from docbus.errors import INTERNAL_ERROR, ReplyError

logger = logging.getLogger(__name__)


@dataclass
class BusMessage:
    """A message delivered to a handler."""

    address: str
    body: Any
    expects_reply: bool = False
    headers: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[BusMessage], Awaitable[Any]]


class MessageBus(ABC):
    """
    Abstract bus transport.

    Handlers return the reply body, or raise ReplyError to fail the
    request. One request gets exactly one reply.
    """

    @abstractmethod
    async def register(self, address: str, handler: Handler) -> None:
        """Register a point-to-point handler (requests are load balanced)."""

    @abstractmethod
    async def subscribe(self, address: str, handler: Handler) -> None:
        """Subscribe to every message published to an address."""

    @abstractmethod
    async def unregister(self, address: str, handler: Handler) -> None:
        """Remove a handler registered with register() or subscribe()."""

    @abstractmethod
    async def request(self, address: str, body: Any, timeout: float | None = None) -> Any:
        """
        Send a request and wait for its reply.

        Raises:
            ReplyError: the handler failed, no handler exists, or timeout
        """

    @abstractmethod
    async def publish(self, address: str, body: Any) -> None:
        """Publish a message without waiting for anything."""

    async def start(self) -> None:
        """Start background machinery, if any."""

    async def close(self) -> None:
        """Stop background machinery and release connections."""


async def invoke_handler(handler: Handler, message: BusMessage) -> Any:
    """
    Run a handler and normalise failures to ReplyError.

    Unexpected exceptions become INTERNAL_ERROR replies carrying the
    exception message.
    """
    try:
        return await handler(message)
    except ReplyError:
        raise
    except Exception as e:
        logger.error(
            f"Handler for {message.address} failed: {e}",
            extra={"address": message.address},
            exc_info=True,
        )
        raise ReplyError(INTERNAL_ERROR, str(e)) from e
