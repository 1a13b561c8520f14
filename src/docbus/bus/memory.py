"""
In-process bus on top of asyncio.

Used for single-process deployments and tests. Bodies are deep-copied on
delivery so handlers never share mutable state with the sender.
"""

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any

from docbus.bus.base import BusMessage, Handler, MessageBus, invoke_handler
from docbus.errors import NO_HANDLERS, REQUEST_TIMEOUT, ReplyError

logger = logging.getLogger(__name__)


class InMemoryBus(MessageBus):
    """
    asyncio message bus.

    Requests go to one registered handler, round robin. Publishes go to
    every subscriber plus one registered handler.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._cursor: dict[str, int] = defaultdict(int)
        self._deliveries: set[asyncio.Task] = set()

    async def register(self, address: str, handler: Handler) -> None:
        self._handlers[address].append(handler)
        logger.debug(f"Registered handler on {address}")

    async def subscribe(self, address: str, handler: Handler) -> None:
        self._subscribers[address].append(handler)
        logger.debug(f"Subscribed to {address}")

    async def unregister(self, address: str, handler: Handler) -> None:
        for table in (self._handlers, self._subscribers):
            handlers = table.get(address, [])
            if handler in handlers:
                handlers.remove(handler)

    def has_handlers(self, address: str) -> bool:
        return bool(self._handlers.get(address) or self._subscribers.get(address))

    def _next_handler(self, address: str) -> Handler | None:
        handlers = self._handlers.get(address)
        if not handlers:
            return None
        index = self._cursor[address] % len(handlers)
        self._cursor[address] = index + 1
        return handlers[index]

    async def request(self, address: str, body: Any, timeout: float | None = None) -> Any:
        handler = self._next_handler(address)
        if handler is None:
            raise ReplyError(NO_HANDLERS, f"No handlers for address {address}")

        message = BusMessage(address=address, body=copy.deepcopy(body), expects_reply=True)
        call = invoke_handler(handler, message)
        if timeout is None:
            reply = await call
        else:
            try:
                reply = await asyncio.wait_for(call, timeout)
            except asyncio.TimeoutError as e:
                raise ReplyError(REQUEST_TIMEOUT, f"Timed out waiting for reply from {address}") from e
        return copy.deepcopy(reply)

    async def publish(self, address: str, body: Any) -> None:
        targets = list(self._subscribers.get(address, []))
        handler = self._next_handler(address)
        if handler is not None:
            targets.append(handler)

        if not targets:
            logger.debug(f"No receivers for publish to {address}")
            return

        for target in targets:
            message = BusMessage(address=address, body=copy.deepcopy(body))
            task = asyncio.create_task(self._deliver(target, message))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, handler: Handler, message: BusMessage) -> None:
        try:
            await invoke_handler(handler, message)
        except ReplyError as e:
            logger.warning(
                f"Published message to {message.address} failed: {e.message}",
                extra={"address": message.address, "code": e.code},
            )

    async def drain(self) -> None:
        """Wait until every published message has been delivered."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        self._handlers.clear()
        self._subscribers.clear()
