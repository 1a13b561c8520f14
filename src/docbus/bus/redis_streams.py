"""
Redis Streams Bus

Request/reply and publish/subscribe over Redis Streams.

- One stream per address: <prefix><address>
- register(): consumers share the service consumer group, so requests are
  load balanced across processes (XREADGROUP)
- subscribe(): every instance gets its own group, so it sees every publish
- Replies go to a per-instance reply stream and are matched by
  correlation id
- Messages are acknowledged (XACK) once the handler has run
"""

import asyncio
import logging
from typing import Any

import redis
import redis.asyncio as aioredis

from docbus.bus.base import BusMessage, Handler, MessageBus, invoke_handler
from docbus.contracts.envelope import BusEnvelope
from docbus.errors import NO_HANDLERS, REQUEST_TIMEOUT, ReplyError

logger = logging.getLogger(__name__)


class RedisStreamBus(MessageBus):
    """MessageBus backed by Redis Streams."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        consumer_name: str,
        group_name: str = "docbus",
        stream_prefix: str = "docbus:",
        max_len: int = 100000,
        count: int = 10,
        block_ms: int = 5000,
    ):
        self.redis = redis_client
        self.consumer_name = consumer_name
        self.group_name = group_name
        self.stream_prefix = stream_prefix
        self.max_len = max_len
        self.count = count
        self.block_ms = block_ms
        self.reply_stream = f"{stream_prefix}replies:{consumer_name}"

        self._pending: dict[str, asyncio.Future] = {}
        self._consumers: dict[tuple[str, Handler], asyncio.Task] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._reply_task: asyncio.Task | None = None

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStreamBus":
        """Create a bus with its own client for the given Redis URL."""
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def stream_name(self, address: str) -> str:
        return f"{self.stream_prefix}{address}"

    async def ensure_stream_group(self, stream_name: str, group_name: str, start_id: str = "$") -> bool:
        """
        Ensure a consumer group exists for a stream.

        Creates the group if it doesn't exist. Safe to call multiple times.

        Returns:
            True if group was created, False if it already existed
        """
        try:
            await self.redis.xgroup_create(stream_name, group_name, id=start_id, mkstream=True)
            logger.info(f"Created consumer group '{group_name}' for stream '{stream_name}'")
            return True
        except redis.ResponseError as e:
            if "BUSYGROUP" in str(e):
                logger.debug(f"Consumer group '{group_name}' already exists for '{stream_name}'")
                return False
            raise

    async def start(self) -> None:
        if self._reply_task is not None:
            return
        # Only replies newer than this point can belong to our requests
        last = await self.redis.xrevrange(self.reply_stream, count=1)
        last_id = last[0][0] if last else "0-0"
        self._reply_task = asyncio.create_task(self._read_replies(last_id))

    async def register(self, address: str, handler: Handler) -> None:
        await self._consume(address, handler, self.group_name)

    async def subscribe(self, address: str, handler: Handler) -> None:
        await self._consume(address, handler, f"{self.group_name}:{self.consumer_name}")

    async def unregister(self, address: str, handler: Handler) -> None:
        task = self._consumers.pop((address, handler), None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _consume(self, address: str, handler: Handler, group_name: str) -> None:
        stream_name = self.stream_name(address)
        await self.ensure_stream_group(stream_name, group_name)
        task = asyncio.create_task(self._consume_loop(stream_name, group_name, handler))
        self._consumers[(address, handler)] = task

    async def _consume_loop(self, stream_name: str, group_name: str, handler: Handler) -> None:
        while True:
            try:
                result = await self.redis.xreadgroup(
                    group_name,
                    self.consumer_name,
                    {stream_name: ">"},
                    count=self.count,
                    block=self.block_ms,
                )
            except redis.RedisError as e:
                logger.error(f"Error reading from {stream_name}: {e}", exc_info=True)
                await asyncio.sleep(1)
                continue

            if not result:
                continue

            # Result format: [[stream_name, [(msg_id, data), ...]]]
            for _stream, entries in result:
                for msg_id, data in entries:
                    task = asyncio.create_task(
                        self._handle_entry(stream_name, group_name, handler, msg_id, data)
                    )
                    self._in_flight.add(task)
                    task.add_done_callback(self._in_flight.discard)

    async def _handle_entry(
        self,
        stream_name: str,
        group_name: str,
        handler: Handler,
        msg_id: str,
        data: dict[str, str],
    ) -> None:
        try:
            envelope = BusEnvelope.from_stream_message(msg_id, data)
        except (KeyError, ValueError) as e:
            logger.error(f"Failed to parse message {msg_id}: {e}")
            # ACK invalid messages to prevent blocking
            await self.redis.xack(stream_name, group_name, msg_id)
            return

        message = BusMessage(
            address=envelope.address,
            body=envelope.body,
            expects_reply=envelope.reply_to is not None,
            headers=envelope.headers,
        )

        reply: BusEnvelope | None = None
        try:
            body = await invoke_handler(handler, message)
            if envelope.reply_to:
                reply = envelope.reply(body)
        except ReplyError as e:
            if envelope.reply_to:
                reply = envelope.failure(e.code, e.message)
            else:
                logger.warning(
                    f"Published message to {envelope.address} failed: {e.message}",
                    extra={"address": envelope.address, "code": e.code, "msg_id": msg_id},
                )

        try:
            if reply is not None:
                await self._xadd(reply.address, reply)
            await self.redis.xack(stream_name, group_name, msg_id)
        except redis.RedisError as e:
            # Not ACKed - stays in the pending entries list
            logger.error(f"Failed to complete message {msg_id}: {e}", exc_info=True)

    async def _read_replies(self, last_id: str) -> None:
        while True:
            try:
                result = await self.redis.xread(
                    {self.reply_stream: last_id},
                    count=self.count,
                    block=self.block_ms,
                )
            except redis.RedisError as e:
                logger.error(f"Error reading replies: {e}", exc_info=True)
                await asyncio.sleep(1)
                continue

            for _stream, entries in result or []:
                for msg_id, data in entries:
                    last_id = msg_id
                    try:
                        envelope = BusEnvelope.from_stream_message(msg_id, data)
                    except (KeyError, ValueError) as e:
                        logger.error(f"Failed to parse reply {msg_id}: {e}")
                        continue

                    future = self._pending.get(envelope.correlation_id or "")
                    if future is None or future.done():
                        logger.debug(f"Dropping reply {msg_id} without a waiting request")
                        continue
                    future.set_result(envelope)

    async def request(self, address: str, body: Any, timeout: float | None = None) -> Any:
        await self.start()

        envelope = BusEnvelope.create(address, body, reply_to=self.reply_stream)
        correlation_id = envelope.correlation_id or str(envelope.message_id)
        future = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future

        try:
            await self._xadd(self.stream_name(address), envelope)
            if timeout is None:
                reply = await future
            else:
                reply = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as e:
            raise ReplyError(REQUEST_TIMEOUT, f"Timed out waiting for reply from {address}") from e
        finally:
            self._pending.pop(correlation_id, None)

        if reply.failed:
            raise ReplyError(reply.status, reply.error or "")
        return reply.body

    async def publish(self, address: str, body: Any) -> None:
        await self._xadd(self.stream_name(address), BusEnvelope.create(address, body))

    async def _xadd(self, stream_name: str, envelope: BusEnvelope) -> str:
        msg_id = await self.redis.xadd(
            stream_name,
            envelope.to_stream_data(),
            maxlen=self.max_len,
            approximate=True,
        )

        logger.debug(
            f"Published to {stream_name}",
            extra={
                "stream": stream_name,
                "address": envelope.address,
                "message_id": str(envelope.message_id),
                "msg_id": msg_id,
            },
        )

        return msg_id

    async def close(self) -> None:
        tasks = list(self._consumers.values())
        if self._reply_task is not None:
            tasks.append(self._reply_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ReplyError(NO_HANDLERS, "Bus closed before a reply arrived"))

        self._consumers.clear()
        self._pending.clear()
        self._reply_task = None
        await self.redis.aclose()
