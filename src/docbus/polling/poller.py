"""
Periodic Poller

Asks the gateway for records newer than a watermark at a fixed rate and
publishes every non-empty batch to an output address.

- aggregate mode: per-timestamp statistics of one field; the watermark is
  taken from the last row's epoch millis `time`
- find mode (publisher): raw documents; the watermark is taken from the
  last row's datetime.$date

The watermark starts at "now", only moves forward and lives in memory
only, so a restart skips whatever was stored while the poller was down.
"""

import asyncio
import json
import logging
import math
from enum import Enum
from typing import Any

from docbus.bus.base import MessageBus
from docbus.contracts.addresses import Addresses
from docbus.contracts.messages import DbRequest
from docbus.errors import ConfigurationError, ReplyError
from docbus.settings import PollerSettings, PollMode
from docbus.store.timestamps import (
    TIMESTAMP_FIELD,
    now_timestamp,
    parse_timestamp,
    timestamp_from_millis,
)

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    REQUESTING = "requesting"
    CANCELLED = "cancelled"


def rate_to_millis(rate: float) -> int:
    """
    Tick interval in milliseconds for a rate in requests per second.

    Rounded half up: rate 3 -> 333 ms, rate 1 -> 1000 ms.

    Raises:
        ConfigurationError: rate is not positive
    """
    if rate <= 0:
        raise ConfigurationError(f"Poller rate must be positive, got {rate}")
    return math.floor((1.0 / rate) * 1000 + 0.5)


def watermark_filter(watermark: str, query: str = "") -> str:
    """Filter for records strictly newer than the watermark, AND-ed with query."""
    date_filter: dict[str, Any] = {TIMESTAMP_FIELD: {"$gt": {"$date": watermark}}}
    if query and query.strip():
        try:
            configured = json.loads(query)
        except ValueError:
            logger.warning("Ignoring malformed poller query", extra={"query": query})
        else:
            if isinstance(configured, dict) and configured:
                date_filter = {"$and": [configured, date_filter]}
    return json.dumps(date_filter)


class PeriodicPoller:
    """
    One periodic poller.

    Usage:
        poller = PeriodicPoller(bus, PollerSettings(...), addresses)
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(self, bus: MessageBus, config: PollerSettings, addresses: Addresses):
        self.bus = bus
        self.config = config
        self.addresses = addresses
        self.name = config.name or f"{config.mode}:{config.collection}"
        self.interval = rate_to_millis(config.rate) / 1000
        self.state = PollerState.IDLE
        self.watermark: str | None = None

        self._scheduler: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def target_address(self) -> str:
        if self.config.mode == PollMode.AGGREGATE:
            return self.addresses.gateway_aggregate
        return self.addresses.gateway_find

    @property
    def in_flight(self) -> int:
        return len(self._ticks)

    async def start(self) -> None:
        if self._scheduler is not None:
            return
        self.watermark = now_timestamp()
        self.state = PollerState.SCHEDULED
        self._scheduler = asyncio.create_task(self._run())
        logger.info(
            f"Poller {self.name} started, interval {self.interval * 1000:.0f} ms",
            extra={"poller": self.name, "out_address": self.config.out_address},
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.config.skip_overlapping and self._ticks:
                logger.debug(f"Poller {self.name} skipping tick, previous still running")
                continue
            task = asyncio.create_task(self._guarded_tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            logger.error(f"Poller {self.name} tick failed: {e}", extra={"poller": self.name}, exc_info=True)

    def build_request(self) -> DbRequest:
        if self.watermark is None:
            self.watermark = now_timestamp()
        query = watermark_filter(self.watermark, self.config.query)
        if self.config.mode == PollMode.AGGREGATE:
            return DbRequest(collection=self.config.collection, query=query, aggregate=self.config.field)

        fields = list(self.config.fields)
        if fields and TIMESTAMP_FIELD not in fields:
            # The watermark is read from each row
            fields.append(TIMESTAMP_FIELD)
        return DbRequest(
            collection=self.config.collection,
            query=query,
            fields=fields,
            sort=self.config.sort,
        )

    def extract_batch(self, reply: Any) -> list[Any]:
        """Rows from a gateway reply; anything unexpected means no data."""
        if not isinstance(reply, dict):
            return []
        if self.config.mode == PollMode.AGGREGATE:
            cursor = reply.get("cursor")
            batch = cursor.get("firstBatch") if isinstance(cursor, dict) else None
        else:
            batch = reply.get("result")
        return batch if isinstance(batch, list) else []

    def extract_watermark(self, row: Any) -> str | None:
        """Canonical timestamp of a row, or None when it carries none."""
        if not isinstance(row, dict):
            return None
        if self.config.mode == PollMode.AGGREGATE:
            value = row.get("time")
            if isinstance(value, dict):
                value = value.get("$numberLong")
            try:
                return timestamp_from_millis(int(value))
            except (TypeError, ValueError, OverflowError):
                return None

        value = row.get(TIMESTAMP_FIELD)
        value = value.get("$date") if isinstance(value, dict) else None
        return value if isinstance(value, str) else None

    def advance_watermark(self, candidate: str) -> bool:
        """Move the watermark to candidate if it is newer. Returns True if moved."""
        try:
            newer = parse_timestamp(candidate)
        except ValueError:
            logger.warning(f"Poller {self.name} got unparseable timestamp {candidate!r}")
            return False
        if self.watermark is not None and newer <= parse_timestamp(self.watermark):
            return False
        self.watermark = candidate
        return True

    async def tick(self) -> list[Any]:
        """
        One poll: request, advance the watermark, publish.

        Returns the published batch (empty when there was nothing new or
        the request failed).
        """
        request = self.build_request()
        if self.state != PollerState.CANCELLED:
            self.state = PollerState.REQUESTING
        try:
            reply = await self.bus.request(self.target_address, request.to_wire())
        except ReplyError as e:
            logger.error(
                f"Poller {self.name} request failed: {e.message}",
                extra={"poller": self.name, "code": e.code},
            )
            return []
        finally:
            if self.state == PollerState.REQUESTING:
                self.state = PollerState.SCHEDULED if self._scheduler else PollerState.IDLE

        batch = self.extract_batch(reply)
        if not batch:
            logger.debug(f"Poller {self.name}: no new data")
            return []

        candidate = self.extract_watermark(batch[-1])
        if candidate is not None:
            self.advance_watermark(candidate)

        await self.bus.publish(self.config.out_address, batch)
        logger.info(
            f"Poller {self.name} published {len(batch)} rows",
            extra={"poller": self.name, "rows": len(batch), "watermark": self.watermark},
        )
        return batch

    async def stop(self, timeout: float | None = None) -> None:
        """Deschedule. Ticks already in flight run to completion."""
        if self._scheduler is not None:
            self._scheduler.cancel()
            await asyncio.gather(self._scheduler, return_exceptions=True)
            self._scheduler = None
        self.state = PollerState.CANCELLED

        if self._ticks:
            _done, pending = await asyncio.wait(list(self._ticks), timeout=timeout)
            if pending:
                logger.warning(f"Poller {self.name} stopped with {len(pending)} ticks still running")
        logger.info(f"Poller {self.name} stopped", extra={"poller": self.name})
