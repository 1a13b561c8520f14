"""
docbus Worker

Runs every docbus component configured in Settings inside one process:

- DatabaseGateway + GatewayEndpoints (gateway save/find/aggregate)
- RequestDispatcher + DataPipeline (dispatcher save/find)
- TransformationService (built-in operations)
- DataListener (fan-in from listening addresses)
- PeriodicPollers

Talks to other processes over Redis Streams. SIGINT/SIGTERM stop the
pollers first, then the services, then the gateway and the bus.
"""

import asyncio
import logging
import signal

from docbus.bus.base import MessageBus
from docbus.bus.redis_streams import RedisStreamBus
from docbus.logging import setup_logging
from docbus.polling.poller import PeriodicPoller
from docbus.service.base import BusService
from docbus.service.dispatcher import RequestDispatcher
from docbus.service.endpoints import GatewayEndpoints
from docbus.service.listener import DataListener
from docbus.service.operations import TransformationService
from docbus.service.pipeline import DataPipeline
from docbus.settings import Settings, get_settings
from docbus.store.gateway import DatabaseGateway
from docbus.store.pool import ClientPool

logger = logging.getLogger(__name__)


class DocBusRuntime:
    """All components of one process, wired from settings."""

    def __init__(self, settings: Settings, bus: MessageBus, pool: ClientPool | None = None):
        self.settings = settings
        self.bus = bus
        self.gateway = DatabaseGateway(settings.gateway, pool=pool)
        self.pipeline = DataPipeline(bus, settings.addresses, settings.operations)

        self.services: list[BusService] = [
            GatewayEndpoints(bus, self.gateway, settings.addresses),
            RequestDispatcher(bus, settings.addresses, self.pipeline),
            TransformationService(bus, settings.operations),
        ]
        if settings.listening_addresses:
            self.services.append(
                DataListener(
                    bus,
                    settings.addresses,
                    settings.listening_addresses,
                    settings.listening_types,
                )
            )

        self.pollers = [PeriodicPoller(bus, config, settings.addresses) for config in settings.pollers]

    async def start(self) -> None:
        await self.bus.start()
        await self.gateway.connect()
        for service in self.services:
            await service.start()
        for poller in self.pollers:
            await poller.start()
        logger.info(
            f"docbus started ({len(self.services)} services, {len(self.pollers)} pollers)",
            extra={"db_name": self.settings.gateway.db_name},
        )

    async def stop(self) -> None:
        for poller in self.pollers:
            await poller.stop()
        for service in self.services:
            await service.stop()
        try:
            await self.gateway.close()
        finally:
            await self.bus.close()
        logger.info("docbus stopped")


async def run(settings: Settings) -> None:
    """Run until SIGINT/SIGTERM."""
    bus = RedisStreamBus.from_url(
        settings.redis_url,
        consumer_name=settings.consumer_name,
        group_name=settings.service_group,
        stream_prefix=settings.stream_prefix,
    )
    runtime = DocBusRuntime(settings, bus)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(signum: int) -> None:
        logger.info(f"Received signal {signum}, requesting shutdown...")
        stop_requested.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, request_shutdown, signum)

    await runtime.start()
    try:
        await stop_requested.wait()
    finally:
        logger.info("docbus worker shutting down gracefully")
        await runtime.stop()


def main() -> None:
    """Entry point."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    logger.info(f"docbus worker starting (consumer={settings.consumer_name})")
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
