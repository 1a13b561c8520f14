"""
Shared MongoDB clients.

Gateways that use the same pool name share one MongoClient. The client is
created on first acquire and closed when the last reference is released.
"""

import functools
import logging
import threading
from typing import Any, Callable

from pymongo import MongoClient

logger = logging.getLogger(__name__)


class ClientPool:
    """Reference counted MongoClient instances keyed by pool name."""

    def __init__(self, factory: Callable[..., Any] = MongoClient):
        self._factory = factory
        self._clients: dict[str, Any] = {}
        self._refs: dict[str, int] = {}
        self._lock = threading.Lock()

    def acquire(self, pool_name: str, **options: Any) -> Any:
        """
        Get the client for a pool name, creating it on first use.

        Options only apply when the client is created; later callers get
        the existing client whatever options they pass.
        """
        with self._lock:
            client = self._clients.get(pool_name)
            if client is None:
                client = self._factory(**options)
                self._clients[pool_name] = client
                self._refs[pool_name] = 0
                logger.info(f"Created client for pool '{pool_name}'", extra={"pool_name": pool_name})
            self._refs[pool_name] += 1
            return client

    def release(self, pool_name: str) -> None:
        """
        Drop one reference. The last release closes the client.

        Raises:
            Whatever the driver raises while closing
        """
        with self._lock:
            if pool_name not in self._refs:
                return
            self._refs[pool_name] -= 1
            if self._refs[pool_name] > 0:
                return
            client = self._clients.pop(pool_name)
            del self._refs[pool_name]

        logger.info(f"Closing client for pool '{pool_name}'", extra={"pool_name": pool_name})
        client.close()

    def references(self, pool_name: str) -> int:
        with self._lock:
            return self._refs.get(pool_name, 0)


@functools.lru_cache()
def get_client_pool() -> ClientPool:
    """Get the process wide client pool (cached)."""
    return ClientPool()
