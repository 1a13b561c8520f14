"""
Bus transports

MessageBus interface plus in-process and Redis Streams implementations.
"""

from docbus.bus.base import BusMessage, Handler, MessageBus
from docbus.bus.memory import InMemoryBus
from docbus.bus.redis_streams import RedisStreamBus

__all__ = [
    "BusMessage",
    "Handler",
    "MessageBus",
    "InMemoryBus",
    "RedisStreamBus",
]
