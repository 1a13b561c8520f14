"""Document store access - query translation, shared clients and the gateway."""

from docbus.store.gateway import DatabaseGateway, GatewayState
from docbus.store.pool import ClientPool, get_client_pool

__all__ = [
    "ClientPool",
    "DatabaseGateway",
    "GatewayState",
    "get_client_pool",
]
