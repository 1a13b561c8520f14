"""Wire contracts - addresses, request/reply models and the bus envelope."""

from docbus.contracts.addresses import Addresses
from docbus.contracts.envelope import BusEnvelope
from docbus.contracts.messages import (
    DataOperation,
    DataRequest,
    DbRequest,
    DbResponse,
    SaveAck,
    SaveRequest,
)

__all__ = [
    "Addresses",
    "BusEnvelope",
    "DataOperation",
    "DataRequest",
    "DbRequest",
    "DbResponse",
    "SaveAck",
    "SaveRequest",
]
