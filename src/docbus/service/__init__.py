"""
Bus services

Gateway endpoints, the request dispatcher, the data pipeline, the data
listener and the built-in transformation operations.
"""

from docbus.service.base import BusService, parse_message
from docbus.service.dispatcher import RequestDispatcher
from docbus.service.endpoints import GatewayEndpoints
from docbus.service.listener import DataListener
from docbus.service.operations import OPERATIONS, TransformationService, apply_operation
from docbus.service.pipeline import DataPipeline

__all__ = [
    "BusService",
    "DataListener",
    "DataPipeline",
    "GatewayEndpoints",
    "OPERATIONS",
    "RequestDispatcher",
    "TransformationService",
    "apply_operation",
    "parse_message",
]
