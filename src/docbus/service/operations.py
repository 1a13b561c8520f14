"""
Transformation Operations

Built-in operations the data pipeline can hand fetched data to. Each one
takes a DataOperation ({"data": {"data": DbResponse}, "params": {...}})
and replies a DbResponse with params["field"] rewritten in every row.
Rows without a numeric value in that field are passed through untouched.
"""

import copy
import logging
from functools import partial
from typing import Any, Callable

from docbus.bus.base import BusMessage, MessageBus
from docbus.contracts.messages import DataOperation, DbResponse
from docbus.errors import BAD_REQUEST, ReplyError
from docbus.service.base import BusService, parse_message

logger = logging.getLogger(__name__)

Transform = Callable[[float, dict[str, Any]], float]


def _double(value: float, params: dict[str, Any]) -> float:
    return value * 2


def _offset(value: float, params: dict[str, Any]) -> float:
    return value + params.get("amount", 0)


def _scale(value: float, params: dict[str, Any]) -> float:
    return value * params.get("factor", 1)


OPERATIONS: dict[str, Transform] = {
    "double": _double,
    "offset": _offset,
    "scale": _scale,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def apply_operation(name: str, operation: DataOperation) -> DbResponse:
    """
    Apply a built-in operation to the fetched rows.

    Raises:
        ReplyError: BAD_REQUEST for an unknown operation, a missing field
            parameter or a non-numeric parameter
    """
    transform = OPERATIONS.get(name)
    if transform is None:
        raise ReplyError(BAD_REQUEST, f"Unknown operation: {name}")

    params = operation.params
    field = params.get("field")
    if not field:
        raise ReplyError(BAD_REQUEST, f"Operation '{name}' needs a 'field' parameter")
    for key in ("amount", "factor"):
        if key in params and not _is_number(params[key]):
            raise ReplyError(BAD_REQUEST, f"Operation parameter '{key}' must be a number")

    fetched = operation.data.get("data") or {}
    rows = fetched.get("result", []) if isinstance(fetched, dict) else []

    result = []
    for row in rows:
        row = copy.deepcopy(row)
        if isinstance(row, dict) and _is_number(row.get(field)):
            row[field] = transform(row[field], params)
        result.append(row)

    return DbResponse(result=result)


class TransformationService(BusService):
    """Hosts the built-in operations on their configured addresses."""

    def __init__(self, bus: MessageBus, operations: dict[str, str]):
        super().__init__(bus)
        self.operations = operations

    async def start(self) -> None:
        for name, address in self.operations.items():
            if name not in OPERATIONS:
                # Served by some other component on the bus
                logger.debug(f"No built-in operation '{name}', not hosting {address}")
                continue
            await self._bind(address, partial(self.handle_operation, name))

    async def handle_operation(self, name: str, message: BusMessage) -> dict[str, Any]:
        operation = parse_message(DataOperation, message)
        return apply_operation(name, operation).to_wire()
