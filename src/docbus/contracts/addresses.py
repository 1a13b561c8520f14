"""
Bus addresses

Every component receives the addresses of its collaborators through this
model instead of deriving them from class or type names.
"""

from pydantic import BaseModel, Field


class Addresses(BaseModel):
    """Logical bus addresses of the gateway and the dispatcher."""

    gateway_save: str = Field("docbus/gateway/save", description="Gateway save (upsert) address")
    gateway_find: str = Field("docbus/gateway/find", description="Gateway find address")
    gateway_aggregate: str = Field("docbus/gateway/aggregate", description="Gateway aggregate address")
    dispatcher_save: str = Field("docbus/data/save", description="Dispatcher save address")
    dispatcher_find: str = Field("docbus/data/find", description="Dispatcher find (data request) address")
