"""
docbus settings.

Settings are read from the JSON file named by DOCBUS_CONFIG (optional),
then environment variables are layered on top. Use get_settings() to get
the cached instance.
"""

import functools
import json
import os
import socket
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, Field, ValidationError, model_validator

from docbus.contracts.addresses import Addresses
from docbus.errors import ConfigurationError


class PollMode(str, Enum):
    """What a periodic poller asks the gateway for."""

    AGGREGATE = "aggregate"
    FIND = "find"

    def __str__(self) -> str:
        return self.value


class GatewaySettings(BaseModel):
    """
    MongoDB connection settings for the database gateway.

    Gateways with the same pool_name share one client.
    """

    host: str = "127.0.0.1"
    port: int = 27017
    db_name: str = "daedalus2"
    username: str | None = None
    password: str | None = None
    pool_name: str = "d2Pool"

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments for pymongo.MongoClient."""
        options: dict[str, Any] = {"host": self.host, "port": self.port, "tz_aware": True}
        if self.username:
            options["username"] = self.username
            options["password"] = self.password
        return options


class PollerSettings(BaseModel):
    """
    One periodic poller.

    rate is in requests per second and must be positive. In aggregate mode
    `field` is the numeric field to aggregate; in find mode `fields` and
    `sort` shape the find request.
    """

    name: str = ""
    mode: PollMode = PollMode.AGGREGATE
    collection: str
    field: str = ""
    query: str = ""
    fields: list[str] = Field(default_factory=list)
    sort: list[str] = Field(default_factory=list)
    rate: float = Field(..., gt=0, description="Requests per second")
    out_address: str = Field(..., min_length=1)
    skip_overlapping: bool = False

    @model_validator(mode="after")
    def _check_mode(self) -> "PollerSettings":
        if self.mode == PollMode.AGGREGATE and not self.field:
            raise ValueError("aggregate pollers need a field to aggregate")
        return self


def _default_consumer_name() -> str:
    return f"docbus-{socket.gethostname()}-{os.getpid()}"


class Settings(BaseModel):
    """Top level settings for a docbus process."""

    redis_url: str = "redis://localhost:6379/0"
    stream_prefix: str = "docbus:"
    service_group: str = "docbus"
    consumer_name: str = Field(default_factory=_default_consumer_name)
    log_level: str = "INFO"
    log_format: str = "json"

    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    addresses: Addresses = Field(default_factory=Addresses)

    # Fan-in: addresses whose messages are saved through the gateway.
    # listening_types wraps raw documents from an address into a save
    # envelope of the given type name.
    listening_addresses: list[str] = Field(default_factory=list)
    listening_types: dict[str, str] = Field(default_factory=dict)

    # Operation name -> transformation address
    operations: dict[str, str] = Field(default_factory=dict)

    pollers: list[PollerSettings] = Field(default_factory=list)


# Environment variable -> settings path
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "REDIS_URL": ("redis_url",),
    "DOCBUS_STREAM_PREFIX": ("stream_prefix",),
    "DOCBUS_SERVICE_GROUP": ("service_group",),
    "DOCBUS_CONSUMER_NAME": ("consumer_name",),
    "LOG_LEVEL": ("log_level",),
    "LOG_FORMAT": ("log_format",),
    "MONGO_HOST": ("gateway", "host"),
    "MONGO_PORT": ("gateway", "port"),
    "MONGO_DB": ("gateway", "db_name"),
    "MONGO_USERNAME": ("gateway", "username"),
    "MONGO_PASSWORD": ("gateway", "password"),
    "MONGO_POOL_NAME": ("gateway", "pool_name"),
}


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build settings from a JSON file and the environment.

    Args:
        path: JSON config file, defaults to $DOCBUS_CONFIG
        environ: Environment mapping, defaults to os.environ

    Raises:
        ConfigurationError: unreadable file or invalid values
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get("DOCBUS_CONFIG")

    data: dict[str, Any] = {}
    if path:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")

    for env_name, keys in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None:
            continue
        target = data
        for key in keys[:-1]:
            target = target.setdefault(key, {})
        target[keys[-1]] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


@functools.lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return load_settings()
