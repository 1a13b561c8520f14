"""
Tests for settings loading and logging setup.
"""

import json
import logging

import pytest

from docbus.errors import ConfigurationError
from docbus.logging import JsonFormatter, setup_logging
from docbus.settings import PollMode, load_settings


class TestLoadSettings:
    """Tests for file + environment configuration."""

    def test_defaults(self):
        """Defaults point at a local store and the standard addresses."""
        settings = load_settings(environ={})
        assert settings.gateway.host == "127.0.0.1"
        assert settings.gateway.port == 27017
        assert settings.gateway.db_name == "daedalus2"
        assert settings.gateway.pool_name == "d2Pool"
        assert settings.addresses.gateway_find == "docbus/gateway/find"
        assert settings.pollers == []

    def test_file_and_env(self, tmp_path):
        """Environment variables override the config file."""
        config = tmp_path / "docbus.json"
        config.write_text(
            json.dumps(
                {
                    "gateway": {"db_name": "telemetry"},
                    "operations": {"double": "ops/double"},
                    "pollers": [
                        {"collection": "sensor", "field": "value", "rate": 2, "out_address": "out"},
                        {"mode": "find", "collection": "log", "rate": 1, "out_address": "logs"},
                    ],
                }
            )
        )
        settings = load_settings(
            environ={"DOCBUS_CONFIG": str(config), "MONGO_HOST": "mongo", "MONGO_PORT": "27018"}
        )
        assert settings.gateway.db_name == "telemetry"
        assert settings.gateway.host == "mongo"
        assert settings.gateway.port == 27018
        assert settings.operations == {"double": "ops/double"}
        assert [p.mode for p in settings.pollers] == [PollMode.AGGREGATE, PollMode.FIND]

    def test_zero_rate_rejected(self, tmp_path):
        """A zero poller rate in the file is a configuration error."""
        config = tmp_path / "docbus.json"
        config.write_text(
            json.dumps({"pollers": [{"collection": "c", "field": "v", "rate": 0, "out_address": "o"}]})
        )
        with pytest.raises(ConfigurationError):
            load_settings(config, environ={})

    def test_unreadable_file(self, tmp_path):
        """A missing config file is a configuration error."""
        with pytest.raises(ConfigurationError):
            load_settings(tmp_path / "missing.json", environ={})

    def test_file_must_hold_object(self, tmp_path):
        """The config file must hold a JSON object."""
        config = tmp_path / "docbus.json"
        config.write_text("[]")
        with pytest.raises(ConfigurationError):
            load_settings(config, environ={})

    def test_credentials_in_client_options(self):
        """Credentials from the environment reach the client options."""
        settings = load_settings(environ={"MONGO_USERNAME": "user", "MONGO_PASSWORD": "secret"})
        options = settings.gateway.client_options()
        assert options["username"] == "user"
        assert options["password"] == "secret"

    def test_no_credentials_by_default(self):
        """No credentials are sent unless configured."""
        assert "username" not in load_settings(environ={}).gateway.client_options()


class TestLogging:
    """Tests for the JSON formatter."""

    def test_json_line_with_extras(self):
        """Records become one JSON object including extra fields."""
        record = logging.LogRecord("docbus.test", logging.INFO, __file__, 1, "saved %s", ("doc",), None)
        record.collection = "sensor"
        entry = json.loads(JsonFormatter().format(record))
        assert entry["message"] == "saved doc"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "docbus.test"
        assert entry["collection"] == "sensor"

    def test_setup_logging_levels(self):
        """The root level is set and pymongo is kept at WARNING."""
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging(level="debug", fmt="text")
            assert root.level == logging.DEBUG
            assert logging.getLogger("pymongo").level == logging.WARNING
        finally:
            root.handlers[:], level = saved
            root.setLevel(level)
