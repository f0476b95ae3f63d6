"""Tests for configuration loading."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from rabbitmq_operator.config import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
    TlsConfig,
)


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(
            address="http://localhost:15672",
            username="guest",
            password="guest",
        )

        assert config.address == "http://localhost:15672"
        assert config.request_timeout_seconds == DEFAULT_REQUEST_TIMEOUT_SECONDS
        assert config.tls.insecure is False
        assert config.proxy is None

    def test_password_not_in_repr(self) -> None:
        """Test that the password never shows up in repr."""
        config = Config(address="http://localhost:15672", username="guest", password="s3cret")

        assert "s3cret" not in repr(config)

    def test_missing_address(self) -> None:
        """Test that a missing address raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(address="", username="guest", password="guest")

        assert "RABBITMQ_ADDRESS" in str(exc_info.value)

    def test_address_must_be_http_url(self) -> None:
        """Test that a non-http address is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(address="amqp://localhost:5672", username="guest", password="guest")

        assert "http(s) URL" in str(exc_info.value)

    def test_all_errors_reported_together(self) -> None:
        """Test that every problem is listed in one error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(address="http://localhost:15672", username="", password="")

        message = str(exc_info.value)
        assert "RABBITMQ_USERNAME" in message
        assert "RABBITMQ_PASSWORD" in message

    def test_invalid_request_timeout(self) -> None:
        """Test that an out-of-range timeout raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                address="http://localhost:15672",
                username="guest",
                password="guest",
                request_timeout_seconds=0,
            )

        assert "REQUEST_TIMEOUT" in str(exc_info.value)

    def test_invalid_log_level(self) -> None:
        """Test that an unknown log level raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                address="http://localhost:15672",
                username="guest",
                password="guest",
                log_level="LOUD",
            )

        assert "LOG_LEVEL" in str(exc_info.value)

    def test_invalid_proxy(self) -> None:
        """Test that a proxy must be a URL."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                address="http://localhost:15672",
                username="guest",
                password="guest",
                proxy="not a url",
            )

        assert "RABBITMQ_PROXY" in str(exc_info.value)


class TestTlsConfig:
    """Tests for TLS settings validation."""

    def test_client_cert_requires_key(self, tmp_path: Path) -> None:
        """Test that a client certificate without a key is rejected."""
        cert = tmp_path / "client.pem"
        cert.write_text("cert")

        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                address="https://localhost:15671",
                username="guest",
                password="guest",
                tls=TlsConfig(clientcert_file=cert),
            )

        assert "must be set together" in str(exc_info.value)

    def test_missing_ca_file(self, tmp_path: Path) -> None:
        """Test that a CA bundle path must exist."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                address="https://localhost:15671",
                username="guest",
                password="guest",
                tls=TlsConfig(cacert_file=tmp_path / "missing.pem"),
            )

        assert "RABBITMQ_CACERT_FILE does not exist" in str(exc_info.value)

    def test_client_cert_pair(self, tmp_path: Path) -> None:
        """Test that a complete client pair is exposed as a tuple."""
        cert = tmp_path / "client.pem"
        key = tmp_path / "client.key"
        cert.write_text("cert")
        key.write_text("key")

        tls = TlsConfig(clientcert_file=cert, clientkey_file=key)

        assert tls.client_cert == (str(cert), str(key))
        assert TlsConfig().client_cert is None


class TestFromEnv:
    """Tests for loading configuration from the environment."""

    def test_from_env(self, tmp_path: Path) -> None:
        """Test loading configuration from environment."""
        ca = tmp_path / "ca.pem"
        ca.write_text("ca")

        env = {
            "RABBITMQ_ADDRESS": "https://rabbit.example.com:15671",
            "RABBITMQ_USERNAME": "admin",
            "RABBITMQ_PASSWORD": "secret",
            "RABBITMQ_CACERT_FILE": str(ca),
            "REQUEST_TIMEOUT": "45",
            "LOG_LEVEL": "debug",
            "ENABLE_JSON_LOGGING": "false",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.address == "https://rabbit.example.com:15671"
        assert config.username == "admin"
        assert config.password == "secret"
        assert config.tls.cacert_file == ca
        assert config.tls.insecure is False
        assert config.request_timeout_seconds == 45
        assert config.enable_json_logging is False

    def test_from_env_insecure(self) -> None:
        """Test that RABBITMQ_INSECURE accepts common truthy values."""
        env = {
            "RABBITMQ_ADDRESS": "https://localhost:15671",
            "RABBITMQ_USERNAME": "guest",
            "RABBITMQ_PASSWORD": "guest",
            "RABBITMQ_INSECURE": "yes",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.tls.insecure is True

    def test_from_env_non_integer_timeout(self) -> None:
        """Test that a non-numeric timeout raises error."""
        env = {
            "RABBITMQ_ADDRESS": "http://localhost:15672",
            "RABBITMQ_USERNAME": "guest",
            "RABBITMQ_PASSWORD": "guest",
            "REQUEST_TIMEOUT": "soon",
        }

        with patch.dict(os.environ, env, clear=True), pytest.raises(ConfigurationError):
            Config.from_env()

    def test_from_env_missing_credentials(self) -> None:
        """Test that an empty environment fails validation."""
        with patch.dict(os.environ, {}, clear=True), pytest.raises(ConfigurationError) as exc_info:
            Config.from_env()

        assert "RABBITMQ_ADDRESS is required" in str(exc_info.value)
