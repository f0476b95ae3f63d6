"""Configuration management with validation.

Connection settings for the RabbitMQ management API are validated at load
time so a bad endpoint or half-configured TLS pair fails before the first
broker call.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

DEFAULT_LOG_LEVEL = "INFO"

# Vhost used when a declaration omits one
DEFAULT_VHOST = "/"

# Size limits for files read from disk
MAX_DECLARATION_FILE_SIZE_BYTES = 1024 * 1024  # 1MB
MAX_STATE_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB

VALID_ADDRESS_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class TlsConfig:
    """TLS material handed to the HTTP client."""

    insecure: bool = False
    cacert_file: Path | None = None
    clientcert_file: Path | None = None
    clientkey_file: Path | None = None

    @property
    def client_cert(self) -> tuple[str, str] | None:
        if self.clientcert_file and self.clientkey_file:
            return (str(self.clientcert_file), str(self.clientkey_file))
        return None


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    address: str
    username: str
    password: str = field(repr=False)

    tls: TlsConfig = field(default_factory=TlsConfig)
    proxy: str | None = None

    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Logging
    log_level: str = DEFAULT_LOG_LEVEL
    enable_json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.address:
            errors.append("RABBITMQ_ADDRESS is required")
        else:
            parsed = urlparse(self.address)
            if parsed.scheme not in VALID_ADDRESS_SCHEMES or not parsed.netloc:
                errors.append(
                    f"RABBITMQ_ADDRESS must be an http(s) URL: {self.address}"
                )

        if not self.username:
            errors.append("RABBITMQ_USERNAME is required")

        if not self.password:
            errors.append("RABBITMQ_PASSWORD is required")

        if self.proxy:
            parsed_proxy = urlparse(self.proxy)
            if not parsed_proxy.scheme or not parsed_proxy.netloc:
                errors.append(f"RABBITMQ_PROXY must be a URL: {self.proxy}")

        # TLS validation
        if bool(self.tls.clientcert_file) != bool(self.tls.clientkey_file):
            errors.append(
                "RABBITMQ_CLIENTCERT_FILE and RABBITMQ_CLIENTKEY_FILE must be set together"
            )
        for label, path in (
            ("RABBITMQ_CACERT_FILE", self.tls.cacert_file),
            ("RABBITMQ_CLIENTCERT_FILE", self.tls.clientcert_file),
            ("RABBITMQ_CLIENTKEY_FILE", self.tls.clientkey_file),
        ):
            if path is not None and not path.exists():
                errors.append(f"{label} does not exist: {path}")

        # Timing validation
        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            errors.append(f"LOG_LEVEL is not a valid logging level: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            RABBITMQ_ADDRESS: Management API endpoint, e.g. http://localhost:15672
            RABBITMQ_USERNAME: Management user
            RABBITMQ_PASSWORD: Management user password
            RABBITMQ_INSECURE: If "true", skip TLS certificate verification
            RABBITMQ_CACERT_FILE: CA bundle used to verify the broker
            RABBITMQ_CLIENTCERT_FILE: Client certificate (requires key file)
            RABBITMQ_CLIENTKEY_FILE: Client private key (requires cert file)
            RABBITMQ_PROXY: Proxy URL (default: taken from the environment)
            REQUEST_TIMEOUT: HTTP timeout in seconds (default: 30)
            LOG_LEVEL: Logging level (default: INFO)
            ENABLE_JSON_LOGGING: Emit JSON log lines (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        return cls(
            address=os.environ.get("RABBITMQ_ADDRESS", ""),
            username=os.environ.get("RABBITMQ_USERNAME", ""),
            password=os.environ.get("RABBITMQ_PASSWORD", ""),
            tls=TlsConfig(
                insecure=get_bool("RABBITMQ_INSECURE", False),
                cacert_file=get_path("RABBITMQ_CACERT_FILE"),
                clientcert_file=get_path("RABBITMQ_CLIENTCERT_FILE"),
                clientkey_file=get_path("RABBITMQ_CLIENTKEY_FILE"),
            ),
            proxy=os.environ.get("RABBITMQ_PROXY") or None,
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            log_level=os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
        )
