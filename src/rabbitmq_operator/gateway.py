"""Remote broker gateway for the RabbitMQ management HTTP API.

Every call returns a GatewayResponse carrying the HTTP status and the decoded
body, whatever the status. Only transport-level failures (connection refused,
DNS, TLS, timeouts) raise, as RemoteUnavailable. Classifying statuses into
success / not-found / rejection is left to the reconcilers, which know which
statuses each operation tolerates.

The gateway does not retry. The httpx client is injected so callers control
its lifetime and tests can substitute a mock transport.
"""

from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .config import Config
from .errors import RemoteRejected, RemoteUnavailable

logger = logging.getLogger(__name__)

API_PREFIX = "/api"

HTTP_NOT_FOUND = 404
HTTP_ERROR_THRESHOLD = 400


@dataclass(frozen=True)
class GatewayResponse:
    """Status and decoded body of one management API call."""

    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def not_found(self) -> bool:
        return self.status == HTTP_NOT_FOUND

    @property
    def rejected(self) -> bool:
        """True for any error status other than not-found."""
        return self.status >= HTTP_ERROR_THRESHOLD and not self.not_found

    def raise_for_rejection(self, **context: Any) -> GatewayResponse:
        """Raise RemoteRejected for error statuses other than 404."""
        if self.rejected:
            raise RemoteRejected(self.status, self.body, **context)
        return self


def _segment(value: str) -> str:
    """Percent-encode one path segment; vhost "/" becomes "%2F"."""
    return quote(value, safe="")


def _path(*segments: str) -> str:
    return API_PREFIX + "/" + "/".join(_segment(s) for s in segments)


def build_ssl_context(config: Config) -> ssl.SSLContext | bool:
    """Build the verify argument for httpx from TLS settings."""
    if config.tls.insecure:
        return False
    cafile = str(config.tls.cacert_file) if config.tls.cacert_file else None
    context = ssl.create_default_context(cafile=cafile)
    client_cert = config.tls.client_cert
    if client_cert is not None:
        context.load_cert_chain(certfile=client_cert[0], keyfile=client_cert[1])
    return context


class BrokerGateway:
    """Thin client over the management API, one method per object operation."""

    def __init__(self, client: httpx.Client) -> None:
        """Initialize with a configured httpx client.

        Args:
            client: Client whose base_url points at the management endpoint
                and which carries authentication.
        """
        self._client = client

    @classmethod
    def from_config(cls, config: Config) -> BrokerGateway:
        """Create a gateway with an httpx client built from configuration."""
        client = httpx.Client(
            base_url=config.address.rstrip("/"),
            auth=(config.username, config.password),
            verify=build_ssl_context(config),
            proxy=config.proxy,
            timeout=config.request_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )
        return cls(client)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BrokerGateway:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, path: str, payload: Any = None) -> GatewayResponse:
        try:
            response = self._client.request(method, path, json=payload)
        except httpx.TransportError as e:
            logger.error(
                "Broker unreachable",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise RemoteUnavailable(f"{method} {path} failed: {e}") from e

        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = response.text

        logger.debug(
            "Broker call",
            extra={"method": method, "path": path, "status": response.status_code},
        )
        return GatewayResponse(status=response.status_code, body=body)

    # Users

    def put_user(self, name: str, settings: dict[str, Any]) -> GatewayResponse:
        return self._request("PUT", _path("users", name), settings)

    def get_user(self, name: str) -> GatewayResponse:
        return self._request("GET", _path("users", name))

    def delete_user(self, name: str) -> GatewayResponse:
        return self._request("DELETE", _path("users", name))

    def list_users(self) -> GatewayResponse:
        return self._request("GET", _path("users"))

    # Virtual hosts

    def put_vhost(self, name: str, settings: dict[str, Any]) -> GatewayResponse:
        return self._request("PUT", _path("vhosts", name), settings)

    def get_vhost(self, name: str) -> GatewayResponse:
        return self._request("GET", _path("vhosts", name))

    def delete_vhost(self, name: str) -> GatewayResponse:
        return self._request("DELETE", _path("vhosts", name))

    def list_vhosts(self) -> GatewayResponse:
        return self._request("GET", _path("vhosts"))

    # Permissions

    def put_permissions(self, vhost: str, user: str, permissions: dict[str, str]) -> GatewayResponse:
        return self._request("PUT", _path("permissions", vhost, user), permissions)

    def get_permissions(self, vhost: str, user: str) -> GatewayResponse:
        return self._request("GET", _path("permissions", vhost, user))

    def delete_permissions(self, vhost: str, user: str) -> GatewayResponse:
        return self._request("DELETE", _path("permissions", vhost, user))

    def list_user_permissions(self, user: str) -> GatewayResponse:
        return self._request("GET", _path("users", user, "permissions"))

    # Topic permissions

    def put_topic_permissions(
        self, vhost: str, user: str, permissions: dict[str, str]
    ) -> GatewayResponse:
        return self._request("PUT", _path("topic-permissions", vhost, user), permissions)

    def list_topic_permissions(self, vhost: str, user: str) -> GatewayResponse:
        """All topic grants of a user in a vhost, one entry per exchange."""
        return self._request("GET", _path("topic-permissions", vhost, user))

    def delete_topic_permissions(self, vhost: str, user: str) -> GatewayResponse:
        """Clear every topic grant of a user in a vhost."""
        return self._request("DELETE", _path("topic-permissions", vhost, user))

    def list_user_topic_permissions(self, user: str) -> GatewayResponse:
        return self._request("GET", _path("users", user, "topic-permissions"))

    # Exchanges

    def declare_exchange(self, vhost: str, name: str, settings: dict[str, Any]) -> GatewayResponse:
        return self._request("PUT", _path("exchanges", vhost, name), settings)

    def get_exchange(self, vhost: str, name: str) -> GatewayResponse:
        return self._request("GET", _path("exchanges", vhost, name))

    def delete_exchange(self, vhost: str, name: str) -> GatewayResponse:
        return self._request("DELETE", _path("exchanges", vhost, name))

    def list_exchanges(self, vhost: str) -> GatewayResponse:
        return self._request("GET", _path("exchanges", vhost))
