"""In-memory RabbitMQ broker state for the mock management API.

Objects are stored the way the management API reports them, so handlers
can return them as response bodies without translation.
"""

from __future__ import annotations

import base64
import copy
import hashlib
import os
from dataclasses import dataclass, field
from typing import Any

SHA256_ALGORITHM = "rabbit_password_hashing_sha256"
DEFAULT_QUEUE_TYPE = "classic"

# Exchanges every vhost starts with
BUILTIN_EXCHANGES = (
    ("", "direct"),
    ("amq.direct", "direct"),
    ("amq.topic", "topic"),
)


def broker_hash(password: str, salt: bytes | None = None) -> str:
    """Hash a password like the broker's SHA-256 backend."""
    if salt is None:
        salt = os.urandom(4)
    return base64.b64encode(salt + hashlib.sha256(salt + password.encode("utf-8")).digest()).decode(
        "ascii"
    )


def broker_check(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash."""
    salt = base64.b64decode(password_hash)[:4]
    return broker_hash(password, salt) == password_hash


def _tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [tag for tag in raw.split(",") if tag]
    return [tag for tag in raw if tag]


@dataclass
class MockBrokerState:
    """Broker objects keyed the way the management API addresses them."""

    users: dict[str, dict[str, Any]] = field(default_factory=dict)
    vhosts: dict[str, dict[str, Any]] = field(default_factory=dict)
    # (vhost, user) -> grant
    permissions: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    # (vhost, user) -> exchange -> grant
    topic_permissions: dict[tuple[str, str], dict[str, dict[str, Any]]] = field(
        default_factory=dict
    )
    # (vhost, name) -> exchange
    exchanges: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)

    # Users

    def put_user(self, name: str, body: dict[str, Any]) -> bool:
        """Create or replace a user. Returns True if it was created."""
        created = name not in self.users
        if "password" in body:
            password_hash = broker_hash(body["password"])
            algorithm = SHA256_ALGORITHM
        else:
            password_hash = body.get("password_hash", "")
            algorithm = body.get("hashing_algorithm", SHA256_ALGORITHM)
        self.users[name] = {
            "name": name,
            "password_hash": password_hash,
            "hashing_algorithm": algorithm,
            "tags": _tags(body.get("tags")),
        }
        return created

    def delete_user(self, name: str) -> bool:
        if self.users.pop(name, None) is None:
            return False
        for key in [k for k in self.permissions if k[1] == name]:
            del self.permissions[key]
        for key in [k for k in self.topic_permissions if k[1] == name]:
            del self.topic_permissions[key]
        return True

    # Virtual hosts

    def put_vhost(self, name: str, body: dict[str, Any]) -> bool:
        created = name not in self.vhosts
        existing = self.vhosts.get(name, {})
        self.vhosts[name] = {
            "name": name,
            "description": body.get("description", existing.get("description", "")),
            "tags": _tags(body.get("tags", existing.get("tags"))),
            "default_queue_type": body.get(
                "default_queue_type", existing.get("default_queue_type", DEFAULT_QUEUE_TYPE)
            ),
            "tracing": bool(body.get("tracing", existing.get("tracing", False))),
        }
        if created:
            for exchange, exchange_type in BUILTIN_EXCHANGES:
                self.exchanges[(name, exchange)] = {
                    "name": exchange,
                    "vhost": name,
                    "type": exchange_type,
                    "durable": True,
                    "auto_delete": False,
                    "internal": False,
                    "arguments": {},
                }
        return created

    def delete_vhost(self, name: str) -> bool:
        if self.vhosts.pop(name, None) is None:
            return False
        for store in (self.permissions, self.topic_permissions, self.exchanges):
            for key in [k for k in store if k[0] == name]:
                del store[key]
        return True

    # Grants

    def has_user_and_vhost(self, vhost: str, user: str) -> bool:
        return vhost in self.vhosts and user in self.users

    def put_permissions(self, vhost: str, user: str, body: dict[str, Any]) -> bool:
        created = (vhost, user) not in self.permissions
        self.permissions[(vhost, user)] = {
            "user": user,
            "vhost": vhost,
            "configure": body.get("configure", ""),
            "write": body.get("write", ""),
            "read": body.get("read", ""),
        }
        return created

    def put_topic_permission(self, vhost: str, user: str, body: dict[str, Any]) -> bool:
        grants = self.topic_permissions.setdefault((vhost, user), {})
        exchange = body.get("exchange", "")
        created = exchange not in grants
        grants[exchange] = {
            "user": user,
            "vhost": vhost,
            "exchange": exchange,
            "write": body.get("write", ""),
            "read": body.get("read", ""),
        }
        return created

    def topic_grants(self, vhost: str, user: str) -> list[dict[str, Any]]:
        grants = self.topic_permissions.get((vhost, user), {})
        return [copy.deepcopy(grants[exchange]) for exchange in sorted(grants)]

    # Exchanges

    def declare_exchange(self, vhost: str, name: str, body: dict[str, Any]) -> str:
        """Declare an exchange.

        Returns:
            "created", "exists" for an equivalent redeclaration, or
            "inequivalent" when the properties differ.
        """
        exchange = {
            "name": name,
            "vhost": vhost,
            "type": body.get("type", ""),
            "durable": bool(body.get("durable", False)),
            "auto_delete": bool(body.get("auto_delete", False)),
            "internal": bool(body.get("internal", False)),
            "arguments": dict(body.get("arguments") or {}),
        }
        existing = self.exchanges.get((vhost, name))
        if existing is None:
            self.exchanges[(vhost, name)] = exchange
            return "created"
        if existing != exchange:
            return "inequivalent"
        return "exists"

    def seed(self) -> MockBrokerState:
        """Add the default vhost and guest user a fresh broker has."""
        self.put_vhost("/", {"description": "Default virtual host"})
        self.put_user("guest", {"password": "guest", "tags": "administrator"})
        self.put_permissions("/", "guest", {"configure": ".*", "write": ".*", "read": ".*"})
        return self
