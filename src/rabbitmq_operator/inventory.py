"""Import tokens for objects that already exist on the broker.

Lists broker objects of one kind through the management API collection
endpoints and renders each as the token `import` accepts. Objects whose key
cannot be encoded, such as a name containing the delimiter, are skipped.
"""

from __future__ import annotations

import logging
from typing import Any

from .errors import MalformedIdentifier
from .gateway import BrokerGateway, GatewayResponse
from .identity import encode_as
from .models import ExchangeSpec, PermissionSpec, ResourceKind, TopicPermissionSpec

logger = logging.getLogger(__name__)


def _entries(response: GatewayResponse, kind: ResourceKind) -> list[dict[str, Any]]:
    if response.not_found:
        return []
    response.raise_for_rejection(operation="list", kind=kind.value)
    if not isinstance(response.body, list):
        return []
    return [entry for entry in response.body if isinstance(entry, dict)]


def _user_names(gateway: BrokerGateway) -> list[str]:
    return [
        entry["name"]
        for entry in _entries(gateway.list_users(), ResourceKind.USER)
        if entry.get("name")
    ]


def list_import_tokens(
    gateway: BrokerGateway,
    kind: ResourceKind,
    *,
    vhost: str | None = None,
    user: str | None = None,
) -> list[str]:
    """List the import tokens of existing broker objects of one kind.

    Args:
        gateway: Broker gateway.
        kind: Object kind to list.
        vhost: Restrict to one vhost. Exchanges are listed per vhost, every
            vhost when omitted.
        user: Restrict grants to one user, every user when omitted.

    Returns:
        Sorted import tokens.
    """
    tokens: list[str] = []

    if kind is ResourceKind.USER:
        tokens = _user_names(gateway)

    elif kind is ResourceKind.VHOST:
        tokens = [
            entry["name"]
            for entry in _entries(gateway.list_vhosts(), kind)
            if entry.get("name")
        ]

    elif kind is ResourceKind.EXCHANGE:
        if vhost is not None:
            vhosts = [vhost]
        else:
            vhosts = list_import_tokens(gateway, ResourceKind.VHOST)
        for name in vhosts:
            for entry in _entries(gateway.list_exchanges(name), kind):
                # The default exchange has no name and cannot be managed
                if not entry.get("name"):
                    continue
                tokens.extend(_encode(ExchangeSpec, {"name": entry["name"], "vhost": name}))

    else:
        users = [user] if user is not None else _user_names(gateway)
        for name in users:
            if kind is ResourceKind.PERMISSIONS:
                response = gateway.list_user_permissions(name)
            else:
                response = gateway.list_user_topic_permissions(name)
            for entry in _entries(response, kind):
                if vhost is not None and entry.get("vhost") != vhost:
                    continue
                values = {"user": name, "vhost": entry.get("vhost", "")}
                if kind is ResourceKind.TOPIC_PERMISSIONS:
                    values["exchange"] = entry.get("exchange", "")
                    tokens.extend(_encode(TopicPermissionSpec, values))
                else:
                    tokens.extend(_encode(PermissionSpec, values))

    return sorted(tokens)


def _encode(
    model: type[ExchangeSpec] | type[PermissionSpec] | type[TopicPermissionSpec],
    values: dict[str, str],
) -> list[str]:
    try:
        return [encode_as(model.FORMAT, values, kind=model.KIND.value)]
    except MalformedIdentifier:
        logger.warning(
            "Skipping broker object whose key cannot be encoded",
            extra={"kind": model.KIND.value, "key_fields": values},
        )
        return []
