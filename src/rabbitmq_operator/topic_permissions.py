"""Topic permissions reconciler.

A topic grant is keyed on (user, vhost, exchange) and identified as
"user@vhost@exchange". The broker only exposes the grants of a (user, vhost)
pair as one list, so reads filter that list by exchange here.

The management API has no per-exchange delete either: DELETE clears every
grant of the pair. Deleting one grant therefore lists the pair first and
puts the other exchanges' grants back afterwards.
"""

from __future__ import annotations

import logging
from typing import Any

from .gateway import BrokerGateway
from .identity import decode_as
from .models import ResourceKind, TopicPermissionSpec, TopicPermissionState
from .reconciler import (
    ChangePlan,
    check_delete,
    check_get,
    check_put,
    classify_change,
    operation_context,
    refuse_replace_only,
)

logger = logging.getLogger(__name__)


def find_exchange_grant(entries: Any, exchange: str) -> dict[str, Any] | None:
    """Pick the grant for one exchange out of a (user, vhost) listing."""
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if isinstance(entry, dict) and entry.get("exchange") == exchange:
            return entry
    return None


def other_exchange_grants(entries: Any, exchange: str) -> list[dict[str, Any]]:
    """Grants of a (user, vhost) listing that belong to any other exchange."""
    if not isinstance(entries, list):
        return []
    return [
        entry
        for entry in entries
        if isinstance(entry, dict) and entry.get("exchange") != exchange
    ]


class TopicPermissionsReconciler:
    """Reconciles per-exchange topic permissions."""

    kind = ResourceKind.TOPIC_PERMISSIONS

    def __init__(self, gateway: BrokerGateway) -> None:
        self._gateway = gateway

    def create(self, desired: TopicPermissionSpec) -> TopicPermissionState:
        return self._put(desired, operation="create")

    def read(self, prior: TopicPermissionState) -> TopicPermissionState | None:
        log_extra = {"user": prior.user, "vhost": prior.vhost, "exchange": prior.exchange}
        logger.debug("reading rabbitmq topic permissions", extra=log_extra)

        with operation_context("read", self.kind, prior.id):
            response = self._gateway.list_topic_permissions(prior.vhost, prior.user)
            if not check_get(response, kind=self.kind, key=prior.id):
                return None

        grant = find_exchange_grant(response.body, prior.exchange)
        if grant is None:
            logger.warning(
                "rabbitmq topic permissions not found for exchange, removing from state",
                extra=log_extra,
            )
            return None

        return TopicPermissionState(
            id=prior.id,
            user=prior.user,
            vhost=prior.vhost,
            exchange=prior.exchange,
            write=grant.get("write", ""),
            read=grant.get("read", ""),
        )

    def update(
        self, desired: TopicPermissionSpec, prior: TopicPermissionState
    ) -> TopicPermissionState:
        refuse_replace_only(desired, prior, desired.REPLACE_TRIGGERS, key=prior.id)
        return self._put(desired, operation="update")

    def delete(self, prior: TopicPermissionState) -> None:
        """Remove the grant for one exchange, leaving the pair's other grants.

        Raises:
            RemoteRejected: If listing, clearing or restoring the pair's
                grants fails. A failed restore leaves the other grants
                missing on the broker.
        """
        log_extra = {"user": prior.user, "vhost": prior.vhost, "exchange": prior.exchange}
        logger.debug("deleting rabbitmq topic permissions", extra=log_extra)

        with operation_context("delete", self.kind, prior.id):
            listing = self._gateway.list_topic_permissions(prior.vhost, prior.user)
            if listing.not_found:
                return
            listing.raise_for_rejection(operation="delete", kind=self.kind.value, key=prior.id)
            if find_exchange_grant(listing.body, prior.exchange) is None:
                logger.debug("rabbitmq topic permissions already absent", extra=log_extra)
                return

            siblings = other_exchange_grants(listing.body, prior.exchange)
            response = self._gateway.delete_topic_permissions(prior.vhost, prior.user)
            check_delete(response, kind=self.kind, key=prior.id)

            for grant in siblings:
                logger.debug(
                    "restoring rabbitmq topic permissions",
                    extra={**log_extra, "exchange": grant.get("exchange")},
                )
                restored = self._gateway.put_topic_permissions(
                    prior.vhost,
                    prior.user,
                    {
                        "exchange": grant.get("exchange", ""),
                        "write": grant.get("write", ""),
                        "read": grant.get("read", ""),
                    },
                )
                check_put(restored, operation="delete", kind=self.kind, key=prior.id)

    def import_state(self, token: str) -> TopicPermissionState:
        key = decode_as(TopicPermissionSpec.FORMAT, token, kind=self.kind.value)
        return TopicPermissionState(
            id=token,
            user=key["user"],
            vhost=key["vhost"],
            exchange=key["exchange"],
        )

    def classify(
        self, desired: TopicPermissionSpec, prior: TopicPermissionState
    ) -> ChangePlan:
        return classify_change(desired, prior, desired.REPLACE_TRIGGERS)

    def _put(self, desired: TopicPermissionSpec, *, operation: str) -> TopicPermissionState:
        identifier = desired.identifier
        logger.debug(
            "setting rabbitmq topic permissions",
            extra={
                "user": desired.user,
                "vhost": desired.vhost,
                "exchange": desired.exchange,
                "operation": operation,
            },
        )
        with operation_context(operation, self.kind, identifier):
            response = self._gateway.put_topic_permissions(
                desired.vhost,
                desired.user,
                {"exchange": desired.exchange, "write": desired.write, "read": desired.read},
            )
            check_put(response, operation=operation, kind=self.kind, key=identifier)
        return desired.to_observed()
