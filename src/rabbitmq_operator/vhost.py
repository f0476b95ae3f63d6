"""Virtual host reconciler.

Only the name forces replacement; description, default queue type,
tracing and tags are updated in place. The broker answers 201 or 204 to a
vhost PUT, anything else is treated as a failure.
"""

from __future__ import annotations

import logging
from typing import Any

from .errors import MalformedIdentifier
from .gateway import BrokerGateway
from .models import ResourceKind, VhostSpec, VhostState
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

VHOST_PUT_SUCCESS_STATUSES = (201, 204)


def _settings(desired: VhostSpec) -> dict[str, Any]:
    settings: dict[str, Any] = {
        "description": desired.description,
        "tracing": desired.tracing,
        "tags": ",".join(desired.tags),
    }
    if desired.default_queue_type is not None:
        settings["default_queue_type"] = desired.default_queue_type
    return settings


class VhostReconciler:
    """Reconciles virtual hosts."""

    kind = ResourceKind.VHOST

    def __init__(self, gateway: BrokerGateway) -> None:
        self._gateway = gateway

    def create(self, desired: VhostSpec) -> VhostState:
        return self._put(desired, operation="create")

    def read(self, prior: VhostState) -> VhostState | None:
        name = prior.name
        logger.debug("reading rabbitmq vhost", extra={"vhost": name})
        with operation_context("read", self.kind, name):
            response = self._gateway.get_vhost(name)
            if not check_get(response, kind=self.kind, key=name):
                return None

        body = response.body or {}
        raw_tags = body.get("tags")
        if raw_tags is None:
            tags = []
        elif isinstance(raw_tags, str):
            tags = [tag for tag in raw_tags.split(",") if tag]
        else:
            tags = list(raw_tags)

        # default_queue_type stays unset when it was never declared, so a
        # broker-side default does not show up as drift
        default_queue_type = None
        if prior.default_queue_type is not None:
            default_queue_type = body.get("default_queue_type")

        observed_name = body.get("name", name)
        return VhostState(
            id=observed_name,
            name=observed_name,
            description=body.get("description") or "",
            default_queue_type=default_queue_type,
            tracing=bool(body.get("tracing", False)),
            tags=tags,
        )

    def update(self, desired: VhostSpec, prior: VhostState) -> VhostState:
        refuse_replace_only(desired, prior, desired.REPLACE_TRIGGERS, key=prior.name)
        return self._put(desired, operation="update")

    def delete(self, prior: VhostState) -> None:
        logger.debug("deleting rabbitmq vhost", extra={"vhost": prior.name})
        with operation_context("delete", self.kind, prior.name):
            response = self._gateway.delete_vhost(prior.name)
            check_delete(response, kind=self.kind, key=prior.name)

    def import_state(self, token: str) -> VhostState:
        if not token:
            raise MalformedIdentifier(token, "name", operation="import", kind=self.kind.value)
        return VhostState(id=token, name=token)

    def classify(self, desired: VhostSpec, prior: VhostState) -> ChangePlan:
        return classify_change(desired, prior, desired.REPLACE_TRIGGERS)

    def _put(self, desired: VhostSpec, *, operation: str) -> VhostState:
        logger.debug("putting rabbitmq vhost", extra={"vhost": desired.name, "operation": operation})
        with operation_context(operation, self.kind, desired.name):
            response = self._gateway.put_vhost(desired.name, _settings(desired))
            check_put(
                response,
                operation=operation,
                kind=self.kind,
                key=desired.name,
                accepted=VHOST_PUT_SUCCESS_STATUSES,
            )
        return desired.to_observed()
