"""Exchange reconciler.

Exchanges cannot be redeclared with different properties, so every
attribute is a replace trigger. update() never calls the broker: with no
change it is a no-op, with any change it raises ReplaceRequired and the
caller must delete and create instead.
"""

from __future__ import annotations

import logging

from .errors import ReplaceRequired
from .gateway import BrokerGateway
from .identity import decode_as
from .models import ExchangeSettings, ExchangeSpec, ExchangeState, ResourceKind
from .reconciler import (
    ChangeAction,
    ChangePlan,
    check_delete,
    check_get,
    check_put,
    classify_change,
    operation_context,
)

logger = logging.getLogger(__name__)


class ExchangeReconciler:
    """Reconciles exchanges."""

    kind = ResourceKind.EXCHANGE

    def __init__(self, gateway: BrokerGateway) -> None:
        self._gateway = gateway

    def create(self, desired: ExchangeSpec) -> ExchangeState:
        identifier = desired.identifier
        logger.debug(
            "creating rabbitmq exchange",
            extra={"exchange": desired.name, "vhost": desired.vhost},
        )
        settings = desired.settings
        with operation_context("create", self.kind, identifier):
            response = self._gateway.declare_exchange(
                desired.vhost,
                desired.name,
                {
                    "type": settings.type,
                    "durable": settings.durable,
                    "auto_delete": settings.auto_delete,
                    "arguments": dict(settings.arguments),
                },
            )
            check_put(response, operation="create", kind=self.kind, key=identifier)
        return desired.to_observed()

    def read(self, prior: ExchangeState) -> ExchangeState | None:
        logger.debug(
            "reading rabbitmq exchange",
            extra={"exchange": prior.name, "vhost": prior.vhost},
        )
        with operation_context("read", self.kind, prior.id):
            response = self._gateway.get_exchange(prior.vhost, prior.name)
            if not check_get(response, kind=self.kind, key=prior.id):
                return None

        body = response.body or {}
        name = body.get("name", prior.name)
        vhost = body.get("vhost", prior.vhost)
        return ExchangeState(
            id=prior.id,
            name=name,
            vhost=vhost,
            settings=ExchangeSettings(
                type=body.get("type", ""),
                durable=body.get("durable", False),
                auto_delete=body.get("auto_delete", False),
                arguments=body.get("arguments"),
            ),
        )

    def update(self, desired: ExchangeSpec, prior: ExchangeState) -> ExchangeState:
        plan = self.classify(desired, prior)
        if plan.action is not ChangeAction.NO_CHANGE:
            raise ReplaceRequired(
                plan.changed_fields,
                operation="update",
                kind=self.kind.value,
                key=prior.id,
            )
        return prior

    def delete(self, prior: ExchangeState) -> None:
        logger.debug(
            "deleting rabbitmq exchange",
            extra={"exchange": prior.name, "vhost": prior.vhost},
        )
        with operation_context("delete", self.kind, prior.id):
            response = self._gateway.delete_exchange(prior.vhost, prior.name)
            check_delete(response, kind=self.kind, key=prior.id)

    def import_state(self, token: str) -> ExchangeState:
        key = decode_as(ExchangeSpec.FORMAT, token, kind=self.kind.value)
        return ExchangeState(id=token, name=key["name"], vhost=key["vhost"])

    def classify(self, desired: ExchangeSpec, prior: ExchangeState) -> ChangePlan:
        return classify_change(desired, prior, desired.REPLACE_TRIGGERS)
