"""Permissions reconciler.

A grant is keyed on (user, vhost) and identified as "user@vhost". The
configure/write/read patterns are updated in place; moving the grant to
another user or vhost is destroy-then-create.
"""

from __future__ import annotations

import logging

from .gateway import BrokerGateway
from .identity import decode_as
from .models import PermissionSpec, PermissionState, ResourceKind
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


class PermissionsReconciler:
    """Reconciles per-vhost user permissions."""

    kind = ResourceKind.PERMISSIONS

    def __init__(self, gateway: BrokerGateway) -> None:
        self._gateway = gateway

    def create(self, desired: PermissionSpec) -> PermissionState:
        return self._put(desired, operation="create")

    def read(self, prior: PermissionState) -> PermissionState | None:
        log_extra = {"user": prior.user, "vhost": prior.vhost}
        logger.debug("reading rabbitmq permissions", extra=log_extra)

        with operation_context("read", self.kind, prior.id):
            response = self._gateway.get_permissions(prior.vhost, prior.user)
            if not check_get(response, kind=self.kind, key=prior.id):
                return None

        body = response.body or {}
        return PermissionState(
            id=prior.id,
            user=body.get("user", prior.user),
            vhost=body.get("vhost", prior.vhost),
            configure=body.get("configure", ""),
            write=body.get("write", ""),
            read=body.get("read", ""),
        )

    def update(self, desired: PermissionSpec, prior: PermissionState) -> PermissionState:
        refuse_replace_only(desired, prior, desired.REPLACE_TRIGGERS, key=prior.id)
        return self._put(desired, operation="update")

    def delete(self, prior: PermissionState) -> None:
        logger.debug(
            "deleting rabbitmq permissions",
            extra={"user": prior.user, "vhost": prior.vhost},
        )
        with operation_context("delete", self.kind, prior.id):
            response = self._gateway.delete_permissions(prior.vhost, prior.user)
            check_delete(response, kind=self.kind, key=prior.id)

    def import_state(self, token: str) -> PermissionState:
        key = decode_as(PermissionSpec.FORMAT, token, kind=self.kind.value)
        return PermissionState(id=token, user=key["user"], vhost=key["vhost"])

    def classify(self, desired: PermissionSpec, prior: PermissionState) -> ChangePlan:
        return classify_change(desired, prior, desired.REPLACE_TRIGGERS)

    def _put(self, desired: PermissionSpec, *, operation: str) -> PermissionState:
        # Encoding first rejects keys that would not round-trip
        identifier = desired.identifier
        logger.debug(
            "setting rabbitmq permissions",
            extra={"user": desired.user, "vhost": desired.vhost, "operation": operation},
        )
        with operation_context(operation, self.kind, identifier):
            response = self._gateway.put_permissions(
                desired.vhost,
                desired.user,
                {"configure": desired.configure, "write": desired.write, "read": desired.read},
            )
            check_put(response, operation=operation, kind=self.kind, key=identifier)
        return desired.to_observed()
