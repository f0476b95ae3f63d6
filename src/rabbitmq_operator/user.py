"""User reconciler.

Users are keyed on their name alone and every attribute can be updated in
place. The password is write-only: create sends it in plaintext (the broker
hashes it), update sends a hash computed here, and only when the rotation
version marker changed. Otherwise the broker's current hash is read and
sent back untouched.
"""

from __future__ import annotations

import logging
from typing import Any

from .errors import ConfigurationInvalid, MalformedIdentifier, NotFound
from .gateway import BrokerGateway
from .models import ResourceKind, UserSpec, UserState
from .reconciler import (
    ChangePlan,
    check_delete,
    check_get,
    check_put,
    classify_change,
    operation_context,
)
from .rotation import SHA256_HASHING_ALGORITHM, needs_rotation, plan_password_update

logger = logging.getLogger(__name__)


def _tags_payload(tags: list[str]) -> str:
    # The management API takes tags as one comma-separated string
    return ",".join(tags)


def _parse_tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [tag for tag in raw if tag]


class UserReconciler:
    """Reconciles broker users."""

    kind = ResourceKind.USER

    def __init__(self, gateway: BrokerGateway) -> None:
        self._gateway = gateway

    def create(self, desired: UserSpec) -> UserState:
        password = desired.password_value()
        if not password:
            raise ConfigurationInvalid(
                "password_wo is required to create a user",
                errors=["password_wo: field required"],
                operation="create",
                kind=self.kind.value,
                key=desired.name,
            )

        logger.debug("creating rabbitmq user", extra={"user": desired.name})
        with operation_context("create", self.kind, desired.name):
            response = self._gateway.put_user(
                desired.name,
                {"password": password, "tags": _tags_payload(desired.tags)},
            )
            check_put(response, operation="create", kind=self.kind, key=desired.name)
        return desired.to_observed()

    def read(self, prior: UserState) -> UserState | None:
        name = prior.name
        logger.debug("reading rabbitmq user", extra={"user": name})
        with operation_context("read", self.kind, name):
            response = self._gateway.get_user(name)
            if not check_get(response, kind=self.kind, key=name):
                return None

        body = response.body or {}
        return UserState(
            id=body.get("name", name),
            name=body.get("name", name),
            # Not observable on the broker; carried from the last reconcile
            password_version=prior.password_version,
            tags=_parse_tags(body.get("tags")),
        )

    def update(self, desired: UserSpec, prior: UserState) -> UserState:
        """Push changed tags and, on a version change, a new password hash.

        The broker replaces the whole user record on PUT, so the current
        hash and algorithm are fetched and resubmitted when not rotating.
        """
        name = desired.name
        if (
            needs_rotation(desired.password_version, prior.password_version)
            and not desired.password_value()
        ):
            raise ConfigurationInvalid(
                "password_wo_version changed but no password_wo was supplied",
                errors=["password_wo: required when password_wo_version changes"],
                operation="update",
                kind=self.kind.value,
                key=name,
            )

        with operation_context("update", self.kind, name):
            logger.debug("reading rabbitmq user", extra={"user": name})
            current = self._gateway.get_user(name)
            current.raise_for_rejection(operation="update", kind=self.kind.value, key=name)
            if current.not_found:
                raise NotFound(
                    "user disappeared from the broker before update",
                    operation="update",
                    kind=self.kind.value,
                    key=name,
                )
            broker_user = current.body or {}

            password = plan_password_update(
                desired_version=desired.password_version,
                observed_version=prior.password_version,
                password=desired.password_value(),
                observed_hash=broker_user.get("password_hash", ""),
                observed_algorithm=broker_user.get(
                    "hashing_algorithm", SHA256_HASHING_ALGORITHM
                ),
            )

            # Equal tag sets resubmit what the broker holds, in its order
            broker_tags = _parse_tags(broker_user.get("tags"))
            tags_changed = set(broker_tags) != set(desired.tags)
            tags = desired.tags if tags_changed else broker_tags
            settings: dict[str, Any] = {
                "password_hash": password.password_hash,
                "hashing_algorithm": password.hashing_algorithm,
                "tags": _tags_payload(tags),
            }

            logger.debug(
                "updating rabbitmq user",
                extra={
                    "user": name,
                    "rotate_password": password.rotate,
                    "tags_changed": tags_changed,
                },
            )
            response = self._gateway.put_user(name, settings)
            check_put(response, operation="update", kind=self.kind, key=name)
        return desired.to_observed()

    def delete(self, prior: UserState) -> None:
        logger.debug("deleting rabbitmq user", extra={"user": prior.name})
        with operation_context("delete", self.kind, prior.name):
            response = self._gateway.delete_user(prior.name)
            check_delete(response, kind=self.kind, key=prior.name)

    def import_state(self, token: str) -> UserState:
        if not token:
            raise MalformedIdentifier(token, "name", operation="import", kind=self.kind.value)
        return UserState(id=token, name=token)

    def classify(self, desired: UserSpec, prior: UserState) -> ChangePlan:
        return classify_change(desired, prior, desired.REPLACE_TRIGGERS)
