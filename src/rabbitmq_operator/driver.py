"""Drives reconciler operations against a state sink.

The driver is the seam between the reconcilers, which take their full
input as arguments and return their full output, and the state sink, which
remembers observed state between runs. It handles one object at a time:

- create / update / delete record or drop the result in the sink
- refresh re-reads an object and drops it if the broker no longer has it
- import_ decodes a token, reads the object and records it only if present
- converge picks no-op, in-place update, or delete-then-create for one
  declaration, using the kind's replace triggers
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import NotFound
from .exchange import ExchangeReconciler
from .gateway import BrokerGateway
from .models import OBSERVED_MODELS, DesiredObject, ObservedObject, ResourceKind
from .permissions import PermissionsReconciler
from .reconciler import ChangeAction, ResourceReconciler
from .state import StateSink
from .topic_permissions import TopicPermissionsReconciler
from .user import UserReconciler
from .vhost import VhostReconciler

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """What a driver call did to one object."""

    CREATED = "created"
    UPDATED = "updated"
    REPLACED = "replaced"
    UNCHANGED = "unchanged"
    REFRESHED = "refreshed"
    DELETED = "deleted"
    ABSENT = "absent"
    IMPORTED = "imported"


@dataclass
class DriverResult:
    """Result of one driver call."""

    kind: ResourceKind
    identifier: str
    outcome: Outcome
    state: ObservedObject | None = None
    changed_fields: list[str] | None = None


def build_reconcilers(gateway: BrokerGateway) -> dict[ResourceKind, ResourceReconciler[Any, Any]]:
    """Create one reconciler per kind sharing a gateway."""
    return {
        ResourceKind.USER: UserReconciler(gateway),
        ResourceKind.VHOST: VhostReconciler(gateway),
        ResourceKind.PERMISSIONS: PermissionsReconciler(gateway),
        ResourceKind.TOPIC_PERMISSIONS: TopicPermissionsReconciler(gateway),
        ResourceKind.EXCHANGE: ExchangeReconciler(gateway),
    }


class ReconcileDriver:
    """Runs reconciler operations and keeps the state sink in step."""

    def __init__(
        self,
        reconcilers: dict[ResourceKind, ResourceReconciler[Any, Any]],
        sink: StateSink,
    ) -> None:
        self._reconcilers = reconcilers
        self._sink = sink

    @classmethod
    def for_gateway(cls, gateway: BrokerGateway, sink: StateSink) -> ReconcileDriver:
        return cls(build_reconcilers(gateway), sink)

    @property
    def sink(self) -> StateSink:
        return self._sink

    def reconciler(self, kind: ResourceKind) -> ResourceReconciler[Any, Any]:
        return self._reconcilers[kind]

    def tracked(self, kind: ResourceKind, identifier: str) -> ObservedObject | None:
        """Load the observed state of a tracked object, if any."""
        attributes = self._sink.get(kind, identifier)
        if attributes is None:
            return None
        return OBSERVED_MODELS[kind].model_validate(attributes)

    def _record(self, state: ObservedObject) -> None:
        self._sink.put(state.KIND, state.id, state.to_record())

    def create(self, desired: DesiredObject) -> DriverResult:
        state = self.reconciler(desired.KIND).create(desired)
        self._record(state)
        logger.info(
            "Created object",
            extra={"kind": desired.KIND.value, "identifier": state.id},
        )
        return DriverResult(desired.KIND, state.id, Outcome.CREATED, state)

    def refresh(self, kind: ResourceKind, identifier: str) -> DriverResult:
        """Re-read a tracked object. Absence drops it from the sink."""
        prior = self.tracked(kind, identifier)
        if prior is None:
            return DriverResult(kind, identifier, Outcome.ABSENT)

        observed = self.reconciler(kind).read(prior)
        if observed is None:
            self._sink.remove(kind, identifier)
            return DriverResult(kind, identifier, Outcome.ABSENT)

        self._record(observed)
        return DriverResult(kind, observed.id, Outcome.REFRESHED, observed)

    def refresh_all(self) -> list[DriverResult]:
        return [self.refresh(kind, identifier) for kind, identifier, _ in self._sink.items()]

    def update(self, desired: DesiredObject) -> DriverResult:
        """Apply an in-place update to a tracked object.

        Raises:
            NotFound: If the object is not tracked.
            ReplaceRequired: If the change touches a replace-only field.
        """
        identifier = desired.identifier
        prior = self.tracked(desired.KIND, identifier)
        if prior is None:
            raise NotFound(
                "object is not tracked",
                operation="update",
                kind=desired.KIND.value,
                key=identifier,
            )
        state = self.reconciler(desired.KIND).update(desired, prior)
        self._record(state)
        return DriverResult(desired.KIND, state.id, Outcome.UPDATED, state)

    def delete(self, kind: ResourceKind, identifier: str) -> DriverResult:
        """Delete an object, tracked or not, and stop tracking it.

        Untracked objects are addressed by decoding the identifier as an
        import token.
        """
        reconciler = self.reconciler(kind)
        prior = self.tracked(kind, identifier) or reconciler.import_state(identifier)
        reconciler.delete(prior)
        self._sink.remove(kind, identifier)
        logger.info("Deleted object", extra={"kind": kind.value, "identifier": identifier})
        return DriverResult(kind, identifier, Outcome.DELETED)

    def import_(self, kind: ResourceKind, token: str) -> DriverResult:
        """Start tracking an existing broker object.

        Raises:
            MalformedIdentifier: If the token does not match the kind's format.
            NotFound: If the broker has no such object. Nothing is recorded.
        """
        reconciler = self.reconciler(kind)
        seed = reconciler.import_state(token)
        observed = reconciler.read(seed)
        if observed is None:
            raise NotFound(
                "cannot import an object that does not exist",
                operation="import",
                kind=kind.value,
                key=token,
            )
        self._record(observed)
        logger.info("Imported object", extra={"kind": kind.value, "identifier": observed.id})
        return DriverResult(kind, observed.id, Outcome.IMPORTED, observed)

    def converge(
        self, desired: DesiredObject, previous_identifier: str | None = None
    ) -> DriverResult:
        """Bring one declared object in line with the broker.

        Args:
            desired: Validated declaration.
            previous_identifier: Identifier the object was tracked under
                before its key fields changed. Defaults to the declaration's
                own identifier.
        """
        kind = desired.KIND
        identifier = desired.identifier
        tracked_as = previous_identifier or identifier
        reconciler = self.reconciler(kind)

        prior = self.tracked(kind, tracked_as)
        if prior is not None:
            prior = reconciler.read(prior)
            if prior is None:
                self._sink.remove(kind, tracked_as)

        if prior is None:
            return self.create(desired)

        plan = reconciler.classify(desired, prior)
        extra = {
            "kind": kind.value,
            "identifier": identifier,
            "action": plan.action.value,
            "changed_fields": plan.changed_fields,
        }

        if plan.action is ChangeAction.NO_CHANGE:
            self._record(prior)
            return DriverResult(kind, identifier, Outcome.UNCHANGED, prior, [])

        if plan.action is ChangeAction.UPDATE:
            logger.info("Updating object in place", extra=extra)
            state = reconciler.update(desired, prior)
            self._record(state)
            return DriverResult(kind, state.id, Outcome.UPDATED, state, plan.changed_fields)

        logger.info("Replacing object", extra=extra)
        reconciler.delete(prior)
        self._sink.remove(kind, prior.id)
        state = reconciler.create(desired)
        self._record(state)
        return DriverResult(kind, state.id, Outcome.REPLACED, state, plan.changed_fields)
