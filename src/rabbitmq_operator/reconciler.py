"""Reconciliation contract shared by every broker object kind.

Each kind implements the same five operations:

    create(desired)          -> observed     PUT, store normalized desired state
    read(prior)              -> observed|None GET, None means absent on broker
    update(desired, prior)   -> observed     PUT merged attributes
    delete(prior)            -> None         DELETE, 404 counts as success
    import_state(token)      -> observed     decode key fields, no broker call

plus classify(desired, prior), which tells the caller whether a change can
be applied in place or needs destroy-then-create.

State machine per object:

    Undeclared --create--> Present --update*--> Present --delete--> Undeclared
    Present --read: not found--> Undeclared   (broker-side deletion)

Implementations are independent classes sharing the helpers below; they
hold no state beyond the injected gateway, so one instance can serve
concurrent calls for different objects.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeVar

from .errors import ReconcileError, RemoteRejected, ReplaceRequired
from .gateway import GatewayResponse
from .models import DesiredObject, ObservedObject, ResourceKind

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=DesiredObject)
S = TypeVar("S", bound=ObservedObject)


class ChangeAction(str, Enum):
    """How a declared change must be applied."""

    NO_CHANGE = "NoChange"
    UPDATE = "Update"
    REPLACE = "Replace"


@dataclass
class ChangePlan:
    """Outcome of comparing a declaration against observed state."""

    action: ChangeAction
    changed_fields: list[str] = field(default_factory=list)
    replace_fields: list[str] = field(default_factory=list)


class ResourceReconciler(Protocol[D, S]):
    """Operations every object kind supports."""

    kind: ResourceKind

    def create(self, desired: D) -> S: ...

    def read(self, prior: S) -> S | None: ...

    def update(self, desired: D, prior: S) -> S: ...

    def delete(self, prior: S) -> None: ...

    def import_state(self, token: str) -> S: ...

    def classify(self, desired: D, prior: S) -> ChangePlan: ...


@contextmanager
def operation_context(operation: str, kind: ResourceKind, key: str) -> Iterator[None]:
    """Stamp errors raised inside the block with operation, kind and key.

    Context already set closer to the failure is kept.
    """
    try:
        yield
    except ReconcileError as e:
        e.with_context(operation=operation, kind=kind.value, key=key)
        raise


def classify_change(
    desired: DesiredObject,
    prior: ObservedObject,
    replace_triggers: Iterable[str],
) -> ChangePlan:
    """Compare declared attributes with observed ones.

    Fields are compared by deep equality. Write-only fields never take part.

    Args:
        desired: Validated declaration.
        prior: Last observed state.
        replace_triggers: Fields whose change forces destroy-then-create.

    Returns:
        ChangePlan naming every changed field and the replace-only subset.
    """
    wanted = desired.comparable()
    observed = prior.comparable()
    triggers = set(replace_triggers)

    changed = [name for name, value in wanted.items() if observed.get(name) != value]
    replace = [name for name in changed if name in triggers]

    if replace:
        action = ChangeAction.REPLACE
    elif changed:
        action = ChangeAction.UPDATE
    else:
        action = ChangeAction.NO_CHANGE
    return ChangePlan(action=action, changed_fields=changed, replace_fields=replace)


def refuse_replace_only(
    desired: DesiredObject,
    prior: ObservedObject,
    replace_triggers: Iterable[str],
    *,
    key: str,
) -> None:
    """Raise ReplaceRequired if an update would touch a replace-only field."""
    plan = classify_change(desired, prior, replace_triggers)
    if plan.action is ChangeAction.REPLACE:
        raise ReplaceRequired(
            plan.replace_fields,
            operation="update",
            kind=desired.KIND.value,
            key=key,
        )


def check_put(
    response: GatewayResponse,
    *,
    operation: str,
    kind: ResourceKind,
    key: str,
    accepted: Iterable[int] | None = None,
) -> None:
    """Classify a PUT response.

    Any status >= 400, including 404, is a rejection. When `accepted` is
    given, only those statuses count as success.
    """
    context: dict[str, Any] = {"operation": operation, "kind": kind.value, "key": key}
    if response.status >= 400:
        raise RemoteRejected(response.status, response.body, **context)
    if accepted is not None and response.status not in set(accepted):
        raise RemoteRejected(response.status, response.body, **context)


def check_get(response: GatewayResponse, *, kind: ResourceKind, key: str) -> bool:
    """Classify a GET response.

    Returns:
        False if the object is absent (404), True if the body can be parsed.

    Raises:
        RemoteRejected: For any other error status.
    """
    if response.not_found:
        logger.warning(
            f"rabbitmq {kind.value} not found, removing from state",
            extra={"kind": kind.value, "key": key},
        )
        return False
    response.raise_for_rejection(operation="read", kind=kind.value, key=key)
    return True


def check_delete(response: GatewayResponse, *, kind: ResourceKind, key: str) -> None:
    """Classify a DELETE response; 404 means already gone."""
    if response.not_found:
        logger.debug(
            f"rabbitmq {kind.value} already absent",
            extra={"kind": kind.value, "key": key},
        )
        return
    response.raise_for_rejection(operation="delete", kind=kind.value, key=key)
