"""Tests for the virtual host reconciler."""

from __future__ import annotations

import pytest

from broker_mock import MockBroker
from rabbitmq_operator.errors import (
    MalformedIdentifier,
    RemoteRejected,
    RemoteUnavailable,
    ReplaceRequired,
)
from rabbitmq_operator.gateway import BrokerGateway
from rabbitmq_operator.models import VhostSpec, VhostState
from rabbitmq_operator.reconciler import ChangeAction
from rabbitmq_operator.vhost import VhostReconciler


@pytest.fixture
def reconciler(gateway: BrokerGateway) -> VhostReconciler:
    return VhostReconciler(gateway)


class TestCreate:
    """Tests for creating vhosts."""

    def test_create(self, broker: MockBroker, reconciler: VhostReconciler) -> None:
        """Test that create sends description, tracing and tags."""
        state = reconciler.create(VhostSpec(name="staging", tags=["env"]))

        request = broker.requests_for("PUT", "/api/vhosts/staging")[0]
        assert request.body == {"description": "", "tracing": False, "tags": "env"}
        assert state.id == "staging"
        assert state.description == ""
        assert "staging" in broker.state.vhosts

    def test_create_with_queue_type(self, broker: MockBroker, reconciler: VhostReconciler) -> None:
        """Test that a declared default queue type is sent."""
        reconciler.create(VhostSpec(name="staging", default_queue_type="quorum"))

        assert broker.state.vhosts["staging"]["default_queue_type"] == "quorum"

    def test_unexpected_success_status(
        self, broker: MockBroker, reconciler: VhostReconciler
    ) -> None:
        """Test that only 201 and 204 count as a successful vhost PUT."""
        broker.inject_status("PUT", "/api/vhosts/staging", 200)

        with pytest.raises(RemoteRejected) as exc_info:
            reconciler.create(VhostSpec(name="staging"))

        assert exc_info.value.status == 200


class TestRead:
    """Tests for reading vhosts."""

    def test_read(self, reconciler: VhostReconciler) -> None:
        """Test that read reflects broker state."""
        state = reconciler.read(VhostState(id="/", name="/"))

        assert state is not None
        assert state.description == "Default virtual host"
        assert state.tracing is False

    def test_undeclared_queue_type_not_drift(self, reconciler: VhostReconciler) -> None:
        """Test that a broker default queue type does not show up as drift."""
        desired = VhostSpec(name="staging")
        prior = reconciler.create(desired)

        observed = reconciler.read(prior)

        assert observed is not None
        assert observed.default_queue_type is None
        assert reconciler.classify(desired, observed).action is ChangeAction.NO_CHANGE

    def test_read_absent(self, broker: MockBroker, reconciler: VhostReconciler) -> None:
        """Test that a vhost deleted out of band reads as absent."""
        prior = reconciler.create(VhostSpec(name="staging"))
        broker.state.delete_vhost("staging")

        assert reconciler.read(prior) is None

    def test_missing_tags_not_drift(self, broker: MockBroker, reconciler: VhostReconciler) -> None:
        """Test that a broker reply without tags reads as an empty tag list."""
        desired = VhostSpec(name="staging")
        prior = reconciler.create(desired)
        broker.inject_status(
            "GET", "/api/vhosts/staging", 200, {"name": "staging", "description": ""}
        )

        observed = reconciler.read(prior)

        assert observed is not None
        assert observed.tags == []
        assert reconciler.classify(desired, observed).action is ChangeAction.NO_CHANGE

    def test_read_transport_failure_has_context(
        self, broker: MockBroker, reconciler: VhostReconciler
    ) -> None:
        """Test that an unreachable broker is reported with the vhost name."""
        broker.inject_transport_error()

        with pytest.raises(RemoteUnavailable) as exc_info:
            reconciler.read(VhostState(id="staging", name="staging"))

        error = exc_info.value
        assert (error.operation, error.kind, error.key) == ("read", "vhost", "staging")
        assert str(error).startswith("read vhost staging: ")


class TestUpdate:
    """Tests for in-place vhost updates."""

    def test_update_description(self, broker: MockBroker, reconciler: VhostReconciler) -> None:
        """Test that description and tracing are updated in place."""
        prior = reconciler.create(VhostSpec(name="staging"))
        desired = VhostSpec(name="staging", description="Staging", tracing=True)

        assert reconciler.classify(desired, prior).action is ChangeAction.UPDATE
        state = reconciler.update(desired, prior)

        assert broker.state.vhosts["staging"]["description"] == "Staging"
        assert broker.state.vhosts["staging"]["tracing"] is True
        assert state.description == "Staging"

    def test_rename_requires_replace(self, broker: MockBroker, reconciler: VhostReconciler) -> None:
        """Test that a name change is refused in place."""
        prior = reconciler.create(VhostSpec(name="staging"))
        broker.clear_requests()

        assert reconciler.classify(VhostSpec(name="stage"), prior).action is ChangeAction.REPLACE
        with pytest.raises(ReplaceRequired) as exc_info:
            reconciler.update(VhostSpec(name="stage"), prior)

        assert exc_info.value.fields == ["name"]
        assert broker.requests == []


class TestDeleteAndImport:
    """Tests for deleting and importing vhosts."""

    def test_delete_twice(self, broker: MockBroker, reconciler: VhostReconciler) -> None:
        """Test that a second delete of the same vhost succeeds."""
        prior = reconciler.create(VhostSpec(name="staging"))

        reconciler.delete(prior)
        reconciler.delete(prior)

        assert "staging" not in broker.state.vhosts

    def test_import(self, reconciler: VhostReconciler) -> None:
        """Test that import uses the name as-is."""
        assert reconciler.import_state("/").name == "/"

    def test_import_empty(self, reconciler: VhostReconciler) -> None:
        """Test that an empty token is malformed."""
        with pytest.raises(MalformedIdentifier):
            reconciler.import_state("")
