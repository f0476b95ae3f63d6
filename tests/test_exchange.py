"""Tests for the exchange reconciler."""

from __future__ import annotations

import pytest

from broker_mock import MockBroker
from rabbitmq_operator.errors import MalformedIdentifier, RemoteRejected, ReplaceRequired
from rabbitmq_operator.exchange import ExchangeReconciler
from rabbitmq_operator.gateway import BrokerGateway
from rabbitmq_operator.models import ExchangeSpec, ExchangeState
from rabbitmq_operator.reconciler import ChangeAction


@pytest.fixture
def reconciler(broker: MockBroker, gateway: BrokerGateway) -> ExchangeReconciler:
    broker.state.put_vhost("staging", {})
    return ExchangeReconciler(gateway)


def _spec(**settings: object) -> ExchangeSpec:
    return ExchangeSpec.model_validate(
        {
            "name": "events",
            "vhost": "staging",
            "settings": {"type": "topic", "durable": True, **settings},
        }
    )


class TestExchange:
    """Tests for exchange declaration."""

    def test_create(self, broker: MockBroker, reconciler: ExchangeReconciler) -> None:
        """Test that create declares the exchange with its settings."""
        state = reconciler.create(_spec(arguments={"alternate-exchange": "ae"}))

        request = broker.requests_for("PUT", "/api/exchanges/staging/events")[0]
        assert request.body == {
            "type": "topic",
            "durable": True,
            "auto_delete": False,
            "arguments": {"alternate-exchange": "ae"},
        }
        assert state.id == "events@staging"

    def test_create_in_missing_vhost(self, reconciler: ExchangeReconciler) -> None:
        """Test that declaring into a missing vhost is a rejection."""
        with pytest.raises(RemoteRejected):
            reconciler.create(
                ExchangeSpec.model_validate(
                    {"name": "events", "vhost": "nowhere", "settings": {"type": "direct"}}
                )
            )

    def test_read_round_trip(self, reconciler: ExchangeReconciler) -> None:
        """Test that reading a created exchange shows no change."""
        desired = _spec(arguments={"x-flag": True})
        prior = reconciler.create(desired)

        observed = reconciler.read(prior)

        assert observed is not None
        assert observed.settings.arguments == {"x-flag": "true"}
        assert reconciler.classify(desired, observed).action is ChangeAction.NO_CHANGE

    def test_read_absent(self, reconciler: ExchangeReconciler) -> None:
        """Test that a missing exchange reads as absent."""
        prior = ExchangeState(id="events@staging", name="events", vhost="staging")

        assert reconciler.read(prior) is None

    def test_any_change_requires_replace(
        self, broker: MockBroker, reconciler: ExchangeReconciler
    ) -> None:
        """Test that a settings change is classified as replace and never sent."""
        prior = reconciler.create(_spec())
        desired = _spec(durable=False)
        broker.clear_requests()

        plan = reconciler.classify(desired, prior)
        assert plan.action is ChangeAction.REPLACE
        assert plan.replace_fields == ["settings"]

        with pytest.raises(ReplaceRequired):
            reconciler.update(desired, prior)

        assert broker.requests == []
        assert broker.state.exchanges[("staging", "events")]["durable"] is True

    def test_update_without_change(self, broker: MockBroker, reconciler: ExchangeReconciler) -> None:
        """Test that an update with nothing to change is a no-op."""
        prior = reconciler.create(_spec())
        broker.clear_requests()

        assert reconciler.update(_spec(), prior) == prior
        assert broker.requests == []

    def test_delete_idempotent(self, broker: MockBroker, reconciler: ExchangeReconciler) -> None:
        """Test that deleting twice succeeds."""
        prior = reconciler.create(_spec())

        reconciler.delete(prior)
        reconciler.delete(prior)

        assert ("staging", "events") not in broker.state.exchanges

    def test_import(self, reconciler: ExchangeReconciler) -> None:
        """Test that import decodes name then vhost."""
        state = reconciler.import_state("events@staging")

        assert (state.name, state.vhost, state.settings) == ("events", "staging", None)

    def test_import_then_read(self, reconciler: ExchangeReconciler) -> None:
        """Test that an imported exchange's settings are filled in by read."""
        reconciler.create(_spec())

        state = reconciler.read(reconciler.import_state("events@staging"))

        assert state is not None
        assert state.settings is not None
        assert state.settings.type == "topic"

    def test_import_malformed(self, reconciler: ExchangeReconciler) -> None:
        """Test that a one-part token is rejected."""
        with pytest.raises(MalformedIdentifier):
            reconciler.import_state("events")
