"""RabbitMQ Management API Mock for Integration Testing.

This module provides an in-memory implementation of the RabbitMQ management
HTTP API that lets the reconcilers run end to end without a broker.

Key Features:
- In-memory state for users, vhosts, permissions, topic permissions, exchanges
- Broker-like statuses (201 on create, 204 on replace, 404 on absence,
  400 on inequivalent exchange redeclaration)
- Error injection: forced status per path, transport failure
- Request log for payload assertions

Usage:
    from broker_mock import MockBroker

    broker = MockBroker()
    driver = ReconcileDriver.for_gateway(broker.gateway(), InMemoryStateSink())
    driver.create(VhostSpec(name="staging"))

    assert "staging" in broker.state.vhosts
"""

from .state import MockBrokerState, broker_check, broker_hash
from .transport import BASE_URL, MockBroker, RecordedRequest

__all__ = [
    "BASE_URL",
    "MockBroker",
    "MockBrokerState",
    "RecordedRequest",
    "broker_check",
    "broker_hash",
]
