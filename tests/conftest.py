"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for broker_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from broker_mock import MockBroker  # noqa: E402
from rabbitmq_operator.driver import ReconcileDriver  # noqa: E402
from rabbitmq_operator.gateway import BrokerGateway  # noqa: E402
from rabbitmq_operator.state import InMemoryStateSink  # noqa: E402


@pytest.fixture
def broker() -> MockBroker:
    """Fresh mock broker with the default vhost and guest user."""
    return MockBroker()


@pytest.fixture
def gateway(broker: MockBroker):
    """Gateway wired to the mock broker."""
    with broker.gateway() as gw:
        yield gw


@pytest.fixture
def sink() -> InMemoryStateSink:
    return InMemoryStateSink()


@pytest.fixture
def driver(gateway: BrokerGateway, sink: InMemoryStateSink) -> ReconcileDriver:
    return ReconcileDriver.for_gateway(gateway, sink)
