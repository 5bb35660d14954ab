"""Shared fixtures for order service tests."""

import pytest

from order_service.messaging import InMemoryTransport
from order_service.orchestrator import OrderSagaOrchestrator
from order_service.publisher import DomainEventPublisher
from order_service.repository import InMemoryOrderRepository


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def publisher(transport) -> DomainEventPublisher:
    return DomainEventPublisher(transport)


@pytest.fixture
def orchestrator(repository, publisher) -> OrderSagaOrchestrator:
    return OrderSagaOrchestrator(repository, publisher)
