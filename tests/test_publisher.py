import pytest

from order_service.errors import EventPublishError
from order_service.events import OrderCancelled, OrdersPatterns, StockPatterns
from order_service.publisher import DomainEventPublisher

from tests.factories import FailingTransport, make_order


@pytest.mark.asyncio
async def test_publish_wraps_event_in_envelope(publisher, transport) -> None:
    order = make_order()
    [event] = order.domain_events

    await publisher.publish(event)

    [(topic, message)] = transport.published
    assert topic == OrdersPatterns.CREATED
    assert message["pattern"] == OrdersPatterns.CREATED
    assert message["headers"] == {"eventType": OrdersPatterns.CREATED}
    assert message["key"] == order.id.value
    assert message["payload"]["orderId"] == order.id.value
    assert message["payload"]["customerId"] == order.customer_id.value
    assert message["timestamp"].startswith(str(event.occurred_on.year))
    assert "correlationId" not in message


def test_to_message_uses_fresh_ids() -> None:
    event = OrderCancelled(order_id=make_order().id.value, reason="out of stock")
    first = DomainEventPublisher.to_message(event)
    second = DomainEventPublisher.to_message(event)
    assert first.id != second.id
    assert first.payload == {"orderId": event.order_id, "reason": "out of stock"}


@pytest.mark.asyncio
async def test_publish_batch_publishes_every_event(publisher, transport) -> None:
    order = make_order()
    order.clear_domain_events()
    order.confirm()
    order.cancel()

    await publisher.publish_batch(order.domain_events)

    assert sorted(topic for topic, _ in transport.published) == sorted(
        [OrdersPatterns.CONFIRMED, StockPatterns.COMPENSATE, OrdersPatterns.CANCELLED]
    )


@pytest.mark.asyncio
async def test_publish_batch_reports_failures_after_all_settle() -> None:
    transport = FailingTransport(StockPatterns.COMPENSATE)
    publisher = DomainEventPublisher(transport)
    order = make_order()
    order.clear_domain_events()
    order.confirm()
    order.cancel()

    with pytest.raises(EventPublishError) as exc_info:
        await publisher.publish_batch(order.domain_events)

    assert [pattern for pattern, _ in exc_info.value.failures] == [StockPatterns.COMPENSATE]
    assert exc_info.value.kind == "infrastructure"
    # 失敗しなかったイベントは発行済み
    assert {topic for topic, _ in transport.published} == {
        OrdersPatterns.CONFIRMED,
        OrdersPatterns.CANCELLED,
    }


@pytest.mark.asyncio
async def test_publish_batch_with_no_events(publisher, transport) -> None:
    await publisher.publish_batch([])
    assert transport.published == []
