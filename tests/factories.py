"""Builders for aggregates and command payloads used across tests."""

from uuid import uuid4

from order_service.aggregate import Order, Product
from order_service.messaging import InMemoryTransport
from order_service.value_objects import (
    CustomerId,
    OrderDate,
    ProductId,
    ProductName,
    ProductQuantity,
)


def make_product(quantity: int = 1, price: float | None = None, name: str | None = None) -> Product:
    return Product.create(
        ProductId.generate(),
        ProductQuantity.create(quantity),
        ProductName.create(name) if name else None,
        None,
        price,
    )


def make_order(*products: Product) -> Order:
    order_date = OrderDate.now()
    return Order.create(
        CustomerId.generate(),
        order_date,
        order_date.add_days(7),
        list(products) or [make_product()],
    )


def product_payload(**overrides) -> dict:
    payload = {"id": str(uuid4()), "quantity": 2, "name": "Keyboard", "price": 12.5}
    payload.update(overrides)
    return payload


def create_order_payload(**overrides) -> dict:
    payload = {"customerId": str(uuid4()), "products": [product_payload()]}
    payload.update(overrides)
    return payload


class FailingTransport(InMemoryTransport):
    """指定したトピックへの発行だけ失敗させる"""

    def __init__(self, failing_topic: str) -> None:
        super().__init__()
        self.failing_topic = failing_topic

    async def publish(self, topic, message, key=None):
        if topic == self.failing_topic:
            raise ConnectionError("broker unavailable")
        await super().publish(topic, message, key)
