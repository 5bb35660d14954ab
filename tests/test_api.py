import asyncio
import time
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from order_service.config import Settings
from order_service.events import OrdersPatterns, StockPatterns
from order_service.main import create_app
from order_service.messaging import InMemoryTransport
from order_service.repository import InMemoryOrderRepository

from tests.factories import create_order_payload, product_payload


class SlowRepository(InMemoryOrderRepository):
    async def find_by_id(self, order_id):
        await asyncio.sleep(0.3)
        return await super().find_by_id(order_id)


class BrokenRepository(InMemoryOrderRepository):
    async def find_all(self):
        raise RuntimeError("connection reset")


def _client(repository=None, transport=None, **settings) -> TestClient:
    app = create_app(
        Settings(messaging_provider="memory", **settings),
        repository=repository or InMemoryOrderRepository(),
        transport=transport or InMemoryTransport(),
    )
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def client(transport):
    with _client(transport=transport) as client:
        yield client


def _create(client, **overrides) -> dict:
    response = client.post("/orders", json=create_order_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "order-service"}


def test_create_and_get_order(client, transport) -> None:
    products = [product_payload(quantity=2, price=10), product_payload(quantity=1, price=5)]
    created = _create(client, products=products)

    assert created["status"] == "pending"
    assert created["price"] == 25
    assert created["deliveryDate"] > created["orderDate"]
    assert [p["id"] for p in created["products"]] == [p["id"] for p in products]
    assert transport.published_to(OrdersPatterns.CREATED)

    fetched = client.get(f"/orders/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == created


def test_list_orders(client) -> None:
    first, second = _create(client), _create(client)

    everything = client.get("/orders").json()
    assert {order["id"] for order in everything} == {first["id"], second["id"]}

    filtered = client.get("/orders", params={"ids": [second["id"]]}).json()
    assert [order["id"] for order in filtered] == [second["id"]]


def test_lifecycle_commands(client, transport) -> None:
    order_id = _create(client)["id"]

    assert client.patch(f"/orders/{order_id}/confirm").status_code == 204
    assert transport.published_to(StockPatterns.RESERVE)
    assert client.get(f"/orders/{order_id}").json()["status"] == "pending"

    # 在庫サービスの応答はバックグラウンドのコンシューマーが処理する
    client.portal.call(transport.publish, StockPatterns.RESERVED, {"orderId": order_id})
    for _ in range(50):
        if client.get(f"/orders/{order_id}").json()["status"] == "confirmed":
            break
        time.sleep(0.02)
    assert client.get(f"/orders/{order_id}").json()["status"] == "confirmed"

    assert client.patch(f"/orders/{order_id}/ship").status_code == 204
    assert client.patch(f"/orders/{order_id}/deliver").status_code == 204
    assert client.get(f"/orders/{order_id}").json()["status"] == "delivered"


def test_cancel_with_reason(client, transport) -> None:
    order_id = _create(client)["id"]

    response = client.patch(f"/orders/{order_id}/cancel", json={"reason": "duplicate"})

    assert response.status_code == 204
    [cancelled] = transport.published_to(OrdersPatterns.CANCELLED)
    assert cancelled["payload"]["reason"] == "duplicate"


def test_cancel_without_body(client) -> None:
    order_id = _create(client)["id"]
    assert client.patch(f"/orders/{order_id}/cancel").status_code == 204


def test_not_found(client) -> None:
    missing = str(uuid4())

    response = client.get(f"/orders/{missing}")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"]["exception"] == "OrderNotFoundError"
    assert body["error"]["message"] == f"Order with ID {missing} not found"
    assert body["error"]["path"] == f"/orders/{missing}"
    assert body["error"]["method"] == "GET"
    assert client.patch(f"/orders/{missing}/ship").status_code == 404


def test_invalid_transition_is_bad_request(client) -> None:
    order_id = _create(client)["id"]

    response = client.patch(f"/orders/{order_id}/deliver")

    assert response.status_code == 400
    assert response.json()["error"]["exception"] == "InvalidStatusTransitionError"


def test_already_cancelled(client) -> None:
    order_id = _create(client)["id"]
    client.patch(f"/orders/{order_id}/cancel")

    response = client.patch(f"/orders/{order_id}/cancel")

    assert response.status_code == 400
    assert "already been cancelled" in response.json()["error"]["message"]


@pytest.mark.parametrize(
    "payload",
    [
        {"products": [product_payload()]},
        create_order_payload(products=[]),
        create_order_payload(customerId="nope"),
        create_order_payload(products=[product_payload(quantity=0)]),
    ],
)
def test_request_validation_is_bad_request(client, payload) -> None:
    response = client.post("/orders", json=payload)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["exception"] == "ValidationFailedError"
    assert error["cause"]


def test_value_object_rule_is_bad_request(client) -> None:
    response = client.post(
        "/orders", json=create_order_payload(products=[product_payload(name="X")])
    )

    assert response.status_code == 400
    assert response.json()["error"]["exception"] == "InvalidValueError"


def test_invalid_path_id_is_bad_request(client) -> None:
    response = client.get("/orders/not-a-uuid")

    assert response.status_code == 400
    assert response.json()["error"]["exception"] == "ValidationFailedError"


def test_deadline_exceeded() -> None:
    with _client(repository=SlowRepository()) as client:
        response = client.get(
            f"/orders/{uuid4()}", headers={"X-Request-Timeout": "0.05"}
        )

    assert response.status_code == 408
    assert response.json()["error"]["exception"] == "RequestTimeoutError"


def test_unexpected_error_is_internal() -> None:
    with _client(repository=BrokenRepository()) as client:
        response = client.get("/orders")

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["exception"] == "RuntimeError"
    assert error["message"] == "An unexpected error occurred"
