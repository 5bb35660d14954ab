"""Repository contract tests, run against both the in-memory and the SQL adapter."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from order_service.aggregate import Order, OrderStatus, Product
from order_service.errors import ConcurrencyConflictError
from order_service.persistence import SqlOrderRepository, create_schema
from order_service.repository import InMemoryOrderRepository
from order_service.value_objects import (
    OrderId,
    ProductDescription,
    ProductId,
    ProductName,
    ProductQuantity,
)

from tests.factories import make_order, make_product


@pytest_asyncio.fixture(params=["memory", "sql"])
async def repo(request):
    if request.param == "memory":
        yield InMemoryOrderRepository()
        return

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await create_schema(engine)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SqlOrderRepository(async_session)
    await engine.dispose()


def _copy_of(order: Order, version: int) -> Order:
    return Order.from_persistence(
        order.id, order.customer_id, order.order_date, order.delivery_date,
        list(order.products), order.status, version,
    )


@pytest.mark.asyncio
async def test_save_and_find(repo) -> None:
    product = Product.create(
        ProductId.generate(),
        ProductQuantity.create(3),
        ProductName.create("Desk Lamp"),
        ProductDescription.create("Warm white LED"),
        19.99,
    )
    order = make_order(product, make_product(quantity=1))

    saved = await repo.save(order)
    assert saved.version == 1

    loaded = await repo.find_by_id(order.id)
    assert loaded == order
    assert loaded.status is OrderStatus.PENDING
    assert loaded.version == 1
    assert loaded.customer_id == order.customer_id
    assert loaded.order_date == order.order_date
    assert loaded.delivery_date == order.delivery_date
    assert loaded.products == order.products
    assert loaded.domain_events == []


@pytest.mark.asyncio
async def test_find_missing_returns_none(repo) -> None:
    assert await repo.find_by_id(OrderId.generate()) is None
    assert await repo.find_by_ids([]) == []


@pytest.mark.asyncio
async def test_find_by_ids_and_all(repo) -> None:
    first, second, third = make_order(), make_order(), make_order()
    for order in (first, second, third):
        await repo.save(order)

    found = await repo.find_by_ids([first.id, third.id, OrderId.generate()])
    assert {order.id for order in found} == {first.id, third.id}
    assert {order.id for order in await repo.find_all()} == {first.id, second.id, third.id}


@pytest.mark.asyncio
async def test_update_bumps_version(repo) -> None:
    order = make_order()
    await repo.save(order)

    loaded = await repo.find_by_id(order.id)
    loaded.confirm()
    await repo.save(loaded)

    stored = await repo.find_by_id(order.id)
    assert stored.status is OrderStatus.CONFIRMED
    assert stored.version == 2


@pytest.mark.asyncio
async def test_stale_write_is_rejected(repo) -> None:
    order = make_order()
    await repo.save(order)

    first = await repo.find_by_id(order.id)
    second = await repo.find_by_id(order.id)
    first.confirm()
    await repo.save(first)

    second.cancel()
    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await repo.save(second)

    assert exc_info.value.expected_version == 1
    assert (await repo.find_by_id(order.id)).status is OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_duplicate_insert_is_rejected(repo) -> None:
    order = make_order()
    await repo.save(order)

    with pytest.raises(ConcurrencyConflictError):
        await repo.save(_copy_of(order, version=0))


@pytest.mark.asyncio
async def test_loaded_aggregate_is_detached(repo) -> None:
    order = make_order()
    await repo.save(order)

    loaded = await repo.find_by_id(order.id)
    loaded.cancel()

    assert (await repo.find_by_id(order.id)).status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_delete(repo) -> None:
    order = make_order()
    await repo.save(order)

    await repo.delete(order.id)

    assert await repo.find_by_id(order.id) is None
