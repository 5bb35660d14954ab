"""
Order Service — SQL リポジトリ

OrderRepository の SQLAlchemy (async) 実装。
注文は orders テーブル、明細は order_products テーブルに保存する。

version 列による楽観的ロック:
  UPDATE ... WHERE id = :id AND version = :expected が 0 行なら
  別の書き込みが先にコミットされている → ConcurrencyConflictError。
"""

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from .aggregate import Order, OrderStatus, Product
from .errors import ConcurrencyConflictError
from .repository import OrderRepository
from .value_objects import (
    CustomerId,
    OrderDate,
    OrderId,
    ProductDescription,
    ProductId,
    ProductName,
    ProductQuantity,
)

# ローカル実行・テスト用の最小スキーマ (マイグレーションは扱わない)
SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS orders (
        id            VARCHAR(36) PRIMARY KEY,
        customer_id   VARCHAR(36) NOT NULL,
        order_date    BIGINT NOT NULL,
        delivery_date BIGINT NOT NULL,
        status        VARCHAR(16) NOT NULL,
        version       INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_products (
        order_id    VARCHAR(36) NOT NULL REFERENCES orders (id) ON DELETE CASCADE,
        line_no     INTEGER NOT NULL,
        product_id  VARCHAR(36) NOT NULL,
        quantity    INTEGER NOT NULL,
        name        VARCHAR(100),
        description VARCHAR(500),
        price       DOUBLE PRECISION,
        PRIMARY KEY (order_id, line_no)
    )
    """,
)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(text(statement))


class SqlOrderRepository(OrderRepository):
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # ── 読み込み ──────────────────────────────────

    async def find_by_id(self, order_id: OrderId) -> Order | None:
        orders = await self._select(
            text("SELECT * FROM orders WHERE id = :id"),
            text("SELECT * FROM order_products WHERE order_id = :id ORDER BY line_no ASC"),
            {"id": order_id.value},
        )
        return orders[0] if orders else None

    async def find_by_ids(self, order_ids: list[OrderId]) -> list[Order]:
        if not order_ids:
            return []
        return await self._select(
            text("SELECT * FROM orders WHERE id IN :ids ORDER BY order_date DESC")
            .bindparams(bindparam("ids", expanding=True)),
            text("SELECT * FROM order_products WHERE order_id IN :ids ORDER BY line_no ASC")
            .bindparams(bindparam("ids", expanding=True)),
            {"ids": [order_id.value for order_id in order_ids]},
        )

    async def find_all(self) -> list[Order]:
        return await self._select(
            text("SELECT * FROM orders ORDER BY order_date DESC"),
            text("SELECT * FROM order_products ORDER BY line_no ASC"),
            {},
        )

    async def _select(self, orders_query, products_query, params: dict) -> list[Order]:
        async with self._session_factory() as session:
            order_rows = (await session.execute(orders_query, params)).fetchall()
            if not order_rows:
                return []
            product_rows = (await session.execute(products_query, params)).fetchall()

        products: dict[str, list[Product]] = {}
        for row in product_rows:
            products.setdefault(row.order_id, []).append(self._product_from_row(row))

        return [
            Order.from_persistence(
                OrderId.create(row.id),
                CustomerId.create(row.customer_id),
                OrderDate.from_timestamp(int(row.order_date)),
                OrderDate.from_timestamp(int(row.delivery_date)),
                products.get(row.id, []),
                OrderStatus(row.status),
                row.version,
            )
            for row in order_rows
        ]

    @staticmethod
    def _product_from_row(row) -> Product:
        return Product.create(
            ProductId.create(row.product_id),
            ProductQuantity.create(row.quantity),
            ProductName.create(row.name) if row.name is not None else None,
            ProductDescription.create(row.description) if row.description is not None else None,
            float(row.price) if row.price is not None else None,
        )

    # ── 書き込み ──────────────────────────────────

    async def save(self, order: Order) -> Order:
        expected_version = order.version
        new_version = expected_version + 1
        params = {
            "id": order.id.value,
            "customer_id": order.customer_id.value,
            "order_date": order.order_date.value,
            "delivery_date": order.delivery_date.value,
            "status": order.status.value,
            "version": new_version,
            "expected_version": expected_version,
        }

        async with self._session_factory() as session:
            if expected_version == 0:
                try:
                    await self._insert(session, order, params)
                except IntegrityError:
                    await session.rollback()
                    raise ConcurrencyConflictError(order.id.value, expected_version) from None
            else:
                # 明細は作成後に変わらないため、更新は注文行のみ
                result = await session.execute(
                    text("""
                        UPDATE orders
                        SET customer_id = :customer_id,
                            order_date = :order_date,
                            delivery_date = :delivery_date,
                            status = :status,
                            version = :version
                        WHERE id = :id AND version = :expected_version
                    """),
                    params,
                )
                if result.rowcount != 1:
                    await session.rollback()
                    raise ConcurrencyConflictError(order.id.value, expected_version)

            await session.commit()

        order.mark_saved(new_version)
        return order

    async def _insert(self, session: AsyncSession, order: Order, params: dict) -> None:
        await session.execute(
            text("""
                INSERT INTO orders
                    (id, customer_id, order_date, delivery_date, status, version)
                VALUES
                    (:id, :customer_id, :order_date, :delivery_date, :status, :version)
            """),
            {key: value for key, value in params.items() if key != "expected_version"},
        )
        await session.execute(
            text("""
                INSERT INTO order_products
                    (order_id, line_no, product_id, quantity, name, description, price)
                VALUES
                    (:order_id, :line_no, :product_id, :quantity, :name, :description, :price)
            """),
            [
                {
                    "order_id": order.id.value,
                    "line_no": line_no,
                    "product_id": product.id.value,
                    "quantity": product.quantity.value,
                    "name": product.name.value if product.name is not None else None,
                    "description": product.description.value if product.description is not None else None,
                    "price": product.price,
                }
                for line_no, product in enumerate(order.products)
            ],
        )

    async def delete(self, order_id: OrderId) -> None:
        async with self._session_factory() as session:
            await session.execute(
                text("DELETE FROM order_products WHERE order_id = :id"),
                {"id": order_id.value},
            )
            await session.execute(
                text("DELETE FROM orders WHERE id = :id"),
                {"id": order_id.value},
            )
            await session.commit()
