"""
Order Service — Saga オーケストレーター

注文・在庫 Saga の調整役(ドメインサービス)。

各コマンドは同じ手順で処理する:
  読み込み → 集約のメソッドで変更 → 保存 → イベント発行 → イベント破棄

  フロー:
  ┌─────────────────────────────────────────────────────────┐
  │  1. orders.confirm を受けて stock.reserve を発行          │
  │  2. 在庫サービスの応答                                    │
  │     ├─ stock.reserved → 注文を確定                       │
  │     └─ stock.rejected → 注文をキャンセル                 │
  │  3. 確定済みの注文をキャンセルした場合は                  │
  │     stock.compensate で引き当てを解放する                 │
  │     (補償トランザクション)                               │
  └─────────────────────────────────────────────────────────┘

保存とイベント発行は別々の書き込みになる(Outbox は使わない)。
発行に失敗した場合、保存は完了したまま EventPublishError を送出し、
イベントは集約に残る。
"""

import logging

from .aggregate import Order, Product
from .errors import OrderNotFoundError
from .publisher import DomainEventPublisher
from .repository import OrderRepository
from .value_objects import CustomerId, OrderDate, OrderId

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_DAYS = 7


class OrderSagaOrchestrator:
    """注文 Saga のオーケストレーター"""

    def __init__(self, repository: OrderRepository, publisher: DomainEventPublisher) -> None:
        self.repository = repository
        self.publisher = publisher

    # ── 作成・参照 ────────────────────────────────

    async def create_order(self, customer_id: CustomerId, products: list[Product]) -> Order:
        order_date = OrderDate.now()
        delivery_date = order_date.add_days(DEFAULT_DELIVERY_DAYS)

        order = Order.create(customer_id, order_date, delivery_date, products)
        saved = await self.repository.save(order)
        await self._emit(order)

        logger.info(
            "Order created: %s (customer=%s, products=%d)",
            saved.id, customer_id, len(saved.products),
        )
        return saved

    async def get_order(self, order_id: OrderId) -> Order | None:
        return await self.repository.find_by_id(order_id)

    async def get_orders(self, order_ids: list[OrderId] | None = None) -> list[Order]:
        if not order_ids:
            return await self.repository.find_all()
        return await self.repository.find_by_ids(order_ids)

    # ── 状態遷移 ──────────────────────────────────

    async def reserve_order(self, order_id: OrderId) -> None:
        """在庫引き当てを依頼する (Saga Step 1)。状態は PENDING のまま。"""
        order = await self._load(order_id)
        order.request_confirmation()
        await self.repository.save(order)
        await self._emit(order)
        logger.info("Stock reservation requested for order %s", order_id)

    async def confirm_order(self, order_id: OrderId) -> None:
        order = await self._load(order_id)
        order.confirm()
        await self.repository.save(order)
        await self._emit(order)
        logger.info("Order confirmed: %s", order_id)

    async def cancel_order(self, order_id: OrderId, reason: str | None = None) -> None:
        order = await self._load(order_id)
        order.cancel(reason)
        await self.repository.save(order)
        await self._emit(order)
        logger.info("Order cancelled: %s (reason=%s)", order_id, reason)

    async def ship_order(self, order_id: OrderId) -> None:
        order = await self._load(order_id)
        order.ship()
        await self.repository.save(order)
        await self._emit(order)
        logger.info("Order shipped: %s", order_id)

    async def deliver_order(self, order_id: OrderId) -> None:
        order = await self._load(order_id)
        order.deliver()
        await self.repository.save(order)
        await self._emit(order)
        logger.info("Order delivered: %s", order_id)

    # ── 内部 ──────────────────────────────────────

    async def _load(self, order_id: OrderId) -> Order:
        order = await self.repository.find_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id.value)
        return order

    async def _emit(self, order: Order) -> None:
        # 発行に成功した場合のみイベントを破棄する
        await self.publisher.publish_batch(order.domain_events)
        order.clear_domain_events()
