"""
Order Service — リポジトリ (Repository Port)

オーケストレーターが依存する永続化の抽象。集約単位で
読み込み・保存・削除を行う。

save は楽観的ロックを行う:
  - version == 0 の注文は新規として挿入する
  - それ以外は保存済みバージョンが一致する場合のみ更新する
  不一致なら ConcurrencyConflictError。成功すると version を +1 する。
"""

from abc import ABC, abstractmethod

from .aggregate import Order
from .errors import ConcurrencyConflictError
from .value_objects import OrderId


class OrderRepository(ABC):
    @abstractmethod
    async def find_by_id(self, order_id: OrderId) -> Order | None:
        ...

    @abstractmethod
    async def find_by_ids(self, order_ids: list[OrderId]) -> list[Order]:
        ...

    @abstractmethod
    async def find_all(self) -> list[Order]:
        ...

    @abstractmethod
    async def save(self, order: Order) -> Order:
        """集約と明細を 1 回の書き込みで保存し、保存後の集約を返す。"""
        ...

    @abstractmethod
    async def delete(self, order_id: OrderId) -> None:
        ...


class InMemoryOrderRepository(OrderRepository):
    """
    メモリ上のリポジトリ(開発・テスト用)。

    集約オブジェクトそのものではなくスナップショットを保持するため、
    読み込んだ集約を変更しても保存するまでストアには反映されない。
    """

    def __init__(self) -> None:
        self._rows: dict[str, tuple] = {}

    async def find_by_id(self, order_id: OrderId) -> Order | None:
        row = self._rows.get(order_id.value)
        return self._restore(row) if row else None

    async def find_by_ids(self, order_ids: list[OrderId]) -> list[Order]:
        wanted = {order_id.value for order_id in order_ids}
        return [self._restore(row) for key, row in self._rows.items() if key in wanted]

    async def find_all(self) -> list[Order]:
        return [self._restore(row) for row in self._rows.values()]

    async def save(self, order: Order) -> Order:
        current = self._rows.get(order.id.value)
        stored_version = current[-1] if current else 0
        if stored_version != order.version:
            raise ConcurrencyConflictError(order.id.value, order.version)

        new_version = order.version + 1
        self._rows[order.id.value] = (
            order.id,
            order.customer_id,
            order.order_date,
            order.delivery_date,
            order.products,
            order.status,
            new_version,
        )
        order.mark_saved(new_version)
        return order

    async def delete(self, order_id: OrderId) -> None:
        self._rows.pop(order_id.value, None)

    @staticmethod
    def _restore(row: tuple) -> Order:
        order_id, customer_id, order_date, delivery_date, products, status, version = row
        return Order.from_persistence(
            order_id, customer_id, order_date, delivery_date, list(products), status, version
        )
