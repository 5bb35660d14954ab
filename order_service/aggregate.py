"""
Order Service — 注文集約 (Order Aggregate)

集約は自分のメソッドを通してのみ状態を変更し、変更ごとに
ドメインイベントを溜める。溜まったイベントはオーケストレーターが
保存・発行に成功した後で clear_domain_events() により取り出す。

状態遷移:
    PENDING   → CONFIRMED  (在庫引き当て成功)
    PENDING   → CANCELLED
    CONFIRMED → CANCELLED  (在庫の補償を依頼する)
    CONFIRMED → SHIPPED
    SHIPPED   → DELIVERED
    CANCELLED, DELIVERED は終端
"""

from dataclasses import dataclass
from enum import Enum

from .errors import (
    InvalidStatusTransitionError,
    InvalidValueError,
    OrderAlreadyCancelledError,
    OrderAlreadyDeliveredError,
    OrderAlreadyShippedError,
)
from .events import (
    DomainEvent,
    OrderCancelled,
    OrderConfirmed,
    OrderCreated,
    OrderDelivered,
    OrderShipped,
    ProductLine,
    StockCompensationRequested,
    StockReservationRequested,
)
from .value_objects import (
    CustomerId,
    OrderDate,
    OrderId,
    ProductDescription,
    ProductId,
    ProductName,
    ProductQuantity,
)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


_ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.CANCELLED, OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.DELIVERED: frozenset(),
}

_REJECTIONS = {
    OrderStatus.CANCELLED: OrderAlreadyCancelledError,
    OrderStatus.SHIPPED: OrderAlreadyShippedError,
    OrderStatus.DELIVERED: OrderAlreadyDeliveredError,
}


@dataclass(frozen=True)
class Product:
    """注文明細 (集約内のエンティティ)。生成後は不変。"""

    id: ProductId
    quantity: ProductQuantity
    name: ProductName | None = None
    description: ProductDescription | None = None
    price: float | None = None

    @property
    def subtotal(self) -> float:
        if not self.price:
            return 0
        return self.price * self.quantity.value

    @classmethod
    def create(
        cls,
        id: ProductId,
        quantity: ProductQuantity,
        name: ProductName | None = None,
        description: ProductDescription | None = None,
        price: float | None = None,
    ) -> "Product":
        return cls(id, quantity, name, description, price)


class Order:
    """注文集約ルート"""

    def __init__(
        self,
        id: OrderId,
        customer_id: CustomerId,
        order_date: OrderDate,
        delivery_date: OrderDate,
        products: list[Product],
        status: OrderStatus = OrderStatus.PENDING,
        version: int = 0,
    ) -> None:
        self._id = id
        self._customer_id = customer_id
        self._order_date = order_date
        self._delivery_date = delivery_date
        self._products = list(products)
        self._status = status
        self._version = version
        self._domain_events: list[DomainEvent] = []

    # ── ファクトリ ────────────────────────────────

    @classmethod
    def create(
        cls,
        customer_id: CustomerId,
        order_date: OrderDate,
        delivery_date: OrderDate,
        products: list[Product],
    ) -> "Order":
        """新しい注文を作成する。新しい ID を採番し OrderCreated を溜める。"""
        if not products:
            raise InvalidValueError("Order must have at least one product")

        order = cls(OrderId.generate(), customer_id, order_date, delivery_date, products)
        order._add_domain_event(
            OrderCreated(
                order_id=order.id.value,
                customer_id=customer_id.value,
                products=order._product_lines(),
            )
        )
        return order

    @classmethod
    def from_persistence(
        cls,
        id: OrderId,
        customer_id: CustomerId,
        order_date: OrderDate,
        delivery_date: OrderDate,
        products: list[Product],
        status: OrderStatus,
        version: int,
    ) -> "Order":
        """永続化された状態から復元する。イベントは発生しない。"""
        return cls(id, customer_id, order_date, delivery_date, products, status, version)

    # ── 参照 ──────────────────────────────────────

    @property
    def id(self) -> OrderId:
        return self._id

    @property
    def customer_id(self) -> CustomerId:
        return self._customer_id

    @property
    def order_date(self) -> OrderDate:
        return self._order_date

    @property
    def delivery_date(self) -> OrderDate:
        return self._delivery_date

    @property
    def status(self) -> OrderStatus:
        return self._status

    @property
    def version(self) -> int:
        return self._version

    @property
    def products(self) -> tuple[Product, ...]:
        # 外部から集約内部のリストを変更させない
        return tuple(self._products)

    @property
    def domain_events(self) -> list[DomainEvent]:
        return list(self._domain_events)

    @property
    def price(self) -> float:
        return sum((product.subtotal for product in self._products), 0)

    # ── 状態遷移 ──────────────────────────────────

    def request_confirmation(self) -> None:
        """
        確定を依頼する。状態は変えずに在庫引き当てを依頼するイベントを溜める。
        実際の確定は在庫サービスからの stock.reserved を受けてから行う。
        """
        self._validate_transition(OrderStatus.CONFIRMED)
        self._add_domain_event(
            StockReservationRequested(order_id=self._id.value, products=self._product_lines())
        )

    def confirm(self) -> None:
        self._validate_transition(OrderStatus.CONFIRMED)
        self._status = OrderStatus.CONFIRMED
        self._add_domain_event(OrderConfirmed(order_id=self._id.value))

    def cancel(self, reason: str | None = None) -> None:
        """
        注文をキャンセルする。

        確定済み(= 在庫引き当て済み)の場合のみ、在庫の補償を
        OrderCancelled より先に依頼する。
        """
        self._validate_transition(OrderStatus.CANCELLED)

        if self._status == OrderStatus.CONFIRMED:
            self._add_domain_event(
                StockCompensationRequested(order_id=self._id.value, products=self._product_lines())
            )

        self._status = OrderStatus.CANCELLED
        self._add_domain_event(OrderCancelled(order_id=self._id.value, reason=reason))

    def ship(self) -> None:
        self._validate_transition(OrderStatus.SHIPPED)
        self._status = OrderStatus.SHIPPED
        self._add_domain_event(OrderShipped(order_id=self._id.value))

    def deliver(self) -> None:
        self._validate_transition(OrderStatus.DELIVERED)
        self._status = OrderStatus.DELIVERED
        self._add_domain_event(OrderDelivered(order_id=self._id.value))

    # ── イベント管理 ──────────────────────────────

    def clear_domain_events(self) -> list[DomainEvent]:
        """溜まったイベントを取り出して空にする。発行成功後にのみ呼ぶこと。"""
        events = self._domain_events
        self._domain_events = []
        return events

    def mark_saved(self, version: int) -> None:
        """リポジトリが保存に成功した後、新しいバージョンを記録する。"""
        self._version = version

    # ── 内部 ──────────────────────────────────────

    def _validate_transition(self, action: OrderStatus) -> None:
        if action in _ALLOWED_TRANSITIONS[self._status]:
            return
        error_class = _REJECTIONS.get(self._status, InvalidStatusTransitionError)
        raise error_class(self._id.value, self._status.value, action.value)

    def _add_domain_event(self, event: DomainEvent) -> None:
        self._domain_events.append(event)

    def _product_lines(self) -> tuple[ProductLine, ...]:
        return tuple(
            ProductLine(product_id=p.id.value, quantity=p.quantity.value)
            for p in self._products
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Order):
            return False
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return f"Order(id={self._id.value!r}, status={self._status.value!r}, version={self._version})"
