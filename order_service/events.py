"""
Order Service — イベント定義

ドメインで発生した事実(イベント)を定義する。
イベントは過去形で命名し、不変(immutable)として扱う。

7 種類のイベントは pattern を判別子(discriminator)とする
閉じたユニオン型 DomainEvent にまとめる。pattern はそのまま
メッセージングのトピック名(ルーティングキー)になる。
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── トピック名 ───────────────────────────────────


class OrdersPatterns:
    CREATE = "orders.create"
    CREATED = "orders.created"
    CONFIRM = "orders.confirm"
    CONFIRMED = "orders.confirmed"
    CANCEL = "orders.cancel"
    CANCELLED = "orders.cancelled"
    SHIP = "orders.ship"
    SHIPPED = "orders.shipped"
    DELIVER = "orders.deliver"
    DELIVERED = "orders.delivered"


class StockPatterns:
    RESERVE = "stock.reserve"
    COMPENSATE = "stock.compensate"
    RESERVED = "stock.reserved"
    REJECTED = "stock.rejected"


DLQ_SUFFIX = ".dlq"


def dlq_topic(topic: str) -> str:
    """トピック T に対応するデッドレターキュー T.dlq の名前"""
    return f"{topic}{DLQ_SUFFIX}"


# ── イベント ─────────────────────────────────────


class ProductLine(BaseModel):
    """イベントに載せる商品行 (productId, quantity)"""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    product_id: str
    quantity: int


class _OrderEvent(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    occurred_on: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    order_id: str

    @property
    def payload(self) -> dict:
        """ワイヤ上のペイロード (camelCase)"""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"event_id", "occurred_on", "pattern"},
        )


class OrderCreated(_OrderEvent):
    """注文が作成された"""
    pattern: Literal["orders.created"] = OrdersPatterns.CREATED
    customer_id: str
    products: tuple[ProductLine, ...]


class OrderConfirmed(_OrderEvent):
    """注文が確定された（在庫引き当て成功）"""
    pattern: Literal["orders.confirmed"] = OrdersPatterns.CONFIRMED


class OrderCancelled(_OrderEvent):
    """注文がキャンセルされた"""
    pattern: Literal["orders.cancelled"] = OrdersPatterns.CANCELLED
    reason: str | None = None


class OrderShipped(_OrderEvent):
    pattern: Literal["orders.shipped"] = OrdersPatterns.SHIPPED


class OrderDelivered(_OrderEvent):
    pattern: Literal["orders.delivered"] = OrdersPatterns.DELIVERED


class StockReservationRequested(_OrderEvent):
    """在庫の引き当てを在庫サービスに依頼する (Saga のステップ)"""
    pattern: Literal["stock.reserve"] = StockPatterns.RESERVE
    products: tuple[ProductLine, ...]


class StockCompensationRequested(_OrderEvent):
    """引き当て済み在庫の解放を依頼する (補償トランザクション)"""
    pattern: Literal["stock.compensate"] = StockPatterns.COMPENSATE
    products: tuple[ProductLine, ...]


DomainEvent = Annotated[
    Union[
        OrderCreated,
        OrderConfirmed,
        OrderCancelled,
        OrderShipped,
        OrderDelivered,
        StockReservationRequested,
        StockCompensationRequested,
    ],
    Field(discriminator="pattern"),
]
