"""
Order Service — コマンド / レスポンスのスキーマ

メッセージ・HTTP リクエストのペイロードを pydantic で検証する。
ワイヤ上は camelCase(customerId など)、Python 側は snake_case。
"""

from typing import Annotated
from uuid import UUID

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    StrictInt,
)
from pydantic.alias_generators import to_camel

from .aggregate import Order, Product
from .value_objects import (
    CustomerId,
    OrderId,
    ProductDescription,
    ProductId,
    ProductName,
    ProductQuantity,
)


def _check_uuid(value: str) -> str:
    try:
        UUID(value)
    except ValueError:
        raise ValueError("must be a UUID") from None
    return value


UuidStr = Annotated[str, AfterValidator(_check_uuid)]


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── コマンド ─────────────────────────────────────


class ProductPayload(_Schema):
    id: UuidStr
    quantity: StrictInt = Field(ge=1)
    name: str | None = None
    description: str | None = None
    price: float | None = Field(default=None, ge=0, allow_inf_nan=False)

    def to_product(self) -> Product:
        return Product.create(
            ProductId.create(self.id),
            ProductQuantity.create(self.quantity),
            ProductName.create(self.name) if self.name is not None else None,
            ProductDescription.create(self.description) if self.description is not None else None,
            self.price,
        )


class CreateOrderCommand(_Schema):
    """
    注文作成コマンド

    orderDate / deliveryDate は互換性のために受け付けるだけで、
    日付はオーケストレーターが決める。
    """

    customer_id: UuidStr
    order_date: PositiveInt | None = None
    delivery_date: PositiveInt | None = None
    products: list[ProductPayload] = Field(min_length=1)

    def to_customer_id(self) -> CustomerId:
        return CustomerId.create(self.customer_id)

    def to_products(self) -> list[Product]:
        return [product.to_product() for product in self.products]


class GetOrderCommand(_Schema):
    id: UuidStr

    def to_order_id(self) -> OrderId:
        return OrderId.create(self.id)


class GetOrdersCommand(_Schema):
    ids: list[UuidStr] | None = None

    def to_order_ids(self) -> list[OrderId]:
        return [OrderId.create(order_id) for order_id in self.ids or []]


class _OrderCommand(_Schema):
    # 在庫サービスの応答は orderId で注文を指す
    id: UuidStr = Field(validation_alias=AliasChoices("id", "orderId"))

    def to_order_id(self) -> OrderId:
        return OrderId.create(self.id)


class ConfirmOrderCommand(_OrderCommand):
    pass


class CancelOrderCommand(_OrderCommand):
    reason: str | None = None


class ShipOrderCommand(_OrderCommand):
    pass


class DeliverOrderCommand(_OrderCommand):
    pass


# ── レスポンス ───────────────────────────────────


class ProductResponse(_Schema):
    id: str
    quantity: int
    name: str | None = None
    description: str | None = None
    price: float | None = None


class OrderResponse(_Schema):
    id: str
    customer_id: str
    status: str
    order_date: int
    delivery_date: int
    products: list[ProductResponse]
    price: float

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id.value,
            customer_id=order.customer_id.value,
            status=order.status.value,
            order_date=order.order_date.value,
            delivery_date=order.delivery_date.value,
            products=[
                ProductResponse(
                    id=product.id.value,
                    quantity=product.quantity.value,
                    name=product.name.value if product.name is not None else None,
                    description=(
                        product.description.value if product.description is not None else None
                    ),
                    price=product.price,
                )
                for product in order.products
            ],
            price=order.price,
        )
