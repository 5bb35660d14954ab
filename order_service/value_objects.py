"""
Order Service — 値オブジェクト (Value Objects)

値オブジェクトは識別子を持たず、値そのもので等価性を判断する。
生成時に自分自身を検証し、生成後は不変(frozen)。
不正な値は InvalidValueError で拒否する。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from .errors import InvalidValueError


# ── 識別子 ───────────────────────────────────────


@dataclass(frozen=True)
class _Identifier:
    value: str

    label = "ID"

    def __post_init__(self) -> None:
        if not self.value:
            raise InvalidValueError(f"{self.label} cannot be empty")
        try:
            UUID(str(self.value))
        except ValueError:
            raise InvalidValueError(f"{self.label} must be a valid UUID") from None

    @classmethod
    def create(cls, value: str):
        return cls(value)

    @classmethod
    def generate(cls):
        return cls(str(uuid4()))

    def __str__(self) -> str:
        return self.value


class OrderId(_Identifier):
    label = "Order ID"


class CustomerId(_Identifier):
    label = "Customer ID"


class ProductId(_Identifier):
    label = "Product ID"


# ── 日付 ─────────────────────────────────────────


@dataclass(frozen=True)
class OrderDate:
    """
    エポックからのミリ秒で表す時刻。

    0 以下は不正。比較(is_after / is_before)と日数加算を持つ。
    """

    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value <= 0:
            raise InvalidValueError("Order date must be a valid timestamp")

    @classmethod
    def from_timestamp(cls, timestamp: int) -> "OrderDate":
        return cls(timestamp)

    @classmethod
    def from_datetime(cls, value: datetime) -> "OrderDate":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return cls(int(value.timestamp() * 1000))

    @classmethod
    def now(cls) -> "OrderDate":
        return cls.from_datetime(datetime.now(timezone.utc))

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.value / 1000, tz=timezone.utc)

    def is_after(self, other: "OrderDate") -> bool:
        return self.value > other.value

    def is_before(self, other: "OrderDate") -> bool:
        return self.value < other.value

    def add_days(self, days: int) -> "OrderDate":
        return OrderDate(self.value + int(timedelta(days=days).total_seconds() * 1000))


# ── 商品 ─────────────────────────────────────────


@dataclass(frozen=True)
class ProductQuantity:
    """正の整数の数量。減算結果が 0 以下になる操作は失敗する。"""

    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value <= 0:
            raise InvalidValueError("Product quantity must be a positive integer")

    @classmethod
    def create(cls, value: int) -> "ProductQuantity":
        return cls(value)

    def add(self, other: "ProductQuantity") -> "ProductQuantity":
        return ProductQuantity(self.value + other.value)

    def subtract(self, other: "ProductQuantity") -> "ProductQuantity":
        result = self.value - other.value
        if result < 0:
            raise InvalidValueError("Cannot subtract more quantity than available")
        return ProductQuantity(result)

    def is_greater_than(self, other: "ProductQuantity") -> bool:
        return self.value > other.value

    def is_less_than(self, other: "ProductQuantity") -> bool:
        return self.value < other.value


@dataclass(frozen=True)
class ProductName:
    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise InvalidValueError("Product name cannot be empty or whitespace")
        if len(self.value.strip()) < 2:
            raise InvalidValueError("Product name must be at least 2 characters long")
        if len(self.value) > 100:
            raise InvalidValueError("Product name cannot exceed 100 characters")
        # 前後の空白は保持しない
        object.__setattr__(self, "value", self.value.strip())

    @classmethod
    def create(cls, value: str) -> "ProductName":
        return cls(value)

    def contains(self, keyword: str) -> bool:
        return keyword.lower() in self.value.lower()

    def __len__(self) -> int:
        return len(self.value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ProductDescription:
    value: str = ""

    def __post_init__(self) -> None:
        if len(self.value) > 500:
            raise InvalidValueError("Product description cannot exceed 500 characters")
        object.__setattr__(self, "value", self.value.strip())

    @classmethod
    def create(cls, value: str) -> "ProductDescription":
        return cls(value)

    @classmethod
    def empty(cls) -> "ProductDescription":
        return cls("")

    @property
    def is_empty(self) -> bool:
        return len(self.value) == 0

    def contains(self, keyword: str) -> bool:
        return keyword.lower() in self.value.lower()

    def truncate(self, max_length: int) -> str:
        """max_length を超える場合は末尾を "..." に置き換えて切り詰める。"""
        if len(self.value) <= max_length:
            return self.value
        return self.value[: max(max_length - 3, 0)] + "..."

    def __len__(self) -> int:
        return len(self.value)

    def __str__(self) -> str:
        return self.value
