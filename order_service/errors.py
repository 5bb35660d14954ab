"""
Order Service — ドメインエラー

すべてのエラーは DomainError を継承し、安定した kind と
HTTP / gRPC のステータスを持つ。ステータスへの変換は境界
(HTTP ハンドラ・RPC フォールト)でのみ行う。
"""

from http import HTTPStatus
from typing import Any

import grpc


class DomainError(Exception):
    """ドメインエラーの基底クラス"""

    kind: str = "internal"
    http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    rpc_status: grpc.StatusCode = grpc.StatusCode.INTERNAL

    def __init__(self, message: str, cause: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


# ── 入力検証 ─────────────────────────────────────


class ValidationFailedError(DomainError):
    """コマンドのスキーマ検証に失敗した"""

    kind = "validation"
    http_status = HTTPStatus.BAD_REQUEST
    rpc_status = grpc.StatusCode.INVALID_ARGUMENT

    def __init__(self, errors: list[dict]) -> None:
        super().__init__("Validation failed", cause=errors)

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationFailedError":
        """pydantic の ValidationError を {property, value, constraints} の一覧に変換する。"""
        errors = []
        for error in exc.errors():
            errors.append({
                "property": ".".join(str(part) for part in error["loc"]),
                "value": error.get("input", "undefined"),
                "constraints": [error["msg"]],
            })
        return cls(errors)


class TransformationFailedError(DomainError):
    """メッセージをデシリアライズできなかった"""

    kind = "validation"
    http_status = HTTPStatus.BAD_REQUEST
    rpc_status = grpc.StatusCode.INVALID_ARGUMENT

    def __init__(self, error: Exception) -> None:
        super().__init__("Transformation failed", cause=str(error))


class InvalidValueError(DomainError):
    """値オブジェクトの不変条件違反"""

    kind = "validation"
    http_status = HTTPStatus.BAD_REQUEST
    rpc_status = grpc.StatusCode.INVALID_ARGUMENT


# ── 集約の存在・状態遷移 ─────────────────────────


class OrderNotFoundError(DomainError):
    kind = "not_found"
    http_status = HTTPStatus.NOT_FOUND
    rpc_status = grpc.StatusCode.NOT_FOUND

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order with ID {order_id} not found")
        self.order_id = order_id


class InvalidStatusTransitionError(DomainError):
    """
    許可されていない状態遷移。

    order_id・現在の状態・要求されたアクションを保持する。
    """

    kind = "invalid_transition"
    http_status = HTTPStatus.BAD_REQUEST
    rpc_status = grpc.StatusCode.INVALID_ARGUMENT

    def __init__(self, order_id: str, current_status: str, action: str) -> None:
        super().__init__(self.describe(order_id, current_status, action))
        self.order_id = order_id
        self.current_status = current_status
        self.action = action

    @staticmethod
    def describe(order_id: str, current_status: str, action: str) -> str:
        return (
            f"Order with id {order_id} cannot be {action} "
            f"because it is in {current_status} status"
        )


class OrderAlreadyCancelledError(InvalidStatusTransitionError):
    @staticmethod
    def describe(order_id: str, current_status: str, action: str) -> str:
        return (
            f"Order with id {order_id} cannot be {action} "
            "because it has already been cancelled"
        )


class OrderAlreadyShippedError(InvalidStatusTransitionError):
    @staticmethod
    def describe(order_id: str, current_status: str, action: str) -> str:
        return (
            f"Order with id {order_id} cannot be {action} "
            "because it has already been shipped"
        )


class OrderAlreadyDeliveredError(InvalidStatusTransitionError):
    @staticmethod
    def describe(order_id: str, current_status: str, action: str) -> str:
        return (
            f"Order with id {order_id} cannot be {action} "
            "because it has already been delivered"
        )


# ── インフラ起因 ─────────────────────────────────


class ConcurrencyConflictError(DomainError):
    """
    楽観的ロックの競合。

    保存時のバージョンが読み込み時と異なる = 別の書き込みが先に
    コミットされた。呼び出し側は読み込みからやり直せばよい。
    """

    kind = "conflict"
    http_status = HTTPStatus.CONFLICT
    rpc_status = grpc.StatusCode.ABORTED

    def __init__(self, order_id: str, expected_version: int) -> None:
        super().__init__(
            f"Order with ID {order_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.order_id = order_id
        self.expected_version = expected_version


class EventPublishError(DomainError):
    """ドメインイベントの発行に失敗した(保存は完了している)"""

    kind = "infrastructure"

    def __init__(self, failures: list[tuple[str, BaseException]]) -> None:
        patterns = ", ".join(pattern for pattern, _ in failures)
        super().__init__(
            f"Failed to publish {len(failures)} event(s): {patterns}",
            cause=[f"{pattern}: {error!r}" for pattern, error in failures],
        )
        self.failures = failures


class RequestTimeoutError(DomainError):
    kind = "timeout"
    http_status = HTTPStatus.REQUEST_TIMEOUT
    rpc_status = grpc.StatusCode.DEADLINE_EXCEEDED

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Request did not complete within {timeout:g} seconds")
        self.timeout = timeout
