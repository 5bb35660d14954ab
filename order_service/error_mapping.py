"""
Order Service — HTTP / gRPC のエラー表現

ステータスコードの相互変換と、境界で返すエラーボディを作る。
どちらの変換も全域関数で、表にないコードは既定値になる:
  http_to_grpc → UNKNOWN
  grpc_to_http → 500 Internal Server Error
"""

import json
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

import grpc

from .errors import DomainError

# ── ステータス変換表 ─────────────────────────────

_HTTP_TO_GRPC: dict[int, grpc.StatusCode] = {
    HTTPStatus.CONTINUE: grpc.StatusCode.OK,
    HTTPStatus.SWITCHING_PROTOCOLS: grpc.StatusCode.CANCELLED,
    HTTPStatus.OK: grpc.StatusCode.OK,
    HTTPStatus.CREATED: grpc.StatusCode.OK,
    HTTPStatus.BAD_REQUEST: grpc.StatusCode.INVALID_ARGUMENT,
    HTTPStatus.UNAUTHORIZED: grpc.StatusCode.UNAUTHENTICATED,
    HTTPStatus.FORBIDDEN: grpc.StatusCode.PERMISSION_DENIED,
    HTTPStatus.NOT_FOUND: grpc.StatusCode.NOT_FOUND,
    HTTPStatus.REQUEST_TIMEOUT: grpc.StatusCode.DEADLINE_EXCEEDED,
    HTTPStatus.CONFLICT: grpc.StatusCode.ALREADY_EXISTS,
    HTTPStatus.REQUEST_ENTITY_TOO_LARGE: grpc.StatusCode.OUT_OF_RANGE,
    HTTPStatus.UNPROCESSABLE_ENTITY: grpc.StatusCode.INVALID_ARGUMENT,
    HTTPStatus.PRECONDITION_REQUIRED: grpc.StatusCode.FAILED_PRECONDITION,
    HTTPStatus.TOO_MANY_REQUESTS: grpc.StatusCode.RESOURCE_EXHAUSTED,
    HTTPStatus.INTERNAL_SERVER_ERROR: grpc.StatusCode.INTERNAL,
    HTTPStatus.NOT_IMPLEMENTED: grpc.StatusCode.UNIMPLEMENTED,
    HTTPStatus.SERVICE_UNAVAILABLE: grpc.StatusCode.UNAVAILABLE,
}

_GRPC_TO_HTTP: dict[grpc.StatusCode, HTTPStatus] = {
    grpc.StatusCode.OK: HTTPStatus.OK,
    grpc.StatusCode.CANCELLED: HTTPStatus.METHOD_NOT_ALLOWED,
    grpc.StatusCode.UNKNOWN: HTTPStatus.BAD_GATEWAY,
    grpc.StatusCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
    grpc.StatusCode.DEADLINE_EXCEEDED: HTTPStatus.REQUEST_TIMEOUT,
    grpc.StatusCode.NOT_FOUND: HTTPStatus.NOT_FOUND,
    grpc.StatusCode.ALREADY_EXISTS: HTTPStatus.CONFLICT,
    grpc.StatusCode.PERMISSION_DENIED: HTTPStatus.FORBIDDEN,
    grpc.StatusCode.RESOURCE_EXHAUSTED: HTTPStatus.TOO_MANY_REQUESTS,
    grpc.StatusCode.FAILED_PRECONDITION: HTTPStatus.PRECONDITION_REQUIRED,
    grpc.StatusCode.ABORTED: HTTPStatus.METHOD_NOT_ALLOWED,
    grpc.StatusCode.OUT_OF_RANGE: HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
    grpc.StatusCode.UNIMPLEMENTED: HTTPStatus.NOT_IMPLEMENTED,
    grpc.StatusCode.INTERNAL: HTTPStatus.INTERNAL_SERVER_ERROR,
    # 一時的な障害なので 404 ではなく 503 を返す
    grpc.StatusCode.UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
    grpc.StatusCode.DATA_LOSS: HTTPStatus.INTERNAL_SERVER_ERROR,
    grpc.StatusCode.UNAUTHENTICATED: HTTPStatus.UNAUTHORIZED,
}

_GRPC_BY_NUMBER = {code.value[0]: code for code in grpc.StatusCode}


def http_to_grpc(status: int) -> grpc.StatusCode:
    return _HTTP_TO_GRPC.get(int(status), grpc.StatusCode.UNKNOWN)


def grpc_to_http(code: grpc.StatusCode | int) -> HTTPStatus:
    """gRPC のステータス(StatusCode または数値コード)を HTTP ステータスに変換する。"""
    if isinstance(code, int):
        code = _GRPC_BY_NUMBER.get(code)
    return _GRPC_TO_HTTP.get(code, HTTPStatus.INTERNAL_SERVER_ERROR)


# ── エラーボディ ─────────────────────────────────


def _status_of(exc: BaseException) -> HTTPStatus:
    if isinstance(exc, DomainError):
        return exc.http_status
    return HTTPStatus.INTERNAL_SERVER_ERROR


def _message_of(exc: BaseException) -> str:
    if isinstance(exc, DomainError):
        return exc.message
    return "An unexpected error occurred"


def _cause_of(exc: BaseException) -> Any:
    if isinstance(exc, DomainError):
        return exc.cause
    return None


def http_error_body(
    exc: BaseException,
    path: str,
    method: str,
    status: HTTPStatus | None = None,
) -> dict:
    """
    HTTP のエラーレスポンス

    {"success": false, "error": {code, status, exception, message,
     cause, timestamp, path, method}}
    """
    status = status or _status_of(exc)
    return {
        "success": False,
        "error": {
            "code": status.value,
            "status": status.phrase,
            "exception": type(exc).__name__,
            "message": _message_of(exc),
            "cause": _cause_of(exc),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": path,
            "method": method,
        },
    }


def rpc_error_body(exc: BaseException) -> dict:
    """RPC のエラー: 数値の gRPC コードと、原因を含めたメッセージ"""
    if isinstance(exc, DomainError):
        code = exc.rpc_status
    else:
        code = grpc.StatusCode.INTERNAL

    message = _message_of(exc)
    cause = _cause_of(exc)
    if cause is not None:
        message = f"Message: {message};\nCause: {json.dumps(cause, default=str)}"
    return {"code": code.value[0], "message": message, "cause": cause}


def serialize_error(exc: BaseException) -> dict:
    """DLQ に載せるための JSON 化できるエラー表現"""
    if isinstance(exc, DomainError):
        return {
            "name": type(exc).__name__,
            "kind": exc.kind,
            "message": exc.message,
            "cause": exc.cause,
        }
    return {
        "name": type(exc).__name__,
        "kind": "internal",
        "message": str(exc),
        "cause": None,
    }
