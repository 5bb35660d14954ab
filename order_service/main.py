"""
Order Service — FastAPI エントリーポイント

HTTP のリクエストをオーケストレーターの呼び出しに変換する。
起動時にコマンドトピックのコンシューマーをバックグラウンドタスクとして開始する。

┌────────────┐  HTTP   ┌──────────────────┐  stock.reserve   ┌───────────────────┐
│   Client   │ ──────▶ │  Order Service   │ ───────────────▶ │ Inventory Service │
└────────────┘         │  (Orchestrator)  │ ◀─────────────── │                   │
                       └──────────────────┘  stock.reserved  └───────────────────┘
                                                stock.rejected

各リクエストには期限がある (X-Request-Timeout ヘッダー、既定は
REQUEST_TIMEOUT_SECONDS)。期限を過ぎると 408 を返すが、処理自体は
中断せず最後まで実行する。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, TypeVar

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .consumer import OrderMessageConsumer, run_consumer
from .error_mapping import http_error_body
from .errors import DomainError, OrderNotFoundError, RequestTimeoutError, ValidationFailedError
from .messaging import MessageTransport, create_transport
from .orchestrator import OrderSagaOrchestrator
from .persistence import SqlOrderRepository, create_schema
from .publisher import DomainEventPublisher
from .repository import InMemoryOrderRepository, OrderRepository
from .schemas import (
    CancelOrderCommand,
    ConfirmOrderCommand,
    CreateOrderCommand,
    DeliverOrderCommand,
    GetOrderCommand,
    GetOrdersCommand,
    OrderResponse,
    ShipOrderCommand,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_HEADER = "X-Request-Timeout"


class CancelOrderRequest(BaseModel):
    reason: str | None = None


def get_orchestrator(request: Request) -> OrderSagaOrchestrator:
    return request.app.state.orchestrator


def create_app(
    settings: Settings | None = None,
    *,
    repository: OrderRepository | None = None,
    transport: MessageTransport | None = None,
) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """リポジトリ・トランスポートを用意し、コンシューマーを開始する。"""
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )

        engine = None
        repo = repository
        if repo is None and settings.database_url:
            engine = create_async_engine(settings.database_url, echo=False)
            await create_schema(engine)
            async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            repo = SqlOrderRepository(async_session)
        elif repo is None:
            logger.warning("DATABASE_URL is not set, using in-memory repository")
            repo = InMemoryOrderRepository()

        messaging = transport or create_transport(settings)
        orchestrator = OrderSagaOrchestrator(repo, DomainEventPublisher(messaging))
        consumer = OrderMessageConsumer(orchestrator, messaging)
        app.state.orchestrator = orchestrator
        app.state.consumer = consumer

        shutdown_event = asyncio.Event()
        consumer_task = asyncio.create_task(run_consumer(messaging, consumer, shutdown_event))
        yield
        shutdown_event.set()
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            pass
        await messaging.close()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="Order Service", lifespan=lifespan)

    async def within_deadline(request: Request, operation: Awaitable[T]) -> T:
        timeout = _request_timeout(request, settings.request_timeout)
        task = asyncio.ensure_future(operation)
        try:
            # shield: 期限切れでも処理は中断しない
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(_log_detached_failure)
            logger.warning("%s %s exceeded %.3gs deadline", request.method, request.url.path, timeout)
            raise RequestTimeoutError(timeout) from None

    # ── Exception Handlers ───────────────────────

    def error_response(request: Request, exc: BaseException, status=None) -> JSONResponse:
        body = http_error_body(exc, request.url.path, request.method, status)
        return JSONResponse(status_code=body["error"]["code"], content=jsonable_encoder(body))

    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, exc: DomainError):
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        return error_response(request, ValidationFailedError.from_pydantic(exc))

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return error_response(request, ValidationFailedError.from_pydantic(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(request, exc)

    # ── Query Endpoints ──────────────────────────

    @app.get("/orders/{order_id}", response_model=OrderResponse)
    async def get_order(
        order_id: str,
        request: Request,
        orchestrator: OrderSagaOrchestrator = Depends(get_orchestrator),
    ):
        command = GetOrderCommand(id=order_id)
        order = await within_deadline(request, orchestrator.get_order(command.to_order_id()))
        if order is None:
            raise OrderNotFoundError(command.id)
        return OrderResponse.from_order(order)

    @app.get("/orders", response_model=list[OrderResponse])
    async def get_orders(
        request: Request,
        ids: list[str] | None = Query(default=None),
        orchestrator: OrderSagaOrchestrator = Depends(get_orchestrator),
    ):
        command = GetOrdersCommand(ids=ids)
        orders = await within_deadline(request, orchestrator.get_orders(command.to_order_ids()))
        return [OrderResponse.from_order(order) for order in orders]

    # ── Command Endpoints ────────────────────────

    @app.post("/orders", status_code=201, response_model=OrderResponse)
    async def create_order(
        command: CreateOrderCommand,
        request: Request,
        orchestrator: OrderSagaOrchestrator = Depends(get_orchestrator),
    ):
        order = await within_deadline(
            request,
            orchestrator.create_order(command.to_customer_id(), command.to_products()),
        )
        return OrderResponse.from_order(order)

    @app.patch("/orders/{order_id}/confirm", status_code=204)
    async def confirm_order(
        order_id: str,
        request: Request,
        orchestrator: OrderSagaOrchestrator = Depends(get_orchestrator),
    ):
        """確定の依頼 (在庫引き当ての結果を待って確定する)"""
        command = ConfirmOrderCommand(id=order_id)
        await within_deadline(request, orchestrator.reserve_order(command.to_order_id()))
        return Response(status_code=204)

    @app.patch("/orders/{order_id}/cancel", status_code=204)
    async def cancel_order(
        order_id: str,
        request: Request,
        body: CancelOrderRequest | None = None,
        orchestrator: OrderSagaOrchestrator = Depends(get_orchestrator),
    ):
        command = CancelOrderCommand(id=order_id, reason=body.reason if body else None)
        await within_deadline(
            request, orchestrator.cancel_order(command.to_order_id(), command.reason)
        )
        return Response(status_code=204)

    @app.patch("/orders/{order_id}/ship", status_code=204)
    async def ship_order(
        order_id: str,
        request: Request,
        orchestrator: OrderSagaOrchestrator = Depends(get_orchestrator),
    ):
        command = ShipOrderCommand(id=order_id)
        await within_deadline(request, orchestrator.ship_order(command.to_order_id()))
        return Response(status_code=204)

    @app.patch("/orders/{order_id}/deliver", status_code=204)
    async def deliver_order(
        order_id: str,
        request: Request,
        orchestrator: OrderSagaOrchestrator = Depends(get_orchestrator),
    ):
        command = DeliverOrderCommand(id=order_id)
        await within_deadline(request, orchestrator.deliver_order(command.to_order_id()))
        return Response(status_code=204)

    # ── Health ───────────────────────────────────

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "order-service"}

    return app


def _request_timeout(request: Request, default: float) -> float:
    value = request.headers.get(TIMEOUT_HEADER)
    if value is None:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return timeout if timeout > 0 else default


def _log_detached_failure(task: asyncio.Future) -> None:
    # 期限切れ後に失敗した処理は呼び出し元に届かないのでログに残す
    if not task.cancelled() and task.exception() is not None:
        logger.error("Operation failed after deadline: %r", task.exception())


app = create_app()
