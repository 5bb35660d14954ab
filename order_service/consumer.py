"""
Order Service — メッセージコンシューマー

コマンドトピック (orders.*) と在庫サービスの応答 (stock.reserved /
stock.rejected) を受信し、オーケストレーターを呼び出す。

1 件ごとの処理:
  1. デシリアライズ (失敗 → TransformationFailedError)
  2. スキーマ検証   (失敗 → ValidationFailedError)
  3. オーケストレーター呼び出し
  どこで失敗しても例外は外に出さず、元のメッセージとエラーを
  <topic>.dlq に送る。.dlq トピックはログに残すだけで再処理しない。

DLQ への送信自体に失敗した場合だけ DLQ_FAILED を返し、
メッセージを ACK しない(トランスポートの再配信に任せる)。
run_consumer は 1 件の処理で想定外の例外が出てもループを止めない。
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from .error_mapping import serialize_error
from .errors import TransformationFailedError, ValidationFailedError
from .events import DLQ_SUFFIX, OrdersPatterns, StockPatterns, dlq_topic
from .messaging import MessageTransport
from .orchestrator import OrderSagaOrchestrator
from .schemas import (
    CancelOrderCommand,
    ConfirmOrderCommand,
    CreateOrderCommand,
    DeliverOrderCommand,
    ShipOrderCommand,
)

logger = logging.getLogger(__name__)

STOCK_REJECTED_REASON = "Stock reservation rejected"


class DeliveryOutcome(str, Enum):
    PROCESSED = "processed"
    DEAD_LETTERED = "dead_lettered"
    DLQ_FAILED = "dlq_failed"
    INSPECTED = "inspected"
    IGNORED = "ignored"


@dataclass(frozen=True)
class _Route:
    schema: type[BaseModel]
    operation: Callable[[Any], Awaitable[Any]]


DeadLetterHandler = Callable[[str, Any], Awaitable[None]]


class OrderMessageConsumer:
    def __init__(
        self,
        orchestrator: OrderSagaOrchestrator,
        transport: MessageTransport,
        dead_letter_handler: DeadLetterHandler | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.transport = transport
        self._dead_letter_handler = dead_letter_handler or self._log_dead_letter
        self._routes: dict[str, _Route] = {
            OrdersPatterns.CREATE: _Route(CreateOrderCommand, self._create),
            OrdersPatterns.CONFIRM: _Route(ConfirmOrderCommand, self._reserve),
            OrdersPatterns.CANCEL: _Route(CancelOrderCommand, self._cancel),
            OrdersPatterns.SHIP: _Route(ShipOrderCommand, self._ship),
            OrdersPatterns.DELIVER: _Route(DeliverOrderCommand, self._deliver),
            StockPatterns.RESERVED: _Route(ConfirmOrderCommand, self._confirm),
            StockPatterns.REJECTED: _Route(CancelOrderCommand, self._reject),
        }

    @property
    def topics(self) -> list[str]:
        """購読するトピック: コマンドと、それぞれの .dlq"""
        commands = list(self._routes)
        return commands + [dlq_topic(topic) for topic in commands]

    async def handle(self, topic: str, raw: Any) -> DeliveryOutcome:
        if topic.endswith(DLQ_SUFFIX):
            await self._inspect(topic, raw)
            return DeliveryOutcome.INSPECTED

        route = self._routes.get(topic)
        if route is None:
            logger.warning("[%s] No handler for topic, ignoring message", topic)
            return DeliveryOutcome.IGNORED

        try:
            payload = self._deserialize(raw)
        except TransformationFailedError as e:
            logger.error("[%s] Invalid data, sending to DLQ", topic)
            return await self._dead_letter(topic, raw, e)

        try:
            command = route.schema.model_validate(payload)
        except ValidationError as e:
            logger.error("[%s] Validation failed for message, sending to DLQ", topic)
            return await self._dead_letter(topic, raw, ValidationFailedError.from_pydantic(e))

        logger.debug("[%s] Handling %s", topic, type(command).__name__)
        try:
            await route.operation(command)
        except Exception as e:
            logger.error("[%s] Processing failed (%s), sending to DLQ", topic, e)
            return await self._dead_letter(topic, raw, e)

        return DeliveryOutcome.PROCESSED

    # ── ルート ────────────────────────────────────

    async def _create(self, command: CreateOrderCommand) -> None:
        order = await self.orchestrator.create_order(
            command.to_customer_id(), command.to_products()
        )
        logger.debug("Order created successfully: %s", order.id)

    async def _reserve(self, command: ConfirmOrderCommand) -> None:
        await self.orchestrator.reserve_order(command.to_order_id())

    async def _confirm(self, command: ConfirmOrderCommand) -> None:
        await self.orchestrator.confirm_order(command.to_order_id())

    async def _cancel(self, command: CancelOrderCommand) -> None:
        await self.orchestrator.cancel_order(command.to_order_id(), command.reason)

    async def _reject(self, command: CancelOrderCommand) -> None:
        await self.orchestrator.cancel_order(
            command.to_order_id(), command.reason or STOCK_REJECTED_REASON
        )

    async def _ship(self, command: ShipOrderCommand) -> None:
        await self.orchestrator.ship_order(command.to_order_id())

    async def _deliver(self, command: DeliverOrderCommand) -> None:
        await self.orchestrator.deliver_order(command.to_order_id())

    # ── デシリアライズ・DLQ ───────────────────────

    @staticmethod
    def _deserialize(raw: Any) -> dict:
        """
        本文を JSON オブジェクトとして読む。
        メッセージエンベロープ ({pattern, payload, ...}) なら payload を取り出す。
        """
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            body = json.loads(raw) if isinstance(raw, str) else raw
        except (UnicodeDecodeError, ValueError, RecursionError) as e:
            raise TransformationFailedError(e) from e

        if not isinstance(body, dict):
            raise TransformationFailedError(TypeError("Message body must be a JSON object"))

        if "pattern" in body and isinstance(body.get("payload"), dict):
            return body["payload"]
        return body

    @staticmethod
    def _raw_body(raw: Any) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except (ValueError, RecursionError):
                return raw
        return raw

    async def _dead_letter(self, topic: str, raw: Any, error: BaseException) -> DeliveryOutcome:
        target = dlq_topic(topic)
        try:
            await self.transport.publish(
                target,
                {"message": self._raw_body(raw), "error": serialize_error(error)},
            )
        except Exception:
            logger.exception("[%s] Failed to publish message to %s", topic, target)
            return DeliveryOutcome.DLQ_FAILED
        return DeliveryOutcome.DEAD_LETTERED

    async def _inspect(self, topic: str, raw: Any) -> None:
        try:
            await self._dead_letter_handler(topic, self._raw_body(raw))
        except Exception:
            logger.exception("[%s] Dead letter handler failed", topic)

    @staticmethod
    async def _log_dead_letter(topic: str, payload: Any) -> None:
        logger.warning("[%s] Dead-lettered message: %s", topic, payload)


async def run_consumer(
    transport: MessageTransport,
    consumer: OrderMessageConsumer,
    shutdown_event: asyncio.Event,
    poll_timeout: float = 1.0,
) -> None:
    """
    コマンドトピックと DLQ を購読し、受信したメッセージを処理する。
    shutdown_event がセットされるまで無限ループで待機する。
    """
    await transport.subscribe(consumer.topics)
    logger.info("Subscribed to %d topics", len(consumer.topics))

    while not shutdown_event.is_set():
        try:
            incoming = await transport.receive(poll_timeout)
        except Exception:
            logger.exception("Failed to receive message")
            await asyncio.sleep(poll_timeout)
            continue

        if incoming is None:
            continue

        try:
            outcome = await consumer.handle(incoming.topic, incoming.value)
        except Exception:
            # ACK しない: トランスポートの再配信に任せる
            logger.exception("[%s] Unhandled error while handling message", incoming.topic)
            continue

        logger.debug("[%s] %s", incoming.topic, outcome.value)
        if outcome is DeliveryOutcome.DLQ_FAILED:
            continue

        try:
            await transport.ack(incoming)
        except Exception:
            logger.exception("[%s] Failed to acknowledge message", incoming.topic)
