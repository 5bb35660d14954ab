"""
Order Service — イベントパブリッシャー

ドメインイベントをメッセージエンベロープに包み、pattern を
トピック名としてトランスポートに発行する。

キー(= orderId)を付けるので、キーによる振り分けを行う
トランスポートでは同じ注文のイベントが同じパーティションに乗る。
"""

import asyncio
import logging
from typing import Iterable

from .errors import EventPublishError
from .events import DomainEvent
from .messaging import Message, MessageTransport

logger = logging.getLogger(__name__)


class DomainEventPublisher:
    def __init__(self, transport: MessageTransport) -> None:
        self._transport = transport

    @staticmethod
    def to_message(event: DomainEvent) -> Message:
        return Message(
            pattern=event.pattern,
            payload=event.payload,
            timestamp=event.occurred_on,
            headers={"eventType": event.pattern},
            key=event.order_id,
        )

    async def publish(self, event: DomainEvent) -> None:
        message = self.to_message(event)
        await self._transport.publish(event.pattern, message.to_wire(), key=message.key)
        logger.debug("Published %s for order %s", event.pattern, event.order_id)

    async def publish_batch(self, events: Iterable[DomainEvent]) -> None:
        """
        全イベントを並行に発行し、すべて受理されるまで待つ。

        1 件でも失敗すれば、全件の完了を待ってから
        失敗した pattern を載せた EventPublishError を送出する。
        """
        events = list(events)
        if not events:
            return

        results = await asyncio.gather(
            *(self.publish(event) for event in events),
            return_exceptions=True,
        )
        failures = [
            (event.pattern, result)
            for event, result in zip(events, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            for pattern, error in failures:
                logger.error("Failed to publish %s: %r", pattern, error)
            raise EventPublishError(failures)
