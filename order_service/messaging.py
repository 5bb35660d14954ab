"""
Order Service — メッセージング

トピック単位の publish / subscribe を提供するトランスポート。

  RedisStreamsTransport:
    Redis Streams + コンシューマーグループ。Pub/Sub と違い、
    サービスが停止していてもメッセージはストリームに残り、
    XACK されるまでは処理済みにならない。
  InMemoryTransport:
    プロセス内のキュー(開発・テスト用)。

どちらも同じ契約 (MessageTransport) を満たす。
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from redis.exceptions import ResponseError

logger = logging.getLogger(__name__)


class Message(BaseModel):
    """全トピック共通のメッセージエンベロープ"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    pattern: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    headers: dict[str, str] = Field(default_factory=dict)
    correlation_id: str | None = None
    reply_to: str | None = None
    key: str | None = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class IncomingMessage:
    """トランスポートから受信した生のメッセージ"""

    topic: str
    value: str | bytes
    message_id: str | None = None
    key: str | None = None


class MessageTransport(Protocol):
    async def publish(self, topic: str, message: dict, key: str | None = None) -> None:
        ...

    async def subscribe(self, topics: list[str]) -> None:
        ...

    async def receive(self, timeout: float) -> IncomingMessage | None:
        ...

    async def ack(self, message: IncomingMessage) -> None:
        ...

    async def close(self) -> None:
        ...


def encode(message: dict) -> str:
    return json.dumps(message, default=str)


# ── Redis Streams ────────────────────────────────


class RedisStreamsTransport:
    """
    Redis Streams によるトランスポート。

    トピック = ストリーム名。subscribe 時にコンシューマーグループを
    作成し (既にあれば何もしない)、XREADGROUP で新着を受け取る。
    同じグループの複数コンシューマーでエントリが分配される。

    ACK されなかったエントリは次の順で再配信する:
      1. subscribe 直後に、自分の PEL (未 ACK のエントリ) を先頭から読み直す
      2. claim_idle 秒ごとに XAUTOCLAIM で、claim_idle 秒以上 ACK されて
         いないエントリを引き取る (停止したコンシューマーの分も含む)
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        group: str,
        consumer: str,
        claim_idle: float = 60.0,
    ) -> None:
        self._redis = redis
        self._group = group
        self._consumer = consumer
        self._claim_idle = claim_idle
        self._topics: list[str] = []
        self._backlog: dict[str, str] = {}
        self._next_claim = 0.0

    async def publish(self, topic: str, message: dict, key: str | None = None) -> None:
        fields = {"value": encode(message)}
        if key:
            fields["key"] = key
        await self._redis.xadd(topic, fields)

    async def subscribe(self, topics: list[str]) -> None:
        for topic in topics:
            try:
                await self._redis.xgroup_create(topic, self._group, id="0", mkstream=True)
            except ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise
        self._topics = list(topics)
        self._backlog = {topic: "0" for topic in topics}
        self._next_claim = 0.0
        logger.info("Joined consumer group %s on %d topics", self._group, len(topics))

    async def receive(self, timeout: float) -> IncomingMessage | None:
        if not self._topics:
            return None

        message = await self._read_backlog()
        if message is None:
            message = await self._claim_idle_entries()
        if message is not None:
            return message

        response = await self._redis.xreadgroup(
            self._group,
            self._consumer,
            {topic: ">" for topic in self._topics},
            count=1,
            block=int(timeout * 1000),
        )
        for stream, entries in response or []:
            for message_id, fields in entries:
                return self._incoming(stream, message_id, fields)
        return None

    async def ack(self, message: IncomingMessage) -> None:
        await self._redis.xack(message.topic, self._group, message.message_id)

    async def close(self) -> None:
        await self._redis.aclose()

    # ── 再配信 ────────────────────────────────────

    async def _read_backlog(self) -> IncomingMessage | None:
        """自分の PEL をトピックごとのカーソルで 1 件ずつ読み直す"""
        while self._backlog:
            response = await self._redis.xreadgroup(
                self._group, self._consumer, dict(self._backlog), count=1
            )
            if not response:
                self._backlog.clear()
                break

            for stream, entries in response:
                if not entries:
                    self._backlog.pop(stream, None)

            for stream, entries in response:
                for message_id, fields in entries:
                    self._backlog[stream] = message_id
                    if fields:
                        logger.info("[%s] Redelivering pending entry %s", stream, message_id)
                        return self._incoming(stream, message_id, fields)
                    # ストリームから削除済み
                    await self._redis.xack(stream, self._group, message_id)
        return None

    async def _claim_idle_entries(self) -> IncomingMessage | None:
        now = asyncio.get_running_loop().time()
        if now < self._next_claim:
            return None

        min_idle_ms = int(self._claim_idle * 1000)
        for topic in self._topics:
            _, entries, *_ = await self._redis.xautoclaim(
                topic, self._group, self._consumer, min_idle_ms, start_id="0-0", count=1
            )
            for message_id, fields in entries:
                if fields:
                    logger.warning("[%s] Claimed idle entry %s", topic, message_id)
                    return self._incoming(topic, message_id, fields)
                await self._redis.xack(topic, self._group, message_id)

        self._next_claim = now + self._claim_idle
        return None

    @staticmethod
    def _incoming(stream: str, message_id: str, fields: dict) -> IncomingMessage:
        return IncomingMessage(
            topic=stream,
            value=fields.get("value", ""),
            message_id=message_id,
            key=fields.get("key"),
        )


# ── In-Memory ────────────────────────────────────


class InMemoryTransport:
    """
    プロセス内トランスポート。

    published に (topic, message) を発行順に記録する。
    subscribe 済みのトピックに発行されたメッセージだけが receive で読める。
    """

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []
        self.acked: list[IncomingMessage] = []
        self._topics: set[str] = set()
        self._queue: asyncio.Queue[IncomingMessage] = asyncio.Queue()

    def published_to(self, topic: str) -> list[dict]:
        return [message for published_topic, message in self.published if published_topic == topic]

    async def publish(self, topic: str, message: dict, key: str | None = None) -> None:
        body = encode(message)
        self.published.append((topic, json.loads(body)))
        if topic in self._topics:
            await self._queue.put(IncomingMessage(topic=topic, value=body, key=key))

    async def subscribe(self, topics: list[str]) -> None:
        self._topics.update(topics)

    async def receive(self, timeout: float) -> IncomingMessage | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def ack(self, message: IncomingMessage) -> None:
        self.acked.append(message)

    async def close(self) -> None:
        return None


def create_transport(settings) -> MessageTransport:
    """設定 (MESSAGING_PROVIDER) に応じてトランスポートを作る。"""
    if settings.messaging_provider == "memory":
        return InMemoryTransport()
    if settings.messaging_provider == "redis":
        redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        return RedisStreamsTransport(
            redis, settings.consumer_group, settings.consumer_name, settings.claim_idle
        )
    raise ValueError(f"Unsupported messaging provider: {settings.messaging_provider}")
