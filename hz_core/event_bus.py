"""
Hazel 事件总线
领域事件写入 Redis Stream（hz:events:<topic>）供外部消费者读取，
同时分发给进程内订阅的处理器
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Callable, Awaitable
from contextlib import asynccontextmanager

import redis.asyncio as redis
from hz_core.config import Settings, get_settings
from hz_core.utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventPayload:
    """事件载荷"""

    def __init__(self, topic: str, payload: Optional[Dict[str, Any]] = None):
        self.event_id = str(uuid.uuid4())
        self.topic = topic
        self.payload = payload or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "ts": self.timestamp,
            "topic": self.topic,
            "payload": self.payload
        }


def _check_topic(topic: str) -> None:
    if not topic.startswith("hz."):
        raise ValueError(f"Invalid topic format: {topic}")


class EventBus:
    """事件总线实现"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.redis_client: Optional[redis.Redis] = None
        self.subscriptions: Dict[str, List[Handler]] = {}

    @property
    def enabled(self) -> bool:
        return self.settings.event_bus_enabled

    @asynccontextmanager
    async def _get_redis(self):
        """获取 Redis 连接"""
        if not self.redis_client:
            self.redis_client = redis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        try:
            yield self.redis_client
        except Exception:
            logger.error("Redis operation failed", exc_info=True)
            raise

    async def initialize(self) -> None:
        """启动时检查 Redis 可达"""
        if not self.enabled:
            logger.info("Event bus disabled, events are dispatched in-process only")
            return

        async with self._get_redis() as r:
            await r.ping()
        logger.info("Event bus connected", redis_url=self.settings.redis_url)

    async def shutdown(self) -> None:
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
        logger.info("Event bus shutdown complete")

    @staticmethod
    def stream_name(topic: str) -> str:
        return f"hz:events:{topic}"

    async def publish(
        self,
        topic: str,
        payload: Dict[str, Any],
        key: Optional[str] = None
    ) -> str:
        """发布事件：启用时写入 Redis Stream，然后分发给进程内处理器"""
        _check_topic(topic)
        event = EventPayload(topic=topic, payload=payload)

        if self.enabled:
            fields = {"data": json.dumps(event.to_dict(), default=str)}
            if key:
                fields["key"] = key

            async with self._get_redis() as r:
                message_id = await r.xadd(self.stream_name(topic), fields)

            logger.debug(f"Published event to {topic}",
                         event_id=event.event_id,
                         message_id=message_id)

        await self._trigger_handlers(topic, event)
        return event.event_id

    async def subscribe(self, topic: str, handler: Handler) -> None:
        """订阅进程内事件"""
        _check_topic(topic)
        self.subscriptions.setdefault(topic, []).append(handler)
        logger.info(f"Subscribed to topic {topic}",
                    handler=getattr(handler, "__name__", repr(handler)))

    async def _trigger_handlers(self, topic: str, event: EventPayload) -> None:
        # 处理器异常只记录，不影响发布方
        for handler in self.subscriptions.get(topic, []):
            try:
                await handler(event.payload)
            except Exception:
                logger.error(f"Handler error for topic {topic}",
                             handler=getattr(handler, "__name__", repr(handler)),
                             exc_info=True)


# 全局事件总线实例
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """获取事件总线单例"""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
