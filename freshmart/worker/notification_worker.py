"""
Notification Worker - 异步投递订单通知

从 Redis Streams 消费订单事件，写通知记录、发布实时频道、推送到手机。
处理成功才 XACK；处理异常的消息留在 pending 列表中，空闲超过
NOTIFICATION_RECLAIM_IDLE_MS 后由 XAUTOCLAIM 重新认领并再次投递。

消费者名称默认取主机名，重启后保持不变，上一次运行遗留的 pending 消息仍归本消费者。

运行方式：
    python -m freshmart.worker.notification_worker
"""

import asyncio
import logging
import socket
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from freshmart.core.config import settings
from freshmart.core.db import SessionLocal
from freshmart.core.redis import get_stream_redis
from freshmart.services.container import build_container
from freshmart.services.notifications import NotificationDispatcher

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def ensure_group(redis: Redis, stream: str, group: str) -> None:
    """创建消费者组（已存在时忽略 BUSYGROUP 错误）"""
    try:
        await redis.xgroup_create(stream, group, id="0", mkstream=True)
    except ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


async def _process(
    redis: Redis,
    dispatcher: NotificationDispatcher,
    message_list: list[tuple[str, dict[str, str] | None]],
    *,
    stream: str,
    group: str,
) -> int:
    acked = 0
    for message_id, fields in message_list:
        if fields is None:
            # 消息已被 XDEL/XTRIM 删除，只剩 pending 记录
            await redis.xack(stream, group, message_id)
            continue
        try:
            delivered = await dispatcher.dispatch(fields)
            await redis.xack(stream, group, message_id)
            acked += 1
            logger.info(
                f"Message {message_id} ({fields.get('event')}) delivered to {delivered} recipient(s)"
            )
        except Exception as e:
            # 不确认消息，留给重试
            logger.error(f"Failed to process message {message_id}: {e}")
    return acked


async def consume_once(
    redis: Redis,
    dispatcher: NotificationDispatcher,
    *,
    stream: str,
    group: str,
    consumer: str,
    count: int = 10,
    block_ms: int = 5000,
) -> int:
    """
    读取并处理一批新消息

    Returns:
        int: 确认（XACK）的消息数
    """
    messages = await redis.xreadgroup(
        groupname=group,
        consumername=consumer,
        streams={stream: ">"},
        count=count,
        block=block_ms,
    )
    if not messages:
        return 0

    acked = 0
    for _stream, message_list in messages:
        acked += await _process(redis, dispatcher, message_list, stream=stream, group=group)
    return acked


async def reclaim_pending(
    redis: Redis,
    dispatcher: NotificationDispatcher,
    *,
    stream: str,
    group: str,
    consumer: str,
    min_idle_ms: int,
    count: int = 10,
) -> int:
    """
    认领空闲过久的 pending 消息并重新投递（包括其他已下线消费者遗留的消息）

    Returns:
        int: 确认（XACK）的消息数
    """
    acked = 0
    start_id = "0-0"
    while True:
        result: list[Any] = await redis.xautoclaim(
            stream, group, consumer, min_idle_ms, start_id=start_id, count=count
        )
        next_id, message_list = result[0], result[1]
        if message_list:
            logger.info(f"Reclaimed {len(message_list)} pending message(s) from {stream}")
            acked += await _process(redis, dispatcher, message_list, stream=stream, group=group)
        if next_id in ("0-0", b"0-0"):
            return acked
        start_id = next_id


async def consume_notifications() -> None:
    """从 Redis Streams 持续消费通知事件"""
    redis = get_stream_redis()
    services = build_container(settings, redis=redis, session_factory=SessionLocal)
    stream = settings.NOTIFICATION_STREAM
    group = settings.NOTIFICATION_GROUP
    consumer = settings.NOTIFICATION_CONSUMER or socket.gethostname()

    await ensure_group(redis, stream, group)
    logger.info(f"Worker {consumer} started, listening to {stream}")

    while True:
        try:
            await reclaim_pending(
                redis,
                services.dispatcher,
                stream=stream,
                group=group,
                consumer=consumer,
                min_idle_ms=settings.NOTIFICATION_RECLAIM_IDLE_MS,
            )
            await consume_once(
                redis,
                services.dispatcher,
                stream=stream,
                group=group,
                consumer=consumer,
                block_ms=settings.NOTIFICATION_BLOCK_MS,
            )
        except asyncio.CancelledError:
            logger.info("Worker stopped")
            raise
        except Exception as e:
            logger.error(f"Worker error: {e}")
            await asyncio.sleep(5)  # 等待 5 秒后重试


def main() -> None:
    """主函数"""
    logger.info("Starting Notification Worker...")
    try:
        asyncio.run(consume_notifications())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")


if __name__ == "__main__":
    main()
