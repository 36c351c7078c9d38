"""
Redis 连接模块

管理 Redis 异步客户端连接，使用单例模式确保全局只有一个连接实例。
Redis 用于：
- 通知事件队列（Redis Streams）
- 用户实时通知频道（Pub/Sub）

使用 @lru_cache 装饰器实现单例模式，避免重复创建连接。
"""
from __future__ import annotations

from functools import lru_cache  # 缓存装饰器，用于实现单例模式

from redis.asyncio import Redis  # Redis 异步客户端

from freshmart.core.config import settings


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    """
    获取 Redis 异步客户端实例（单例模式）

    第一次调用时创建客户端，后续调用返回缓存的实例。
    客户端在第一次执行命令时才真正建立连接。

    配置说明：
    - decode_responses=True: 自动将字节响应解码为字符串
    - socket_timeout: 限制单条命令的等待时间，入队失败不会卡住订单请求
    """
    return Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
    )


@lru_cache(maxsize=1)
def get_stream_redis() -> Redis:
    """
    获取通知 worker 专用的 Redis 客户端（单例模式）

    XREADGROUP 会在服务端阻塞 NOTIFICATION_BLOCK_MS，socket 超时必须比阻塞时间长，
    否则空闲时每次读取都会以 TimeoutError 结束。
    """
    return Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
        socket_timeout=settings.NOTIFICATION_BLOCK_MS / 1000 + settings.REDIS_SOCKET_TIMEOUT_SECONDS,
    )
