"""
应用启动前检查脚本

在应用启动前检查数据库和 Redis 是否可用。
主要用于 Docker Compose 环境，确保依赖服务已启动后再启动应用和通知 worker。

执行流程：
1. 脚本在应用启动前被调用（python -m freshmart.backend_pre_start）
2. 不断重试连接数据库和 Redis，直到成功或超时
3. 成功后继续执行建表和初始数据（freshmart.initial_data）
"""
import asyncio
import logging  # 日志记录

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select  # SQLModel 查询
from sqlmodel.ext.asyncio.session import AsyncSession
from tenacity import (  # 重试库，用于实现重试机制
    after_log,  # 重试后的日志记录
    before_log,  # 重试前的日志记录
    retry,  # 重试装饰器
    stop_after_attempt,  # 停止条件：达到最大尝试次数
    wait_fixed,  # 等待策略：固定间隔
)

from freshmart.core.db import engine  # 数据库引擎
from freshmart.core.redis import get_redis

# 配置日志
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# 重试配置
max_tries = 60 * 5  # 最大尝试次数：300 次（5 分钟，每秒一次）
wait_seconds = 1  # 每次重试间隔：1 秒


@retry(
    stop=stop_after_attempt(max_tries),  # 最多尝试 300 次后停止
    wait=wait_fixed(wait_seconds),  # 每次重试前等待 1 秒
    before=before_log(logger, logging.INFO),  # 重试前记录 INFO 级别日志
    after=after_log(logger, logging.WARN),  # 重试后记录 WARN 级别日志
)
async def init(db_engine: AsyncEngine, redis: Redis | None = None) -> None:
    """
    检查依赖服务连接

    执行 select(1) 验证数据库、PING 验证 Redis；
    失败时抛出异常，由 tenacity 重试。

    Args:
        db_engine: 异步数据库引擎
        redis: Redis 客户端（为空时只检查数据库）
    """
    try:
        async with AsyncSession(db_engine) as session:
            await session.exec(select(1))
        if redis is not None:
            await redis.ping()
    except Exception as e:
        logger.error(e)
        # 重新抛出异常，让 tenacity 重试机制处理
        raise e


def main() -> None:
    logger.info("Initializing service")
    asyncio.run(init(engine, get_redis()))
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
