"""
数据库连接模块

管理异步数据库引擎和会话工厂。
所有订单、支付、库存操作都在请求内 await 数据库调用，不占用线程等待 I/O。

重要提示：
- 确保在使用前导入所有模型（freshmart.models），否则 metadata 中缺少表
- 会话使用 expire_on_commit=False，提交后仍可直接读取对象属性
"""
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart import models  # noqa: F401  注册所有表到 metadata
from freshmart.core.config import settings

# 创建异步数据库引擎（连接池）
engine: AsyncEngine = create_async_engine(str(settings.SQLALCHEMY_DATABASE_URI))


def make_sessionmaker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """为指定引擎创建会话工厂"""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


SessionLocal = make_sessionmaker(engine)


async def init_db(db_engine: AsyncEngine) -> None:
    """
    初始化数据库表结构

    部署环境没有迁移工具链，启动时按 metadata 建表（已存在的表会被跳过）。

    Args:
        db_engine: 异步数据库引擎
    """
    async with db_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
