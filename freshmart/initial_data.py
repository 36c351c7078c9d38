"""
初始数据脚本

建表并创建初始管理员账户（FIRST_ADMIN_EMAIL / FIRST_ADMIN_PHONE）。

执行时机：
- 在 backend_pre_start 之后执行（python -m freshmart.initial_data）
- 重复执行是安全的：表已存在会跳过，管理员已存在不会重复创建
"""
import asyncio
import logging  # 日志记录

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.core.config import settings
from freshmart.core.db import engine, init_db  # 数据库引擎和初始化函数
from freshmart.models import User

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init(db_engine: AsyncEngine) -> User | None:
    """
    初始化数据

    Returns:
        User | None: 新建的管理员；未配置或已存在时返回 None
    """
    await init_db(db_engine)
    if not settings.FIRST_ADMIN_EMAIL:
        return None

    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        result = await session.exec(select(User).where(User.email == settings.FIRST_ADMIN_EMAIL))
        if result.first() is not None:
            return None
        admin = User(
            first_name="Admin",
            email=settings.FIRST_ADMIN_EMAIL,
            phone=settings.FIRST_ADMIN_PHONE or "",
            is_admin=True,
            role="superadmin",
        )
        session.add(admin)
        await session.commit()
        logger.info(f"Created first admin {admin.email}")
        return admin


def main() -> None:
    logger.info("Creating initial data")
    asyncio.run(init(engine))
    logger.info("Initial data created")


if __name__ == "__main__":  # pragma: no cover
    main()
