"""
工具路由模块

- 存活探针：进程能响应即返回 True
- 就绪探针：数据库可查询才返回 True，否则 503
"""
import logging

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from freshmart.api.deps import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
async def health_check() -> bool:
    """
    健康检查端点

    请求路径: GET /api/v1/utils/health-check/
    """
    return True


@router.get("/ready/")
async def readiness_check(session: SessionDep) -> bool:
    """
    就绪检查端点（负载均衡器在数据库不可用时摘除实例）

    请求路径: GET /api/v1/utils/ready/
    """
    try:
        await session.exec(select(1))
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database unavailable"
        )
    return True
