"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。
FastAPI 的依赖注入系统会自动处理这些依赖的创建和注入。

关键概念：
- Depends: FastAPI 的依赖注入装饰器
- AsyncGenerator: 用于创建需要清理的异步资源（如数据库会话）
- HTTPBearer: 从请求头提取 Bearer token
- 服务容器在 lifespan 中构造，挂在 app.state.services 上
"""
from collections.abc import AsyncGenerator  # 异步生成器类型，用于资源管理
from typing import Annotated  # 类型注解，用于依赖注入

from fastapi import Depends, HTTPException, Request, status  # FastAPI 核心功能
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # Bearer 方案
from jwt.exceptions import InvalidTokenError  # JWT 无效异常
from pydantic import ValidationError  # Pydantic 验证异常
from sqlmodel.ext.asyncio.session import AsyncSession  # 异步数据库会话

from freshmart.api.schemas import TokenPayload
from freshmart.core import security
from freshmart.core.db import SessionLocal
from freshmart.models import User
from freshmart.services.container import ServiceContainer

# Bearer 认证配置
# 告诉 FastAPI 从请求头的 Authorization: Bearer <token> 中提取 token
reusable_oauth2 = HTTPBearer()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    获取数据库会话（依赖注入）

    使用 async with 确保会话在请求结束后自动关闭。

    Yields:
        AsyncSession: 异步数据库会话对象
    """
    async with SessionLocal() as session:
        yield session


def get_services(request: Request) -> ServiceContainer:
    """获取启动时构造的服务容器"""
    return request.app.state.services


# 类型别名，简化依赖注入的写法
SessionDep = Annotated[AsyncSession, Depends(get_db)]  # 数据库会话依赖
TokenDep = Annotated[
    HTTPAuthorizationCredentials, Depends(reusable_oauth2)
]  # JWT token 依赖
ServicesDep = Annotated[ServiceContainer, Depends(get_services)]  # 服务容器依赖


async def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户（依赖注入）

    从 JWT token 中解析用户 ID，并查询数据库获取完整用户对象。

    Raises:
        HTTPException: 当 token 无效或用户不存在时返回 401
    """
    try:
        token_data = TokenPayload(**security.decode_access_token(token.credentials))
    except (InvalidTokenError, ValidationError):
        # token 格式错误或验证失败
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    try:
        # 将用户标识转换为整数 ID
        user_id = int(token_data.sub or "")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


# 类型别名，简化需要认证的路由写法
CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_current_admin(current_user: CurrentUser) -> User:
    """管理员接口依赖：非管理员返回 403"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": 403001, "message": "Admin access required"},
        )
    return current_user


AdminUser = Annotated[User, Depends(get_current_admin)]
