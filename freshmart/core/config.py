"""
应用配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

关键概念：
- BaseSettings: Pydantic 的配置基类，自动从环境变量读取
- computed_field: 计算字段，根据其他字段动态生成
- model_validator: 模型验证器，用于自定义验证逻辑
"""
import secrets  # 用于生成安全的随机字符串
import warnings  # 用于发出警告
from decimal import Decimal  # 金额使用 Decimal，避免浮点误差
from typing import Annotated, Any, Literal  # 类型注解工具

from pydantic import (
    AnyUrl,  # URL 类型验证
    BeforeValidator,  # 字段验证前的转换器
    HttpUrl,  # HTTP URL 类型验证
    PostgresDsn,  # PostgreSQL 连接字符串验证
    computed_field,  # 计算字段装饰器
    model_validator,  # 模型验证器装饰器
)
from pydantic_settings import BaseSettings, SettingsConfigDict  # 配置管理
from typing_extensions import Self  # 用于类型注解中引用自身类型


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持两种格式：
    1. 逗号分隔的字符串："http://localhost:3000,http://localhost:3001"
    2. 列表格式：["http://localhost:3000", "http://localhost:3001"]

    Raises:
        ValueError: 当输入格式不正确时
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,  # 忽略空的环境变量
        extra="ignore",  # 忽略未定义的额外字段
    )
    API_V1_STR: str = "/api/v1"  # API 版本前缀
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（默认随机生成）
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7  # JWT token 过期天数
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """CORS 允许的源列表（去除尾部斜杠）"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str = "FreshMart"
    SENTRY_DSN: HttpUrl | None = None

    # Snowflake
    SNOWFLAKE_NODE_ID: int = 0

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        # psycopg 3 同时支持同步与异步驱动
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis 配置（通知队列 + 实时推送频道）
    REDIS_HOST: str = "localhost"  # Redis 服务器地址
    REDIS_PORT: int = 6379  # Redis 端口
    REDIS_DB: int = 0  # Redis 数据库编号（0-15）
    REDIS_PASSWORD: str | None = None  # Redis 密码（可选）
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0  # 入队超时，避免拖慢订单请求
    NOTIFICATION_STREAM: str = "notifications"  # 通知事件 Stream 名称
    NOTIFICATION_GROUP: str = "notification_workers"  # 消费者组名称
    NOTIFICATION_CHANNEL_PREFIX: str = "notifications:user"  # 用户实时频道前缀
    NOTIFICATION_CONSUMER: str | None = None  # 消费者名称，默认取主机名（重启后保持不变）
    NOTIFICATION_BLOCK_MS: int = 5000  # XREADGROUP 阻塞时间
    NOTIFICATION_RECLAIM_IDLE_MS: int = 60000  # pending 消息空闲超过该时间后重新认领

    # Paystack 支付网关配置
    PAYSTACK_SECRET_KEY: str | None = None  # 网关密钥
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"  # 网关 API 基础 URL
    PAYSTACK_TIMEOUT_SECONDS: float = 15.0  # 校验/退款调用的超时时间
    PAYMENT_CURRENCY: str = "GHS"  # 默认币种
    PAYMENT_VERIFY_AMOUNT: bool = True  # 是否校验网关金额与客户端声明金额一致

    # 配送费规则（按城市计费）
    DELIVERY_FREE_THRESHOLD: Decimal = Decimal("100")  # 商品金额超过该值免运费
    DELIVERY_SMALL_ORDER_THRESHOLD: Decimal = Decimal("50")  # 小额订单阈值
    DELIVERY_SMALL_ORDER_SURCHARGE: Decimal = Decimal("2")  # 小额订单附加费
    DELIVERY_DEFAULT_FEE: Decimal = Decimal("10")  # 未知城市的默认配送费
    DELIVERY_CITY_FEES: dict[str, Decimal] = {
        "accra": Decimal("5"),
        "kumasi": Decimal("7"),
        "tema": Decimal("6"),
        "takoradi": Decimal("8"),
    }

    # Expo 推送配置
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_ACCESS_TOKEN: str | None = None
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # 初始管理员账户（initial_data 使用）
    FIRST_ADMIN_EMAIL: str | None = None
    FIRST_ADMIN_PHONE: str | None = None

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值

        本地环境只警告，其他环境直接报错。

        Raises:
            ValueError: 在非本地环境使用默认值时
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        """确保敏感配置不使用默认值"""
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("PAYSTACK_SECRET_KEY", self.PAYSTACK_SECRET_KEY)

        return self


# 创建全局配置实例，整个应用共享
settings = Settings()  # type: ignore
