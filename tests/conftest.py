from __future__ import annotations

import itertools
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from decimal import Decimal
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.api.deps import get_db
from freshmart.core.config import settings
from freshmart.core.db import init_db, make_sessionmaker
from freshmart.core.security import create_access_token
from freshmart.enums import PaymentStatus
from freshmart.integrations.paystack import GatewayRefund, GatewayTransaction
from freshmart.main import app
from freshmart.models import Payment, Product, User
from freshmart.services.container import ServiceContainer, build_container


_seq = itertools.count(1)


class FakeRedis:
    """记录 XADD / PUBLISH 调用的 Redis 替身"""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, str]]] = []
        self.published: list[tuple[str, str]] = []
        self.fail_xadd = False

    async def xadd(self, name: str, fields: dict[str, str], **kwargs: Any) -> str:
        if self.fail_xadd:
            raise ConnectionError("redis down")
        self.messages.append((name, fields))
        return f"{len(self.messages)}-0"

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    def events(self) -> list[str]:
        return [fields["event"] for _, fields in self.messages]


class FakeGateway:
    """支付网关替身：未登记的参考号按校验失败处理"""

    def __init__(self) -> None:
        self.transactions: dict[str, GatewayTransaction] = {}
        self.verified: list[str] = []
        self.refunds: list[str] = []
        self.refund_error: Exception | None = None

    def succeed(self, reference: str, amount_minor: int, channel: str = "mobile_money") -> None:
        self.transactions[reference] = GatewayTransaction(
            reference=reference,
            status="success",
            amount=amount_minor,
            currency="GHS",
            channel=channel,
            bank="MTN",
            mobile_money_number="0241234567",
            raw={"status": True, "data": {"status": "success", "amount": amount_minor}},
        )

    async def verify_transaction(self, reference: str) -> GatewayTransaction:
        self.verified.append(reference)
        return self.transactions.get(
            reference,
            GatewayTransaction(
                reference=reference,
                status="failed",
                raw={"status": False, "message": "Transaction reference not found"},
            ),
        )

    async def refund(self, reference: str) -> GatewayRefund:
        if self.refund_error is not None:
            raise self.refund_error
        self.refunds.append(reference)
        return GatewayRefund(reference=reference, status="pending")


class FakePush:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_tokens: set[str] = set()

    async def send(self, token: str, title: str, message: str) -> None:
        if token in self.fail_tokens:
            raise httpx.ConnectError("push down")
        self.sent.append((token, title, message))


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    # 文件库 + NullPool：每个会话独立连接，可以测试并发扣减
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def push() -> FakePush:
    return FakePush()


@pytest.fixture
def services(fake_redis, gateway, push, session_factory) -> ServiceContainer:
    return build_container(
        settings,
        redis=fake_redis,  # type: ignore[arg-type]
        session_factory=session_factory,
        gateway=gateway,
        push=push,
    )


@pytest.fixture
async def client(session_factory, services) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.services = None


@pytest.fixture
def make_user(db) -> Callable[..., Awaitable[User]]:
    async def _make(**kwargs: Any) -> User:
        fields: dict[str, Any] = {"first_name": "Ama", "phone": "0240000000"}
        fields.update(kwargs)
        user = User(**fields)
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_product(db) -> Callable[..., Awaitable[Product]]:
    async def _make(name: str = "Tomatoes", **kwargs: Any) -> Product:
        fields: dict[str, Any] = {
            "name": name,
            "slug": f"{name.lower().replace(' ', '-')}-{next(_seq)}",
            "price": Decimal("10.00"),
            "unit": "kg",
            "image": f"https://cdn.example.com/{name.lower()}.jpg",
            "count_in_stock": 10,
            "is_available": True,
        }
        fields.update(kwargs)
        product = Product(**fields)
        db.add(product)
        await db.commit()
        return product

    return _make


@pytest.fixture
def make_payment(db) -> Callable[..., Awaitable[Payment]]:
    async def _make(user: User, **kwargs: Any) -> Payment:
        fields: dict[str, Any] = {
            "user_id": user.id,
            "amount": Decimal("100.00"),
            "status": PaymentStatus.paid,
            "transaction_ref": f"ref-{user.id}-{next(_seq)}",
            "payment_method": "mobile_money",
        }
        fields.update(kwargs)
        payment = Payment(**fields)
        db.add(payment)
        await db.commit()
        return payment

    return _make


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_headers
