"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- In-memory SQLite database built from the ORM metadata
- Account, catalog and redeem code factories
- Stubbed outbound HTTP (bot webhooks, Telegram Bot API)
- API test client with dependency overrides and a real service key
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from decimal import Decimal

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set required environment variables BEFORE importing economy modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_FORMAT", "console")

from economy.config import settings
from economy.db.models import ApiPlan, Base, Product, TelegramBot
from economy.db.session import get_read_db, get_write_db
from economy.models.domain import ProvisionedAccount, TelegramIdentity
from economy.services.accounts import AccountService
from economy.services.api_key import APIKeyService
from economy.services.referrals import ChannelVerifier
from economy.services.webhooks import BotDeliveryClient

# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as db:
        yield db


@pytest.fixture
def no_cooldown(monkeypatch: pytest.MonkeyPatch) -> None:
    """Let tests watch ads back to back."""
    monkeypatch.setattr(settings, "ad_cooldown_seconds", 0)


@pytest.fixture
def news_channel(monkeypatch: pytest.MonkeyPatch) -> str:
    """Configure @news as the referral channel."""
    monkeypatch.setattr(settings, "referral_channel_id", "@news")
    return "@news"


# ============================================================================
# Factories
# ============================================================================


AccountFactory = Callable[..., Awaitable[ProvisionedAccount]]


@pytest.fixture
def make_account(session: AsyncSession) -> AccountFactory:
    """Provision accounts through the real service."""

    async def _make(
        telegram_id: int = 1001,
        display_name: str = "Alice",
        username: str | None = "alice",
        start_param: str | None = None,
    ) -> ProvisionedAccount:
        identity = TelegramIdentity(
            telegram_id=telegram_id,
            display_name=display_name,
            username=username,
            start_param=start_param,
        )
        return await AccountService(session).get_or_create(identity)

    return _make


@pytest.fixture
def add_product(session: AsyncSession) -> Callable[..., Awaitable[Product]]:
    async def _add(
        product_id: str = "guide-1",
        title: str = "Trading Guide",
        coin_price: int = 50,
        is_free: bool = False,
        unlock_by_ads: bool = False,
        is_active: bool = True,
    ) -> Product:
        product = Product(
            id=product_id,
            title=title,
            product_type="pdf",
            category="guides",
            description="",
            is_free=is_free,
            coin_price=coin_price,
            unlock_by_ads=unlock_by_ads,
            ad_credits_required=0,
            is_active=is_active,
        )
        session.add(product)
        await session.commit()
        return product

    return _add


@pytest.fixture
def add_plan(session: AsyncSession) -> Callable[..., Awaitable[ApiPlan]]:
    async def _add(
        plan_id: str = "starter",
        name: str = "Starter",
        price: Decimal = Decimal("100"),
        requests: int = 3,
        validity_days: int = 30,
        is_active: bool = True,
    ) -> ApiPlan:
        plan = ApiPlan(
            id=plan_id,
            name=name,
            price=price,
            requests=requests,
            validity_days=validity_days,
            is_active=is_active,
        )
        session.add(plan)
        await session.commit()
        return plan

    return _add


@pytest.fixture
def add_bot(session: AsyncSession) -> Callable[..., Awaitable[TelegramBot]]:
    async def _add(
        bot_id: str = "signal-bot",
        name: str = "Signal Bot",
        price: Decimal = Decimal("200"),
        webhook_url: str | None = "https://bots.example.com/deliver",
        is_active: bool = True,
    ) -> TelegramBot:
        bot = TelegramBot(
            id=bot_id,
            name=name,
            description="",
            price=price,
            webhook_url=webhook_url,
            is_active=is_active,
            total_sales=0,
        )
        session.add(bot)
        await session.commit()
        return bot

    return _add


# ============================================================================
# Outbound HTTP stubs
# ============================================================================


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps the requests it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def webhook_ok() -> RecordingTransport:
    return RecordingTransport(lambda request: httpx.Response(200, text="queued"))


@pytest.fixture
def webhook_down() -> RecordingTransport:
    return RecordingTransport(lambda request: httpx.Response(503, text="unavailable"))


@pytest.fixture
def delivery_client(webhook_ok: RecordingTransport) -> BotDeliveryClient:
    return BotDeliveryClient(http_client=httpx.AsyncClient(transport=webhook_ok))


def telegram_member_transport(status: str) -> RecordingTransport:
    """Telegram getChatMember stub answering with a fixed member status."""
    return RecordingTransport(
        lambda request: httpx.Response(
            200, json={"ok": True, "result": {"status": status, "user": {"id": 1}}}
        )
    )


@pytest.fixture
def member_verifier() -> ChannelVerifier:
    return ChannelVerifier(
        bot_token="123:abc",
        api_base="https://telegram.test",
        http_client=httpx.AsyncClient(transport=telegram_member_transport("member")),
    )


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
async def service_key(session: AsyncSession) -> str:
    """Plaintext service key with read, write and admin permissions."""
    generated = await APIKeyService(session).create_api_key(
        name="test suite",
        created_by="pytest",
        environment="test",
        permissions=["economy:read", "economy:write", "admin:write"],
    )
    return generated.plaintext_key


@pytest.fixture
async def read_only_key(session: AsyncSession) -> str:
    generated = await APIKeyService(session).create_api_key(
        name="read only",
        created_by="pytest",
        environment="test",
        permissions=["economy:read"],
    )
    return generated.plaintext_key


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    delivery_client: BotDeliveryClient,
    member_verifier: ChannelVerifier,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test database and HTTP stubs."""
    from economy.api.dependencies import get_channel_verifier, get_delivery_client
    from economy.main import app

    async def _db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_write_db] = _db
    app.dependency_overrides[get_read_db] = _db
    app.dependency_overrides[get_delivery_client] = lambda: delivery_client
    app.dependency_overrides[get_channel_verifier] = lambda: member_verifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
