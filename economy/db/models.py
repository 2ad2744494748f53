"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from economy.models.api import CurrencyKind, TransactionStatus, TransactionType

Money = Numeric(12, 2)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class Account(Base):
    """
    ORM model for accounts table.

    One row per platform identity; the primary key is the decimal platform id.
    """

    __tablename__ = "accounts"

    # Primary Key - account key derived from the platform identity
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # Profile
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Wallet
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    coins: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    api_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # User API key - digest and display prefix only, never the raw key
    api_key_prefix: Mapped[str | None] = mapped_column(String(20), nullable=True)
    api_key_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    api_key_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    api_key_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    api_key_last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Active plan snapshot
    active_plan_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    active_plan_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active_plan_purchased_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    active_plan_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    active_plan_credits: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Ad rewards (reset lazily when last_watch_date is not today)
    ads_watched_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_watch_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_ads_watched: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    bonus_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_ad_watched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Referral
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    referred_by: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=True
    )
    referral_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    referral_earnings_coins: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    referral_earnings_balance: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    channel_joined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    referral_reward_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    referral_purchase_credited: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Status
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_account_balance_non_negative"),
        CheckConstraint("coins >= 0", name="ck_account_coins_non_negative"),
        CheckConstraint("api_credits >= 0", name="ck_account_api_credits_non_negative"),
        CheckConstraint("ads_watched_today >= 0", name="ck_account_ads_today_non_negative"),
        Index("idx_accounts_referred_by", "referred_by"),
        Index("idx_accounts_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Account(id={self.id}, balance={self.balance}, coins={self.coins})>"


class AdNetworkWatch(Base):
    """Per-network ad watch counter for one account and one day."""

    __tablename__ = "ad_network_watches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    network_id: Mapped[str] = mapped_column(String(50), nullable=False)
    watch_date: Mapped[date] = mapped_column(Date, nullable=False)
    watch_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_watched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("account_id", "network_id", "watch_date", name="uq_ad_network_watch_day"),
        CheckConstraint("watch_count >= 0", name="ck_ad_network_watch_count_non_negative"),
    )


class PurchasedFile(Base):
    """Entitlement to a digital product. Append-only."""

    __tablename__ = "purchased_files"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    coins_paid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("account_id", "product_id", name="uq_purchased_file"),
    )


class ApiPurchase(Base):
    """
    ORM model for api_purchases table.

    One row per API plan purchase; used_requests is the metered counter.
    """

    __tablename__ = "api_purchases"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    plan_id: Mapped[str] = mapped_column(String(100), nullable=False)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False, index=True
    )
    price_paid: Mapped[Decimal] = mapped_column(Money, nullable=False)
    purchase_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_requests: Mapped[int] = mapped_column(Integer, nullable=False)
    used_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("total_requests > 0", name="ck_api_purchase_total_positive"),
        CheckConstraint(
            "used_requests >= 0 AND used_requests <= total_requests",
            name="ck_api_purchase_used_in_range",
        ),
        CheckConstraint(
            "status IN ('active', 'expired', 'exhausted')", name="ck_api_purchase_status"
        ),
        Index("idx_api_purchases_account_status", "account_id", "status"),
    )


class Transaction(Base):
    """
    ORM model for transactions table.

    Append-only audit trail of balance and coin movements. Display only.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        _enum_column(TransactionType, "transaction_type"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[CurrencyKind] = mapped_column(
        _enum_column(CurrencyKind, "currency_kind"), nullable=False
    )
    description: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        _enum_column(TransactionStatus, "transaction_status"),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_transactions_account_created", "account_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Transaction(id={self.id}, account_id={self.account_id}, "
            f"type={self.type}, amount={self.amount} {self.currency})>"
        )


class RedeemCode(Base):
    """ORM model for redeem_codes table."""

    __tablename__ = "redeem_codes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    reward_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reward_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("reward_amount > 0", name="ck_redeem_code_reward_positive"),
        CheckConstraint("max_uses > 0", name="ck_redeem_code_max_uses_positive"),
        CheckConstraint("current_uses >= 0", name="ck_redeem_code_uses_non_negative"),
        CheckConstraint("reward_type IN ('coins', 'balance')", name="ck_redeem_code_reward_type"),
    )


class RedeemCodeUse(Base):
    """One redemption of a code by an account - backs the used-by set."""

    __tablename__ = "redeem_code_uses"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("redeem_codes.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("code_id", "account_id", name="uq_redeem_code_use"),
    )


class Product(Base):
    """Catalog: downloadable digital product."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    product_type: Mapped[str] = mapped_column(String(50), nullable=False, default="other")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    coin_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unlock_by_ads: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ad_credits_required: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("coin_price >= 0", name="ck_product_coin_price_non_negative"),
    )


class TelegramBot(Base):
    """Catalog: bot sold for balance and delivered through a webhook."""

    __tablename__ = "telegram_bots"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    webhook_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    total_sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (CheckConstraint("price >= 0", name="ck_bot_price_non_negative"),)


class ApiPlan(Base):
    """Catalog: API request plan sold for balance."""

    __tablename__ = "api_plans"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    requests: Mapped[int] = mapped_column(Integer, nullable=False)
    validity_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_api_plan_price_non_negative"),
        CheckConstraint("requests > 0", name="ck_api_plan_requests_positive"),
        CheckConstraint("validity_days > 0", name="ck_api_plan_validity_positive"),
    )


class BotPurchase(Base):
    """ORM model for bot_purchases table."""

    __tablename__ = "bot_purchases"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    bot_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("telegram_bots.id"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    webhook_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'delivered', 'failed')",
            name="ck_bot_purchase_status",
        ),
    )


class AdminNotification(Base):
    """Work item for the back office (e.g. manual bot delivery)."""

    __tablename__ = "admin_notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    purchase_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_admin_notifications_read", "read"),)


class APIKey(Base):
    """
    ORM model for api_keys table.

    Stores hashed service API keys for callers of this API.
    """

    __tablename__ = "api_keys"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Key storage (hashed with Argon2id)
    key_hash: Mapped[str] = mapped_column(Text, nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    # Metadata
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    environment: Mapped[str] = mapped_column(String(10), nullable=False)
    permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Status
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("environment IN ('test', 'live')", name="ck_api_keys_environment"),
        CheckConstraint("status IN ('active', 'rotating', 'revoked')", name="ck_api_keys_status"),
        Index("idx_api_keys_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<APIKey(id={self.id}, prefix={self.key_prefix}, status={self.status})>"
