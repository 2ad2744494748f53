"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from economy.models.api import (
    BotPurchaseStatus,
    CurrencyKind,
    PurchaseStatus,
    RewardType,
    TransactionStatus,
    TransactionType,
)


@dataclass(frozen=True)
class TelegramIdentity:
    """Identity supplied by the chat platform at session start."""

    telegram_id: int
    display_name: str
    username: str | None = None
    photo_url: str | None = None
    start_param: str | None = None

    def __post_init__(self) -> None:
        """Validate identity fields."""
        if self.telegram_id <= 0:
            raise ValueError(f"telegram_id must be positive: {self.telegram_id}")
        if not self.display_name:
            raise ValueError("display_name cannot be empty")

    @property
    def account_key(self) -> str:
        """Document key of the account - the decimal platform id."""
        return account_key_for(self.telegram_id)


def account_key_for(telegram_id: int) -> str:
    """Map a platform id to its account key (1:1, deterministic)."""
    return str(telegram_id)


@dataclass(frozen=True)
class AdRewardsState:
    """Ad reward counters as they apply on a given day."""

    ads_watched_today: int
    last_watch_date: date | None
    total_ads_watched: int
    bonus_claimed: bool


@dataclass(frozen=True)
class ReferralData:
    """Referral state of one account."""

    referral_code: str
    referred_by: str | None
    referral_count: int
    referral_earnings_coins: int
    referral_earnings_balance: Decimal
    channel_joined: bool
    reward_claimed: bool


@dataclass(frozen=True)
class ApiKeyInfo:
    """Public view of a user API key; the raw key is never part of it."""

    key_prefix: str
    is_active: bool
    created_at: datetime
    last_used_at: datetime | None


@dataclass(frozen=True)
class ActivePlan:
    """Snapshot of the most recently purchased API plan."""

    plan_id: str
    plan_name: str
    purchased_at: datetime
    expires_at: datetime
    total_credits: int


@dataclass(frozen=True)
class AccountData:
    """Immutable account snapshot."""

    account_id: str
    telegram_id: int
    display_name: str
    username: str | None
    photo_url: str | None
    balance: Decimal
    coins: int
    api_credits: int
    api_key: ApiKeyInfo | None
    active_plan: ActivePlan | None
    purchased_files: tuple[str, ...]
    ad_rewards: AdRewardsState
    referral: ReferralData
    banned: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ProvisionedAccount:
    """Result of get-or-create. new_api_key is set only when a key was just generated."""

    account: AccountData
    created: bool
    new_api_key: str | None = None


@dataclass(frozen=True)
class TransactionData:
    """Immutable ledger entry."""

    transaction_id: UUID
    account_id: str
    type: TransactionType
    amount: Decimal
    currency: CurrencyKind
    description: str
    status: TransactionStatus
    created_at: datetime


@dataclass(frozen=True)
class DepositResult:
    """Deposit outcome."""

    transaction_id: UUID
    amount: Decimal
    balance_after: Decimal


@dataclass(frozen=True)
class ConversionResult:
    """Coins to balance conversion outcome."""

    coins_spent: int
    balance_added: Decimal
    coins_after: int
    balance_after: Decimal

    def __post_init__(self) -> None:
        """Validate conversion arithmetic."""
        if self.coins_spent <= 0:
            raise ValueError(f"coins_spent must be positive: {self.coins_spent}")
        if self.coins_after < 0 or self.balance_after < 0:
            raise ValueError("Conversion cannot leave a negative wallet")


@dataclass(frozen=True)
class AdWatchResult:
    """Outcome of a successful ad watch."""

    network_id: str
    coins_awarded: int
    coins_after: int
    ads_watched_today: int
    network_watched_today: int
    can_claim_bonus: bool
    cooldown_seconds: int


@dataclass(frozen=True)
class AdNetworkStatus:
    """Per-network counters for today."""

    network_id: str
    name: str
    coins: int
    watched_today: int
    daily_cap: int


@dataclass(frozen=True)
class AdRewardStatus:
    """Everything the earn screen needs."""

    ads_watched_today: int
    max_ads_per_day: int
    total_ads_watched: int
    bonus_claimed: bool
    can_claim_bonus: bool
    daily_bonus_coins: int
    cooldown_remaining_seconds: int
    networks: tuple[AdNetworkStatus, ...]


@dataclass(frozen=True)
class BonusClaimResult:
    """Daily bonus outcome."""

    coins_awarded: int
    coins_after: int


@dataclass(frozen=True)
class RedeemCodeData:
    """Immutable redeem code snapshot."""

    code_id: UUID
    code: str
    reward_type: RewardType
    reward_amount: Decimal
    max_uses: int
    current_uses: int
    used_by: tuple[str, ...]
    is_active: bool
    expires_at: datetime | None
    created_at: datetime
    created_by: str


@dataclass(frozen=True)
class RedemptionResult:
    """Successful redemption outcome."""

    code: str
    reward_type: RewardType
    reward_amount: Decimal
    coins_after: int
    balance_after: Decimal


@dataclass(frozen=True)
class ProductPurchaseResult:
    """Digital file unlock outcome."""

    product_id: str
    free: bool
    coins_spent: int
    coins_after: int


@dataclass(frozen=True)
class PlanPurchaseData:
    """Immutable API plan purchase record."""

    purchase_id: UUID
    plan_id: str
    account_id: str
    purchase_date: datetime
    expiry_date: datetime
    total_requests: int
    used_requests: int
    status: PurchaseStatus

    @property
    def remaining_requests(self) -> int:
        return max(self.total_requests - self.used_requests, 0)


@dataclass(frozen=True)
class PlanPurchaseResult:
    """API plan purchase outcome."""

    purchase: PlanPurchaseData
    balance_after: Decimal
    referrer_credited: bool


@dataclass(frozen=True)
class MeteringResult:
    """Which quota a metered call consumed and what is left of it."""

    source: str  # "plan" or "api_credits"
    purchase_id: UUID | None
    remaining: int


@dataclass(frozen=True)
class QuotaSummary:
    """Aggregate request quota over active plan purchases."""

    total_requests: int
    used_requests: int
    remaining_requests: int
    api_credits: int
    purchases: tuple[PlanPurchaseData, ...]


@dataclass(frozen=True)
class BotPurchaseData:
    """Immutable bot purchase record."""

    purchase_id: UUID
    bot_id: str
    account_id: str
    amount: Decimal
    status: BotPurchaseStatus
    webhook_response: str | None
    created_at: datetime


@dataclass(frozen=True)
class BotPurchaseResult:
    """Bot purchase outcome after the delivery attempt."""

    purchase_id: UUID
    bot_id: str
    amount: Decimal
    balance_after: Decimal
    status: BotPurchaseStatus
    delivered: bool


@dataclass(frozen=True)
class DeliveryPayload:
    """Body POSTed to a bot's delivery webhook."""

    purchase_id: UUID
    bot_id: str
    bot_name: str
    account_id: str
    display_name: str
    telegram_id: int
    amount: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class ChannelClaimResult:
    """Channel join verification outcome."""

    channel_joined: bool
    referrer_credited: bool
    referrer_id: str | None


@dataclass(frozen=True)
class ProductData:
    """Catalog product."""

    product_id: str
    title: str
    product_type: str
    category: str
    description: str
    is_free: bool
    coin_price: int
    unlock_by_ads: bool
    ad_credits_required: int
    is_active: bool


@dataclass(frozen=True)
class BotData:
    """Catalog bot."""

    bot_id: str
    name: str
    description: str
    price: Decimal
    webhook_url: str | None
    is_active: bool
    total_sales: int


@dataclass(frozen=True)
class ApiPlanData:
    """Catalog API plan."""

    plan_id: str
    name: str
    price: Decimal
    requests: int
    validity_days: int
    is_active: bool


@dataclass(frozen=True)
class AdminNotificationData:
    """Admin notification."""

    notification_id: UUID
    type: str
    purchase_id: UUID | None
    account_id: str | None
    message: str
    read: bool
    created_at: datetime
