"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransactionType(str, Enum):
    """Ledger entry type."""

    DEPOSIT = "deposit"
    PURCHASE = "purchase"
    COIN_EARNING = "coin_earning"
    AD_REWARD = "ad_reward"
    CONVERSION = "conversion"
    REFERRAL_BONUS = "referral_bonus"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    """Ledger entry status."""

    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class CurrencyKind(str, Enum):
    """Which wallet a ledger entry moved."""

    BALANCE = "balance"
    COINS = "coins"


class RewardType(str, Enum):
    """What a redeem code pays out."""

    COINS = "coins"
    BALANCE = "balance"


class PurchaseStatus(str, Enum):
    """API plan purchase lifecycle."""

    ACTIVE = "active"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class BotPurchaseStatus(str, Enum):
    """Bot delivery lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    FAILED = "failed"


# ============================================================================
# Identity / Account Models
# ============================================================================


class TelegramIdentityRequest(BaseModel):
    """POST /v1/economy/accounts request body."""

    telegram_id: int = Field(..., gt=0)
    display_name: str = Field(..., min_length=1, max_length=255)
    username: str | None = Field(None, max_length=255)
    photo_url: str | None = Field(None, max_length=1024)
    start_param: str | None = Field(
        None, max_length=64, description="Referral code passed as the Mini App start parameter"
    )

    @field_validator("start_param")
    @classmethod
    def normalize_start_param(cls, v: str | None) -> str | None:
        """Blank start parameters mean no referral."""
        if v is None:
            return None
        v = v.strip()
        return v or None


class ApiKeyInfoResponse(BaseModel):
    """Public view of a user API key - never includes the raw key."""

    model_config = ConfigDict(from_attributes=True)

    key_prefix: str
    is_active: bool
    created_at: datetime
    last_used_at: datetime | None = None


class ActivePlanResponse(BaseModel):
    """Most recently purchased API plan."""

    model_config = ConfigDict(from_attributes=True)

    plan_id: str
    plan_name: str
    purchased_at: datetime
    expires_at: datetime
    total_credits: int


class AdRewardsResponse(BaseModel):
    """Ad reward counters effective today."""

    model_config = ConfigDict(from_attributes=True)

    ads_watched_today: int
    last_watch_date: date | None
    total_ads_watched: int
    bonus_claimed: bool


class ReferralResponse(BaseModel):
    """Referral state of an account."""

    model_config = ConfigDict(from_attributes=True)

    referral_code: str
    referred_by: str | None = None
    referral_count: int
    referral_earnings_coins: int
    referral_earnings_balance: Decimal
    channel_joined: bool
    reward_claimed: bool


class AccountResponse(BaseModel):
    """Account snapshot."""

    model_config = ConfigDict(from_attributes=True)

    account_id: str
    telegram_id: int
    display_name: str
    username: str | None = None
    photo_url: str | None = None
    balance: Decimal
    coins: int
    api_credits: int
    api_key: ApiKeyInfoResponse | None = None
    active_plan: ActivePlanResponse | None = None
    purchased_files: list[str]
    ad_rewards: AdRewardsResponse
    referral: ReferralResponse
    banned: bool
    created_at: datetime
    updated_at: datetime


class ProvisionedAccountResponse(BaseModel):
    """POST /v1/economy/accounts response."""

    account: AccountResponse
    created: bool
    new_api_key: str | None = Field(
        None, description="Raw API key, present only on the call that generated it"
    )


# ============================================================================
# Wallet Models
# ============================================================================


class DepositRequest(BaseModel):
    """POST /v1/economy/accounts/{id}/deposit request body."""

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class DepositResponse(BaseModel):
    """Deposit result."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: UUID
    amount: Decimal
    balance_after: Decimal


class ConvertRequest(BaseModel):
    """POST /v1/economy/accounts/{id}/convert request body."""

    amount: int = Field(..., gt=0, description="Coins to convert")


class ConversionResponse(BaseModel):
    """Coin conversion result."""

    model_config = ConfigDict(from_attributes=True)

    coins_spent: int
    balance_added: Decimal
    coins_after: int
    balance_after: Decimal


class TransactionItem(BaseModel):
    """Single ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: UUID
    account_id: str
    type: TransactionType
    amount: Decimal
    currency: CurrencyKind
    description: str
    status: TransactionStatus
    created_at: datetime


class TransactionListResponse(BaseModel):
    """GET /v1/economy/accounts/{id}/transactions response."""

    transactions: list[TransactionItem]
    total_count: int


# ============================================================================
# Ad Reward Models
# ============================================================================


class WatchAdRequest(BaseModel):
    """POST /v1/economy/accounts/{id}/ads/watch request body."""

    network_id: str = Field(..., min_length=1, max_length=50)


class AdWatchResponse(BaseModel):
    """Ad watch result."""

    model_config = ConfigDict(from_attributes=True)

    network_id: str
    coins_awarded: int
    coins_after: int
    ads_watched_today: int
    network_watched_today: int
    can_claim_bonus: bool
    cooldown_seconds: int


class AdNetworkStatusResponse(BaseModel):
    """Per-network counters."""

    model_config = ConfigDict(from_attributes=True)

    network_id: str
    name: str
    coins: int
    watched_today: int
    daily_cap: int


class AdRewardStatusResponse(BaseModel):
    """GET /v1/economy/accounts/{id}/ads response."""

    model_config = ConfigDict(from_attributes=True)

    ads_watched_today: int
    max_ads_per_day: int
    total_ads_watched: int
    bonus_claimed: bool
    can_claim_bonus: bool
    daily_bonus_coins: int
    cooldown_remaining_seconds: int
    networks: list[AdNetworkStatusResponse]


class BonusClaimResponse(BaseModel):
    """Daily bonus claim result."""

    model_config = ConfigDict(from_attributes=True)

    coins_awarded: int
    coins_after: int


# ============================================================================
# Redeem Code Models
# ============================================================================


class RedeemRequest(BaseModel):
    """POST /v1/economy/accounts/{id}/redeem request body."""

    code: str = Field(..., max_length=64)

    @field_validator("code")
    @classmethod
    def require_code(cls, v: str) -> str:
        """Blank codes are rejected before hitting the database."""
        if not v.strip():
            raise ValueError("Enter a code")
        return v


class RedemptionResponse(BaseModel):
    """Redemption result."""

    model_config = ConfigDict(from_attributes=True)

    code: str
    reward_type: RewardType
    reward_amount: Decimal
    coins_after: int
    balance_after: Decimal


class CreateRedeemCodeRequest(BaseModel):
    """POST /admin/redeem-codes request body."""

    code: str = Field(..., min_length=3, max_length=64)
    reward_type: RewardType
    reward_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    max_uses: int = Field(..., gt=0)
    expires_at: datetime | None = None

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """Codes are stored trimmed and uppercase."""
        v = v.strip().upper()
        if not v:
            raise ValueError("code cannot be blank")
        return v


class UpdateRedeemCodeRequest(BaseModel):
    """PATCH /admin/redeem-codes/{id} request body."""

    reward_amount: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    max_uses: int | None = Field(None, gt=0)
    expires_at: datetime | None = None
    is_active: bool | None = None


class RedeemCodeResponse(BaseModel):
    """Admin view of a redeem code."""

    model_config = ConfigDict(from_attributes=True)

    code_id: UUID
    code: str
    reward_type: RewardType
    reward_amount: Decimal
    max_uses: int
    current_uses: int
    used_by: list[str]
    is_active: bool
    expires_at: datetime | None = None
    created_at: datetime
    created_by: str


# ============================================================================
# Purchase Models
# ============================================================================


class ProductPurchaseResponse(BaseModel):
    """Digital file purchase result."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str
    free: bool
    coins_spent: int
    coins_after: int


class OwnedProductsResponse(BaseModel):
    """GET /v1/economy/accounts/{id}/products response."""

    product_ids: list[str]


class PlanPurchaseItem(BaseModel):
    """API plan purchase record."""

    model_config = ConfigDict(from_attributes=True)

    purchase_id: UUID
    plan_id: str
    account_id: str
    purchase_date: datetime
    expiry_date: datetime
    total_requests: int
    used_requests: int
    status: PurchaseStatus


class PlanPurchaseResponse(BaseModel):
    """API plan purchase result."""

    model_config = ConfigDict(from_attributes=True)

    purchase: PlanPurchaseItem
    balance_after: Decimal
    referrer_credited: bool


class QuotaResponse(BaseModel):
    """GET /v1/economy/accounts/{id}/quota response."""

    model_config = ConfigDict(from_attributes=True)

    total_requests: int
    used_requests: int
    remaining_requests: int
    api_credits: int
    purchases: list[PlanPurchaseItem]


class MeteringResponse(BaseModel):
    """POST /v1/metered/use response."""

    model_config = ConfigDict(from_attributes=True)

    source: Literal["plan", "api_credits"]
    purchase_id: UUID | None = None
    remaining: int


class BotPurchaseResponse(BaseModel):
    """Bot purchase result."""

    model_config = ConfigDict(from_attributes=True)

    purchase_id: UUID
    bot_id: str
    amount: Decimal
    balance_after: Decimal
    status: BotPurchaseStatus
    delivered: bool


# ============================================================================
# Referral Models
# ============================================================================


class VerifyChannelRequest(BaseModel):
    """POST /v1/economy/accounts/{id}/referral/verify-channel request body."""

    channel_id: str | None = Field(
        None, max_length=255, description="Must match the configured referral channel if given"
    )


class ChannelClaimResponse(BaseModel):
    """Channel verification result."""

    model_config = ConfigDict(from_attributes=True)

    channel_joined: bool
    referrer_credited: bool
    referrer_id: str | None = None


class RegeneratedKeyResponse(BaseModel):
    """POST /v1/economy/accounts/{id}/api-key/regenerate response."""

    api_key: str
    key_prefix: str


# ============================================================================
# Catalog Models
# ============================================================================


class ProductRequest(BaseModel):
    """POST /admin/products request body."""

    product_id: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=255)
    product_type: str = Field("other", max_length=50)
    category: str = Field("general", max_length=100)
    description: str = ""
    is_free: bool = False
    coin_price: int = Field(0, ge=0)
    unlock_by_ads: bool = False
    ad_credits_required: int = Field(0, ge=0)
    is_active: bool = True


class ProductUpdateRequest(BaseModel):
    """PATCH /admin/products/{id} request body."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    is_free: bool | None = None
    coin_price: int | None = Field(None, ge=0)
    unlock_by_ads: bool | None = None
    ad_credits_required: int | None = Field(None, ge=0)
    is_active: bool | None = None


class ProductResponse(BaseModel):
    """Catalog product."""

    model_config = ConfigDict(from_attributes=True)

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


class BotRequest(BaseModel):
    """POST /admin/bots request body."""

    bot_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    webhook_url: str | None = Field(None, max_length=1024)
    is_active: bool = True


class BotUpdateRequest(BaseModel):
    """PATCH /admin/bots/{id} request body."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    price: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    webhook_url: str | None = Field(None, max_length=1024)
    is_active: bool | None = None


class BotResponse(BaseModel):
    """Catalog bot."""

    model_config = ConfigDict(from_attributes=True)

    bot_id: str
    name: str
    description: str
    price: Decimal
    webhook_url: str | None = None
    is_active: bool
    total_sales: int


class ApiPlanRequest(BaseModel):
    """POST /admin/plans request body."""

    plan_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    requests: int = Field(..., gt=0)
    validity_days: int | None = Field(None, gt=0)
    is_active: bool = True


class ApiPlanUpdateRequest(BaseModel):
    """PATCH /admin/plans/{id} request body."""

    name: str | None = Field(None, min_length=1, max_length=255)
    price: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    requests: int | None = Field(None, gt=0)
    validity_days: int | None = Field(None, gt=0)
    is_active: bool | None = None


class ApiPlanResponse(BaseModel):
    """Catalog API plan."""

    model_config = ConfigDict(from_attributes=True)

    plan_id: str
    name: str
    price: Decimal
    requests: int
    validity_days: int
    is_active: bool


# ============================================================================
# Admin Models
# ============================================================================


class AccountListResponse(BaseModel):
    """GET /admin/users response."""

    accounts: list[AccountResponse]
    total_count: int


class BanRequest(BaseModel):
    """POST /admin/users/{id}/ban request body."""

    banned: bool


class AdjustAccountRequest(BaseModel):
    """POST /admin/users/{id}/adjust request body."""

    balance_delta: Decimal = Field(Decimal("0"), max_digits=12, decimal_places=2)
    coins_delta: int = 0
    reason: str = Field(..., min_length=1, max_length=255)


class BotPurchaseStatusRequest(BaseModel):
    """POST /admin/bot-purchases/{id}/status request body."""

    status: BotPurchaseStatus


class BotPurchaseItem(BaseModel):
    """Admin view of a bot purchase."""

    model_config = ConfigDict(from_attributes=True)

    purchase_id: UUID
    bot_id: str
    account_id: str
    amount: Decimal
    status: BotPurchaseStatus
    webhook_response: str | None = None
    created_at: datetime


class AdminNotificationItem(BaseModel):
    """Admin notification."""

    model_config = ConfigDict(from_attributes=True)

    notification_id: UUID
    type: str
    purchase_id: UUID | None = None
    account_id: str | None = None
    message: str
    read: bool
    created_at: datetime


class CreateServiceKeyRequest(BaseModel):
    """POST /admin/api-keys request body."""

    name: str = Field(..., min_length=1, max_length=255)
    environment: Literal["test", "live"] = "live"
    permissions: list[str] = Field(
        default_factory=lambda: ["economy:read", "economy:write"]
    )
    expires_in_days: int | None = Field(None, gt=0)


class ServiceKeyResponse(BaseModel):
    """Service API key metadata (plaintext only on creation)."""

    key_id: UUID
    name: str
    key_prefix: str
    environment: str
    permissions: list[str]
    status: str
    created_at: datetime
    expires_at: datetime | None = None
    plaintext_key: str | None = None


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: datetime
