"""
API Routes - FastAPI endpoints for economy operations.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from economy.api.dependencies import (
    get_channel_verifier,
    get_delivery_client,
    get_user_account,
    require_permission,
)
from economy.api.errors import to_http_exception
from economy.db.models import Account
from economy.db.session import get_read_db, get_write_db
from economy.exceptions import EconomyError
from economy.models.api import (
    AccountResponse,
    AdRewardStatusResponse,
    AdWatchResponse,
    ApiKeyInfoResponse,
    ApiPlanResponse,
    BonusClaimResponse,
    BotPurchaseResponse,
    BotResponse,
    ChannelClaimResponse,
    ConversionResponse,
    ConvertRequest,
    DepositRequest,
    DepositResponse,
    HealthResponse,
    MeteringResponse,
    OwnedProductsResponse,
    PlanPurchaseResponse,
    ProductPurchaseResponse,
    ProductResponse,
    ProvisionedAccountResponse,
    QuotaResponse,
    RedeemRequest,
    RedemptionResponse,
    ReferralResponse,
    RegeneratedKeyResponse,
    TelegramIdentityRequest,
    TransactionItem,
    TransactionListResponse,
    VerifyChannelRequest,
    WatchAdRequest,
)
from economy.models.domain import TelegramIdentity
from economy.services.accounts import AccountService
from economy.services.ad_rewards import AdRewardService
from economy.services.api_key import APIKeyData
from economy.services.catalog import CatalogService
from economy.services.ledger import LedgerService
from economy.services.purchases import PurchaseService
from economy.services.redeem_codes import RedeemCodeService
from economy.services.referrals import ChannelVerifier, ReferralService
from economy.services.user_keys import UserKeyService, display_prefix
from economy.services.wallet import WalletService
from economy.services.webhooks import BotDeliveryClient

router = APIRouter()

ACCOUNTS = "/v1/economy/accounts"


# ============================================================================
# Accounts
# ============================================================================


@router.post(ACCOUNTS, response_model=ProvisionedAccountResponse)
async def get_or_create_account(
    request: TelegramIdentityRequest,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> ProvisionedAccountResponse:
    """
    Resolve the Telegram identity to its account, provisioning it on first sight.

    The raw user API key is returned only on the call that generated it.
    Requires: API key with economy:write permission.
    """
    identity = TelegramIdentity(
        telegram_id=request.telegram_id,
        display_name=request.display_name,
        username=request.username,
        photo_url=request.photo_url,
        start_param=request.start_param,
    )

    try:
        provisioned = await AccountService(db).get_or_create(identity)
    except EconomyError as exc:
        raise to_http_exception(exc, "provision_account") from exc

    return ProvisionedAccountResponse(
        account=AccountResponse.model_validate(provisioned.account),
        created=provisioned.created,
        new_api_key=provisioned.new_api_key,
    )


@router.get(ACCOUNTS + "/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> AccountResponse:
    """
    Get account snapshot.

    Uses the primary database: reading an account applies a due daily reset.
    """
    try:
        account = await AccountService(db).get_account(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "get_account") from exc
    return AccountResponse.model_validate(account)


@router.post(
    ACCOUNTS + "/{account_id}/deposit",
    response_model=DepositResponse,
    status_code=status.HTTP_201_CREATED,
)
async def deposit(
    account_id: str,
    request: DepositRequest,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> DepositResponse:
    """Credit the wallet balance (payment confirmed by the caller)."""
    try:
        result = await AccountService(db).deposit(account_id, request.amount)
    except EconomyError as exc:
        raise to_http_exception(exc, "deposit") from exc
    return DepositResponse.model_validate(result)


@router.post(ACCOUNTS + "/{account_id}/convert", response_model=ConversionResponse)
async def convert_coins(
    account_id: str,
    request: ConvertRequest,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> ConversionResponse:
    """Convert coins to balance at the configured rate."""
    try:
        result = await WalletService(db).convert_coins(account_id, request.amount)
    except EconomyError as exc:
        raise to_http_exception(exc, "convert_coins") from exc
    return ConversionResponse.model_validate(result)


@router.get(ACCOUNTS + "/{account_id}/transactions", response_model=TransactionListResponse)
async def list_transactions(
    account_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> TransactionListResponse:
    """List an account's transactions, newest first."""
    try:
        transactions, total = await LedgerService(db).list_transactions(
            account_id, limit=limit, offset=offset
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "list_transactions") from exc

    return TransactionListResponse(
        transactions=[TransactionItem.model_validate(entry) for entry in transactions],
        total_count=total,
    )


# ============================================================================
# Ad rewards
# ============================================================================


@router.get(ACCOUNTS + "/{account_id}/ads", response_model=AdRewardStatusResponse)
async def get_ad_status(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> AdRewardStatusResponse:
    """Today's ad counters, per-network caps and cooldown."""
    try:
        result = await AdRewardService(db).get_status(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "ad_status") from exc
    return AdRewardStatusResponse.model_validate(result)


@router.post(ACCOUNTS + "/{account_id}/ads/watch", response_model=AdWatchResponse)
async def watch_ad(
    account_id: str,
    request: WatchAdRequest,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> AdWatchResponse:
    """
    Record a completed ad watch and award the network's coins.

    429 when a daily cap is reached or the cooldown has not elapsed.
    """
    try:
        result = await AdRewardService(db).watch_ad(account_id, request.network_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "watch_ad") from exc
    return AdWatchResponse.model_validate(result)


@router.post(ACCOUNTS + "/{account_id}/ads/bonus", response_model=BonusClaimResponse)
async def claim_daily_bonus(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> BonusClaimResponse:
    """Claim the daily bonus once the day's ad target is met."""
    try:
        result = await AdRewardService(db).claim_daily_bonus(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "claim_daily_bonus") from exc
    return BonusClaimResponse.model_validate(result)


# ============================================================================
# Redeem codes
# ============================================================================


@router.post(ACCOUNTS + "/{account_id}/redeem", response_model=RedemptionResponse)
async def redeem_code(
    account_id: str,
    request: RedeemRequest,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> RedemptionResponse:
    """Apply a redeem code. Refusals carry the message to show the user."""
    try:
        result = await RedeemCodeService(db).redeem(request.code, account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "redeem_code") from exc
    return RedemptionResponse.model_validate(result)


# ============================================================================
# Purchases
# ============================================================================


@router.post(
    ACCOUNTS + "/{account_id}/products/{product_id}/purchase",
    response_model=ProductPurchaseResponse,
)
async def purchase_product(
    account_id: str,
    product_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> ProductPurchaseResponse:
    """
    Unlock a digital file.

    Free products are granted without a charge; paid ones debit coins.
    402 on insufficient coins, 409 if already owned.
    """
    try:
        result = await PurchaseService(db).purchase_product(account_id, product_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "purchase_product") from exc
    return ProductPurchaseResponse.model_validate(result)


@router.get(ACCOUNTS + "/{account_id}/products", response_model=OwnedProductsResponse)
async def list_owned_products(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> OwnedProductsResponse:
    """Product ids the account has unlocked."""
    try:
        product_ids = await PurchaseService(db).list_owned(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "list_owned_products") from exc
    return OwnedProductsResponse(product_ids=product_ids)


@router.post(
    ACCOUNTS + "/{account_id}/plans/{plan_id}/purchase",
    response_model=PlanPurchaseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def purchase_plan(
    account_id: str,
    plan_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> PlanPurchaseResponse:
    """Buy an API plan with balance. Credits the referrer on the first purchase."""
    try:
        result = await PurchaseService(db).purchase_plan(account_id, plan_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "purchase_plan") from exc
    return PlanPurchaseResponse.model_validate(result)


@router.get(ACCOUNTS + "/{account_id}/quota", response_model=QuotaResponse)
async def get_quota(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> QuotaResponse:
    """Aggregate request quota over the account's active plans."""
    try:
        result = await PurchaseService(db).get_quota(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "get_quota") from exc
    return QuotaResponse.model_validate(result)


@router.post(
    ACCOUNTS + "/{account_id}/bots/{bot_id}/purchase",
    response_model=BotPurchaseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def purchase_bot(
    account_id: str,
    bot_id: str,
    db: AsyncSession = Depends(get_write_db),
    delivery_client: BotDeliveryClient = Depends(get_delivery_client),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> BotPurchaseResponse:
    """
    Buy a bot with balance and attempt webhook delivery.

    A failed delivery does not fail the purchase: the purchase stays pending
    and an admin notification is raised for manual delivery.
    """
    try:
        result = await PurchaseService(db, delivery_client=delivery_client).purchase_bot(
            account_id, bot_id
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "purchase_bot") from exc
    return BotPurchaseResponse.model_validate(result)


# ============================================================================
# Referrals
# ============================================================================


@router.get(ACCOUNTS + "/{account_id}/referral", response_model=ReferralResponse)
async def get_referral(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    verifier: ChannelVerifier = Depends(get_channel_verifier),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> ReferralResponse:
    """Referral code, counts and earnings."""
    try:
        result = await ReferralService(db, verifier=verifier).get_referral_summary(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "get_referral") from exc
    return ReferralResponse.model_validate(result)


@router.post(
    ACCOUNTS + "/{account_id}/referral/verify-channel", response_model=ChannelClaimResponse
)
async def verify_channel(
    account_id: str,
    request: VerifyChannelRequest,
    db: AsyncSession = Depends(get_write_db),
    verifier: ChannelVerifier = Depends(get_channel_verifier),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> ChannelClaimResponse:
    """Check channel membership and credit the referrer once."""
    try:
        result = await ReferralService(db, verifier=verifier).verify_channel_and_claim(
            account_id, request.channel_id
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "verify_channel") from exc
    return ChannelClaimResponse.model_validate(result)


# ============================================================================
# User API keys
# ============================================================================


@router.get(ACCOUNTS + "/{account_id}/api-key", response_model=ApiKeyInfoResponse)
async def get_user_api_key(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> ApiKeyInfoResponse:
    """Key prefix and status. The raw key is never returned here."""
    try:
        info = await UserKeyService(db).get_key_info(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "get_user_api_key") from exc

    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No API key issued",
        )
    return ApiKeyInfoResponse.model_validate(info)


@router.post(
    ACCOUNTS + "/{account_id}/api-key/regenerate", response_model=RegeneratedKeyResponse
)
async def regenerate_user_api_key(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> RegeneratedKeyResponse:
    """Issue a new key; the previous one stops working immediately."""
    try:
        raw_key = await UserKeyService(db).regenerate(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "regenerate_user_api_key") from exc
    return RegeneratedKeyResponse(api_key=raw_key, key_prefix=display_prefix(raw_key))


@router.post(
    ACCOUNTS + "/{account_id}/api-key/revoke", status_code=status.HTTP_204_NO_CONTENT
)
async def revoke_user_api_key(
    account_id: str,
    db: AsyncSession = Depends(get_write_db),
    api_key: APIKeyData = Depends(require_permission("economy:write")),
) -> None:
    """Deactivate the account's key."""
    try:
        await UserKeyService(db).revoke(account_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "revoke_user_api_key") from exc


# ============================================================================
# Metered API (end-user key auth)
# ============================================================================


@router.post("/v1/metered/use", response_model=MeteringResponse)
async def use_metered_request(
    account: Account = Depends(get_user_account),
    db: AsyncSession = Depends(get_write_db),
) -> MeteringResponse:
    """
    Consume one request for the key holder.

    Active plans are used first (earliest expiry first), then API credits.
    Auth: X-User-Key with the end user's API key.
    """
    try:
        result = await PurchaseService(db).meter(account.id)
    except EconomyError as exc:
        raise to_http_exception(exc, "metered_use") from exc
    return MeteringResponse.model_validate(result)


# ============================================================================
# Catalog
# ============================================================================


@router.get("/v1/economy/catalog/products", response_model=list[ProductResponse])
async def list_products(
    db: AsyncSession = Depends(get_read_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> list[ProductResponse]:
    """Active products."""
    products = await CatalogService(db).list_products(active_only=True)
    return [ProductResponse.model_validate(product) for product in products]


@router.get("/v1/economy/catalog/bots", response_model=list[BotResponse])
async def list_bots(
    db: AsyncSession = Depends(get_read_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> list[BotResponse]:
    """Active bots."""
    bots = await CatalogService(db).list_bots(active_only=True)
    return [BotResponse.model_validate(bot) for bot in bots]


@router.get("/v1/economy/catalog/plans", response_model=list[ApiPlanResponse])
async def list_plans(
    db: AsyncSession = Depends(get_read_db),
    api_key: APIKeyData = Depends(require_permission("economy:read")),
) -> list[ApiPlanResponse]:
    """Active API plans, cheapest first."""
    plans = await CatalogService(db).list_plans(active_only=True)
    return [ApiPlanResponse.model_validate(plan) for plan in plans]


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(status="healthy", database="connected", timestamp=datetime.now(UTC))
