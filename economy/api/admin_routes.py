"""
Admin API routes for managing the economy.

Protected by a service API key carrying the admin:write permission.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.api.dependencies import require_permission
from economy.api.errors import to_http_exception
from economy.db.session import get_write_db
from economy.exceptions import EconomyError
from economy.models.api import (
    AccountListResponse,
    AccountResponse,
    AdjustAccountRequest,
    AdminNotificationItem,
    ApiPlanRequest,
    ApiPlanResponse,
    ApiPlanUpdateRequest,
    BanRequest,
    BotPurchaseItem,
    BotPurchaseStatus,
    BotPurchaseStatusRequest,
    BotRequest,
    BotResponse,
    BotUpdateRequest,
    CreateRedeemCodeRequest,
    CreateServiceKeyRequest,
    ProductRequest,
    ProductResponse,
    ProductUpdateRequest,
    RedeemCodeResponse,
    ServiceKeyResponse,
    UpdateRedeemCodeRequest,
)
from economy.services.accounts import AccountService
from economy.services.api_key import APIKeyData, APIKeyService, GeneratedAPIKey
from economy.services.catalog import CatalogService
from economy.services.purchases import PurchaseService
from economy.services.redeem_codes import RedeemCodeService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

ADMIN = "admin:write"


def _generated_key_response(generated: GeneratedAPIKey) -> ServiceKeyResponse:
    return ServiceKeyResponse(
        key_id=generated.key_id,
        name=generated.name,
        key_prefix=generated.key_prefix,
        environment=generated.environment,
        permissions=generated.permissions,
        status="active",
        created_at=generated.created_at,
        expires_at=generated.expires_at,
        plaintext_key=generated.plaintext_key,
    )


# ============================================================================
# Users
# ============================================================================


@router.get("/users", response_model=AccountListResponse)
async def list_users(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    search: str | None = Query(None, max_length=255),
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> AccountListResponse:
    """List accounts, newest first. `search` matches id, display name or username."""
    accounts, total = await AccountService(db).list_accounts(
        limit=limit, offset=offset, search=search
    )
    logger.info("admin_list_users", admin_key=admin.name, count=len(accounts))
    return AccountListResponse(
        accounts=[AccountResponse.model_validate(account) for account in accounts],
        total_count=total,
    )


@router.post("/users/{account_id}/ban", response_model=AccountResponse)
async def set_user_banned(
    account_id: str,
    request: BanRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> AccountResponse:
    """Ban or unban an account."""
    try:
        account = await AccountService(db).set_banned(account_id, request.banned)
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_ban") from exc

    logger.info(
        "admin_user_ban_updated", admin_key=admin.name, account_id=account_id, banned=request.banned
    )
    return AccountResponse.model_validate(account)


@router.post("/users/{account_id}/adjust", response_model=AccountResponse)
async def adjust_user(
    account_id: str,
    request: AdjustAccountRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> AccountResponse:
    """Manual wallet correction, recorded as adjustment transactions."""
    try:
        account = await AccountService(db).adjust(
            account_id,
            balance_delta=request.balance_delta,
            coins_delta=request.coins_delta,
            reason=request.reason,
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_adjust") from exc

    logger.info("admin_user_adjusted", admin_key=admin.name, account_id=account_id)
    return AccountResponse.model_validate(account)


# ============================================================================
# Redeem codes
# ============================================================================


@router.get("/redeem-codes", response_model=list[RedeemCodeResponse])
async def list_redeem_codes(
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> list[RedeemCodeResponse]:
    codes = await RedeemCodeService(db).list_codes()
    return [RedeemCodeResponse.model_validate(code) for code in codes]


@router.post(
    "/redeem-codes", response_model=RedeemCodeResponse, status_code=status.HTTP_201_CREATED
)
async def create_redeem_code(
    request: CreateRedeemCodeRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> RedeemCodeResponse:
    """Create a code. 409 if the code already exists."""
    try:
        code = await RedeemCodeService(db).create_code(
            code=request.code,
            reward_type=request.reward_type,
            reward_amount=request.reward_amount,
            max_uses=request.max_uses,
            created_by=admin.name,
            expires_at=request.expires_at,
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_create_redeem_code") from exc
    return RedeemCodeResponse.model_validate(code)


@router.patch("/redeem-codes/{code_id}", response_model=RedeemCodeResponse)
async def update_redeem_code(
    code_id: UUID,
    request: UpdateRedeemCodeRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> RedeemCodeResponse:
    try:
        code = await RedeemCodeService(db).update_code(
            code_id,
            reward_amount=request.reward_amount,
            max_uses=request.max_uses,
            expires_at=request.expires_at,
            is_active=request.is_active,
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_update_redeem_code") from exc
    return RedeemCodeResponse.model_validate(code)


@router.delete("/redeem-codes/{code_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_redeem_code(
    code_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> None:
    """Delete a code together with its usage records."""
    try:
        await RedeemCodeService(db).delete_code(code_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_delete_redeem_code") from exc
    logger.info("admin_redeem_code_deleted", admin_key=admin.name, code_id=str(code_id))


# ============================================================================
# Catalog
# ============================================================================


@router.get("/products", response_model=list[ProductResponse])
async def list_all_products(
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> list[ProductResponse]:
    """All products, including inactive ones."""
    products = await CatalogService(db).list_products(active_only=False)
    return [ProductResponse.model_validate(product) for product in products]


@router.post("/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    request: ProductRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> ProductResponse:
    try:
        product = await CatalogService(db).create_product(**request.model_dump())
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_create_product") from exc
    return ProductResponse.model_validate(product)


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    request: ProductUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> ProductResponse:
    try:
        product = await CatalogService(db).update_product(
            product_id, **request.model_dump(exclude_unset=True)
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_update_product") from exc
    return ProductResponse.model_validate(product)


@router.get("/bots", response_model=list[BotResponse])
async def list_all_bots(
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> list[BotResponse]:
    bots = await CatalogService(db).list_bots(active_only=False)
    return [BotResponse.model_validate(bot) for bot in bots]


@router.post("/bots", response_model=BotResponse, status_code=status.HTTP_201_CREATED)
async def create_bot(
    request: BotRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> BotResponse:
    try:
        bot = await CatalogService(db).create_bot(**request.model_dump())
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_create_bot") from exc
    return BotResponse.model_validate(bot)


@router.patch("/bots/{bot_id}", response_model=BotResponse)
async def update_bot(
    bot_id: str,
    request: BotUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> BotResponse:
    try:
        bot = await CatalogService(db).update_bot(bot_id, **request.model_dump(exclude_unset=True))
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_update_bot") from exc
    return BotResponse.model_validate(bot)


@router.get("/plans", response_model=list[ApiPlanResponse])
async def list_all_plans(
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> list[ApiPlanResponse]:
    plans = await CatalogService(db).list_plans(active_only=False)
    return [ApiPlanResponse.model_validate(plan) for plan in plans]


@router.post("/plans", response_model=ApiPlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    request: ApiPlanRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> ApiPlanResponse:
    """Create an API plan. validity_days defaults to the configured plan validity."""
    try:
        plan = await CatalogService(db).create_plan(**request.model_dump())
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_create_plan") from exc
    return ApiPlanResponse.model_validate(plan)


@router.patch("/plans/{plan_id}", response_model=ApiPlanResponse)
async def update_plan(
    plan_id: str,
    request: ApiPlanUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> ApiPlanResponse:
    try:
        plan = await CatalogService(db).update_plan(
            plan_id, **request.model_dump(exclude_unset=True)
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_update_plan") from exc
    return ApiPlanResponse.model_validate(plan)


# ============================================================================
# Bot purchases and notifications
# ============================================================================


@router.get("/bot-purchases", response_model=list[BotPurchaseItem])
async def list_bot_purchases(
    status_filter: BotPurchaseStatus | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> list[BotPurchaseItem]:
    purchases = await PurchaseService(db).list_bot_purchases(status=status_filter, limit=limit)
    return [BotPurchaseItem.model_validate(purchase) for purchase in purchases]


@router.post("/bot-purchases/{purchase_id}/status", response_model=BotPurchaseItem)
async def set_bot_purchase_status(
    purchase_id: UUID,
    request: BotPurchaseStatusRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> BotPurchaseItem:
    """Record the outcome of a manual delivery."""
    try:
        purchase = await PurchaseService(db).set_bot_purchase_status(purchase_id, request.status)
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_bot_purchase_status") from exc

    logger.info(
        "admin_bot_purchase_status_set",
        admin_key=admin.name,
        purchase_id=str(purchase_id),
        status=request.status.value,
    )
    return BotPurchaseItem.model_validate(purchase)


@router.get("/notifications", response_model=list[AdminNotificationItem])
async def list_notifications(
    unread_only: bool = Query(False),
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> list[AdminNotificationItem]:
    notifications = await PurchaseService(db).list_notifications(unread_only=unread_only)
    return [AdminNotificationItem.model_validate(n) for n in notifications]


@router.post("/notifications/{notification_id}/read", response_model=AdminNotificationItem)
async def mark_notification_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> AdminNotificationItem:
    try:
        notification = await PurchaseService(db).mark_notification_read(notification_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_mark_notification_read") from exc
    return AdminNotificationItem.model_validate(notification)


# ============================================================================
# Service API keys
# ============================================================================


@router.get("/api-keys", response_model=list[ServiceKeyResponse])
async def list_service_keys(
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> list[ServiceKeyResponse]:
    """List active and rotating service keys."""
    keys = await APIKeyService(db).list_api_keys()
    return [
        ServiceKeyResponse(
            key_id=key.key_id,
            name=key.name,
            key_prefix=key.key_prefix,
            environment=key.environment,
            permissions=key.permissions,
            status=key.status,
            created_at=key.created_at,
            expires_at=key.expires_at,
        )
        for key in keys
    ]


@router.post("/api-keys", response_model=ServiceKeyResponse, status_code=status.HTTP_201_CREATED)
async def create_service_key(
    request: CreateServiceKeyRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> ServiceKeyResponse:
    """Create a service key. The plaintext key is only returned here."""
    generated = await APIKeyService(db).create_api_key(
        name=request.name,
        created_by=admin.name,
        environment=request.environment,
        permissions=request.permissions,
        expires_in_days=request.expires_in_days,
    )
    logger.info(
        "admin_api_key_created",
        admin_key=admin.name,
        key_name=request.name,
        key_id=str(generated.key_id),
    )
    return _generated_key_response(generated)


@router.delete("/api-keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_service_key(
    key_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> None:
    try:
        await APIKeyService(db).revoke_api_key(key_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_revoke_api_key") from exc
    logger.info("admin_api_key_revoked", admin_key=admin.name, key_id=str(key_id))


@router.post("/api-keys/{key_id}/rotate", response_model=ServiceKeyResponse)
async def rotate_service_key(
    key_id: UUID,
    grace_period_hours: int = Query(24, ge=0, le=168),
    db: AsyncSession = Depends(get_write_db),
    admin: APIKeyData = Depends(require_permission(ADMIN)),
) -> ServiceKeyResponse:
    """Issue a replacement key; the old one keeps working for the grace period."""
    try:
        generated = await APIKeyService(db).rotate_api_key(
            key_id, grace_period_hours=grace_period_hours
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "admin_rotate_api_key") from exc
    return _generated_key_response(generated)
