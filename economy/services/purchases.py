"""
Purchase Service - digital files, API plans, request metering and bots.

NO DICTIONARIES - All operations use strongly typed domain models.

Every purchase locks the account row, checks funds against the locked row,
debits, writes the ledger entry and the entitlement, verifies and commits
in one transaction. A failed funds check writes nothing.

Bot purchases are the one multi-step flow: the debit and a pending
purchase record commit first, the delivery webhook is called outside the
transaction, and the outcome is recorded afterwards as a status change or
an admin notification.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.config import settings
from economy.db.models import (
    AdminNotification,
    ApiPlan,
    ApiPurchase,
    BotPurchase,
    Product,
    PurchasedFile,
    TelegramBot,
    as_utc,
)
from economy.exceptions import (
    AccountNotFoundError,
    AlreadyOwnedError,
    ProductUnavailableError,
    QuotaExhaustedError,
    ResourceNotFoundError,
    WebhookDeliveryError,
    WriteVerificationError,
)
from economy.models.api import (
    BotPurchaseStatus,
    CurrencyKind,
    PurchaseStatus,
    TransactionType,
)
from economy.models.domain import (
    AdminNotificationData,
    BotPurchaseData,
    BotPurchaseResult,
    DeliveryPayload,
    MeteringResult,
    PlanPurchaseData,
    PlanPurchaseResult,
    ProductPurchaseResult,
    QuotaSummary,
)
from economy.observability.metrics import metrics
from economy.services.ledger import (
    debit_balance,
    debit_coins,
    ensure_not_banned,
    find_account,
    lock_account,
    record_transaction,
    to_money,
    verify_wallet,
)
from economy.services.referrals import credit_purchase_referral
from economy.services.webhooks import BotDeliveryClient

logger = get_logger(__name__)

BOT_PURCHASE_PENDING = "bot_purchase_pending"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def plan_purchase_to_domain(purchase: ApiPurchase) -> PlanPurchaseData:
    """Convert ORM plan purchase to domain model."""
    return PlanPurchaseData(
        purchase_id=purchase.id,
        plan_id=purchase.plan_id,
        account_id=purchase.account_id,
        purchase_date=as_utc(purchase.purchase_date) or purchase.purchase_date,
        expiry_date=as_utc(purchase.expiry_date) or purchase.expiry_date,
        total_requests=purchase.total_requests,
        used_requests=purchase.used_requests,
        status=PurchaseStatus(purchase.status),
    )


def bot_purchase_to_domain(purchase: BotPurchase) -> BotPurchaseData:
    """Convert ORM bot purchase to domain model."""
    return BotPurchaseData(
        purchase_id=purchase.id,
        bot_id=purchase.bot_id,
        account_id=purchase.account_id,
        amount=to_money(purchase.amount),
        status=BotPurchaseStatus(purchase.status),
        webhook_response=purchase.webhook_response,
        created_at=as_utc(purchase.created_at) or purchase.created_at,
    )


def notification_to_domain(notification: AdminNotification) -> AdminNotificationData:
    """Convert ORM notification to domain model."""
    return AdminNotificationData(
        notification_id=notification.id,
        type=notification.type,
        purchase_id=notification.purchase_id,
        account_id=notification.account_id,
        message=notification.message,
        read=notification.read,
        created_at=as_utc(notification.created_at) or notification.created_at,
    )


def refresh_purchase_status(purchase: ApiPurchase, now: datetime) -> bool:
    """
    Flip an active record that has lapsed or run out.

    Returns True when the record is still usable.
    """
    if purchase.status != PurchaseStatus.ACTIVE.value:
        return False
    if as_utc(purchase.expiry_date) <= now:
        purchase.status = PurchaseStatus.EXPIRED.value
        return False
    if purchase.used_requests >= purchase.total_requests:
        purchase.status = PurchaseStatus.EXHAUSTED.value
        return False
    return True


class PurchaseService:
    """Entitlements, plan quota and bot delivery."""

    def __init__(
        self,
        session: AsyncSession,
        delivery_client: BotDeliveryClient | None = None,
    ) -> None:
        """Initialize purchase service with database session."""
        self.session = session
        self.delivery_client = delivery_client or BotDeliveryClient()

    # ========================================================================
    # Digital files
    # ========================================================================

    async def purchase_product(self, account_id: str, product_id: str) -> ProductPurchaseResult:
        """
        Unlock a digital product.

        Free products are granted without a debit. Products unlocked by
        watching ads cannot be bought.

        Raises:
            ResourceNotFoundError: Product doesn't exist
            ProductUnavailableError: Product inactive or unlock-by-ads
            AlreadyOwnedError: Account already owns the product
            InsufficientFundsError: Not enough coins
        """
        product = await self.session.get(Product, product_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)
        if not product.is_active:
            raise ProductUnavailableError(product_id, "inactive")
        if product.unlock_by_ads:
            raise ProductUnavailableError(product_id, "unlock_by_ads")

        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        if await self._owns(account_id, product_id):
            raise AlreadyOwnedError(product_id)

        price = 0 if product.is_free else product.coin_price
        coins_after = account.coins
        if price > 0:
            coins_after = debit_coins(account, price, "product_purchase")
            record_transaction(
                self.session,
                account_id,
                TransactionType.PURCHASE,
                -price,
                CurrencyKind.COINS,
                f"Product: {product.title}",
            )

        self.session.add(
            PurchasedFile(account_id=account_id, product_id=product_id, coins_paid=price)
        )
        try:
            verified = await verify_wallet(self.session, account_id, expected_coins=coins_after)
        except IntegrityError:
            await self.session.rollback()
            raise AlreadyOwnedError(product_id)
        await self.session.commit()

        metrics.record_operation("purchase_product", "success")
        logger.info(
            "product_unlocked",
            account_id=account_id,
            product_id=product_id,
            coins_spent=price,
        )
        return ProductPurchaseResult(
            product_id=product_id,
            free=price == 0,
            coins_spent=price,
            coins_after=verified.coins,
        )

    async def has_product(self, account_id: str, product_id: str) -> bool:
        return await self._owns(account_id, product_id)

    async def list_owned(self, account_id: str) -> list[str]:
        """Product ids owned by the account, in purchase order."""
        if await find_account(self.session, account_id) is None:
            raise AccountNotFoundError(account_id)
        stmt = (
            select(PurchasedFile.product_id)
            .where(PurchasedFile.account_id == account_id)
            .order_by(PurchasedFile.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    # ========================================================================
    # API plans and metering
    # ========================================================================

    async def purchase_plan(self, account_id: str, plan_id: str) -> PlanPurchaseResult:
        """
        Buy an API plan with balance.

        Creates a quota record, updates the active plan snapshot and credits
        the referrer on the first plan purchase of a referred account.

        Raises:
            ResourceNotFoundError: Plan doesn't exist
            ProductUnavailableError: Plan inactive
            InsufficientFundsError: Not enough balance
        """
        plan = await self.session.get(ApiPlan, plan_id)
        if plan is None:
            raise ResourceNotFoundError("API plan", plan_id)
        if not plan.is_active:
            raise ProductUnavailableError(plan_id, "inactive")

        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)

        price = to_money(plan.price)
        balance_after = debit_balance(account, price, "plan_purchase")
        record_transaction(
            self.session,
            account_id,
            TransactionType.PURCHASE,
            -price,
            CurrencyKind.BALANCE,
            f"API plan: {plan.name}",
        )

        now = _utc_now()
        validity_days = plan.validity_days or settings.default_plan_validity_days
        purchase = ApiPurchase(
            plan_id=plan.id,
            account_id=account_id,
            price_paid=price,
            purchase_date=now,
            expiry_date=now + timedelta(days=validity_days),
            total_requests=plan.requests,
            used_requests=0,
            status=PurchaseStatus.ACTIVE.value,
        )
        self.session.add(purchase)

        account.active_plan_id = plan.id
        account.active_plan_name = plan.name
        account.active_plan_purchased_at = now
        account.active_plan_expires_at = purchase.expiry_date
        account.active_plan_credits = plan.requests

        referrer_credited = await credit_purchase_referral(self.session, account)

        await verify_wallet(self.session, account_id, expected_balance=balance_after)
        verified_purchase = await self.session.get(ApiPurchase, purchase.id)
        if verified_purchase is None:
            raise WriteVerificationError(f"Plan purchase {purchase.id} not found after insert")
        await self.session.commit()

        metrics.record_operation("purchase_plan", "success")
        logger.info(
            "plan_purchased",
            account_id=account_id,
            plan_id=plan.id,
            price=str(price),
            referrer_credited=referrer_credited,
        )
        return PlanPurchaseResult(
            purchase=plan_purchase_to_domain(verified_purchase),
            balance_after=to_money(balance_after),
            referrer_credited=referrer_credited,
        )

    async def use_request(self, account_id: str) -> MeteringResult:
        """
        Consume one request from the earliest-expiring usable plan record.

        Stale records are flipped to expired (or exhausted) on the way.

        Raises:
            QuotaExhaustedError: No active record has quota left
        """
        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)

        now = _utc_now()
        chosen: ApiPurchase | None = None
        for purchase in await self._active_purchases(account_id, lock=True):
            if refresh_purchase_status(purchase, now) and chosen is None:
                chosen = purchase

        if chosen is None:
            await self.session.commit()
            raise QuotaExhaustedError(account_id)

        chosen.used_requests = chosen.used_requests + 1
        if chosen.used_requests >= chosen.total_requests:
            chosen.status = PurchaseStatus.EXHAUSTED.value
        await self.session.flush()

        verified = await self.session.get(ApiPurchase, chosen.id)
        if verified is None:
            raise WriteVerificationError(f"Plan purchase {chosen.id} disappeared after update")
        await self.session.commit()

        metrics.record_operation("use_request", "plan")
        return MeteringResult(
            source="plan",
            purchase_id=verified.id,
            remaining=max(verified.total_requests - verified.used_requests, 0),
        )

    async def consume_api_credit(self, account_id: str) -> int:
        """
        Consume one starter API credit. Returns credits left.

        Raises:
            QuotaExhaustedError: No credits left
        """
        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        if account.api_credits <= 0:
            raise QuotaExhaustedError(account_id)
        account.api_credits = account.api_credits - 1
        verified = await verify_wallet(self.session, account_id)
        await self.session.commit()

        metrics.record_operation("use_request", "api_credits")
        return verified.api_credits

    async def meter(self, account_id: str) -> MeteringResult:
        """Charge one metered call: plan quota first, then API credits."""
        try:
            return await self.use_request(account_id)
        except QuotaExhaustedError:
            pass

        try:
            remaining = await self.consume_api_credit(account_id)
        except QuotaExhaustedError:
            metrics.record_operation("use_request", "exhausted")
            logger.info("metered_call_refused", account_id=account_id)
            raise
        return MeteringResult(source="api_credits", purchase_id=None, remaining=remaining)

    async def get_quota(self, account_id: str) -> QuotaSummary:
        """Totals over active plan records, after flipping stale ones."""
        account = await lock_account(self.session, account_id)
        now = _utc_now()
        active = [
            purchase
            for purchase in await self._active_purchases(account_id, lock=True)
            if refresh_purchase_status(purchase, now)
        ]
        await self.session.flush()
        await self.session.commit()

        total = sum(purchase.total_requests for purchase in active)
        used = sum(purchase.used_requests for purchase in active)
        return QuotaSummary(
            total_requests=total,
            used_requests=used,
            remaining_requests=total - used,
            api_credits=account.api_credits,
            purchases=tuple(plan_purchase_to_domain(purchase) for purchase in active),
        )

    async def list_plan_purchases(self, account_id: str) -> list[PlanPurchaseData]:
        """Every plan record of the account, newest first."""
        stmt = (
            select(ApiPurchase)
            .where(ApiPurchase.account_id == account_id)
            .order_by(ApiPurchase.purchase_date.desc())
        )
        result = await self.session.execute(stmt)
        return [plan_purchase_to_domain(purchase) for purchase in result.scalars().all()]

    # ========================================================================
    # Bots
    # ========================================================================

    async def purchase_bot(self, account_id: str, bot_id: str) -> BotPurchaseResult:
        """
        Buy a bot with balance and attempt webhook delivery.

        The debit is final once the pending record commits. Delivery
        failures never raise: the purchase stays pending and an admin
        notification is filed for manual delivery.

        Raises:
            ResourceNotFoundError: Bot doesn't exist
            ProductUnavailableError: Bot inactive
            InsufficientFundsError: Not enough balance
        """
        bot = await self.session.get(TelegramBot, bot_id, with_for_update=True)
        if bot is None:
            raise ResourceNotFoundError("Bot", bot_id)
        if not bot.is_active:
            raise ProductUnavailableError(bot_id, "inactive")

        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)

        price = to_money(bot.price)
        balance_after = debit_balance(account, price, "bot_purchase")
        record_transaction(
            self.session,
            account_id,
            TransactionType.PURCHASE,
            -price,
            CurrencyKind.BALANCE,
            f"Bot: {bot.name}",
        )
        purchase = BotPurchase(
            bot_id=bot.id,
            account_id=account_id,
            amount=price,
            status=BotPurchaseStatus.PENDING.value,
        )
        self.session.add(purchase)
        bot.total_sales = bot.total_sales + 1

        await verify_wallet(self.session, account_id, expected_balance=balance_after)
        await self.session.commit()

        logger.info(
            "bot_purchase_recorded",
            account_id=account_id,
            bot_id=bot.id,
            purchase_id=str(purchase.id),
            amount=str(price),
        )

        payload = DeliveryPayload(
            purchase_id=purchase.id,
            bot_id=bot.id,
            bot_name=bot.name,
            account_id=account_id,
            display_name=account.display_name,
            telegram_id=account.telegram_id,
            amount=price,
            timestamp=_utc_now(),
        )
        delivered, response_snippet = await self._deliver(bot.webhook_url, payload)
        status = await self._record_delivery_outcome(
            purchase.id, account_id, bot.name, delivered, response_snippet
        )

        metrics.record_operation("purchase_bot", "delivered" if delivered else "manual")
        return BotPurchaseResult(
            purchase_id=purchase.id,
            bot_id=bot.id,
            amount=price,
            balance_after=to_money(balance_after),
            status=status,
            delivered=delivered,
        )

    async def set_bot_purchase_status(
        self, purchase_id: UUID, status: BotPurchaseStatus
    ) -> BotPurchaseData:
        """Admin: move a bot purchase along its delivery lifecycle."""
        purchase = await self.session.get(BotPurchase, purchase_id, with_for_update=True)
        if purchase is None:
            raise ResourceNotFoundError("Bot purchase", str(purchase_id))
        purchase.status = status.value
        await self.session.flush()
        await self.session.commit()
        logger.info(
            "bot_purchase_status_updated", purchase_id=str(purchase_id), status=status.value
        )
        return bot_purchase_to_domain(purchase)

    async def list_bot_purchases(
        self, status: BotPurchaseStatus | None = None, limit: int = 100
    ) -> list[BotPurchaseData]:
        stmt = select(BotPurchase).order_by(BotPurchase.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(BotPurchase.status == status.value)
        result = await self.session.execute(stmt)
        return [bot_purchase_to_domain(purchase) for purchase in result.scalars().all()]

    async def list_notifications(self, unread_only: bool = False) -> list[AdminNotificationData]:
        stmt = select(AdminNotification).order_by(AdminNotification.created_at.desc())
        if unread_only:
            stmt = stmt.where(AdminNotification.read.is_(False))
        result = await self.session.execute(stmt)
        return [notification_to_domain(n) for n in result.scalars().all()]

    async def mark_notification_read(self, notification_id: UUID) -> AdminNotificationData:
        notification = await self.session.get(AdminNotification, notification_id)
        if notification is None:
            raise ResourceNotFoundError("Notification", str(notification_id))
        notification.read = True
        await self.session.flush()
        await self.session.commit()
        return notification_to_domain(notification)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _owns(self, account_id: str, product_id: str) -> bool:
        stmt = select(PurchasedFile.id).where(
            PurchasedFile.account_id == account_id, PurchasedFile.product_id == product_id
        )
        return (await self.session.execute(stmt)).scalar_one_or_none() is not None

    async def _active_purchases(self, account_id: str, lock: bool = False) -> list[ApiPurchase]:
        stmt = (
            select(ApiPurchase)
            .where(
                ApiPurchase.account_id == account_id,
                ApiPurchase.status == PurchaseStatus.ACTIVE.value,
            )
            .order_by(ApiPurchase.expiry_date.asc(), ApiPurchase.purchase_date.asc())
        )
        if lock:
            stmt = stmt.with_for_update()
        return list((await self.session.execute(stmt)).scalars().all())

    async def _deliver(
        self, webhook_url: str | None, payload: DeliveryPayload
    ) -> tuple[bool, str | None]:
        if not webhook_url:
            logger.info("bot_webhook_missing", bot_id=payload.bot_id)
            return False, None
        try:
            snippet = await self.delivery_client.deliver(webhook_url, payload)
        except WebhookDeliveryError as e:
            logger.warning(
                "bot_delivery_failed",
                purchase_id=str(payload.purchase_id),
                bot_id=payload.bot_id,
                reason=e.reason,
            )
            metrics.record_error("WebhookDeliveryError", "purchase_bot")
            return False, None
        return True, snippet

    async def _record_delivery_outcome(
        self,
        purchase_id: UUID,
        account_id: str,
        bot_name: str,
        delivered: bool,
        response_snippet: str | None,
    ) -> BotPurchaseStatus:
        """Persist the delivery outcome; a failure here leaves the purchase pending."""
        try:
            if delivered:
                purchase = await self.session.get(BotPurchase, purchase_id, with_for_update=True)
                if purchase is not None:
                    purchase.status = BotPurchaseStatus.PROCESSING.value
                    purchase.webhook_response = response_snippet
                status = BotPurchaseStatus.PROCESSING
            else:
                self.session.add(
                    AdminNotification(
                        type=BOT_PURCHASE_PENDING,
                        purchase_id=purchase_id,
                        account_id=account_id,
                        message=f"Manual delivery required for {bot_name}",
                        read=False,
                    )
                )
                status = BotPurchaseStatus.PENDING
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "bot_delivery_outcome_not_recorded",
                purchase_id=str(purchase_id),
                delivered=delivered,
                error=str(e),
            )
            metrics.record_error(type(e).__name__, "purchase_bot")
            return BotPurchaseStatus.PENDING
        return status
