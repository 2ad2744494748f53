"""
Account Service - provisioning, lookup, deposits and admin account actions.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.config import settings
from economy.db.models import Account, PurchasedFile, as_utc
from economy.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    WriteVerificationError,
)
from economy.models.api import CurrencyKind, TransactionType
from economy.models.domain import (
    AccountData,
    ActivePlan,
    DepositResult,
    ProvisionedAccount,
    TelegramIdentity,
)
from economy.observability.metrics import metrics
from economy.services.ad_rewards import apply_daily_reset, effective_ad_state, utc_today
from economy.services.ledger import (
    credit_balance,
    ensure_not_banned,
    find_account,
    lock_account,
    record_transaction,
    to_money,
    verify_wallet,
)
from economy.services.referrals import find_referrer, generate_referral_code, referral_to_domain
from economy.services.user_keys import assign_new_key, key_info

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _active_plan(account: Account) -> ActivePlan | None:
    if account.active_plan_id is None:
        return None
    return ActivePlan(
        plan_id=account.active_plan_id,
        plan_name=account.active_plan_name or account.active_plan_id,
        purchased_at=as_utc(account.active_plan_purchased_at) or _utc_now(),
        expires_at=as_utc(account.active_plan_expires_at) or _utc_now(),
        total_credits=account.active_plan_credits or 0,
    )


class AccountService:
    """
    Account lifecycle with write verification.

    Reads go through the write session: the lazy daily reset is persisted
    before any account data is returned.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize account service with database session."""
        self.session = session

    async def get_or_create(self, identity: TelegramIdentity) -> ProvisionedAccount:
        """
        Return the account for an identity, provisioning it on first sight.

        A new account is seeded with the starter wallet and a fresh API key;
        the raw key is only ever returned from this call. A start parameter
        that matches another account's referral code attributes the new
        account to that referrer.
        """
        account_id = identity.account_key
        account = await find_account(self.session, account_id)

        if account is not None:
            account = await lock_account(self.session, account_id)
            changed = apply_daily_reset(account, utc_today())
            changed = self._refresh_profile(account, identity) or changed
            if changed:
                await self.session.flush()
            await self.session.commit()
            return ProvisionedAccount(
                account=await self._to_domain(account), created=False, new_api_key=None
            )

        new_account = Account(
            id=account_id,
            telegram_id=identity.telegram_id,
            display_name=identity.display_name,
            username=identity.username,
            photo_url=identity.photo_url,
            balance=to_money(settings.starter_balance),
            coins=settings.starter_coins,
            api_credits=settings.starter_api_credits,
            ads_watched_today=0,
            last_watch_date=utc_today(),
            total_ads_watched=0,
            bonus_claimed=False,
            referral_code=generate_referral_code(identity.telegram_id),
            referral_count=0,
            referral_earnings_coins=0,
            referral_earnings_balance=Decimal("0"),
            channel_joined=False,
            referral_reward_claimed=False,
            referral_purchase_credited=False,
            banned=False,
        )
        raw_key = assign_new_key(new_account)
        self.session.add(new_account)

        try:
            await self.session.flush()
        except IntegrityError as e:
            # Race condition - account created by another request
            logger.warning(
                "account_creation_integrity_error", error=str(e), account_id=account_id
            )
            await self.session.rollback()
            account = await find_account(self.session, account_id)
            if account is None:
                raise WriteVerificationError(f"Account creation failed: {str(e)}")
            return ProvisionedAccount(
                account=await self._to_domain(account), created=False, new_api_key=None
            )

        if identity.start_param:
            await self._attribute_referrer(new_account, identity.start_param)

        verified = await self.session.get(Account, account_id)
        if verified is None:
            raise WriteVerificationError(f"Account {account_id} not found after insert")

        await self.session.commit()

        metrics.accounts_created_total.inc()
        logger.info(
            "account_provisioned",
            account_id=account_id,
            referred_by=verified.referred_by,
            key_prefix=verified.api_key_prefix,
        )
        return ProvisionedAccount(
            account=await self._to_domain(verified), created=True, new_api_key=raw_key
        )

    async def get_account(self, account_id: str) -> AccountData:
        """
        Get account by key, persisting the daily reset if due.

        Raises:
            AccountNotFoundError: Account doesn't exist
        """
        account = await lock_account(self.session, account_id)
        if apply_daily_reset(account, utc_today()):
            await self.session.flush()
            logger.debug("daily_reset_applied", account_id=account_id)
        await self.session.commit()
        return await self._to_domain(account)

    async def deposit(self, account_id: str, amount: Decimal) -> DepositResult:
        """
        Add balance to an account.

        Raises:
            InvalidAmountError: Amount below the configured minimum
            AccountNotFoundError: Account doesn't exist
        """
        amount = to_money(amount)
        if amount < to_money(settings.min_deposit):
            raise InvalidAmountError(amount, f"minimum deposit is {settings.min_deposit}")

        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)

        balance_after = credit_balance(account, amount, "deposit")
        entry = record_transaction(
            self.session,
            account_id,
            TransactionType.DEPOSIT,
            amount,
            CurrencyKind.BALANCE,
            "Wallet deposit",
        )
        await verify_wallet(self.session, account_id, expected_balance=balance_after)
        await self.session.commit()

        metrics.record_operation("deposit", "success")
        logger.info("deposit_completed", account_id=account_id, amount=str(amount))
        return DepositResult(
            transaction_id=entry.id, amount=amount, balance_after=to_money(balance_after)
        )

    async def list_accounts(
        self, limit: int = 50, offset: int = 0, search: str | None = None
    ) -> tuple[list[AccountData], int]:
        """
        List accounts for the back office, newest first.

        Returns:
            Tuple of (accounts, total count)
        """
        base = select(Account)
        if search:
            pattern = f"%{search.strip().lower()}%"
            base = base.where(
                or_(
                    Account.id == search.strip(),
                    func.lower(Account.display_name).like(pattern),
                    func.lower(Account.username).like(pattern),
                )
            )

        count_stmt = select(func.count()).select_from(base.subquery())
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = base.order_by(Account.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        accounts = [await self._to_domain(account) for account in result.scalars().all()]
        return accounts, total

    async def set_banned(self, account_id: str, banned: bool) -> AccountData:
        """Ban or unban an account."""
        account = await lock_account(self.session, account_id)
        account.banned = banned
        await self.session.flush()
        await self.session.commit()
        logger.info("account_ban_updated", account_id=account_id, banned=banned)
        return await self._to_domain(account)

    async def adjust(
        self,
        account_id: str,
        balance_delta: Decimal,
        coins_delta: int,
        reason: str,
    ) -> AccountData:
        """
        Manually correct a wallet. Neither currency may go below zero.

        Raises:
            InvalidAmountError: Both deltas are zero
            InsufficientFundsError: Adjustment would leave a negative wallet
        """
        balance_delta = to_money(balance_delta)
        if balance_delta == 0 and coins_delta == 0:
            raise InvalidAmountError(0, "adjustment must change something")

        account = await lock_account(self.session, account_id)
        new_balance = to_money(account.balance) + balance_delta
        new_coins = account.coins + coins_delta
        if new_balance < 0:
            raise InsufficientFundsError(
                CurrencyKind.BALANCE.value, to_money(account.balance), -balance_delta
            )
        if new_coins < 0:
            raise InsufficientFundsError(CurrencyKind.COINS.value, account.coins, -coins_delta)

        if balance_delta != 0:
            account.balance = new_balance
            metrics.record_balance(balance_delta, "adjustment")
            record_transaction(
                self.session,
                account_id,
                TransactionType.ADJUSTMENT,
                balance_delta,
                CurrencyKind.BALANCE,
                reason,
            )
        if coins_delta != 0:
            account.coins = new_coins
            metrics.record_coins(coins_delta, "adjustment")
            record_transaction(
                self.session,
                account_id,
                TransactionType.ADJUSTMENT,
                coins_delta,
                CurrencyKind.COINS,
                reason,
            )

        await verify_wallet(
            self.session, account_id, expected_balance=new_balance, expected_coins=new_coins
        )
        await self.session.commit()

        logger.info(
            "account_adjusted",
            account_id=account_id,
            balance_delta=str(balance_delta),
            coins_delta=coins_delta,
            reason=reason,
        )
        return await self._to_domain(account)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _attribute_referrer(self, new_account: Account, start_param: str) -> None:
        """
        Best-effort referral attribution; never blocks provisioning.

        Runs in a savepoint after the new row is flushed. The referrer row is
        locked before its count is incremented.
        """
        try:
            async with self.session.begin_nested():
                referrer = await find_referrer(self.session, start_param)
                if referrer is None:
                    logger.info("referral_code_unknown", start_param=start_param)
                    return
                if referrer.id == new_account.id:
                    return

                referrer = await lock_account(self.session, referrer.id)
                referrer.referral_count = referrer.referral_count + 1
                new_account.referred_by = referrer.id
        except SQLAlchemyError as e:
            logger.warning("referrer_attribution_failed", error=str(e), start_param=start_param)
            await self.session.refresh(new_account)
            return

        logger.info("referral_attributed", referrer_id=referrer.id, account_id=new_account.id)

    @staticmethod
    def _refresh_profile(account: Account, identity: TelegramIdentity) -> bool:
        changed = False
        if identity.display_name and account.display_name != identity.display_name:
            account.display_name = identity.display_name
            changed = True
        if identity.username is not None and account.username != identity.username:
            account.username = identity.username
            changed = True
        if identity.photo_url is not None and account.photo_url != identity.photo_url:
            account.photo_url = identity.photo_url
            changed = True
        return changed

    async def _to_domain(self, account: Account) -> AccountData:
        """Convert ORM account to domain model."""
        stmt = (
            select(PurchasedFile.product_id)
            .where(PurchasedFile.account_id == account.id)
            .order_by(PurchasedFile.created_at)
        )
        result = await self.session.execute(stmt)
        purchased_files = tuple(result.scalars().all())

        return AccountData(
            account_id=account.id,
            telegram_id=account.telegram_id,
            display_name=account.display_name,
            username=account.username,
            photo_url=account.photo_url,
            balance=to_money(account.balance),
            coins=account.coins,
            api_credits=account.api_credits,
            api_key=key_info(account),
            active_plan=_active_plan(account),
            purchased_files=purchased_files,
            ad_rewards=effective_ad_state(account, utc_today()),
            referral=referral_to_domain(account),
            banned=account.banned,
            created_at=as_utc(account.created_at) or account.created_at,
            updated_at=as_utc(account.updated_at) or account.updated_at,
        )
