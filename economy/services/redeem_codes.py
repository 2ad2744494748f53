"""
Redeem Code Service - promotional codes paying coins or balance.

NO DICTIONARIES - All operations use strongly typed domain models.

A redemption locks the code row and the account row, so the per-account
single-use rule and the global use cap hold under concurrent redemptions.
The unique (code, account) constraint on redeem_code_uses backs the
single-use rule at the database level.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import NoReturn
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.db.models import RedeemCode, RedeemCodeUse, as_utc
from economy.exceptions import (
    DuplicateCodeError,
    InvalidAmountError,
    RedeemCodeError,
    RedeemFailureReason,
    ResourceNotFoundError,
)
from economy.models.api import CurrencyKind, RewardType, TransactionType
from economy.models.domain import RedeemCodeData, RedemptionResult
from economy.observability.metrics import metrics
from economy.services.ledger import (
    credit_balance,
    credit_coins,
    ensure_not_banned,
    lock_account,
    record_transaction,
    to_money,
    verify_wallet,
)

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def normalize_code(code: str) -> str:
    """Codes are matched trimmed and case-insensitively."""
    return code.strip().upper()


def _validate_reward(reward_type: RewardType, reward_amount: Decimal) -> Decimal:
    amount = to_money(reward_amount)
    if amount <= 0:
        raise InvalidAmountError(amount, "reward must be positive")
    if reward_type == RewardType.COINS and amount != amount.to_integral_value():
        raise InvalidAmountError(amount, "coin rewards must be whole coins")
    return amount


class RedeemCodeService:
    """User redemption and admin management of redeem codes."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize redeem code service with database session."""
        self.session = session

    async def redeem(self, code: str, account_id: str) -> RedemptionResult:
        """
        Redeem a code for an account.

        Checks run in order: unknown or inactive code, already used by this
        account, use cap reached, expired. The first failing check decides
        the reason and nothing is written.

        Raises:
            RedeemCodeError: Code can't be applied (reason attribute says why)
        """
        normalized = normalize_code(code)
        if not normalized:
            raise RedeemCodeError(RedeemFailureReason.INVALID, code)

        stmt = (
            select(RedeemCode)
            .where(RedeemCode.code == normalized, RedeemCode.is_active.is_(True))
            .with_for_update()
        )
        redeem_code = (await self.session.execute(stmt)).scalar_one_or_none()
        if redeem_code is None:
            self._refuse(RedeemFailureReason.INVALID, normalized, account_id)

        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)

        if await self._has_used(redeem_code.id, account_id):
            self._refuse(RedeemFailureReason.ALREADY_USED, normalized, account_id)
        if redeem_code.current_uses >= redeem_code.max_uses:
            self._refuse(RedeemFailureReason.LIMIT_REACHED, normalized, account_id)
        expires_at = as_utc(redeem_code.expires_at)
        if expires_at is not None and expires_at < _utc_now():
            self._refuse(RedeemFailureReason.EXPIRED, normalized, account_id)

        reward_type = RewardType(redeem_code.reward_type)
        reward_amount = to_money(redeem_code.reward_amount)
        description = f"Redeem code {normalized}"

        if reward_type == RewardType.COINS:
            credit_coins(account, int(reward_amount), "redeem_code")
            record_transaction(
                self.session,
                account_id,
                TransactionType.COIN_EARNING,
                reward_amount,
                CurrencyKind.COINS,
                description,
            )
        else:
            credit_balance(account, reward_amount, "redeem_code")
            record_transaction(
                self.session,
                account_id,
                TransactionType.DEPOSIT,
                reward_amount,
                CurrencyKind.BALANCE,
                description,
            )

        redeem_code.current_uses = redeem_code.current_uses + 1
        self.session.add(RedeemCodeUse(code_id=redeem_code.id, account_id=account_id))

        try:
            verified = await verify_wallet(self.session, account_id)
        except IntegrityError:
            await self.session.rollback()
            self._refuse(RedeemFailureReason.ALREADY_USED, normalized, account_id)

        await self.session.commit()

        metrics.record_operation("redeem_code", "success")
        logger.info(
            "redeem_code_redeemed",
            account_id=account_id,
            code=normalized,
            reward_type=reward_type.value,
            reward_amount=str(reward_amount),
        )
        return RedemptionResult(
            code=normalized,
            reward_type=reward_type,
            reward_amount=reward_amount,
            coins_after=verified.coins,
            balance_after=to_money(verified.balance),
        )

    # ========================================================================
    # Admin
    # ========================================================================

    async def create_code(
        self,
        code: str,
        reward_type: RewardType,
        reward_amount: Decimal,
        max_uses: int,
        created_by: str,
        expires_at: datetime | None = None,
    ) -> RedeemCodeData:
        """
        Create a new active code (stored uppercase).

        Raises:
            DuplicateCodeError: Code already exists
            InvalidAmountError: Reward is not positive, or fractional coins
        """
        normalized = normalize_code(code)
        amount = _validate_reward(reward_type, reward_amount)
        if max_uses <= 0:
            raise InvalidAmountError(max_uses, "max_uses must be positive")

        existing = await self.session.execute(
            select(RedeemCode.id).where(RedeemCode.code == normalized)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateCodeError(normalized)

        redeem_code = RedeemCode(
            code=normalized,
            reward_type=reward_type.value,
            reward_amount=amount,
            max_uses=max_uses,
            current_uses=0,
            is_active=True,
            expires_at=expires_at,
            created_by=created_by,
        )
        self.session.add(redeem_code)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            raise DuplicateCodeError(normalized)
        await self.session.commit()

        logger.info("redeem_code_created", code=normalized, created_by=created_by)
        return await self._to_domain(redeem_code)

    async def update_code(
        self,
        code_id: UUID,
        reward_amount: Decimal | None = None,
        max_uses: int | None = None,
        expires_at: datetime | None = None,
        is_active: bool | None = None,
    ) -> RedeemCodeData:
        """Update the mutable fields of a code."""
        redeem_code = await self._get_locked(code_id)
        if reward_amount is not None:
            redeem_code.reward_amount = _validate_reward(
                RewardType(redeem_code.reward_type), reward_amount
            )
        if max_uses is not None:
            if max_uses <= 0:
                raise InvalidAmountError(max_uses, "max_uses must be positive")
            redeem_code.max_uses = max_uses
        if expires_at is not None:
            redeem_code.expires_at = expires_at
        if is_active is not None:
            redeem_code.is_active = is_active
        await self.session.flush()
        await self.session.commit()

        logger.info("redeem_code_updated", code_id=str(code_id))
        return await self._to_domain(redeem_code)

    async def set_active(self, code_id: UUID, is_active: bool) -> RedeemCodeData:
        return await self.update_code(code_id, is_active=is_active)

    async def delete_code(self, code_id: UUID) -> None:
        redeem_code = await self._get_locked(code_id)
        await self.session.execute(delete(RedeemCodeUse).where(RedeemCodeUse.code_id == code_id))
        await self.session.delete(redeem_code)
        await self.session.commit()
        logger.info("redeem_code_deleted", code_id=str(code_id), code=redeem_code.code)

    async def list_codes(self) -> list[RedeemCodeData]:
        """All codes, newest first."""
        stmt = select(RedeemCode).order_by(RedeemCode.created_at.desc())
        result = await self.session.execute(stmt)
        return [await self._to_domain(code) for code in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _refuse(self, reason: RedeemFailureReason, code: str, account_id: str) -> NoReturn:
        metrics.record_operation("redeem_code", reason.value)
        logger.info("redeem_code_refused", account_id=account_id, code=code, reason=reason.value)
        raise RedeemCodeError(reason, code)

    async def _has_used(self, code_id: UUID, account_id: str) -> bool:
        stmt = select(RedeemCodeUse.id).where(
            RedeemCodeUse.code_id == code_id, RedeemCodeUse.account_id == account_id
        )
        return (await self.session.execute(stmt)).scalar_one_or_none() is not None

    async def _get_locked(self, code_id: UUID) -> RedeemCode:
        redeem_code = await self.session.get(RedeemCode, code_id, with_for_update=True)
        if redeem_code is None:
            raise ResourceNotFoundError("Redeem code", str(code_id))
        return redeem_code

    async def _to_domain(self, redeem_code: RedeemCode) -> RedeemCodeData:
        stmt = (
            select(RedeemCodeUse.account_id)
            .where(RedeemCodeUse.code_id == redeem_code.id)
            .order_by(RedeemCodeUse.created_at)
        )
        used_by = tuple((await self.session.execute(stmt)).scalars().all())
        return RedeemCodeData(
            code_id=redeem_code.id,
            code=redeem_code.code,
            reward_type=RewardType(redeem_code.reward_type),
            reward_amount=to_money(redeem_code.reward_amount),
            max_uses=redeem_code.max_uses,
            current_uses=redeem_code.current_uses,
            used_by=used_by,
            is_active=redeem_code.is_active,
            expires_at=as_utc(redeem_code.expires_at),
            created_at=as_utc(redeem_code.created_at) or redeem_code.created_at,
            created_by=redeem_code.created_by,
        )
