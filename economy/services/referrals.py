"""
Referral Service - attribution, purchase bonus and channel join bonus.

Two triggers credit a referrer, each at most once per referral edge:
a plan purchase by the referred account (coins) and verified membership of
the referred account in the configured channel (balance).
"""

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.config import settings
from economy.db.models import Account
from economy.exceptions import ChannelVerificationError, ReferralError
from economy.models.api import CurrencyKind, TransactionType
from economy.models.domain import ChannelClaimResult, ReferralData
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

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
MEMBER_STATUSES = frozenset({"member", "administrator", "creator"})


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_referral_code(telegram_id: int) -> str:
    """Deterministic code: "REF" followed by the id in uppercase base 36."""
    if telegram_id <= 0:
        raise ValueError(f"telegram_id must be positive: {telegram_id}")
    return f"REF{_to_base36(telegram_id).upper()}"


async def find_referrer(session: AsyncSession, code: str) -> Account | None:
    """Look up the account that owns a referral code (case-insensitive)."""
    normalized = code.strip().upper()
    if not normalized:
        return None
    stmt = select(Account).where(func.upper(Account.referral_code) == normalized)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def referral_to_domain(account: Account) -> ReferralData:
    """Convert the referral columns of an account to a domain model."""
    return ReferralData(
        referral_code=account.referral_code,
        referred_by=account.referred_by,
        referral_count=account.referral_count,
        referral_earnings_coins=account.referral_earnings_coins,
        referral_earnings_balance=to_money(account.referral_earnings_balance),
        channel_joined=account.channel_joined,
        reward_claimed=account.referral_reward_claimed,
    )


async def credit_purchase_referral(session: AsyncSession, buyer: Account) -> bool:
    """
    Credit the buyer's referrer for a plan purchase.

    Runs inside the caller's transaction; the buyer row must already be
    locked. Returns True when a bonus was credited.
    """
    if not settings.referral_enabled or buyer.referred_by is None:
        return False
    if buyer.referral_purchase_credited:
        return False

    referrer = await session.get(Account, buyer.referred_by, with_for_update=True)
    if referrer is None:
        logger.warning(
            "referrer_missing", account_id=buyer.id, referred_by=buyer.referred_by
        )
        return False

    bonus = settings.referral_purchase_bonus_coins
    credit_coins(referrer, bonus, "referral_purchase")
    referrer.referral_earnings_coins = referrer.referral_earnings_coins + bonus
    record_transaction(
        session,
        referrer.id,
        TransactionType.REFERRAL_BONUS,
        bonus,
        CurrencyKind.COINS,
        f"Referral bonus: plan purchase by {buyer.display_name}",
    )
    buyer.referral_purchase_credited = True

    logger.info(
        "referral_purchase_credited",
        referrer_id=referrer.id,
        referred_id=buyer.id,
        coins=bonus,
    )
    return True


class ChannelVerifier:
    """Checks channel membership through the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str | None = None,
        api_base: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.bot_token = settings.telegram_bot_token if bot_token is None else bot_token
        self.api_base = (api_base or settings.telegram_api_base).rstrip("/")
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.webhook_timeout_seconds)
        return self._http_client

    async def is_member(self, channel_id: str, telegram_id: int) -> bool:
        """
        Ask getChatMember whether the user is in the channel.

        Raises:
            ChannelVerificationError: Bot not configured or the call failed
        """
        if not self.bot_token:
            raise ChannelVerificationError("bot token not configured")

        url = f"{self.api_base}/bot{self.bot_token}/getChatMember"
        try:
            response = await self.http_client.get(
                url, params={"chat_id": channel_id, "user_id": telegram_id}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "channel_membership_check_failed",
                status=e.response.status_code,
                channel_id=channel_id,
            )
            raise ChannelVerificationError(f"Bot API returned {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error("channel_membership_check_error", error=str(e), channel_id=channel_id)
            raise ChannelVerificationError("Bot API unreachable")

        if not payload.get("ok"):
            raise ChannelVerificationError(payload.get("description", "Bot API error"))
        status = payload.get("result", {}).get("status", "")
        return status in MEMBER_STATUSES

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


class ReferralService:
    """Referral summary and the channel join claim."""

    def __init__(self, session: AsyncSession, verifier: ChannelVerifier | None = None) -> None:
        self.session = session
        self.verifier = verifier or ChannelVerifier()

    async def get_referral_summary(self, account_id: str) -> ReferralData:
        account = await lock_account(self.session, account_id)
        return referral_to_domain(account)

    async def verify_channel_and_claim(
        self, account_id: str, channel_id: str | None = None
    ) -> ChannelClaimResult:
        """
        Verify channel membership and credit the referrer once.

        The account row is unlocked while the Bot API call is in flight.

        Raises:
            ReferralError: No channel configured, or a different channel was given
            ChannelVerificationError: Not a member, or the check failed
        """
        channel = settings.referral_channel_id
        if not channel:
            raise ReferralError("channel not configured")
        if channel_id and channel_id != channel:
            raise ReferralError(f"channel {channel_id} does not qualify for the referral bonus")

        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        telegram_id = account.telegram_id
        await self.session.commit()

        if not await self.verifier.is_member(channel, telegram_id):
            metrics.record_operation("verify_channel", "not_member")
            raise ChannelVerificationError("Please join the channel first")

        account = await lock_account(self.session, account_id)
        account.channel_joined = True

        referrer_credited = False
        referrer_id = account.referred_by
        if (
            settings.referral_enabled
            and referrer_id is not None
            and not account.referral_reward_claimed
        ):
            referrer = await self.session.get(Account, referrer_id, with_for_update=True)
            if referrer is not None:
                bonus = to_money(settings.referral_channel_bonus)
                balance_after = credit_balance(referrer, bonus, "referral_channel")
                referrer.referral_earnings_balance = (
                    to_money(referrer.referral_earnings_balance) + bonus
                )
                record_transaction(
                    self.session,
                    referrer.id,
                    TransactionType.REFERRAL_BONUS,
                    bonus,
                    CurrencyKind.BALANCE,
                    f"Referral bonus: {account.display_name} joined the channel",
                )
                account.referral_reward_claimed = True
                referrer_credited = True
                await verify_wallet(self.session, referrer.id, expected_balance=balance_after)
            else:
                logger.warning(
                    "referrer_missing", account_id=account_id, referred_by=referrer_id
                )

        await self.session.flush()
        await self.session.commit()

        metrics.record_operation("verify_channel", "success")
        logger.info(
            "channel_join_verified",
            account_id=account_id,
            channel_id=channel,
            referrer_credited=referrer_credited,
        )
        return ChannelClaimResult(
            channel_joined=True,
            referrer_credited=referrer_credited,
            referrer_id=referrer_id if referrer_credited else None,
        )
