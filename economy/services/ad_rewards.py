"""
Ad Reward Service - daily reset, watch throttling and the daily bonus.

NO DICTIONARIES - All operations use strongly typed domain models.

Daily counters are reset lazily: the counters that apply today are computed
from the stored last_watch_date, and every path that touches an account
persists the reset before returning. Per-network counters are keyed by
date, so stale rows simply stop counting once the day rolls over.
"""

import math
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.config import AdNetworkConfig, settings
from economy.db.models import Account, AdNetworkWatch, as_utc
from economy.exceptions import (
    AdCooldownError,
    AdLimitReachedError,
    BonusNotAvailableError,
    UnknownAdNetworkError,
)
from economy.models.api import CurrencyKind, TransactionType
from economy.models.domain import (
    AdNetworkStatus,
    AdRewardsState,
    AdRewardStatus,
    AdWatchResult,
    BonusClaimResult,
)
from economy.observability.metrics import metrics
from economy.services.ledger import (
    credit_coins,
    ensure_not_banned,
    lock_account,
    record_transaction,
    verify_wallet,
)

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def utc_today() -> date:
    """Calendar day used for every daily counter."""
    return _utc_now().date()


# ============================================================================
# Daily reset
# ============================================================================


def effective_ad_state(account: Account, today: date) -> AdRewardsState:
    """Compute the ad counters that apply on the given day."""
    if account.last_watch_date != today:
        return AdRewardsState(
            ads_watched_today=0,
            last_watch_date=today,
            total_ads_watched=account.total_ads_watched,
            bonus_claimed=False,
        )
    return AdRewardsState(
        ads_watched_today=account.ads_watched_today,
        last_watch_date=account.last_watch_date,
        total_ads_watched=account.total_ads_watched,
        bonus_claimed=account.bonus_claimed,
    )


def apply_daily_reset(account: Account, today: date) -> bool:
    """
    Write the effective counters onto the row.

    Returns True when the row changed. Applying it twice on the same day is
    a no-op, however many days have elapsed since the stored date.
    """
    if account.last_watch_date == today:
        return False
    account.ads_watched_today = 0
    account.bonus_claimed = False
    account.last_watch_date = today
    return True


def can_claim_bonus(state: AdRewardsState) -> bool:
    """Bonus unlocks once today's count reaches the cap and stays until claimed."""
    return state.ads_watched_today >= settings.max_ads_per_day and not state.bonus_claimed


def cooldown_remaining(account: Account, now: datetime) -> int:
    """Seconds left before the next watch is accepted."""
    last_watched = as_utc(account.last_ad_watched_at)
    if last_watched is None:
        return 0
    ready_at = last_watched + timedelta(seconds=settings.ad_cooldown_seconds)
    if now >= ready_at:
        return 0
    return math.ceil((ready_at - now).total_seconds())


class AdRewardService:
    """Ad watch throttle and daily bonus, one transaction per call."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ad reward service with database session."""
        self.session = session

    async def record_ad_watch(self, account_id: str) -> bool:
        """
        Count one watch against the global daily cap.

        Returns False without touching the counters once today's count has
        reached max_ads_per_day. No coins are credited here.
        """
        today = utc_today()
        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        apply_daily_reset(account, today)

        if account.ads_watched_today >= settings.max_ads_per_day:
            await self.session.commit()
            logger.info(
                "ad_watch_refused",
                account_id=account_id,
                ads_watched_today=account.ads_watched_today,
            )
            return False

        account.ads_watched_today = account.ads_watched_today + 1
        account.total_ads_watched = account.total_ads_watched + 1
        await verify_wallet(self.session, account_id)
        await self.session.commit()

        logger.info(
            "ad_watch_recorded",
            account_id=account_id,
            ads_watched_today=account.ads_watched_today,
        )
        return True

    async def watch_ad(self, account_id: str, network_id: str) -> AdWatchResult:
        """
        Record a completed ad on a network and credit its reward.

        Counter increments, coin credit and the ledger entry commit together.

        Raises:
            UnknownAdNetworkError: Network is not configured
            AdLimitReachedError: Global or per-network daily cap reached
            AdCooldownError: Previous watch was too recent
        """
        network = settings.get_ad_network(network_id)
        if network is None:
            raise UnknownAdNetworkError(network_id)

        now = _utc_now()
        today = now.date()
        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        apply_daily_reset(account, today)

        if account.ads_watched_today >= settings.max_ads_per_day:
            await self.session.commit()
            metrics.record_operation("watch_ad", "limit_reached")
            raise AdLimitReachedError("daily", settings.max_ads_per_day)

        network_row = await self._network_row(account_id, network.id, today)
        network_count = network_row.watch_count if network_row else 0
        if network_count >= network.daily_cap:
            await self.session.commit()
            metrics.record_operation("watch_ad", "limit_reached")
            raise AdLimitReachedError(network.id, network.daily_cap)

        remaining = cooldown_remaining(account, now)
        if remaining > 0:
            await self.session.commit()
            metrics.record_operation("watch_ad", "cooldown")
            raise AdCooldownError(remaining)

        if network_row is None:
            network_row = AdNetworkWatch(
                account_id=account_id,
                network_id=network.id,
                watch_date=today,
                watch_count=0,
                last_watched_at=now,
            )
            self.session.add(network_row)
        network_row.watch_count = network_count + 1
        network_row.last_watched_at = now

        account.ads_watched_today = account.ads_watched_today + 1
        account.total_ads_watched = account.total_ads_watched + 1
        account.last_ad_watched_at = now
        coins_after = credit_coins(account, network.coins, "ad_reward")
        record_transaction(
            self.session,
            account_id,
            TransactionType.AD_REWARD,
            network.coins,
            CurrencyKind.COINS,
            f"Watched {network.name} ad",
        )

        verified = await verify_wallet(self.session, account_id, expected_coins=coins_after)
        await self.session.commit()

        metrics.record_operation("watch_ad", "success")
        logger.info(
            "ad_reward_credited",
            account_id=account_id,
            network_id=network.id,
            coins=network.coins,
            ads_watched_today=verified.ads_watched_today,
        )

        state = effective_ad_state(verified, today)
        return AdWatchResult(
            network_id=network.id,
            coins_awarded=network.coins,
            coins_after=verified.coins,
            ads_watched_today=state.ads_watched_today,
            network_watched_today=network_row.watch_count,
            can_claim_bonus=can_claim_bonus(state),
            cooldown_seconds=settings.ad_cooldown_seconds,
        )

    async def claim_daily_bonus(self, account_id: str) -> BonusClaimResult:
        """
        Claim the daily bonus once today's cap has been reached.

        Raises:
            BonusNotAvailableError: Already claimed or cap not yet reached
        """
        today = utc_today()
        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        apply_daily_reset(account, today)

        state = effective_ad_state(account, today)
        if state.bonus_claimed:
            await self.session.commit()
            raise BonusNotAvailableError("already claimed today")
        if not can_claim_bonus(state):
            await self.session.commit()
            missing = settings.max_ads_per_day - state.ads_watched_today
            raise BonusNotAvailableError(f"watch {missing} more ads today")

        account.bonus_claimed = True
        coins_after = credit_coins(account, settings.daily_bonus_coins, "daily_bonus")
        record_transaction(
            self.session,
            account_id,
            TransactionType.COIN_EARNING,
            settings.daily_bonus_coins,
            CurrencyKind.COINS,
            "Daily ad bonus",
        )

        verified = await verify_wallet(self.session, account_id, expected_coins=coins_after)
        await self.session.commit()

        metrics.record_operation("claim_daily_bonus", "success")
        logger.info(
            "daily_bonus_claimed", account_id=account_id, coins=settings.daily_bonus_coins
        )
        return BonusClaimResult(
            coins_awarded=settings.daily_bonus_coins, coins_after=verified.coins
        )

    async def get_status(self, account_id: str) -> AdRewardStatus:
        """Today's counters, per-network caps and cooldown for the earn screen."""
        now = _utc_now()
        today = now.date()
        account = await lock_account(self.session, account_id)
        if apply_daily_reset(account, today):
            await self.session.flush()

        counts = await self._network_counts(account_id, today)
        state = effective_ad_state(account, today)
        networks = tuple(
            self._network_status(network, counts.get(network.id, 0))
            for network in settings.ad_networks
        )
        cooldown = cooldown_remaining(account, now)
        await self.session.commit()

        return AdRewardStatus(
            ads_watched_today=state.ads_watched_today,
            max_ads_per_day=settings.max_ads_per_day,
            total_ads_watched=state.total_ads_watched,
            bonus_claimed=state.bonus_claimed,
            can_claim_bonus=can_claim_bonus(state),
            daily_bonus_coins=settings.daily_bonus_coins,
            cooldown_remaining_seconds=cooldown,
            networks=networks,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _network_row(
        self, account_id: str, network_id: str, today: date
    ) -> AdNetworkWatch | None:
        stmt = (
            select(AdNetworkWatch)
            .where(
                AdNetworkWatch.account_id == account_id,
                AdNetworkWatch.network_id == network_id,
                AdNetworkWatch.watch_date == today,
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _network_counts(self, account_id: str, today: date) -> dict[str, int]:
        stmt = select(AdNetworkWatch.network_id, AdNetworkWatch.watch_count).where(
            AdNetworkWatch.account_id == account_id,
            AdNetworkWatch.watch_date == today,
        )
        result = await self.session.execute(stmt)
        return {network_id: count for network_id, count in result.all()}

    @staticmethod
    def _network_status(network: AdNetworkConfig, watched_today: int) -> AdNetworkStatus:
        return AdNetworkStatus(
            network_id=network.id,
            name=network.name,
            coins=network.coins,
            watched_today=watched_today,
            daily_cap=network.daily_cap,
        )
