"""
Tests for AdRewardService.

Covers the lazy daily reset, global and per-network caps, the watch
cooldown and the daily bonus.
"""

from datetime import date, timedelta

import pytest

from economy.config import settings
from economy.db.models import Account
from economy.exceptions import (
    AdCooldownError,
    AdLimitReachedError,
    BonusNotAvailableError,
    UnknownAdNetworkError,
)
from economy.models.api import TransactionType
from economy.services.ad_rewards import (
    AdRewardService,
    apply_daily_reset,
    can_claim_bonus,
    effective_ad_state,
    utc_today,
)
from economy.services.ledger import LedgerService, lock_account


def _counters(last_watch_date: date | None, watched: int = 7, claimed: bool = True) -> Account:
    return Account(
        id="1",
        ads_watched_today=watched,
        last_watch_date=last_watch_date,
        total_ads_watched=30,
        bonus_claimed=claimed,
    )


class TestDailyReset:
    """Tests for effective_ad_state and apply_daily_reset."""

    def test_same_day_keeps_counters(self):
        today = date(2026, 3, 1)
        state = effective_ad_state(_counters(today), today)
        assert state.ads_watched_today == 7
        assert state.bonus_claimed is True

    def test_new_day_zeroes_counters(self):
        today = date(2026, 3, 1)
        state = effective_ad_state(_counters(today - timedelta(days=1)), today)
        assert state.ads_watched_today == 0
        assert state.bonus_claimed is False
        assert state.last_watch_date == today
        assert state.total_ads_watched == 30

    def test_reset_is_idempotent(self):
        today = date(2026, 3, 1)
        account = _counters(today - timedelta(days=5))

        assert apply_daily_reset(account, today) is True
        assert apply_daily_reset(account, today) is False
        assert account.ads_watched_today == 0
        assert account.bonus_claimed is False
        assert account.total_ads_watched == 30

    def test_missing_date_resets(self):
        today = date(2026, 3, 1)
        account = _counters(None)
        assert apply_daily_reset(account, today) is True
        assert account.last_watch_date == today

    def test_bonus_needs_full_day(self):
        today = date(2026, 3, 1)
        full = effective_ad_state(_counters(today, watched=settings.max_ads_per_day, claimed=False), today)
        partial = effective_ad_state(_counters(today, watched=3, claimed=False), today)
        claimed = effective_ad_state(_counters(today, watched=settings.max_ads_per_day), today)

        assert can_claim_bonus(full) is True
        assert can_claim_bonus(partial) is False
        assert can_claim_bonus(claimed) is False


class TestWatchAd:
    """Tests for AdRewardService.watch_ad."""

    @pytest.mark.asyncio
    async def test_watch_credits_network_reward(self, session, make_account):
        await make_account(telegram_id=5)

        result = await AdRewardService(session).watch_ad("5", "monetag")

        assert result.coins_awarded == 5
        assert result.coins_after == 105
        assert result.ads_watched_today == 1
        assert result.network_watched_today == 1
        assert result.can_claim_bonus is False

        entries, _ = await LedgerService(session).list_transactions("5")
        assert [entry.type for entry in entries] == [TransactionType.AD_REWARD]
        assert entries[0].description == "Watched Monetag ad"

    @pytest.mark.asyncio
    async def test_unknown_network(self, session, make_account):
        await make_account(telegram_id=5)
        with pytest.raises(UnknownAdNetworkError):
            await AdRewardService(session).watch_ad("5", "nope")

    @pytest.mark.asyncio
    async def test_cooldown_between_watches(self, session, make_account):
        await make_account(telegram_id=5)
        service = AdRewardService(session)
        await service.watch_ad("5", "monetag")

        with pytest.raises(AdCooldownError) as exc:
            await service.watch_ad("5", "adsterra")

        assert 0 < exc.value.retry_after_seconds <= settings.ad_cooldown_seconds
        account = await lock_account(session, "5")
        assert account.coins == 105
        assert account.ads_watched_today == 1

    @pytest.mark.asyncio
    async def test_global_daily_cap(self, session, make_account, no_cooldown):
        await make_account(telegram_id=5)
        service = AdRewardService(session)
        networks = ["monetag", "adsterra", "propeller", "adcash"]
        for i in range(settings.max_ads_per_day):
            await service.watch_ad("5", networks[i % len(networks)])

        with pytest.raises(AdLimitReachedError) as exc:
            await service.watch_ad("5", "adcash")

        assert exc.value.scope == "daily"
        account = await lock_account(session, "5")
        assert account.ads_watched_today == settings.max_ads_per_day
        assert account.coins == 100 + 5 * settings.max_ads_per_day

    @pytest.mark.asyncio
    async def test_network_cap(self, session, make_account, no_cooldown, monkeypatch):
        monkeypatch.setattr(settings, "max_ads_per_day", 40)
        await make_account(telegram_id=5)
        service = AdRewardService(session)
        for _ in range(10):
            await service.watch_ad("5", "monetag")

        with pytest.raises(AdLimitReachedError) as exc:
            await service.watch_ad("5", "monetag")
        assert exc.value.scope == "monetag"

        result = await service.watch_ad("5", "adsterra")
        assert result.network_watched_today == 1
        assert result.ads_watched_today == 11

    @pytest.mark.asyncio
    async def test_stale_counters_reset_before_watch(self, session, make_account):
        await make_account(telegram_id=5)
        account = await lock_account(session, "5")
        account.ads_watched_today = settings.max_ads_per_day
        account.bonus_claimed = True
        account.last_watch_date = utc_today() - timedelta(days=1)
        await session.commit()

        result = await AdRewardService(session).watch_ad("5", "propeller")

        assert result.ads_watched_today == 1
        account = await lock_account(session, "5")
        assert account.bonus_claimed is False
        assert account.last_watch_date == utc_today()


class TestRecordAdWatch:
    """Tests for the coin-free counter path."""

    @pytest.mark.asyncio
    async def test_counts_until_cap(self, session, make_account):
        await make_account(telegram_id=5)
        service = AdRewardService(session)

        results = [await service.record_ad_watch("5") for _ in range(settings.max_ads_per_day)]
        assert all(results)
        before = await lock_account(session, "5")
        counters = (before.ads_watched_today, before.total_ads_watched, before.last_watch_date)

        assert await service.record_ad_watch("5") is False

        after = await lock_account(session, "5")
        assert (after.ads_watched_today, after.total_ads_watched, after.last_watch_date) == counters

        assert after.ads_watched_today == settings.max_ads_per_day
        assert after.total_ads_watched == settings.max_ads_per_day
        assert after.coins == 100


class TestDailyBonus:
    """Tests for AdRewardService.claim_daily_bonus."""

    @pytest.mark.asyncio
    async def test_bonus_before_target(self, session, make_account):
        await make_account(telegram_id=5)
        with pytest.raises(BonusNotAvailableError) as exc:
            await AdRewardService(session).claim_daily_bonus("5")
        assert exc.value.reason == f"watch {settings.max_ads_per_day} more ads today"

    @pytest.mark.asyncio
    async def test_bonus_once_per_day(self, session, make_account, no_cooldown):
        await make_account(telegram_id=5)
        service = AdRewardService(session)
        for _ in range(settings.max_ads_per_day):
            last = await service.watch_ad("5", "monetag")
        assert last.can_claim_bonus is True

        result = await service.claim_daily_bonus("5")
        assert result.coins_awarded == settings.daily_bonus_coins
        assert result.coins_after == 100 + 5 * settings.max_ads_per_day + settings.daily_bonus_coins

        with pytest.raises(BonusNotAvailableError) as exc:
            await service.claim_daily_bonus("5")
        assert exc.value.reason == "already claimed today"

        entries, _ = await LedgerService(session).list_transactions("5")
        bonus_entries = [entry for entry in entries if entry.type == TransactionType.COIN_EARNING]
        assert len(bonus_entries) == 1


class TestAdStatus:
    """Tests for AdRewardService.get_status."""

    @pytest.mark.asyncio
    async def test_fresh_account(self, session, make_account):
        await make_account(telegram_id=5)
        status = await AdRewardService(session).get_status("5")

        assert status.ads_watched_today == 0
        assert status.max_ads_per_day == settings.max_ads_per_day
        assert status.cooldown_remaining_seconds == 0
        assert [n.network_id for n in status.networks] == [
            "monetag",
            "adsterra",
            "propeller",
            "adcash",
        ]

    @pytest.mark.asyncio
    async def test_reflects_watches(self, session, make_account):
        await make_account(telegram_id=5)
        service = AdRewardService(session)
        await service.watch_ad("5", "adsterra")

        status = await service.get_status("5")
        counts = {n.network_id: n.watched_today for n in status.networks}
        assert counts["adsterra"] == 1
        assert counts["monetag"] == 0
        assert status.cooldown_remaining_seconds > 0

    @pytest.mark.asyncio
    async def test_stale_day_reset_is_persisted(self, session, session_factory, make_account):
        await make_account(telegram_id=5)
        account = await lock_account(session, "5")
        account.ads_watched_today = 8
        account.total_ads_watched = 40
        account.bonus_claimed = True
        account.last_watch_date = utc_today() - timedelta(days=4)
        await session.commit()

        status = await AdRewardService(session).get_status("5")

        assert status.ads_watched_today == 0
        assert status.bonus_claimed is False
        assert status.total_ads_watched == 40

        async with session_factory() as other:
            stored = await other.get(Account, "5")
            assert stored.ads_watched_today == 0
            assert stored.bonus_claimed is False
            assert stored.last_watch_date == utc_today()
            assert stored.total_ads_watched == 40
