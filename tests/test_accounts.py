"""
Tests for AccountService.

Covers provisioning (starter wallet, API key, referral attribution),
deposits and admin account actions.
"""

import re
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from economy.db.models import Account
from economy.exceptions import (
    AccountBannedError,
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
)
from economy.models.api import CurrencyKind, TransactionType
from economy.models.domain import TelegramIdentity
from economy.services.accounts import AccountService
from economy.services.ad_rewards import utc_today
from economy.services.ledger import LedgerService, lock_account
from economy.services.user_keys import hash_user_api_key

USER_KEY_PATTERN = re.compile(r"^pr-live-[A-Z0-9]{24}$")


class TestTelegramIdentity:
    """Tests for the identity dataclass."""

    def test_account_key_is_decimal_id(self):
        identity = TelegramIdentity(telegram_id=123456789, display_name="Bob")
        assert identity.account_key == "123456789"

    def test_rejects_non_positive_id(self):
        with pytest.raises(ValueError):
            TelegramIdentity(telegram_id=0, display_name="Bob")

    def test_rejects_empty_name(self):
        with pytest.raises(ValueError):
            TelegramIdentity(telegram_id=1, display_name="")


class TestProvisioning:
    """Tests for AccountService.get_or_create."""

    @pytest.mark.asyncio
    async def test_new_account_gets_starter_wallet(self, make_account):
        provisioned = await make_account(telegram_id=1001)
        account = provisioned.account

        assert provisioned.created is True
        assert account.account_id == "1001"
        assert account.balance == Decimal("500.00")
        assert account.coins == 100
        assert account.api_credits == 100
        assert account.ad_rewards.ads_watched_today == 0
        assert account.ad_rewards.last_watch_date == utc_today()
        assert account.referral.referral_code == "REFRT"
        assert account.purchased_files == ()
        assert account.active_plan is None
        assert account.banned is False

    @pytest.mark.asyncio
    async def test_new_account_gets_api_key(self, session, make_account):
        provisioned = await make_account(telegram_id=1001)

        assert provisioned.new_api_key is not None
        assert USER_KEY_PATTERN.match(provisioned.new_api_key)
        info = provisioned.account.api_key
        assert info is not None
        assert info.is_active is True
        assert info.key_prefix == provisioned.new_api_key[:12]

        row = await AccountService(session).get_account("1001")
        assert row.api_key is not None
        # only the digest is stored
        stored = await session.get(Account, "1001")
        assert stored.api_key_hash == hash_user_api_key(provisioned.new_api_key)

    @pytest.mark.asyncio
    async def test_existing_account_is_returned(self, make_account):
        first = await make_account(telegram_id=1001)
        second = await make_account(telegram_id=1001, display_name="Alice B.")

        assert second.created is False
        assert second.new_api_key is None
        assert second.account.account_id == first.account.account_id
        assert second.account.display_name == "Alice B."
        assert second.account.coins == 100

    @pytest.mark.asyncio
    async def test_provisioning_writes_no_transactions(self, session, make_account):
        await make_account(telegram_id=1001)
        _, total = await LedgerService(session).list_transactions("1001")
        assert total == 0

    @pytest.mark.asyncio
    async def test_referral_attribution(self, session, make_account):
        referrer = await make_account(telegram_id=1001)
        code = referrer.account.referral.referral_code

        referred = await make_account(telegram_id=2002, display_name="Bob", start_param=code)

        assert referred.account.referral.referred_by == "1001"
        refreshed = await AccountService(session).get_account("1001")
        assert refreshed.referral.referral_count == 1

    @pytest.mark.asyncio
    async def test_referral_code_is_case_insensitive(self, session, make_account):
        await make_account(telegram_id=1001)
        referred = await make_account(telegram_id=2002, start_param="refrt")
        assert referred.account.referral.referred_by == "1001"

    @pytest.mark.asyncio
    async def test_unknown_referral_code_ignored(self, make_account):
        referred = await make_account(telegram_id=2002, start_param="REFNOPE")
        assert referred.created is True
        assert referred.account.referral.referred_by is None

    @pytest.mark.asyncio
    async def test_referral_only_on_creation(self, session, make_account):
        referrer = await make_account(telegram_id=1001)
        await make_account(telegram_id=2002)

        again = await make_account(
            telegram_id=2002, start_param=referrer.account.referral.referral_code
        )

        assert again.account.referral.referred_by is None
        refreshed = await AccountService(session).get_account("1001")
        assert refreshed.referral.referral_count == 0

    @pytest.mark.asyncio
    async def test_get_missing_account(self, session):
        with pytest.raises(AccountNotFoundError):
            await AccountService(session).get_account("404")

    @pytest.mark.asyncio
    async def test_concurrent_referrals_all_counted(self, session_factory):
        async with session_factory() as setup:
            await AccountService(setup).get_or_create(
                TelegramIdentity(telegram_id=1001, display_name="Alice")
            )

        async with session_factory() as first, session_factory() as second:
            stale = await first.get(Account, "1001")
            assert stale.referral_count == 0

            await AccountService(second).get_or_create(
                TelegramIdentity(telegram_id=2002, display_name="Bob", start_param="REFRT")
            )
            await AccountService(first).get_or_create(
                TelegramIdentity(telegram_id=3003, display_name="Carol", start_param="REFRT")
            )

        async with session_factory() as check:
            referrer = await check.get(Account, "1001")
            referred = (
                (await check.execute(select(Account).where(Account.referred_by == "1001")))
                .scalars()
                .all()
            )

        assert len(referred) == 2
        assert referrer.referral_count == 2

    @pytest.mark.asyncio
    async def test_referrer_lookup_failure_does_not_block(
        self, session, make_account, monkeypatch
    ):
        await make_account(telegram_id=1001)

        async def broken_lookup(session, code):
            raise OperationalError("SELECT accounts", {}, Exception("connection reset"))

        monkeypatch.setattr("economy.services.accounts.find_referrer", broken_lookup)

        referred = await make_account(telegram_id=2002, start_param="REFRT")

        assert referred.created is True
        assert referred.account.referral.referred_by is None
        assert referred.new_api_key is not None
        referrer = await AccountService(session).get_account("1001")
        assert referrer.referral.referral_count == 0


class TestLazyDailyReset:
    """Reads persist the reset of a stale day."""

    async def _age_counters(self, session, account_id: str, days: int) -> None:
        account = await lock_account(session, account_id)
        account.ads_watched_today = 9
        account.total_ads_watched = 25
        account.bonus_claimed = True
        account.last_watch_date = utc_today() - timedelta(days=days)
        await session.commit()

    @pytest.mark.asyncio
    async def test_get_account_resets_stale_day(self, session, session_factory, make_account):
        await make_account(telegram_id=1001)
        await self._age_counters(session, "1001", days=3)

        account = await AccountService(session).get_account("1001")

        assert account.ad_rewards.ads_watched_today == 0
        assert account.ad_rewards.bonus_claimed is False
        assert account.ad_rewards.total_ads_watched == 25

        async with session_factory() as other:
            stored = await other.get(Account, "1001")
            assert stored.ads_watched_today == 0
            assert stored.bonus_claimed is False
            assert stored.last_watch_date == utc_today()

    @pytest.mark.asyncio
    async def test_returning_user_resets_stale_day(self, session, session_factory, make_account):
        await make_account(telegram_id=1001)
        await self._age_counters(session, "1001", days=30)

        again = await make_account(telegram_id=1001)

        assert again.created is False
        assert again.account.ad_rewards.ads_watched_today == 0
        assert again.account.ad_rewards.bonus_claimed is False

        async with session_factory() as other:
            stored = await other.get(Account, "1001")
            assert stored.ads_watched_today == 0
            assert stored.last_watch_date == utc_today()

    @pytest.mark.asyncio
    async def test_second_read_keeps_reset(self, session, make_account):
        await make_account(telegram_id=1001)
        await self._age_counters(session, "1001", days=2)
        service = AccountService(session)

        first = await service.get_account("1001")
        second = await service.get_account("1001")

        assert first.ad_rewards == second.ad_rewards
        assert second.ad_rewards.ads_watched_today == 0


class TestDeposit:
    """Tests for AccountService.deposit."""

    @pytest.mark.asyncio
    async def test_deposit_credits_balance(self, session, make_account):
        await make_account(telegram_id=1001)

        result = await AccountService(session).deposit("1001", Decimal("25.5"))

        assert result.amount == Decimal("25.50")
        assert result.balance_after == Decimal("525.50")
        entries, _ = await LedgerService(session).list_transactions("1001")
        assert entries[0].type == TransactionType.DEPOSIT
        assert entries[0].currency == CurrencyKind.BALANCE
        assert entries[0].amount == Decimal("25.50")

    @pytest.mark.asyncio
    async def test_deposit_below_minimum(self, session, make_account):
        await make_account(telegram_id=1001)
        with pytest.raises(InvalidAmountError):
            await AccountService(session).deposit("1001", Decimal("9.99"))

    @pytest.mark.asyncio
    async def test_deposit_banned_account(self, session, make_account):
        await make_account(telegram_id=1001)
        service = AccountService(session)
        await service.set_banned("1001", True)

        with pytest.raises(AccountBannedError):
            await service.deposit("1001", Decimal("50"))


class TestAdminActions:
    """Tests for list, ban and adjust."""

    @pytest.mark.asyncio
    async def test_list_and_search(self, session, make_account):
        await make_account(telegram_id=1001, display_name="Alice", username="alice")
        await make_account(telegram_id=2002, display_name="Bob", username="bobby")
        service = AccountService(session)

        accounts, total = await service.list_accounts()
        assert total == 2
        assert {a.account_id for a in accounts} == {"1001", "2002"}

        found, found_total = await service.list_accounts(search="BOB")
        assert found_total == 1
        assert found[0].account_id == "2002"

    @pytest.mark.asyncio
    async def test_ban_and_unban(self, session, make_account):
        await make_account(telegram_id=1001)
        service = AccountService(session)

        assert (await service.set_banned("1001", True)).banned is True
        assert (await service.set_banned("1001", False)).banned is False

    @pytest.mark.asyncio
    async def test_adjust_both_currencies(self, session, make_account):
        await make_account(telegram_id=1001)

        account = await AccountService(session).adjust(
            "1001", balance_delta=Decimal("-100"), coins_delta=25, reason="support refund"
        )

        assert account.balance == Decimal("400.00")
        assert account.coins == 125
        entries, total = await LedgerService(session).list_transactions("1001")
        assert total == 2
        assert all(entry.type == TransactionType.ADJUSTMENT for entry in entries)

    @pytest.mark.asyncio
    async def test_adjust_cannot_go_negative(self, session, make_account):
        await make_account(telegram_id=1001)
        with pytest.raises(InsufficientFundsError):
            await AccountService(session).adjust(
                "1001", balance_delta=Decimal("0"), coins_delta=-101, reason="oops"
            )

    @pytest.mark.asyncio
    async def test_adjust_requires_change(self, session, make_account):
        await make_account(telegram_id=1001)
        with pytest.raises(InvalidAmountError):
            await AccountService(session).adjust(
                "1001", balance_delta=Decimal("0"), coins_delta=0, reason="noop"
            )
