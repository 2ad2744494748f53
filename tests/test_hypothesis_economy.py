"""
Hypothesis Property-Based Tests for economy rules.

Uses Hypothesis to generate random inputs and verify:
- Coin conversion preserves wallet value and rejects partial steps
- Referral codes are deterministic, unique and well formed
- Daily ad counter reset is idempotent
- Money quantization
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import assume, given
from hypothesis import strategies as st

from economy.db.models import Account
from economy.exceptions import InvalidConversionError
from economy.services.ad_rewards import apply_daily_reset, effective_ad_state
from economy.services.ledger import to_money
from economy.services.referrals import generate_referral_code
from economy.services.wallet import conversion_value, validate_conversion_amount

# ============================================================================
# Hypothesis Strategies - Reusable data generators
# ============================================================================

# Valid conversion amounts (whole conversion steps of 10 coins)
conversion_steps = st.integers(min_value=1, max_value=100_000).map(lambda n: n * 10)

# Amounts that are not whole steps
partial_steps = st.integers(min_value=1, max_value=1_000_000).filter(lambda n: n % 10 != 0)

# Telegram user ids
telegram_ids = st.integers(min_value=1, max_value=2**53)

# Days around today
days = st.dates(min_value=date(2020, 1, 1), max_value=date(2030, 12, 31))

# Money amounts with arbitrary precision
raw_amounts = st.decimals(
    min_value=Decimal("-1000000"),
    max_value=Decimal("1000000"),
    allow_nan=False,
    allow_infinity=False,
    places=6,
)


# ============================================================================
# Conversion properties
# ============================================================================


class TestConversionProperties:
    """Coin conversion arithmetic."""

    @given(coins=conversion_steps)
    def test_value_is_coins_over_rate(self, coins):
        validate_conversion_amount(coins)
        assert conversion_value(coins) * 10 == coins

    @given(coins=conversion_steps, held=st.integers(min_value=0, max_value=10_000))
    def test_wallet_value_preserved(self, coins, held):
        """Coins plus balance (in coins) is the same before and after."""
        coins_held = coins + held
        balance = Decimal("500.00")
        before = balance * 10 + coins_held
        after = (balance + conversion_value(coins)) * 10 + (coins_held - coins)
        assert before == after

    @given(coins=partial_steps)
    def test_partial_steps_rejected(self, coins):
        with pytest.raises(InvalidConversionError):
            validate_conversion_amount(coins)

    @given(coins=st.integers(max_value=0))
    def test_non_positive_rejected(self, coins):
        with pytest.raises(InvalidConversionError):
            validate_conversion_amount(coins)


# ============================================================================
# Referral code properties
# ============================================================================


class TestReferralCodeProperties:
    """Referral code generation."""

    @given(telegram_id=telegram_ids)
    def test_deterministic_and_well_formed(self, telegram_id):
        code = generate_referral_code(telegram_id)
        assert code == generate_referral_code(telegram_id)
        assert code.startswith("REF")
        assert code[3:].isalnum()
        assert code == code.upper()

    @given(telegram_id=telegram_ids)
    def test_decodes_back_to_id(self, telegram_id):
        assert int(generate_referral_code(telegram_id)[3:], 36) == telegram_id

    @given(first=telegram_ids, second=telegram_ids)
    def test_distinct_ids_distinct_codes(self, first, second):
        assume(first != second)
        assert generate_referral_code(first) != generate_referral_code(second)

    @given(telegram_id=st.integers(max_value=0))
    def test_non_positive_ids_rejected(self, telegram_id):
        with pytest.raises(ValueError):
            generate_referral_code(telegram_id)


# ============================================================================
# Daily reset properties
# ============================================================================


class TestDailyResetProperties:
    """Ad counter reset on day change."""

    @given(
        stored=days,
        elapsed=st.integers(min_value=0, max_value=400),
        watched=st.integers(min_value=0, max_value=10),
        bonus=st.booleans(),
    )
    def test_reset_is_idempotent(self, stored, elapsed, watched, bonus):
        account = Account(
            ads_watched_today=watched,
            last_watch_date=stored,
            total_ads_watched=watched,
            bonus_claimed=bonus,
        )
        today = stored + timedelta(days=elapsed)

        changed = apply_daily_reset(account, today)
        snapshot = (account.ads_watched_today, account.bonus_claimed, account.last_watch_date)

        assert changed == (elapsed > 0)
        assert apply_daily_reset(account, today) is False
        assert (account.ads_watched_today, account.bonus_claimed, account.last_watch_date) == snapshot

    @given(
        stored=days,
        elapsed=st.integers(min_value=1, max_value=400),
        watched=st.integers(min_value=0, max_value=10),
    )
    def test_effective_state_after_day_change(self, stored, elapsed, watched):
        account = Account(
            ads_watched_today=watched,
            last_watch_date=stored,
            total_ads_watched=watched + 5,
            bonus_claimed=True,
        )

        state = effective_ad_state(account, stored + timedelta(days=elapsed))

        assert state.ads_watched_today == 0
        assert state.bonus_claimed is False
        assert state.total_ads_watched == watched + 5
        # Reading never mutates the row
        assert account.ads_watched_today == watched


# ============================================================================
# Money properties
# ============================================================================


class TestMoneyProperties:
    """Currency quantization."""

    @given(amount=raw_amounts)
    def test_two_places(self, amount):
        assert to_money(amount).as_tuple().exponent == -2

    @given(amount=raw_amounts)
    def test_idempotent(self, amount):
        assert to_money(to_money(amount)) == to_money(amount)

    @given(amount=raw_amounts)
    def test_within_half_cent(self, amount):
        assert abs(to_money(amount) - amount) <= Decimal("0.005")
