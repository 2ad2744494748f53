"""
Wallet Service - coin to balance conversion.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.config import settings
from economy.exceptions import InsufficientFundsError, InvalidConversionError
from economy.models.api import CurrencyKind, TransactionType
from economy.models.domain import ConversionResult
from economy.observability.metrics import metrics
from economy.services.ledger import (
    credit_balance,
    debit_coins,
    ensure_not_banned,
    lock_account,
    record_transaction,
    to_money,
    verify_wallet,
)

logger = get_logger(__name__)


def conversion_value(coins: int) -> Decimal:
    """Balance obtained for a number of coins at the configured rate."""
    return to_money(Decimal(coins) / Decimal(settings.coins_per_currency_unit))


def validate_conversion_amount(amount: int) -> None:
    """
    Check the requested amount against the conversion step.

    Raises:
        InvalidConversionError: Not positive, or not a whole number of steps
    """
    if amount <= 0:
        raise InvalidConversionError(amount, "amount must be positive")
    if amount < settings.min_conversion_coins:
        raise InvalidConversionError(
            amount, f"minimum is {settings.min_conversion_coins} coins"
        )
    if amount % settings.min_conversion_coins != 0:
        raise InvalidConversionError(
            amount, f"must be a multiple of {settings.min_conversion_coins}"
        )


class WalletService:
    """Coin conversion in a single transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def convert_coins(self, account_id: str, amount: int) -> ConversionResult:
        """
        Convert coins into balance.

        Coins and balance move together with one conversion ledger entry;
        the total value of the wallet is unchanged.

        Raises:
            InvalidConversionError: Amount is not a valid conversion step
            InsufficientFundsError: Fewer coins than requested
        """
        validate_conversion_amount(amount)

        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        if account.coins < amount:
            metrics.record_operation("convert_coins", "insufficient_funds")
            raise InsufficientFundsError(CurrencyKind.COINS.value, account.coins, amount)

        balance_added = conversion_value(amount)
        coins_after = debit_coins(account, amount, "conversion")
        balance_after = credit_balance(account, balance_added, "conversion")
        record_transaction(
            self.session,
            account_id,
            TransactionType.CONVERSION,
            balance_added,
            CurrencyKind.BALANCE,
            f"Converted {amount} coins",
        )

        verified = await verify_wallet(
            self.session,
            account_id,
            expected_balance=balance_after,
            expected_coins=coins_after,
        )
        await self.session.commit()

        metrics.record_operation("convert_coins", "success")
        logger.info(
            "coins_converted",
            account_id=account_id,
            coins=amount,
            balance_added=str(balance_added),
        )
        return ConversionResult(
            coins_spent=amount,
            balance_added=balance_added,
            coins_after=verified.coins,
            balance_after=to_money(verified.balance),
        )
