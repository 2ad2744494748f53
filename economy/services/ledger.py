"""
Ledger - transaction log and shared wallet row helpers.

NO DICTIONARIES - All operations use strongly typed domain models.

The transaction log is display-only: balances and coins are never derived
from it. Every mutation in the economy goes through the helpers below so
that funds checks always run against a locked row.
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from economy.db.models import Account, Transaction, as_utc
from economy.exceptions import (
    AccountBannedError,
    AccountNotFoundError,
    DataIntegrityError,
    InsufficientFundsError,
    InvalidAmountError,
    WriteVerificationError,
)
from economy.models.api import CurrencyKind, TransactionStatus, TransactionType
from economy.models.domain import TransactionData
from economy.observability.metrics import metrics

CENT = Decimal("0.01")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize a currency amount to two decimal places."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ============================================================================
# Account row access
# ============================================================================


async def find_account(session: AsyncSession, account_id: str) -> Account | None:
    """Find account by key without locking."""
    return await session.get(Account, account_id)


async def lock_account(session: AsyncSession, account_id: str) -> Account:
    """
    Lock account row for update (SELECT FOR UPDATE).

    Raises:
        AccountNotFoundError: Account doesn't exist
    """
    stmt = (
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


def ensure_not_banned(account: Account) -> None:
    """Refuse mutations on banned accounts."""
    if account.banned:
        raise AccountBannedError(account.id)


# ============================================================================
# Wallet movements (caller holds the row lock)
# ============================================================================


def debit_coins(account: Account, amount: int, reason: str) -> int:
    """Remove coins from a locked account. Returns the new coin count."""
    if amount <= 0:
        raise InvalidAmountError(amount, "coin debit must be positive")
    if account.coins < amount:
        raise InsufficientFundsError(CurrencyKind.COINS.value, account.coins, amount)
    account.coins = account.coins - amount
    metrics.record_coins(-amount, reason)
    return account.coins


def credit_coins(account: Account, amount: int, reason: str) -> int:
    """Add coins to a locked account. Returns the new coin count."""
    if amount <= 0:
        raise InvalidAmountError(amount, "coin credit must be positive")
    account.coins = account.coins + amount
    metrics.record_coins(amount, reason)
    return account.coins


def debit_balance(account: Account, amount: Decimal, reason: str) -> Decimal:
    """Remove balance from a locked account. Returns the new balance."""
    amount = to_money(amount)
    if amount < 0:
        raise InvalidAmountError(amount, "balance debit cannot be negative")
    balance = to_money(account.balance)
    if balance < amount:
        raise InsufficientFundsError(CurrencyKind.BALANCE.value, balance, amount)
    account.balance = balance - amount
    metrics.record_balance(-amount, reason)
    return account.balance


def credit_balance(account: Account, amount: Decimal, reason: str) -> Decimal:
    """Add balance to a locked account. Returns the new balance."""
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidAmountError(amount, "balance credit must be positive")
    account.balance = to_money(account.balance) + amount
    metrics.record_balance(amount, reason)
    return account.balance


async def verify_wallet(
    session: AsyncSession,
    account_id: str,
    expected_balance: Decimal | None = None,
    expected_coins: int | None = None,
) -> Account:
    """
    Flush pending writes and read the account back.

    Raises:
        WriteVerificationError: Account vanished after the update
        DataIntegrityError: Stored wallet differs from what was written
    """
    await session.flush()
    verified = await session.get(Account, account_id)
    if verified is None:
        raise WriteVerificationError(f"Account {account_id} disappeared after update")
    if expected_balance is not None and to_money(verified.balance) != to_money(expected_balance):
        raise DataIntegrityError(
            f"Balance mismatch: expected {expected_balance}, got {verified.balance}"
        )
    if expected_coins is not None and verified.coins != expected_coins:
        raise DataIntegrityError(
            f"Coins mismatch: expected {expected_coins}, got {verified.coins}"
        )
    if verified.coins < 0 or verified.balance < 0 or verified.api_credits < 0:
        raise DataIntegrityError(f"Negative wallet on account {account_id}")
    return verified


# ============================================================================
# Transaction log
# ============================================================================


def record_transaction(
    session: AsyncSession,
    account_id: str,
    type: TransactionType,
    amount: Decimal | int,
    currency: CurrencyKind,
    description: str,
    status: TransactionStatus = TransactionStatus.COMPLETED,
) -> Transaction:
    """Append a ledger entry to the current unit of work."""
    entry = Transaction(
        account_id=account_id,
        type=type,
        amount=to_money(amount),
        currency=currency,
        description=description,
        status=status,
    )
    session.add(entry)
    return entry


def transaction_to_domain(entry: Transaction) -> TransactionData:
    """Convert ORM transaction to domain model."""
    return TransactionData(
        transaction_id=entry.id,
        account_id=entry.account_id,
        type=TransactionType(entry.type),
        amount=to_money(entry.amount),
        currency=CurrencyKind(entry.currency),
        description=entry.description,
        status=TransactionStatus(entry.status),
        created_at=as_utc(entry.created_at) or entry.created_at,
    )


class LedgerService:
    """Read access to the transaction log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_transactions(
        self, account_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[TransactionData], int]:
        """
        List an account's transactions, newest first.

        Returns:
            Tuple of (transactions, total count)

        Raises:
            AccountNotFoundError: Account doesn't exist
        """
        if await find_account(self.session, account_id) is None:
            raise AccountNotFoundError(account_id)

        count_stmt = (
            select(func.count()).select_from(Transaction).where(Transaction.account_id == account_id)
        )
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        entries = [transaction_to_domain(entry) for entry in result.scalars().all()]
        return entries, total

