"""
User API Key Service - keys that end users present to metered endpoints.

Only a SHA-256 digest and a short display prefix are stored; the raw key
is returned exactly once, on the call that generated it.
"""

import hashlib
import secrets
import string
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.config import settings
from economy.db.models import Account, as_utc
from economy.exceptions import AuthenticationError, ResourceNotFoundError
from economy.models.domain import ApiKeyInfo
from economy.services.ledger import ensure_not_banned, lock_account

logger = get_logger(__name__)

KEY_ALPHABET = string.ascii_uppercase + string.digits
KEY_RANDOM_LENGTH = 24
DISPLAY_PREFIX_LENGTH = 12


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_user_api_key(prefix: str | None = None) -> str:
    """Generate a raw key: prefix followed by 24 characters from A-Z0-9."""
    prefix = settings.user_api_key_prefix if prefix is None else prefix
    random_part = "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_RANDOM_LENGTH))
    return f"{prefix}{random_part}"


def hash_user_api_key(raw_key: str) -> str:
    """Hex SHA-256 digest of a raw key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def display_prefix(raw_key: str) -> str:
    """Leading characters shown in the UI to tell keys apart."""
    return raw_key[:DISPLAY_PREFIX_LENGTH]


def assign_new_key(account: Account) -> str:
    """Put a fresh key on the row and return the raw key."""
    raw_key = generate_user_api_key()
    account.api_key_hash = hash_user_api_key(raw_key)
    account.api_key_prefix = display_prefix(raw_key)
    account.api_key_active = True
    account.api_key_created_at = _utc_now()
    account.api_key_last_used_at = None
    return raw_key


def key_info(account: Account) -> ApiKeyInfo | None:
    """Public view of the account's key, if it has one."""
    if account.api_key_prefix is None or account.api_key_created_at is None:
        return None
    return ApiKeyInfo(
        key_prefix=account.api_key_prefix,
        is_active=account.api_key_active,
        created_at=as_utc(account.api_key_created_at) or account.api_key_created_at,
        last_used_at=as_utc(account.api_key_last_used_at),
    )


class UserKeyService:
    """Regenerate, revoke and authenticate user API keys."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def regenerate(self, account_id: str) -> str:
        """Replace the account's key. The old key stops working immediately."""
        account = await lock_account(self.session, account_id)
        ensure_not_banned(account)
        raw_key = assign_new_key(account)
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "user_api_key_regenerated",
            account_id=account_id,
            key_prefix=account.api_key_prefix,
        )
        return raw_key

    async def revoke(self, account_id: str) -> None:
        """Deactivate the account's key."""
        account = await lock_account(self.session, account_id)
        if account.api_key_hash is None:
            raise ResourceNotFoundError("API key", account_id)
        account.api_key_active = False
        await self.session.flush()
        await self.session.commit()
        logger.info("user_api_key_revoked", account_id=account_id)

    async def get_key_info(self, account_id: str) -> ApiKeyInfo | None:
        account = await lock_account(self.session, account_id)
        return key_info(account)

    async def authenticate(self, raw_key: str) -> Account:
        """
        Resolve a raw key to its account and stamp last use.

        Raises:
            AuthenticationError: Unknown, revoked or banned key
        """
        if not raw_key.startswith(settings.user_api_key_prefix):
            raise AuthenticationError("Invalid API key format")

        stmt = select(Account).where(Account.api_key_hash == hash_user_api_key(raw_key))
        result = await self.session.execute(stmt)
        account = result.scalar_one_or_none()

        if account is None:
            logger.warning("user_api_key_not_found", key_prefix=display_prefix(raw_key))
            raise AuthenticationError("Invalid API key")
        if not account.api_key_active:
            raise AuthenticationError("API key has been revoked")
        if account.banned:
            raise AuthenticationError("Account is banned")

        account.api_key_last_used_at = _utc_now()
        await self.session.flush()
        return account
