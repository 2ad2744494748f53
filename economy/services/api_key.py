"""
API Key Service - Generation and validation of service API keys.

Service keys authenticate the callers of this API (the Mini App backend,
admin tooling). They are unrelated to the per-user keys handed to end users.

NO DICTIONARIES - All data uses typed models/dataclasses.
"""

import base64
import secrets
from datetime import UTC, datetime, timedelta
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.db.models import APIKey, as_utc
from economy.exceptions import AuthenticationError, ResourceNotFoundError

logger = get_logger(__name__)

KEY_SCHEME = "emk"
KEY_PREFIX_LENGTH = 20
DEFAULT_PERMISSIONS = ["economy:read", "economy:write"]


class APIKeyData:
    """Data class for API key information (NO DICTIONARIES)."""

    def __init__(
        self,
        key_id: UUID,
        name: str,
        key_prefix: str,
        environment: str,
        permissions: list[str],
        status: str,
        created_at: datetime,
        expires_at: datetime | None,
        last_used_at: datetime | None,
    ):
        self.key_id = key_id
        self.name = name
        self.key_prefix = key_prefix
        self.environment = environment
        self.permissions = permissions
        self.status = status
        self.created_at = created_at
        self.expires_at = expires_at
        self.last_used_at = last_used_at

    @classmethod
    def from_row(cls, api_key: APIKey) -> "APIKeyData":
        return cls(
            key_id=api_key.id,
            name=api_key.name,
            key_prefix=api_key.key_prefix,
            environment=api_key.environment,
            permissions=list(api_key.permissions),
            status=api_key.status,
            created_at=as_utc(api_key.created_at) or api_key.created_at,
            expires_at=as_utc(api_key.expires_at),
            last_used_at=as_utc(api_key.last_used_at),
        )


class GeneratedAPIKey:
    """Data class for newly generated API key (includes plaintext, shown once)."""

    def __init__(
        self,
        key_id: UUID,
        plaintext_key: str,
        key_prefix: str,
        name: str,
        environment: str,
        permissions: list[str],
        created_at: datetime,
        expires_at: datetime | None,
    ):
        self.key_id = key_id
        self.plaintext_key = plaintext_key
        self.key_prefix = key_prefix
        self.name = name
        self.environment = environment
        self.permissions = permissions
        self.created_at = created_at
        self.expires_at = expires_at


class APIKeyService:
    """Service for API key management."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.password_hasher = PasswordHasher()

    def generate_api_key(self, environment: str = "live") -> tuple[str, str, str]:
        """
        Generate a new API key.

        Returns:
            tuple: (plaintext_key, key_hash, key_prefix)
        """
        random_bytes = secrets.token_bytes(32)
        key_suffix = base64.urlsafe_b64encode(random_bytes).decode("utf-8").rstrip("=")

        # Format: emk_{env}_{suffix}
        plaintext_key = f"{KEY_SCHEME}_{environment}_{key_suffix}"
        key_prefix = plaintext_key[:KEY_PREFIX_LENGTH]
        key_hash = self.password_hasher.hash(plaintext_key)

        return plaintext_key, key_hash, key_prefix

    async def create_api_key(
        self,
        name: str,
        created_by: str,
        environment: str = "live",
        permissions: list[str] | None = None,
        expires_in_days: int | None = None,
    ) -> GeneratedAPIKey:
        """
        Create a new API key and store in database.

        Args:
            name: Human-readable name (e.g., "Mini App backend")
            created_by: Who created the key (admin key name or operator)
            environment: "test" or "live"
            permissions: List of permission strings
            expires_in_days: Optional expiration (None = never expires)

        Returns:
            GeneratedAPIKey with plaintext key (shown once!)
        """
        if permissions is None:
            permissions = list(DEFAULT_PERMISSIONS)

        plaintext_key, key_hash, key_prefix = self.generate_api_key(environment)

        expires_at = None
        if expires_in_days is not None:
            expires_at = datetime.now(UTC) + timedelta(days=expires_in_days)

        api_key = APIKey(
            key_hash=key_hash,
            key_prefix=key_prefix,
            name=name,
            environment=environment,
            permissions=permissions,
            created_by=created_by,
            expires_at=expires_at,
            status="active",
        )

        self.db.add(api_key)
        await self.db.commit()
        await self.db.refresh(api_key)

        logger.info(
            "api_key_created",
            key_id=str(api_key.id),
            name=name,
            environment=environment,
            created_by=created_by,
        )

        return GeneratedAPIKey(
            key_id=api_key.id,
            plaintext_key=plaintext_key,
            key_prefix=key_prefix,
            name=name,
            environment=environment,
            permissions=permissions,
            created_at=as_utc(api_key.created_at) or api_key.created_at,
            expires_at=expires_at,
        )

    async def validate_api_key(
        self, provided_key: str, update_last_used: bool = True
    ) -> APIKeyData:
        """
        Validate an API key and return key metadata if valid.

        Rotating keys keep working until their grace period (stored as
        expires_at) runs out.

        Raises:
            AuthenticationError if invalid or expired
        """
        if not provided_key.startswith(f"{KEY_SCHEME}_"):
            logger.warning("api_key_invalid_format", prefix=provided_key[:10])
            raise AuthenticationError("Invalid API key format")

        key_prefix = provided_key[:KEY_PREFIX_LENGTH]

        stmt = select(APIKey).where(
            APIKey.key_prefix == key_prefix, APIKey.status.in_(["active", "rotating"])
        )
        result = await self.db.execute(stmt)
        api_key = result.scalar_one_or_none()

        if not api_key:
            logger.warning("api_key_not_found", prefix=key_prefix)
            raise AuthenticationError("Invalid API key")

        try:
            self.password_hasher.verify(api_key.key_hash, provided_key)
        except (VerifyMismatchError, InvalidHashError):
            logger.warning("api_key_hash_mismatch", key_id=str(api_key.id))
            raise AuthenticationError("Invalid API key")

        now = datetime.now(UTC)
        expires_at = as_utc(api_key.expires_at)
        if expires_at and now > expires_at:
            # Auto-revoke expired key
            api_key.status = "revoked"
            await self.db.commit()
            logger.warning("api_key_expired", key_id=str(api_key.id), expired_at=expires_at)
            raise AuthenticationError("API key expired")

        if update_last_used:
            api_key.last_used_at = now
            await self.db.commit()

        logger.debug("api_key_validated", key_id=str(api_key.id), name=api_key.name)
        return APIKeyData.from_row(api_key)

    async def revoke_api_key(self, key_id: UUID) -> None:
        """Revoke an API key."""
        api_key = await self.db.get(APIKey, key_id)
        if not api_key:
            raise ResourceNotFoundError("API key", str(key_id))

        api_key.status = "revoked"
        await self.db.commit()

        logger.info("api_key_revoked", key_id=str(key_id), name=api_key.name)

    async def rotate_api_key(self, key_id: UUID, grace_period_hours: int = 24) -> GeneratedAPIKey:
        """
        Rotate an API key (create new, mark old as rotating).

        The old key stays valid for the grace period.
        """
        old_key = await self.db.get(APIKey, key_id)
        if not old_key:
            raise ResourceNotFoundError("API key", str(key_id))

        now = datetime.now(UTC)
        old_expires_at = as_utc(old_key.expires_at)
        new_key = await self.create_api_key(
            name=old_key.name,
            created_by=old_key.created_by,
            environment=old_key.environment,
            permissions=list(old_key.permissions),
            expires_in_days=max((old_expires_at - now).days, 1) if old_expires_at else None,
        )

        old_key.status = "rotating"
        old_key.expires_at = now + timedelta(hours=grace_period_hours)
        await self.db.commit()

        logger.info(
            "api_key_rotated",
            old_key_id=str(key_id),
            new_key_id=str(new_key.key_id),
            grace_period_hours=grace_period_hours,
        )
        return new_key

    async def list_api_keys(self) -> list[APIKeyData]:
        """List all API keys (excluding revoked)."""
        stmt = (
            select(APIKey)
            .where(APIKey.status.in_(["active", "rotating"]))
            .order_by(APIKey.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return [APIKeyData.from_row(key) for key in result.scalars().all()]
