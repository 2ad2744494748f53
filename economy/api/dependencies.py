"""
FastAPI Dependencies - Authentication and authorization.

NO DICTIONARIES - All dependencies return typed objects.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.db.models import Account
from economy.db.session import get_write_db
from economy.exceptions import AuthenticationError
from economy.services.api_key import APIKeyData, APIKeyService
from economy.services.referrals import ChannelVerifier
from economy.services.user_keys import UserKeyService
from economy.services.webhooks import BotDeliveryClient

logger = get_logger(__name__)

# ============================================================================
# Service API Key Authentication
# ============================================================================


async def get_api_key(
    x_api_key: str = Header(..., description="Service API key"),
    db: AsyncSession = Depends(get_write_db),
) -> APIKeyData:
    """
    FastAPI dependency to validate the service API key from the X-API-Key header.

    Usage:
        @router.get("/v1/economy/accounts/{account_id}")
        async def get_account(
            api_key: APIKeyData = Depends(get_api_key)
        ):
            # api_key is validated and contains permissions
            pass

    Raises:
        HTTPException 401 if invalid
    """
    api_key_service = APIKeyService(db)

    try:
        return await api_key_service.validate_api_key(x_api_key)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc


def require_permission(required_permission: str) -> Callable[..., Awaitable[APIKeyData]]:
    """
    FastAPI dependency factory to check specific permission.

    Usage:
        @router.post("/v1/economy/accounts/{account_id}/deposit")
        async def deposit(
            api_key: APIKeyData = Depends(require_permission("economy:write"))
        ):
            pass
    """

    async def permission_checker(
        api_key: APIKeyData = Depends(get_api_key),
    ) -> APIKeyData:
        """Check if API key has required permission."""
        if required_permission not in api_key.permissions:
            logger.warning(
                "api_key_permission_denied",
                key_id=str(api_key.key_id),
                required_permission=required_permission,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required permission: {required_permission}",
            )
        return api_key

    return permission_checker


# ============================================================================
# User API Key Authentication (metered endpoints)
# ============================================================================


async def get_user_account(
    x_user_key: str = Header(..., description="End-user API key"),
    db: AsyncSession = Depends(get_write_db),
) -> Account:
    """Resolve the end-user key in X-User-Key to its account."""
    try:
        account = await UserKeyService(db).authenticate(x_user_key)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc
    await db.commit()
    return account


# ============================================================================
# Outbound HTTP clients (overridable in tests)
# ============================================================================

_delivery_client: BotDeliveryClient | None = None
_channel_verifier: ChannelVerifier | None = None


def get_delivery_client() -> BotDeliveryClient:
    """Shared bot delivery webhook client."""
    global _delivery_client
    if _delivery_client is None:
        _delivery_client = BotDeliveryClient()
    return _delivery_client


def get_channel_verifier() -> ChannelVerifier:
    """Shared channel membership verifier."""
    global _channel_verifier
    if _channel_verifier is None:
        _channel_verifier = ChannelVerifier()
    return _channel_verifier


async def close_http_clients() -> None:
    """Close outbound HTTP clients (for graceful shutdown)."""
    global _delivery_client, _channel_verifier
    if _delivery_client is not None:
        await _delivery_client.close()
        _delivery_client = None
    if _channel_verifier is not None:
        await _channel_verifier.close()
        _channel_verifier = None
