"""
Error mapping - domain exceptions to HTTP responses.

Every mapped error is logged and counted; the detail is a one-line message
the Mini App can show as-is.
"""

from fastapi import HTTPException, status
from structlog import get_logger

from economy.exceptions import (
    AccountBannedError,
    AccountNotFoundError,
    AdCooldownError,
    AdLimitReachedError,
    AlreadyOwnedError,
    AuthenticationError,
    AuthorizationError,
    ChannelVerificationError,
    DataIntegrityError,
    DuplicateCodeError,
    DuplicateResourceError,
    EconomyError,
    InsufficientFundsError,
    QuotaExhaustedError,
    ResourceNotFoundError,
    WebhookDeliveryError,
    WriteVerificationError,
)
from economy.observability import metrics

logger = get_logger(__name__)


def _status_for(exc: EconomyError) -> int:
    if isinstance(exc, (AccountNotFoundError, ResourceNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (AccountBannedError, AuthorizationError)):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, (InsufficientFundsError, QuotaExhaustedError)):
        return status.HTTP_402_PAYMENT_REQUIRED
    if isinstance(exc, (AlreadyOwnedError, DuplicateCodeError, DuplicateResourceError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, (AdLimitReachedError, AdCooldownError)):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(exc, WebhookDeliveryError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, (WriteVerificationError, DataIntegrityError)):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def _detail_for(exc: EconomyError) -> str:
    if isinstance(exc, (WriteVerificationError, DataIntegrityError)):
        return "Database integrity error"
    if isinstance(exc, ChannelVerificationError):
        return exc.reason
    return str(exc)


def to_http_exception(exc: EconomyError, operation: str) -> HTTPException:
    """
    Translate a domain exception raised by `operation` into an HTTPException.

    Usage:
        try:
            result = await service.convert_coins(account_id, request.amount)
        except EconomyError as exc:
            raise to_http_exception(exc, "convert_coins") from exc
    """
    status_code = _status_for(exc)
    error_type = type(exc).__name__
    metrics.record_error(error_type, operation)

    if status_code >= 500:
        logger.error("operation_failed", operation=operation, error_type=error_type, error=str(exc))
    else:
        logger.info("operation_refused", operation=operation, error_type=error_type, error=str(exc))

    headers = None
    if isinstance(exc, AdCooldownError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return HTTPException(status_code=status_code, detail=_detail_for(exc), headers=headers)
