"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from decimal import Decimal
from enum import Enum


class EconomyError(Exception):
    """Base exception for all economy errors."""

    pass


class AccountNotFoundError(EconomyError):
    """Raised when account doesn't exist."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AccountBannedError(EconomyError):
    """Raised when a banned account attempts a mutation."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account {account_id} is banned")


class ResourceNotFoundError(EconomyError):
    """Raised when a catalog entry, code or purchase record doesn't exist."""

    def __init__(self, kind: str, resource_id: str) -> None:
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f"{kind} not found: {resource_id}")


class InsufficientFundsError(EconomyError):
    """Raised when balance or coins don't cover a debit."""

    def __init__(self, currency: str, available: int | Decimal, required: int | Decimal) -> None:
        self.currency = currency
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient {currency}. Available: {available}, Required: {required}"
        )


class InvalidAmountError(EconomyError):
    """Raised when an amount is non-positive or below a configured minimum."""

    def __init__(self, amount: int | Decimal, reason: str) -> None:
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidConversionError(EconomyError):
    """Raised when a coin conversion amount is not acceptable."""

    def __init__(self, amount: int, reason: str) -> None:
        self.amount = amount
        self.reason = reason
        super().__init__(f"Cannot convert {amount} coins: {reason}")


class UnknownAdNetworkError(EconomyError):
    """Raised when an ad network id is not configured."""

    def __init__(self, network_id: str) -> None:
        self.network_id = network_id
        super().__init__(f"Unknown ad network: {network_id}")


class AdLimitReachedError(EconomyError):
    """Raised when the daily cap (global or per network) is reached."""

    def __init__(self, scope: str, limit: int) -> None:
        self.scope = scope
        self.limit = limit
        super().__init__(f"Ad limit reached for {scope}: {limit} per day")


class AdCooldownError(EconomyError):
    """Raised when an ad is watched before the cooldown has elapsed."""

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Wait {retry_after_seconds}s before the next ad")


class BonusNotAvailableError(EconomyError):
    """Raised when the daily bonus can't be claimed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Daily bonus not available: {reason}")


class RedeemFailureReason(str, Enum):
    """Why a redemption was refused."""

    INVALID = "invalid"
    ALREADY_USED = "already_used"
    LIMIT_REACHED = "limit_reached"
    EXPIRED = "expired"


_REDEEM_MESSAGES = {
    RedeemFailureReason.INVALID: "Invalid code",
    RedeemFailureReason.ALREADY_USED: "Already used this code",
    RedeemFailureReason.LIMIT_REACHED: "Code limit reached",
    RedeemFailureReason.EXPIRED: "Code expired",
}


class RedeemCodeError(EconomyError):
    """Raised when a redeem code can't be applied."""

    def __init__(self, reason: RedeemFailureReason, code: str) -> None:
        self.reason = reason
        self.code = code
        super().__init__(_REDEEM_MESSAGES[reason])


class DuplicateCodeError(EconomyError):
    """Raised when an admin creates a code that already exists."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Redeem code already exists: {code}")


class DuplicateResourceError(EconomyError):
    """Raised when creating a catalog entry whose id is taken."""

    def __init__(self, kind: str, resource_id: str) -> None:
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f"{kind} already exists: {resource_id}")


class AlreadyOwnedError(EconomyError):
    """Raised when purchasing a product the account already owns."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product already owned: {product_id}")


class ProductUnavailableError(EconomyError):
    """Raised when a catalog entry can't be bought."""

    def __init__(self, product_id: str, reason: str) -> None:
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Product {product_id} unavailable: {reason}")


class QuotaExhaustedError(EconomyError):
    """Raised when no request quota or API credit is left."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"No API quota remaining for account {account_id}")


class ReferralError(EconomyError):
    """Raised when a referral operation is refused."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Referral error: {reason}")


class ChannelVerificationError(EconomyError):
    """Raised when channel membership can't be confirmed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Channel verification failed: {reason}")


class WriteVerificationError(EconomyError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(EconomyError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class WebhookDeliveryError(EconomyError):
    """Raised when a bot delivery webhook fails."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Webhook delivery to {url} failed: {reason}")


class AuthenticationError(EconomyError):
    """Raised when authentication fails (invalid API key, invalid credentials)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(EconomyError):
    """Raised when caller lacks required permissions."""

    def __init__(self, required_permission: str) -> None:
        self.required_permission = required_permission
        super().__init__(f"Authorization failed: missing permission {required_permission}")
