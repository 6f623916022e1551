from typing import Any, Optional


class MarketplaceError(Exception):
    """Base class for errors that map to a client-facing HTTP response."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailed(MarketplaceError):
    status_code = 400


class Forbidden(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class Conflict(MarketplaceError):
    status_code = 409


class VerificationFailed(MarketplaceError):
    """The submitted transaction does not prove the purchase."""

    status_code = 400


class PurchaseExpired(MarketplaceError):
    status_code = 400


class RateLimited(MarketplaceError):
    status_code = 429


class BlockchainError(Exception):
    """Raised when an RPC call or contract read fails."""
    pass
