"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class LiquidLabException(Exception):
    """Base exception class for the LiquidLab revenue backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(LiquidLabException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(LiquidLabException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ValidationError(LiquidLabException):
    """Raised when data validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(LiquidLabException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class AuthenticationError(LiquidLabException):
    """Raised when authentication fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHENTICATION_ERROR", details)


class ExternalServiceError(LiquidLabException):
    """Raised when an external service error occurs."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "EXTERNAL_SERVICE_ERROR"
    ):
        super().__init__(message, code, details)


class VenueError(ExternalServiceError):
    """Raised when the trading venue cannot be reached or returns garbage."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="VENUE_ERROR")


class PayoutError(ExternalServiceError):
    """Raised when the payout executor cannot be reached."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="PAYOUT_ERROR")


class FeeInvariantError(LiquidLabException):
    """Raised when a computed fee breakdown does not add up."""

    def __init__(self, trade_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Fee split invariant violated for trade {trade_id}",
            "FEE_INVARIANT_ERROR",
            {"trade_id": trade_id, **(details or {})}
        )


# Resource-specific exceptions
class PlatformNotFoundError(NotFoundError):
    """Raised when a trading platform is not found."""

    def __init__(self, platform_id: int):
        super().__init__(
            f"Platform not found: {platform_id}",
            {"platform_id": platform_id}
        )


class FeeTransactionNotFoundError(NotFoundError):
    """Raised when a fee transaction is not found."""

    def __init__(self, fee_id: int):
        super().__init__(
            f"Fee transaction not found: {fee_id}",
            {"fee_id": fee_id}
        )


class PayoutNotFoundError(NotFoundError):
    """Raised when a payout record is not found."""

    def __init__(self, payout_id: int):
        super().__init__(
            f"Payout not found: {payout_id}",
            {"payout_id": payout_id}
        )


class InvalidStatusTransitionError(ValidationError):
    """Raised when a status change would move a record backwards."""

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"Invalid {entity} status transition: {current} -> {requested}",
            {"entity": entity, "current": current, "requested": requested}
        )
