from __future__ import annotations

from typing import Any


class LoyaltyError(Exception):
    """Base class for domain errors raised by the services.

    Each subclass carries a stable ``error_code`` and the HTTP status the admin
    web app answers with.
    """

    error_code = "LOYALTY_000"
    http_status = 500
    default_message = "Loyalty operation failed"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            },
        }


class NotFoundError(LoyaltyError):
    error_code = "NOT_FOUND_001"
    http_status = 404
    default_message = "Resource not found"


class UnavailableError(LoyaltyError):
    error_code = "REWARD_001"
    http_status = 409
    default_message = "Reward is not available"


class InsufficientBalanceError(LoyaltyError):
    error_code = "POINTS_001"
    http_status = 400
    default_message = "Insufficient points"


class RedemptionLimitExceededError(LoyaltyError):
    error_code = "REDEEM_001"
    http_status = 409
    default_message = "Redemption limit reached for this reward"


class ValidationError(LoyaltyError):
    error_code = "VALIDATION_001"
    http_status = 422
    default_message = "Validation failed"


class ForbiddenError(LoyaltyError):
    error_code = "AUTH_002"
    http_status = 403
    default_message = "Access forbidden"


class ConfigurationError(LoyaltyError):
    error_code = "CONFIG_001"
    http_status = 500
    default_message = "Loyalty rules are misconfigured"


class PersistenceError(LoyaltyError):
    error_code = "DB_001"
    http_status = 503
    default_message = "Storage is temporarily unavailable"
