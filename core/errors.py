# core/errors.py
"""
Typed business-rule errors raised by the services layer.

Routes never build these into HTTPException by hand; main.py registers a
single handler that renders ``{"error": code, "detail": message}``.
Genuinely unexpected failures (network, programming errors) are left as
ordinary exceptions.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    DYNAMIC_PRICE_NOT_SET = "DYNAMIC_PRICE_NOT_SET"
    PRICE_NOT_CONFIGURED = "PRICE_NOT_CONFIGURED"
    BUSINESS_NOT_CONNECTED = "BUSINESS_NOT_CONNECTED"
    STRIPE_NOT_CONFIGURED = "STRIPE_NOT_CONFIGURED"
    SETUP_INTENT_INCOMPLETE = "SETUP_INTENT_INCOMPLETE"
    ALREADY_SUBSCRIBED = "ALREADY_SUBSCRIBED"
    DUPLICATE_SLUG = "DUPLICATE_SLUG"
    ALREADY_COMPLETE = "ALREADY_COMPLETE"
    INVALID_STATE = "INVALID_STATE"
    PROCESSOR_ERROR = "PROCESSOR_ERROR"


class DomainError(Exception):
    """Base class for expected business-rule rejections."""

    status_code: int = 400
    default_code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code.value, "detail": self.message}
        body.update(self.extra)
        return body


class ValidationFailed(DomainError):
    status_code = 400
    default_code = ErrorCode.VALIDATION_ERROR


class NotFound(DomainError):
    status_code = 404
    default_code = ErrorCode.NOT_FOUND


class PreconditionFailed(DomainError):
    """Missing configuration the caller can remediate (price, Stripe account, ...)."""

    status_code = 400
    default_code = ErrorCode.PRICE_NOT_CONFIGURED


class Conflict(DomainError):
    status_code = 409
    default_code = ErrorCode.INVALID_STATE


class ProcessorError(DomainError):
    """Stripe rejected a call; keeps the processor's own type and code."""

    status_code = 502
    default_code = ErrorCode.PROCESSOR_ERROR

    @classmethod
    def from_stripe(cls, error: Exception) -> "ProcessorError":
        return cls(
            getattr(error, "user_message", None) or str(error),
            extra={
                "stripe_error": {
                    "type": type(error).__name__,
                    "code": getattr(error, "code", None),
                    "http_status": getattr(error, "http_status", None),
                }
            },
        )


def dynamic_price_not_set(plan_name: str) -> PreconditionFailed:
    return PreconditionFailed(
        f"No price is set for '{plan_name}' this month. Please try again later.",
        code=ErrorCode.DYNAMIC_PRICE_NOT_SET,
        status_code=503,
    )
