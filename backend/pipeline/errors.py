"""
Storefront Error Taxonomy
=========================
Every failure the fulfillment pipeline can surface to a caller.

Each error carries the HTTP status it maps to and a public message. The
public message is all the caller ever sees; verification failures keep
their detail in the server log only.
"""

from typing import Any, Optional


class StorefrontError(Exception):
    """Base error with an HTTP status and a caller-safe message"""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class InvalidRequest(StorefrontError):
    status_code = 400
    default_message = "Invalid request data"


class NotFound(StorefrontError):
    status_code = 404
    default_message = "Model not found or not available"


class Unauthenticated(StorefrontError):
    status_code = 401
    default_message = "Download token is required"


class InvalidSignature(StorefrontError):
    status_code = 400
    default_message = "Invalid signature"


class InvalidToken(StorefrontError):
    status_code = 401
    default_message = "Invalid or expired download token"


class TokenExpired(StorefrontError):
    status_code = 401
    default_message = "Download token has expired. Please contact support."


class LimitExceeded(StorefrontError):
    status_code = 403
    default_message = "Download limit reached. Please contact support."


class ModelMismatch(StorefrontError):
    status_code = 400
    default_message = "Model ID mismatch"


class UpstreamError(StorefrontError):
    status_code = 500
    default_message = "Failed to create payment intent"


class InvariantViolation(StorefrontError):
    """Internal schema violation; reaching this is a programming error."""

    status_code = 500
    default_message = "Internal server error"


__all__ = [
    "StorefrontError",
    "InvalidRequest",
    "NotFound",
    "Unauthenticated",
    "InvalidSignature",
    "InvalidToken",
    "TokenExpired",
    "LimitExceeded",
    "ModelMismatch",
    "UpstreamError",
    "InvariantViolation",
]
