# services/__init__.py
# ============================================================================
# STONE MODEL STOREFRONT: SERVICES MODULE
# ============================================================================
# External capabilities: payment processor and email sender
# ============================================================================

from services.payments import (
    IPaymentProcessor,
    StripePaymentProcessor,
)

from services.mailer import (
    IEmailSender,
    LoggingEmailSender,
    SendGridEmailSender,
)

__all__ = [
    # Payments
    "IPaymentProcessor",
    "StripePaymentProcessor",
    # Email
    "IEmailSender",
    "LoggingEmailSender",
    "SendGridEmailSender",
]
