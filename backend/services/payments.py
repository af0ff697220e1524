"""
Payment Processor Capability
============================
The storefront's only view of the payment processor:

- create_charge(): create a Payment Intent for an exact amount
- verify_webhook(): authenticate a raw webhook body, then parse it

StripePaymentProcessor is the production implementation. Tests substitute
the charge side and keep the real signature verifier.

pip install stripe structlog
"""

import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

import stripe
import structlog

from pipeline.errors import InvalidSignature, UpstreamError
from schemas import CURRENCY, ChargeResult


class IPaymentProcessor(ABC):
    """Payment processor interface"""

    @abstractmethod
    async def create_charge(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        description: Optional[str] = None,
        receipt_email: Optional[str] = None,
    ) -> ChargeResult:
        pass

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        """Verify ``signature`` against the exact raw ``payload`` and return the event."""
        pass


class StripePaymentProcessor(IPaymentProcessor):
    """Stripe Payment Intents + webhook signature verification"""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._tolerance = tolerance
        self._logger = structlog.get_logger().bind(component="stripe_processor")

    async def create_charge(
        self,
        amount: int,
        currency: str = CURRENCY,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
        receipt_email: Optional[str] = None,
    ) -> ChargeResult:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata or {},
                description=description,
                receipt_email=receipt_email,
                automatic_payment_methods={"enabled": True},
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            self._logger.error(
                "payment_intent_create_failed",
                error=str(e),
                error_type=type(e).__name__,
                amount=amount,
            )
            raise UpstreamError() from e

        self._logger.info("payment_intent_created", payment_intent_id=intent.id, amount=intent.amount)
        return ChargeResult(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
        )

    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        # CRITICAL: verify the untouched bytes BEFORE parsing
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, self._tolerance
            )
        except (UnicodeDecodeError, stripe.SignatureVerificationError) as e:
            self._logger.warning("webhook_signature_invalid", error=str(e))
            raise InvalidSignature() from e

        try:
            event = json.loads(body)
        except json.JSONDecodeError as e:
            self._logger.warning("webhook_payload_unparseable", error=str(e))
            raise InvalidSignature() from e

        if not isinstance(event, dict):
            raise InvalidSignature()
        return event
