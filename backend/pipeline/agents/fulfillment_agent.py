"""
Fulfillment Agent
=================
Turns a verified ``payment_intent.succeeded`` into buyer access:

1. Parse the string-only intent metadata back into typed values
2. Persist the purchase (dedup key = payment intent id) BEFORE minting
3. Mint a download token and build the download link
4. Email the link (best-effort; failures are logged, not raised)

Redelivered webhooks are safe: once the link has been emailed for a
purchase, later deliveries of the same event are acknowledged as no-ops.
Steps 3-4 run under a ledger claim, so a delivery that arrives while
another is still mailing is acknowledged as ``in_progress``.
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from pipeline.errors import InvalidRequest
from pipeline.tokens import DownloadTokenIssuer
from schemas import FulfillmentType, PaymentIntentMetadata, PurchaseRecord
from services import IEmailSender
from storage import IPurchaseLedger


class FulfillmentAgent:
    """Download-token issuance on successful payment"""

    def __init__(
        self,
        issuer: DownloadTokenIssuer,
        ledger: IPurchaseLedger,
        email_sender: IEmailSender,
        public_base_url: str,
        max_downloads: int = 10,
    ):
        self.issuer = issuer
        self.ledger = ledger
        self.email = email_sender
        self.public_base_url = public_base_url.rstrip("/")
        self.max_downloads = max_downloads
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str):
        return self._base_logger.bind(agent="fulfillment_agent", correlation_id=correlation_id)

    def download_url(self, model_id: str, token: str) -> str:
        return f"{self.public_base_url}/download/{model_id}?token={token}"

    @staticmethod
    def parse_metadata(payment_intent: dict) -> PaymentIntentMetadata:
        try:
            return PaymentIntentMetadata.model_validate(payment_intent.get("metadata") or {})
        except ValidationError as e:
            raise InvalidRequest(
                "Payment intent metadata is incomplete",
                details=e.errors(include_url=False, include_context=False),
            ) from e

    async def on_payment_succeeded(self, payment_intent: dict, correlation_id: str) -> dict[str, Any]:
        log = self._get_logger(correlation_id)
        purchase_id = payment_intent["id"]
        metadata = self.parse_metadata(payment_intent)

        log.info(
            "payment_succeeded",
            payment_intent_id=purchase_id,
            model_id=metadata.model_id,
            amount=payment_intent.get("amount"),
        )

        record, created = await self.ledger.create_if_absent(PurchaseRecord(
            purchase_id=purchase_id,
            model_id=metadata.model_id,
            customer_email=metadata.customer_email,
            amount=payment_intent.get("amount") or 0,
            fulfillment_type=metadata.fulfillment_type,
            partner_id=metadata.partner_id,
        ))

        if not created and record.email_sent:
            log.info("purchase_already_fulfilled", payment_intent_id=purchase_id)
            return {"status": "already_fulfilled", "purchase_id": purchase_id}

        if not await self.ledger.claim_fulfillment(purchase_id):
            log.info("purchase_fulfillment_in_progress", payment_intent_id=purchase_id)
            return {"status": "in_progress", "purchase_id": purchase_id}

        try:
            if metadata.fulfillment_type == FulfillmentType.CNC_FABRICATION:
                # TODO: hand fabrication orders to the partner once partner APIs exist
                log.info(
                    "fabrication_order_received",
                    payment_intent_id=purchase_id,
                    partner_id=metadata.partner_id,
                    dimensions=metadata.dimensions,
                )

            token = self.issuer.issue(
                model_id=metadata.model_id,
                purchase_id=purchase_id,
                customer_email=metadata.customer_email,
                download_count=0,
            )
            download_url = self.download_url(metadata.model_id, token)

            email_sent = await self._send_download_email(
                metadata.customer_email, metadata.model_id, download_url, correlation_id
            )
        except Exception:
            await self.ledger.release_claim(purchase_id)
            raise
        await self.ledger.mark_fulfilled(purchase_id, datetime.now(timezone.utc), email_sent)

        log.info(
            "download_link_generated",
            payment_intent_id=purchase_id,
            customer_email=metadata.customer_email,
            redelivery=not created,
            email_sent=email_sent,
        )
        return {
            "status": "fulfilled",
            "purchase_id": purchase_id,
            "token": token,
            "download_url": download_url,
            "email_sent": email_sent,
        }

    async def _send_download_email(
        self,
        to: str,
        model_id: str,
        download_url: str,
        correlation_id: str,
    ) -> bool:
        log = self._get_logger(correlation_id)
        hours = self.issuer_ttl_hours
        body = (
            "Thank you for your purchase.\n\n"
            f"Download your 3D model here:\n{download_url}\n\n"
            f"The link expires in {hours} hours and allows up to "
            f"{self.max_downloads} downloads."
        )
        try:
            await self.email.send_email(to, f"Your 3D model download: {model_id}", body)
        except Exception as e:
            log.error("download_email_failed", to=to, error=str(e), error_type=type(e).__name__)
            return False
        return True

    @property
    def issuer_ttl_hours(self) -> int:
        return self.issuer.ttl_seconds // 3600


__all__ = ["FulfillmentAgent"]
