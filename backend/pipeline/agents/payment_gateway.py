"""
Payment Gateway
===============
Checkout side of the purchase-to-download pipeline:

- Payment-Intent Initiation (exact product price, string-only metadata)
- Webhook Receiver (signature verified on raw bytes BEFORE parsing)
- Webhook Router (decorator registration, dispatch by event type)
- CNC fabrication quotes from the partner network

Example:
    gateway = PaymentGateway(catalog, processor, fulfillment)
    result = await gateway.create_payment_intent(request)
    # Stripe.js confirms the card with result.client_secret
    # Webhook: await gateway.process_webhook(payload, signature)

pip install pydantic stripe structlog
"""

import uuid
from typing import Any, Awaitable, Callable, Optional

import structlog

from pipeline.agents.fulfillment_agent import FulfillmentAgent
from pipeline.errors import InvalidRequest, NotFound, StorefrontError, Unauthenticated
from schemas import (
    CURRENCY,
    MODEL_FORMAT,
    CreatePaymentIntentRequest,
    DeliveryType,
    FulfillmentOption,
    FulfillmentPartner,
    FulfillmentType,
    PaymentIntentMetadata,
    PaymentIntentResult,
    Product,
)
from services import IPaymentProcessor
from storage import ICatalogRepository


# =============================================================================
# FULFILLMENT PARTNERS (CNC network, demo data)
# =============================================================================

FULFILLMENT_PARTNERS: list[FulfillmentPartner] = [
    FulfillmentPartner(
        id="precision-stone-works",
        name="Precision Stone Works",
        location="Texas, USA",
        materials=["Texas Limestone", "Oklahoma Sandstone"],
        lead_time="6-8 weeks",
        price_multiplier=3.2,
        equipment="5-axis CNC, finishing by hand",
    ),
    FulfillmentPartner(
        id="heritage-carving",
        name="Heritage Carving Co.",
        location="Carrara, Italy",
        materials=["Carrara Marble", "Travertine"],
        lead_time="10-12 weeks",
        price_multiplier=4.5,
        equipment="5-axis CNC, traditional finishing",
    ),
    FulfillmentPartner(
        id="stone-artisan-cnc",
        name="Stone Artisan CNC",
        location="Vermont, USA",
        materials=["Vermont Marble", "Canadian Limestone"],
        lead_time="8-10 weeks",
        price_multiplier=3.8,
        equipment="6-axis robotic mill",
    ),
    FulfillmentPartner(
        id="direct-quarry",
        name="Direct Quarry Fabrication",
        location="Indiana, USA",
        materials=["Indiana Limestone (buff, grey)"],
        lead_time="5-7 weeks",
        price_multiplier=2.9,
        equipment="4-axis CNC, bulk production",
    ),
]


# =============================================================================
# WEBHOOK ROUTER (Clean event handling)
# =============================================================================

WebhookHandler = Callable[[dict, str], Awaitable[Any]]


class WebhookRouter:
    """
    Maps event types to handlers.
    Separates routing logic from business logic.
    """

    def __init__(self):
        self._handlers: dict[str, WebhookHandler] = {}
        self._logger = structlog.get_logger().bind(component="webhook_router")

    def register(self, event_type: str):
        """Decorator to register handler for event type"""
        def decorator(handler: WebhookHandler):
            self._handlers[event_type] = handler
            self._logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    async def route(self, event: dict, correlation_id: str) -> Optional[Any]:
        """Route event to its handler; unknown types are acknowledged as no-ops"""
        event_type = event.get("type", "unknown")

        handler = self._handlers.get(event_type)
        if not handler:
            self._logger.info("webhook_unhandled", event_type=event_type, correlation_id=correlation_id)
            return None

        return await handler(event, correlation_id)

    @property
    def supported_events(self) -> list[str]:
        return list(self._handlers.keys())


# =============================================================================
# PAYMENT GATEWAY
# =============================================================================

class PaymentGateway:
    """
    Payment-Intent Initiator + Webhook Receiver.

    Holds no purchase state of its own: the intent lives at the processor,
    and fulfillment state lives in the purchase ledger behind the
    FulfillmentAgent.
    """

    def __init__(
        self,
        catalog: ICatalogRepository,
        processor: IPaymentProcessor,
        fulfillment: FulfillmentAgent,
        partners: Optional[list[FulfillmentPartner]] = None,
    ):
        self.catalog = catalog
        self.processor = processor
        self.fulfillment = fulfillment
        self.partners = {p.id: p for p in (partners or FULFILLMENT_PARTNERS)}

        self.router = WebhookRouter()
        self._register_handlers()

        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str = None):
        """Get logger bound with correlation context"""
        return self._base_logger.bind(
            agent="payment_gateway",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    # =========================================================================
    # CATALOG HELPERS
    # =========================================================================

    async def _get_sellable(self, model_id: str) -> Product:
        product = await self.catalog.get(model_id)
        if product is None or not product.published:
            raise NotFound()
        return product

    def get_partner(self, partner_id: Optional[str]) -> FulfillmentPartner:
        partner = self.partners.get(partner_id or "")
        if partner is None:
            raise InvalidRequest(
                "Unknown fulfillment partner",
                details=[{"loc": ["partnerId"], "msg": "Unknown fulfillment partner"}],
            )
        return partner

    def list_partners(self) -> list[FulfillmentPartner]:
        return list(self.partners.values())

    async def quote(self, model_id: str, partner_id: Optional[str] = None) -> int:
        """Price in cents: base price, or fabricated price through a partner"""
        product = await self._get_sellable(model_id)
        if partner_id is None:
            return product.price
        return self.get_partner(partner_id).quote(product.price)

    # =========================================================================
    # PAYMENT-INTENT INITIATION
    # =========================================================================

    async def create_payment_intent(self, request: CreatePaymentIntentRequest) -> PaymentIntentResult:
        """
        Validate the product is sellable and ask the processor for a charge.
        Single attempt; the client may resubmit.
        """
        log = self._get_logger()
        product = await self._get_sellable(request.model_id)

        if request.fulfillment == FulfillmentOption.FABRICATION:
            partner = self.get_partner(request.partner_id)
            amount = partner.quote(product.price)
            metadata = PaymentIntentMetadata(
                model_id=product.id,
                customer_email=request.customer_email,
                delivery_type=DeliveryType.PHYSICAL,
                fulfillment_type=FulfillmentType.CNC_FABRICATION,
                format=MODEL_FORMAT,
                dimensions=product.dimensions,
                manufacturing_required="true",
                partner_id=partner.id,
            )
            description = f"{product.name} - CNC Fabrication ({partner.name})"
        else:
            amount = product.price
            metadata = PaymentIntentMetadata(
                model_id=product.id,
                customer_email=request.customer_email,
                delivery_type=DeliveryType.DIGITAL,
                fulfillment_type=FulfillmentType.DIGITAL_DOWNLOAD,
                format=MODEL_FORMAT,
                dimensions=product.dimensions,
                manufacturing_required="false",
            )
            description = f"{product.name} - Digital Download"

        log.info(
            "payment_intent_initiated",
            model_id=product.id,
            amount=amount,
            fulfillment_type=metadata.fulfillment_type.value,
        )

        charge = await self.processor.create_charge(
            amount=amount,
            currency=CURRENCY,
            metadata=metadata.to_stripe(),
            description=description,
            receipt_email=request.customer_email,
        )

        log.info("payment_intent_ready", payment_intent_id=charge.id, amount=charge.amount)
        return PaymentIntentResult(client_secret=charge.client_secret, amount=charge.amount)

    # =========================================================================
    # WEBHOOK PROCESSING
    # =========================================================================

    async def process_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify, then dispatch synchronously. Any handler failure becomes a
        generic 500 so the processor redelivers the event.
        """
        log = self._get_logger()

        if not signature:
            log.warning("webhook_signature_missing")
            raise Unauthenticated("Missing stripe-signature header", status_code=400)

        event = self.processor.verify_webhook(payload, signature)

        event_type = event.get("type", "unknown")
        event_id = event.get("id", "unknown")
        obj = event.get("data", {}).get("object", {}) or {}
        correlation_id = obj.get("id") or event_id

        log = self._get_logger(correlation_id)
        log.info("webhook_received", event_type=event_type, stripe_event_id=event_id)

        try:
            await self.router.route(event, correlation_id)
        except Exception as e:
            log.error(
                "webhook_handler_failed",
                event_type=event_type,
                stripe_event_id=event_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise StorefrontError("Webhook handler failed") from e

        return {"received": True}

    # =========================================================================
    # WEBHOOK HANDLERS (Registered with Router)
    # =========================================================================

    def _register_handlers(self):
        """Register all webhook handlers"""

        @self.router.register("payment_intent.succeeded")
        async def handle_payment_succeeded(event: dict, correlation_id: str):
            return await self.fulfillment.on_payment_succeeded(
                event["data"]["object"], correlation_id
            )

        @self.router.register("payment_intent.payment_failed")
        async def handle_payment_failed(event: dict, correlation_id: str):
            return await self._on_payment_failed(event, correlation_id)

    async def _on_payment_failed(self, event: dict, correlation_id: str) -> dict:
        """Log only; the checkout UI already shows the failure"""
        log = self._get_logger(correlation_id)
        payment_intent = event["data"]["object"]
        metadata = payment_intent.get("metadata") or {}
        error = payment_intent.get("last_payment_error") or {}

        log.warning(
            "payment_failed",
            payment_intent_id=payment_intent.get("id"),
            model_id=metadata.get("modelId"),
            error_code=error.get("code"),
            decline_code=error.get("decline_code"),
        )
        return {"status": "logged", "error_code": error.get("code")}
