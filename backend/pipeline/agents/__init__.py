# Pipeline Agents
# ===============
# Checkout, fulfillment and delivery for the stone model storefront

from .fulfillment_agent import FulfillmentAgent
from .payment_gateway import (
    FULFILLMENT_PARTNERS,
    PaymentGateway,
    WebhookRouter,
)
from .delivery_agent import (
    DeliveryAgent,
    DownloadResult,
)

__all__ = [
    # Checkout + webhooks
    "PaymentGateway",
    "WebhookRouter",
    "FULFILLMENT_PARTNERS",
    # Fulfillment
    "FulfillmentAgent",
    # Delivery
    "DeliveryAgent",
    "DownloadResult",
]
