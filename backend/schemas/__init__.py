# schemas/__init__.py
from schemas.storefront import (
    CURRENCY,
    MAX_DOWNLOADS_PER_TOKEN,
    MODEL_CONTENT_TYPE,
    MODEL_FORMAT,
    CatalogFilter,
    ChargeResult,
    CreatePaymentIntentRequest,
    DeliveryType,
    DownloadTokenPayload,
    FulfillmentOption,
    FulfillmentPartner,
    FulfillmentType,
    PaymentIntentMetadata,
    PaymentIntentResult,
    Product,
    PurchaseRecord,
    SortOrder,
)

__all__ = [
    # Constants
    "CURRENCY",
    "MAX_DOWNLOADS_PER_TOKEN",
    "MODEL_CONTENT_TYPE",
    "MODEL_FORMAT",
    # Enums
    "DeliveryType",
    "FulfillmentOption",
    "FulfillmentType",
    "SortOrder",
    # Records
    "CatalogFilter",
    "ChargeResult",
    "CreatePaymentIntentRequest",
    "DownloadTokenPayload",
    "FulfillmentPartner",
    "PaymentIntentMetadata",
    "PaymentIntentResult",
    "Product",
    "PurchaseRecord",
]
