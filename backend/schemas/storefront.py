# schemas/storefront.py
# ============================================================================
# STONE MODEL STOREFRONT: RECORD & WIRE SCHEMAS
# ============================================================================
# Purpose: Type-safe definitions for products, payment metadata, download
# tokens and purchases. Field names are snake_case in Python and camelCase
# on the wire (JSON bodies, Stripe metadata, token claims).
# ============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


MAX_DOWNLOADS_PER_TOKEN = 10
MODEL_FORMAT = "glb"
MODEL_CONTENT_TYPE = "model/gltf-binary"
CURRENCY = "usd"


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class FulfillmentOption(str, Enum):
    DIGITAL = "digital"
    FABRICATION = "fabrication"


class FulfillmentType(str, Enum):
    DIGITAL_DOWNLOAD = "digital_download"
    CNC_FABRICATION = "cnc_fabrication"


class DeliveryType(str, Enum):
    DIGITAL = "digital"
    PHYSICAL = "physical"


class SortOrder(str, Enum):
    NAME = "name"
    PRICE_ASC = "price-asc"
    PRICE_DESC = "price-desc"
    ERA = "era"
    NEWEST = "newest"


# ============================================================================
# SECTION 2: CATALOG
# ============================================================================

class Product(BaseModel):
    """A purchasable 3D scan of an antique stone element."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: str = Field(pattern=r"^[a-z0-9-]+$")
    name: str = Field(min_length=1, max_length=100)
    era: str = Field(min_length=1, max_length=50)
    provenance: str = Field(min_length=1, max_length=500)
    dimensions: str = Field(pattern=r'^\d+"?\s*[HWD]')
    vertices: int = Field(ge=1000, le=500000)
    file_size: int = Field(alias="fileSize", ge=1, le=50 * 1024 * 1024)
    file_url: str = Field(alias="fileUrl", pattern=r"^/models/[A-Za-z0-9_-]+\.glb$")
    price: int = Field(ge=100, le=100000)
    published: bool = False
    thumbnail_url: Optional[str] = Field(
        default=None,
        alias="thumbnailUrl",
        pattern=r"^/images/[a-z0-9-]+\.(jpg|png|webp)$",
    )
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class CatalogFilter(BaseModel):
    """Gallery query: search, price window and ordering."""

    search: Optional[str] = None
    min_price: int = Field(default=0, ge=0)
    max_price: Optional[int] = Field(default=None, ge=0)
    sort: SortOrder = SortOrder.NEWEST
    published_only: bool = True


# ============================================================================
# SECTION 3: FULFILLMENT PARTNERS
# ============================================================================

class FulfillmentPartner(BaseModel):
    """CNC stone-carving shop that can fabricate a purchased model."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: str
    name: str
    location: str
    materials: List[str]
    lead_time: str = Field(alias="leadTime")
    price_multiplier: float = Field(alias="priceMultiplier", gt=0)
    equipment: str

    def quote(self, base_price: int) -> int:
        return round(base_price * self.price_multiplier)


# ============================================================================
# SECTION 4: PAYMENT INTENTS
# ============================================================================

class CreatePaymentIntentRequest(BaseModel):
    """Inbound checkout request"""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(alias="modelId", min_length=1)
    customer_email: EmailStr = Field(alias="customerEmail")
    fulfillment: FulfillmentOption = FulfillmentOption.DIGITAL
    partner_id: Optional[str] = Field(default=None, alias="partnerId")


class PaymentIntentResult(BaseModel):
    """What the checkout page needs to confirm the card payment"""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    client_secret: str = Field(alias="clientSecret")
    amount: int


class PaymentIntentMetadata(BaseModel):
    """
    Application context carried through Stripe.

    Stripe metadata is a flat map of strings, so booleans travel as
    "true"/"false" and are parsed back on the webhook side.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", protected_namespaces=())

    model_id: str = Field(alias="modelId", min_length=1)
    customer_email: EmailStr = Field(alias="customerEmail")
    delivery_type: DeliveryType = Field(default=DeliveryType.DIGITAL, alias="deliveryType")
    fulfillment_type: FulfillmentType = Field(
        default=FulfillmentType.DIGITAL_DOWNLOAD, alias="fulfillmentType"
    )
    format: str = MODEL_FORMAT
    dimensions: str = ""
    manufacturing_required: str = Field(default="false", alias="manufacturingRequired")
    partner_id: Optional[str] = Field(default=None, alias="partnerId")

    @property
    def requires_manufacturing(self) -> bool:
        return self.manufacturing_required.lower() == "true"

    def to_stripe(self) -> Dict[str, str]:
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        return {key: str(value) for key, value in data.items()}


class ChargeResult(BaseModel):
    """Processor response to a charge request"""

    id: str
    client_secret: str
    amount: int


# ============================================================================
# SECTION 5: DOWNLOAD TOKENS
# ============================================================================

class DownloadTokenPayload(BaseModel):
    """Claims inside a signed download token."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", protected_namespaces=())

    model_id: str = Field(alias="modelId", min_length=1)
    purchase_id: str = Field(alias="purchaseId", pattern=r"^pi_")
    customer_email: EmailStr = Field(alias="customerEmail")
    expires_at: int = Field(alias="expiresAt", gt=0)
    iat: int = Field(gt=0)
    download_count: int = Field(
        default=0, alias="downloadCount", ge=0, le=MAX_DOWNLOADS_PER_TOKEN
    )

    def to_claims(self) -> dict:
        return self.model_dump(by_alias=True)


# ============================================================================
# SECTION 6: PURCHASES
# ============================================================================

class PurchaseRecord(BaseModel):
    """Ledger row keyed by the payment intent id"""

    model_config = ConfigDict(protected_namespaces=())

    purchase_id: str
    model_id: str
    customer_email: str
    amount: int = 0
    fulfillment_type: FulfillmentType = FulfillmentType.DIGITAL_DOWNLOAD
    partner_id: Optional[str] = None
    token_issued_at: Optional[datetime] = None
    email_sent: bool = False
    fulfillment_claimed_at: Optional[datetime] = None
    download_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
