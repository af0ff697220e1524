import asyncio
import hashlib
import hmac
import json
import re
import time
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from config import Settings
from pipeline.agents import DeliveryAgent, FulfillmentAgent, PaymentGateway
from pipeline.errors import UpstreamError
from pipeline.tokens import DownloadTokenIssuer
from schemas import ChargeResult
from services import IEmailSender, StripePaymentProcessor
from storage import InMemoryCatalogRepository, InMemoryPurchaseLedger, LocalAssetStore

TOKEN_SECRET = "test-download-token-secret-0123456789abcdef"
WEBHOOK_SECRET = "whsec_test_signing_secret_for_webhooks"
PUBLIC_BASE_URL = "https://stone.example"
MADONNA_FILE = "Madonna_and_Child_wit_1027185650_generate.glb"
MADONNA_BYTES = b"glTF\x02\x00\x00\x00madonna-and-child"


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:
    """Settable clock for the token issuer"""

    def __init__(self, start: Optional[float] = None):
        self.now = float(start if start is not None else int(time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePaymentProcessor(StripePaymentProcessor):
    """Real webhook verification, canned charges"""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET, fail: bool = False):
        super().__init__(api_key="sk_test_fake", webhook_secret=webhook_secret)
        self.fail = fail
        self.calls = []

    async def create_charge(self, amount, currency, metadata, description=None, receipt_email=None):
        self.calls.append({
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "description": description,
            "receipt_email": receipt_email,
        })
        if self.fail:
            raise UpstreamError()
        return ChargeResult(id="pi_123", client_secret="pi_123_secret_abc", amount=amount)


class RecordingEmailSender(IEmailSender):
    def __init__(self, failures: int = 0, delay: float = 0):
        self.sent = []
        self.failures = failures
        self.delay = delay

    async def send_email(self, to, subject, body):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("smtp unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body})
        return f"msg-{len(self.sent)}"

    def last_token(self) -> str:
        match = re.search(r"token=(\S+)", self.sent[-1]["body"])
        assert match, "no download link in email"
        return match.group(1)


# =============================================================================
# STRIPE-STYLE PAYLOADS
# =============================================================================

def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def make_intent(
    purchase_id: str = "pi_123",
    model_id: str = "madonna-and-child",
    email: str = "buyer@example.com",
    amount: int = 12900,
    **metadata,
) -> dict:
    meta = {
        "modelId": model_id,
        "customerEmail": email,
        "deliveryType": "digital",
        "fulfillmentType": "digital_download",
        "format": "glb",
        "dimensions": '24" H x 18" W x 6" D',
        "manufacturingRequired": "false",
    }
    meta.update(metadata)
    return {"id": purchase_id, "object": "payment_intent", "amount": amount, "metadata": meta}


def make_event(event_type: str, intent: dict, event_id: str = "evt_1") -> bytes:
    event = {"id": event_id, "type": event_type, "data": {"object": intent}}
    return json.dumps(event).encode("utf-8")


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(clock):
    return DownloadTokenIssuer(TOKEN_SECRET, clock=clock)


@pytest.fixture
def catalog():
    return InMemoryCatalogRepository()


@pytest.fixture
def ledger():
    return InMemoryPurchaseLedger()


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def asset_root(tmp_path):
    models = tmp_path / "models"
    models.mkdir()
    (models / MADONNA_FILE).write_bytes(MADONNA_BYTES)
    return tmp_path


@pytest.fixture
def assets(asset_root):
    return LocalAssetStore(asset_root)


@pytest.fixture
def fulfillment(issuer, ledger, email_sender):
    return FulfillmentAgent(issuer, ledger, email_sender, PUBLIC_BASE_URL)


@pytest.fixture
def gateway(catalog, processor, fulfillment):
    return PaymentGateway(catalog, processor, fulfillment)


@pytest.fixture
def delivery(catalog, issuer, ledger, assets):
    return DeliveryAgent(catalog, issuer, ledger, assets)


# =============================================================================
# HTTP FIXTURES
# =============================================================================

@pytest.fixture
def settings(asset_root):
    return Settings(
        environment="test",
        public_base_url=PUBLIC_BASE_URL,
        stripe_secret_key="sk_test_fake",
        stripe_webhook_secret=WEBHOOK_SECRET,
        download_token_secret=TOKEN_SECRET,
        asset_root=asset_root,
    )


@pytest.fixture
def app(settings, processor, email_sender, ledger, issuer):
    return create_app(
        settings,
        processor=processor,
        email_sender=email_sender,
        ledger=ledger,
        issuer=issuer,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client
