import asyncio
import time

import pytest

from pipeline.agents import WebhookRouter
from pipeline.errors import InvalidSignature, StorefrontError, Unauthenticated

from conftest import PUBLIC_BASE_URL, make_event, make_intent, sign_payload


async def deliver(gateway, payload, **sign_kwargs):
    return await gateway.process_webhook(payload, sign_payload(payload, **sign_kwargs))


async def test_signed_success_event_fulfills_the_purchase(gateway, ledger, email_sender, issuer):
    payload = make_event("payment_intent.succeeded", make_intent())

    assert await deliver(gateway, payload) == {"received": True}

    record = await ledger.get("pi_123")
    assert record.model_id == "madonna-and-child"
    assert record.customer_email == "buyer@example.com"
    assert record.amount == 12900
    assert record.email_sent is True
    assert record.token_issued_at is not None

    assert len(email_sender.sent) == 1
    mail = email_sender.sent[0]
    assert mail["to"] == "buyer@example.com"
    assert f"{PUBLIC_BASE_URL}/download/madonna-and-child?token=" in mail["body"]

    claims = issuer.verify(email_sender.last_token())
    assert claims.model_id == "madonna-and-child"
    assert claims.purchase_id == "pi_123"
    assert claims.download_count == 0


async def test_missing_signature_is_rejected_with_400(gateway, email_sender):
    payload = make_event("payment_intent.succeeded", make_intent())

    with pytest.raises(Unauthenticated) as exc_info:
        await gateway.process_webhook(payload, None)

    assert exc_info.value.status_code == 400
    assert email_sender.sent == []


async def test_single_byte_tamper_is_rejected(gateway, ledger, email_sender):
    payload = make_event("payment_intent.succeeded", make_intent(amount=12900))
    signature = sign_payload(payload)
    tampered = payload.replace(b"12900", b"12901")

    with pytest.raises(InvalidSignature) as exc_info:
        await gateway.process_webhook(tampered, signature)

    assert exc_info.value.message == "Invalid signature"
    assert await ledger.get("pi_123") is None
    assert email_sender.sent == []


async def test_wrong_secret_is_rejected(gateway):
    payload = make_event("payment_intent.succeeded", make_intent())
    with pytest.raises(InvalidSignature):
        await deliver(gateway, payload, secret="whsec_someone_else")


async def test_stale_timestamp_is_rejected(gateway):
    payload = make_event("payment_intent.succeeded", make_intent())
    with pytest.raises(InvalidSignature):
        await deliver(gateway, payload, timestamp=int(time.time()) - 600)


async def test_malformed_signature_header_is_rejected(gateway):
    payload = make_event("payment_intent.succeeded", make_intent())
    with pytest.raises(InvalidSignature):
        await gateway.process_webhook(payload, "not-a-signature")


async def test_unhandled_event_types_are_acknowledged(gateway, ledger, email_sender):
    payload = make_event("charge.refunded", make_intent())

    assert await deliver(gateway, payload) == {"received": True}
    assert await ledger.get("pi_123") is None
    assert email_sender.sent == []


async def test_payment_failed_is_only_logged(gateway, ledger, email_sender):
    intent = make_intent()
    intent["last_payment_error"] = {"code": "card_declined", "decline_code": "insufficient_funds"}
    payload = make_event("payment_intent.payment_failed", intent)

    assert await deliver(gateway, payload) == {"received": True}
    assert await ledger.get("pi_123") is None
    assert email_sender.sent == []


async def test_redelivery_after_success_is_a_no_op(gateway, ledger, email_sender):
    payload = make_event("payment_intent.succeeded", make_intent())

    await deliver(gateway, payload)
    await deliver(gateway, payload)

    assert len(email_sender.sent) == 1
    assert (await ledger.get("pi_123")).email_sent is True


async def test_email_failure_does_not_fail_the_webhook_and_redelivery_retries(gateway, ledger, email_sender):
    email_sender.failures = 1
    payload = make_event("payment_intent.succeeded", make_intent())

    assert await deliver(gateway, payload) == {"received": True}
    assert (await ledger.get("pi_123")).email_sent is False
    assert email_sender.sent == []

    await deliver(gateway, payload)
    assert (await ledger.get("pi_123")).email_sent is True
    assert len(email_sender.sent) == 1


async def test_concurrent_redelivery_mails_the_link_once(gateway, ledger, email_sender):
    email_sender.delay = 0.05
    payload = make_event("payment_intent.succeeded", make_intent())

    results = await asyncio.gather(deliver(gateway, payload), deliver(gateway, payload))

    assert results == [{"received": True}, {"received": True}]
    assert len(email_sender.sent) == 1
    record = await ledger.get("pi_123")
    assert record.email_sent is True
    assert record.fulfillment_claimed_at is None


async def test_failed_fulfillment_releases_the_claim(gateway, ledger, email_sender, issuer, monkeypatch):
    payload = make_event("payment_intent.succeeded", make_intent())

    def broken_issue(**kwargs):
        raise RuntimeError("signing key unavailable")

    with monkeypatch.context() as patched:
        patched.setattr(issuer, "issue", broken_issue)
        with pytest.raises(StorefrontError):
            await deliver(gateway, payload)

    assert (await ledger.get("pi_123")).fulfillment_claimed_at is None

    await deliver(gateway, payload)
    assert len(email_sender.sent) == 1
    assert (await ledger.get("pi_123")).email_sent is True


async def test_incomplete_metadata_fails_loudly(gateway, ledger):
    intent = make_intent()
    del intent["metadata"]["customerEmail"]
    payload = make_event("payment_intent.succeeded", intent)

    with pytest.raises(StorefrontError) as exc_info:
        await deliver(gateway, payload)

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Webhook handler failed"
    assert await ledger.get("pi_123") is None


async def test_fabrication_purchase_records_partner_and_still_mails_link(gateway, ledger, email_sender):
    intent = make_intent(
        amount=round(12900 * 3.2),
        deliveryType="physical",
        fulfillmentType="cnc_fabrication",
        manufacturingRequired="true",
        partnerId="precision-stone-works",
    )
    await deliver(gateway, make_event("payment_intent.succeeded", intent))

    record = await ledger.get("pi_123")
    assert record.fulfillment_type.value == "cnc_fabrication"
    assert record.partner_id == "precision-stone-works"
    assert len(email_sender.sent) == 1


async def test_router_dispatches_registered_handlers():
    router = WebhookRouter()
    seen = []

    @router.register("payment_intent.succeeded")
    async def on_success(event, correlation_id):
        seen.append((event["id"], correlation_id))
        return "handled"

    assert router.supported_events == ["payment_intent.succeeded"]
    assert await router.route({"id": "evt_9", "type": "payment_intent.succeeded"}, "pi_9") == "handled"
    assert await router.route({"id": "evt_10", "type": "invoice.paid"}, "in_1") is None
    assert seen == [("evt_9", "pi_9")]
