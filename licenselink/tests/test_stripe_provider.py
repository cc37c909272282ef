"""StripeProvider: error mapping and webhook signature verification."""
import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock

import pytest
import stripe

from licenselink.core.errors import SignatureError, UpstreamError
from licenselink.features.billing.provider import PaymentEvent
from licenselink.features.billing.stripe_provider import StripeProvider

WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def provider():
    return StripeProvider("sk_test_123", webhook_secret=WEBHOOK_SECRET, timeout=2.0)


def test_construct_event_accepts_valid_signature(provider):
    payload = json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1", "customer_details": {"email": "a@example.com"}}},
        }
    ).encode()

    event = provider.construct_event(payload, _sign(payload))

    assert event.event_id == "evt_1"
    assert event.customer_id == "cus_1"
    assert event.subscription_id == "sub_1"
    assert event.customer_email == "a@example.com"


def test_construct_event_rejects_wrong_secret(provider):
    payload = b'{"id": "evt_1", "object": "event", "type": "ping", "data": {"object": {}}}'
    with pytest.raises(SignatureError):
        provider.construct_event(payload, _sign(payload, secret="whsec_other"))


def test_construct_event_rejects_tampered_body(provider):
    payload = b'{"id": "evt_1", "object": "event", "type": "ping", "data": {"object": {}}}'
    signature = _sign(payload)
    with pytest.raises(SignatureError):
        provider.construct_event(payload.replace(b"ping", b"pong"), signature)


def test_construct_event_requires_signature_and_secret():
    with pytest.raises(SignatureError):
        StripeProvider("sk_test_123", webhook_secret=WEBHOOK_SECRET).construct_event(b"{}", None)
    with pytest.raises(SignatureError):
        StripeProvider("sk_test_123").construct_event(b"{}", "t=1,v1=abc")


@pytest.mark.asyncio
async def test_unknown_customer_maps_to_upstream_404():
    client = MagicMock()
    client.customers.retrieve.side_effect = stripe.InvalidRequestError(
        "No such customer: 'cus_nope'", "id", http_status=404
    )
    provider = StripeProvider("sk_test_123", client=client)

    with pytest.raises(UpstreamError) as exc:
        await provider.retrieve_customer("cus_nope")
    assert exc.value.provider == "stripe"
    assert exc.value.upstream_status == 404


@pytest.mark.asyncio
async def test_connection_error_is_timeout():
    client = MagicMock()
    client.customers.create.side_effect = stripe.APIConnectionError("Network error")
    provider = StripeProvider("sk_test_123", client=client)

    with pytest.raises(UpstreamError) as exc:
        await provider.create_customer("a@example.com", {"license_account_id": "kg-1"})
    assert exc.value.timeout is True


@pytest.mark.asyncio
async def test_find_customer_matches_license_account_metadata():
    client = MagicMock()
    client.customers.list.return_value = {
        "data": [
            {"id": "cus_other", "email": "a@example.com", "metadata": {"license_account_id": "kg-2"}},
            {"id": "cus_gone", "email": "a@example.com", "metadata": {"license_account_id": "kg-1"}, "deleted": True},
            {"id": "cus_1", "email": "a@example.com", "metadata": {"license_account_id": "kg-1"}},
        ]
    }
    provider = StripeProvider("sk_test_123", client=client)

    customer = await provider.find_customer_for_license_account("a@example.com", "kg-1")

    assert customer.id == "cus_1"
    client.customers.list.assert_called_once_with(params={"limit": 100, "email": "a@example.com"})


@pytest.mark.asyncio
async def test_checkout_session_is_subscription_mode():
    client = MagicMock()
    client.checkout.sessions.create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}
    provider = StripeProvider("sk_test_123", client=client)

    url = await provider.create_checkout_session("cus_1", "price_1", "https://s", "https://c", {"customer_email": "a@example.com"})

    assert url == "https://checkout.stripe.com/c/cs_1"
    params = client.checkout.sessions.create.call_args.kwargs["params"]
    assert params["mode"] == "subscription"
    assert params["customer"] == "cus_1"
    assert params["line_items"] == [{"price": "price_1", "quantity": 1}]


def test_payment_event_from_invoice():
    event = PaymentEvent.from_event(
        {
            "id": "evt_2",
            "type": "invoice.payment_failed",
            "data": {"object": {"customer": "cus_1", "subscription": "sub_9", "customer_email": "a@example.com"}},
        }
    )
    assert (event.customer_id, event.subscription_id, event.customer_email) == ("cus_1", "sub_9", "a@example.com")


def test_payment_event_from_subscription():
    event = PaymentEvent.from_event(
        {"id": "evt_3", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_9", "customer": "cus_1"}}}
    )
    assert event.subscription_id == "sub_9"
    assert event.customer_email is None


@pytest.mark.asyncio
async def test_update_customer_metadata_sends_only_named_keys():
    client = MagicMock()
    client.customers.update.return_value = {
        "id": "cus_1",
        "email": "a@example.com",
        "metadata": {"license_account_id": "kg-1", "auth_account_id": "sb-2"},
    }
    provider = StripeProvider("sk_test_123", client=client)

    customer = await provider.update_customer_metadata("cus_1", {"auth_account_id": "sb-2"})

    client.customers.update.assert_called_once_with("cus_1", params={"metadata": {"auth_account_id": "sb-2"}})
    assert customer.metadata["license_account_id"] == "kg-1"
