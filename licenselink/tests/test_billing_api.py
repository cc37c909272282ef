"""Checkout and billing portal sessions."""
import pytest

from licenselink.api.deps import Services


@pytest.fixture
def customer(stripe_fake):
    return stripe_fake.add_customer(
        "alice@example.com",
        {"license_account_id": "kg-user-1", "auth_account_id": "sb-user-1"},
    )


def test_checkout_without_customer_id_never_calls_stripe(client, stripe_fake, make_auth_headers):
    resp = client.post(
        "/create-checkout-session",
        json={"priceId": "price_123", "customerEmail": "alice@example.com"},
        headers=make_auth_headers(),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
    assert stripe_fake.calls == []


def test_checkout_requires_session(client, stripe_fake, customer):
    resp = client.post("/create-checkout-session", json={"stripeCustomerId": customer})
    assert resp.status_code == 401
    assert stripe_fake.calls == []


def test_checkout_creates_session_for_existing_customer(client, stripe_fake, customer, make_auth_headers):
    resp = client.post(
        "/create-checkout-session",
        json={"priceId": "price_123", "customerEmail": "alice@example.com", "stripeCustomerId": customer},
        headers=make_auth_headers(),
    )
    assert resp.status_code == 200
    assert resp.json()["url"].startswith("https://checkout.stripe.test/")

    (session,) = stripe_fake.checkout_sessions
    assert session["customer"] == customer
    assert session["price"] == "price_123"
    assert session["success_url"] == "http://localhost:5173/dashboard?session_id={CHECKOUT_SESSION_ID}"
    assert session["cancel_url"] == "http://localhost:5173/dashboard?canceled=true"
    assert session["metadata"] == {"customer_email": "alice@example.com"}
    assert stripe_fake.count("create_customer") == 0


def test_checkout_alias_and_default_price(client, stripe_fake, customer, make_auth_headers):
    resp = client.post("/checkout", json={"stripeCustomerId": customer}, headers=make_auth_headers())
    assert resp.status_code == 200
    assert stripe_fake.checkout_sessions[0]["price"] == "price_default"


def test_checkout_for_deleted_customer_is_client_error(client, stripe_fake, make_auth_headers):
    deleted = stripe_fake.add_customer("alice@example.com", deleted=True)
    resp = client.post("/create-checkout-session", json={"stripeCustomerId": deleted}, headers=make_auth_headers())
    assert resp.status_code == 400
    assert stripe_fake.checkout_sessions == []


def test_checkout_for_unknown_customer_is_client_error(client, stripe_fake, make_auth_headers):
    resp = client.post("/create-checkout-session", json={"stripeCustomerId": "cus_nope"}, headers=make_auth_headers())
    assert resp.status_code == 400
    assert stripe_fake.checkout_sessions == []


def test_checkout_for_someone_elses_customer_is_forbidden(client, stripe_fake, customer, make_auth_headers):
    resp = client.post(
        "/create-checkout-session",
        json={"stripeCustomerId": customer},
        headers=make_auth_headers(subject="sb-user-2", email="mallory@example.com"),
    )
    assert resp.status_code == 403
    assert stripe_fake.checkout_sessions == []


def test_portal_defaults_return_url(client, stripe_fake, customer, make_auth_headers):
    resp = client.post("/create-customer-portal-session", json={"stripeCustomerId": customer}, headers=make_auth_headers())
    assert resp.status_code == 200
    assert resp.json()["url"].startswith("https://billing.stripe.test/")
    assert stripe_fake.portal_sessions == [{"customer": customer, "return_url": "http://localhost:5173/dashboard"}]


def test_portal_alias_with_return_url(client, stripe_fake, customer, make_auth_headers):
    resp = client.post(
        "/customer-portal",
        json={"stripeCustomerId": customer, "returnUrl": "http://localhost:5173/account"},
        headers=make_auth_headers(),
    )
    assert resp.status_code == 200
    assert stripe_fake.portal_sessions[0]["return_url"] == "http://localhost:5173/account"


def test_portal_for_unknown_customer_is_upstream_error(client, make_auth_headers):
    resp = client.post("/create-customer-portal-session", json={"stripeCustomerId": "cus_nope"}, headers=make_auth_headers())
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "upstream_error"


def test_portal_without_customer_id(client, stripe_fake, make_auth_headers):
    resp = client.post("/create-customer-portal-session", json={}, headers=make_auth_headers())
    assert resp.status_code == 400
    assert stripe_fake.calls == []


def test_checkout_when_stripe_not_configured(settings, make_auth_headers):
    from fastapi.testclient import TestClient
    from licenselink.main import create_app

    client = TestClient(create_app(settings, Services(settings=settings)))
    resp = client.post("/create-checkout-session", json={"stripeCustomerId": "cus_1"}, headers=make_auth_headers())
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "provider_disabled"
