"""
Keygen webhook stream and the user.created identity-linking chain.
"""
import pytest

from licenselink.core.errors import UpstreamError


@pytest.fixture
def signed_up(supabase_fake, keygen_fake):
    """An auth account and its license account, as left behind by /signup."""
    auth_id = supabase_fake.add_user("alice@example.com")
    license_id = keygen_fake.add_user("alice@example.com", metadata={"authAccountId": auth_id})
    keygen_fake.add_event("evt_user_1", "user.created", keygen_fake.user_resource(license_id))
    keygen_fake.calls.clear()
    return auth_id, license_id


def _notify(client, event_id):
    return client.post("/keygen-webhooks", json={"data": {"id": event_id, "type": "webhook-events"}})


def test_unknown_event_is_acked_without_side_effects(client, keygen_fake, stripe_fake, supabase_fake):
    resp = _notify(client, "evt_forged")

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "ignored": True}
    assert [name for name, _ in keygen_fake.calls] == ["get_webhook_event"]
    assert stripe_fake.calls == []
    assert supabase_fake.calls == []


def test_body_without_event_id_is_rejected(client, keygen_fake):
    resp = client.post("/keygen-webhooks", json={"meta": {}})
    assert resp.status_code == 400
    assert keygen_fake.calls == []


def test_non_json_body_is_rejected(client, keygen_fake):
    resp = client.post("/keygen-webhooks", content=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert keygen_fake.calls == []


def test_user_created_links_all_three_records(client, signed_up, supabase_fake, keygen_fake, stripe_fake):
    auth_id, license_id = signed_up

    resp = _notify(client, "evt_user_1")
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "event_type": "user.created"}

    (customer,) = stripe_fake.customers.values()
    assert customer["email"] == "alice@example.com"
    assert customer["metadata"] == {"license_account_id": license_id, "auth_account_id": auth_id}

    assert keygen_fake.users[license_id]["metadata"] == {
        "authAccountId": auth_id,
        "paymentCustomerId": customer["id"],
    }
    assert supabase_fake.users[auth_id]["user_metadata"] == {
        "license_user_id": license_id,
        "payment_customer_id": customer["id"],
    }


def test_redelivered_user_created_makes_one_customer(client, signed_up, stripe_fake, keygen_fake):
    _, license_id = signed_up

    assert _notify(client, "evt_user_1").status_code == 200
    assert _notify(client, "evt_user_1").status_code == 200

    assert len(stripe_fake.customers) == 1
    assert stripe_fake.count("create_customer") == 1
    # Second delivery finds the metadata already in place.
    assert keygen_fake.count("update_user_metadata") == 1


def test_user_created_without_auth_link_still_gets_customer(client, keygen_fake, stripe_fake, supabase_fake):
    license_id = keygen_fake.add_user("bob@example.com")
    keygen_fake.add_event("evt_user_2", "user.created", keygen_fake.user_resource(license_id))

    resp = _notify(client, "evt_user_2")
    assert resp.status_code == 200

    (customer,) = stripe_fake.customers.values()
    assert customer["metadata"] == {"license_account_id": license_id}
    assert supabase_fake.calls == []


def test_linking_failure_returns_500_for_redelivery(client, signed_up, stripe_fake, keygen_fake, monkeypatch):
    auth_id, license_id = signed_up

    async def stripe_down(*args, **kwargs):
        raise UpstreamError("stripe", "connection reset", timeout=True)

    monkeypatch.setattr(stripe_fake, "create_customer", stripe_down)
    resp = _notify(client, "evt_user_1")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "upstream_error"
    assert "paymentCustomerId" not in keygen_fake.users[license_id]["metadata"]

    # Redelivery after recovery finishes the chain.
    monkeypatch.undo()
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")
    assert _notify(client, "evt_user_1").status_code == 200
    assert len(stripe_fake.customers) == 1
    assert "paymentCustomerId" in keygen_fake.users[license_id]["metadata"]


def test_license_events_are_logged_only(client, keygen_fake, stripe_fake, supabase_fake):
    keygen_fake.add_event("evt_lic", "license.validated", {"id": "lic-9", "type": "licenses", "attributes": {}})
    resp = _notify(client, "evt_lic")
    assert resp.status_code == 200
    assert resp.json()["event_type"] == "license.validated"
    assert stripe_fake.calls == []
    assert supabase_fake.calls == []


def test_rate_limited_refetch_is_not_acked(client, signed_up, keygen_fake, stripe_fake, monkeypatch):
    async def rate_limited(event_id):
        raise UpstreamError(
            "keygen",
            "Throttle limit has been reached for your IP address.",
            upstream_status=429,
            errors=[{"title": "Too many requests"}],
        )

    monkeypatch.setattr(keygen_fake, "get_webhook_event", rate_limited)
    resp = _notify(client, "evt_user_1")
    assert resp.status_code == 500
    assert stripe_fake.calls == []

    monkeypatch.undo()
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")
    assert _notify(client, "evt_user_1").json() == {"received": True, "event_type": "user.created"}
    assert len(stripe_fake.customers) == 1


def test_non_utf8_body_is_rejected(client, keygen_fake):
    resp = client.post("/keygen-webhooks", content=b'{"data": "\xc3\x28"}', headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert keygen_fake.calls == []


def test_unparsable_event_payload_is_rejected(client, keygen_fake, stripe_fake):
    keygen_fake.add_event("evt_bad", "user.created")
    keygen_fake.events["evt_bad"]["attributes"]["payload"] = "{not json"

    resp = _notify(client, "evt_bad")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
    assert stripe_fake.calls == []


def test_user_created_repoints_customer_at_current_auth_account(client, signed_up, keygen_fake, stripe_fake):
    auth_id, license_id = signed_up
    customer_id = stripe_fake.add_customer(
        "alice@example.com",
        {"license_account_id": license_id, "auth_account_id": "sb-old"},
    )

    assert _notify(client, "evt_user_1").status_code == 200
    assert stripe_fake.count("create_customer") == 0
    assert stripe_fake.customers[customer_id]["metadata"]["auth_account_id"] == auth_id
