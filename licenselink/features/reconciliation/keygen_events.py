"""
Keygen webhook stream.

The inbound delivery is only a notification: the event is re-fetched from
Keygen's event log with the product token before any field is trusted.

user.created runs the identity-linking chain that ties the Keygen user to its
Supabase account and to a Stripe customer. Errors propagate (HTTP 500) so
Keygen redelivers; every step checks before it writes, so a redelivery after a
partial run finishes the chain without duplicating anything.
"""
import json
from typing import Any, Dict, Optional

from licenselink.core.errors import UpstreamError, ValidationError
from licenselink.core.logging import log_event
from licenselink.features.billing.provider import PaymentsProvider
from licenselink.features.licensing.keygen_client import KeygenClient
from licenselink.features.users.supabase_client import SupabaseAuthClient
from licenselink.models.accounts import (
    AUTH_LICENSE_USER_ID,
    AUTH_PAYMENT_CUSTOMER_ID,
    LICENSE_PAYMENT_CUSTOMER_ID,
    LicenseAccount,
    PAYMENT_AUTH_ACCOUNT_ID,
    PAYMENT_LICENSE_ACCOUNT_ID,
    PaymentCustomer,
)

USER_CREATED = "user.created"
LICENSE_CREATED = "license.created"
LICENSE_VALIDATED = "license.validated"
LICENSE_INVALIDATED = "license.invalidated"

LOGGED_ONLY = (LICENSE_CREATED, LICENSE_VALIDATED, LICENSE_INVALIDATED)


def _event_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if not isinstance(data, dict):
        return None
    return data.get("id")


def _payload_resource(attributes: Dict[str, Any], required: bool = True) -> Dict[str, Any]:
    payload = attributes.get("payload")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            raise ValidationError("Keygen event payload is not JSON")
    resource = payload.get("data") if isinstance(payload, dict) else None
    if not resource:
        if required:
            raise ValidationError("Keygen event payload has no data")
        return {}
    return resource


def _is_foreign_event(e: UpstreamError) -> bool:
    # 4xx other than rate limiting means Keygen will never serve this event to us.
    status = e.upstream_status
    return status is not None and 400 <= status < 500 and status != 429


async def link_identity(
    licensing: KeygenClient,
    payments: PaymentsProvider,
    users: Optional[SupabaseAuthClient],
    account: LicenseAccount,
) -> PaymentCustomer:
    """
    Cross-reference a Keygen user with its Supabase account and a Stripe customer.

    1. Supabase account gets license_user_id (when the Keygen user names it).
    2. A live Stripe customer is found or created, its auth_account_id brought
       up to date, then recorded on the Keygen user.
    3. Supabase account gets payment_customer_id.

    Used by user.created and by sign-up when it reuses an existing Keygen user.
    """
    auth_account_id = account.auth_account_id

    if auth_account_id and users is not None:
        await users.update_user_metadata(auth_account_id, {AUTH_LICENSE_USER_ID: account.id})
        log_event(
            "info",
            f"Linked auth account {auth_account_id} to license account {account.id}",
            event_type=USER_CREATED,
            provider="supabase",
            account_id=auth_account_id,
        )
    else:
        log_event(
            "warning",
            f"License account {account.id} has no auth account link",
            event_type=USER_CREATED,
            provider="keygen",
            account_id=account.id,
        )

    customer = await payments.find_customer_for_license_account(account.email, account.id)
    if customer is None:
        metadata = {PAYMENT_LICENSE_ACCOUNT_ID: account.id}
        if auth_account_id:
            metadata[PAYMENT_AUTH_ACCOUNT_ID] = auth_account_id
        customer = await payments.create_customer(
            account.email,
            metadata,
            description=f"Customer for Keygen user {account.email}",
        )
        log_event("info", f"Created customer {customer.id} for license account {account.id}", event_type=USER_CREATED, provider="stripe", account_id=customer.id)
    else:
        log_event("info", f"Reusing customer {customer.id} for license account {account.id}", event_type=USER_CREATED, provider="stripe", account_id=customer.id)
        if auth_account_id and customer.metadata.get(PAYMENT_AUTH_ACCOUNT_ID) != auth_account_id:
            customer = await payments.update_customer_metadata(customer.id, {PAYMENT_AUTH_ACCOUNT_ID: auth_account_id})

    current = await licensing.get_user(account.id)
    if current is None:
        raise UpstreamError("keygen", f"user {account.id} not found", upstream_status=404)
    if current.payment_customer_id != customer.id:
        await licensing.update_user_metadata(account.id, {LICENSE_PAYMENT_CUSTOMER_ID: customer.id}, current=current)

    if auth_account_id and users is not None:
        await users.update_user_metadata(auth_account_id, {AUTH_PAYMENT_CUSTOMER_ID: customer.id})

    return customer


class KeygenEventHandler:
    def __init__(
        self,
        licensing: KeygenClient,
        payments: PaymentsProvider,
        users: Optional[SupabaseAuthClient],
    ):
        self.licensing = licensing
        self.payments = payments
        self.users = users

    async def handle(self, body: Any) -> Dict[str, Any]:
        event_id = _event_id(body)
        if not event_id:
            raise ValidationError("Keygen webhook body must carry data.id")

        try:
            event = await self.licensing.get_webhook_event(event_id)
        except UpstreamError as e:
            if _is_foreign_event(e):
                log_event(
                    "warning",
                    f"Keygen event {event_id} not found, ignoring: {e.detail}",
                    provider="keygen",
                    extra={"event_id": event_id, "upstream_status": e.upstream_status},
                )
                return {"received": True, "ignored": True}
            raise

        attributes = event.get("attributes") or {}
        event_type = attributes.get("event")
        log_event("info", f"Keygen event received: {event_type}", event_type=event_type, provider="keygen", extra={"event_id": event_id})

        if event_type == USER_CREATED:
            account = LicenseAccount.from_resource(_payload_resource(attributes))
            await self.link_license_account(account)
        elif event_type in LOGGED_ONLY:
            resource = _payload_resource(attributes, required=False)
            log_event("info", f"{event_type}: {resource.get('id')}", event_type=event_type, provider="keygen")
        else:
            log_event("info", f"Unhandled Keygen event type: {event_type}", event_type=event_type, provider="keygen")

        return {"received": True, "event_type": event_type}

    async def link_license_account(self, account: LicenseAccount) -> PaymentCustomer:
        return await link_identity(self.licensing, self.payments, self.users, account)
