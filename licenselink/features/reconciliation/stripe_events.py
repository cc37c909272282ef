"""
Stripe webhook stream.

Once the signature verifies, every event is acknowledged. Work triggered here
(license provisioning, lifecycle hooks) is best-effort: failures are logged
and not raised, because a non-200 would only make Stripe redeliver an event
whose failure lies downstream.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

from licenselink.core.errors import InternalError, UpstreamError
from licenselink.core.logging import log_event
from licenselink.features.billing.provider import PaymentEvent, PaymentsProvider
from licenselink.features.licensing.keygen_client import KeygenClient
from licenselink.features.reconciliation.hooks import LoggingLifecycleHook, SubscriptionLifecycleHook
from licenselink.models.accounts import (
    License,
    LICENSE_PAYMENT_CUSTOMER_ID,
    LICENSE_SUBSCRIPTION_ID,
)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"


class StripeEventHandler:
    def __init__(
        self,
        payments: PaymentsProvider,
        licensing: Optional[KeygenClient],
        policy_id: Optional[str],
        hook: Optional[SubscriptionLifecycleHook] = None,
    ):
        self.payments = payments
        self.licensing = licensing
        self.policy_id = policy_id
        self.hook = hook or LoggingLifecycleHook()
        self._handlers: Dict[str, Callable[[PaymentEvent], Awaitable[Any]]] = {
            CHECKOUT_COMPLETED: self.provision_license,
            SUBSCRIPTION_DELETED: self.hook.on_subscription_deleted,
            INVOICE_PAYMENT_FAILED: self.hook.on_payment_failed,
            INVOICE_PAYMENT_SUCCEEDED: self.hook.on_payment_succeeded,
        }

    async def handle(self, body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and dispatch one Stripe webhook delivery.

        Raises:
            SignatureError: signature missing or invalid; nothing is processed
        """
        event = self.payments.construct_event(body, signature)
        log_event(
            "info",
            f"Stripe event received: {event.event_type}",
            event_type=event.event_type,
            provider="stripe",
            extra={"event_id": event.event_id},
        )

        handler = self._handlers.get(event.event_type)
        if handler is None:
            log_event("info", f"Unhandled Stripe event type {event.event_type}", event_type=event.event_type, provider="stripe")
            return {"received": True, "event_type": event.event_type}

        try:
            await handler(event)
        except Exception as e:
            log_event(
                "error",
                f"Stripe event {event.event_id} handling failed: {e}",
                event_type=event.event_type,
                provider="stripe",
                account_id=event.customer_id,
                error_code=getattr(e, "code", None),
                exc_info=True,
            )

        return {"received": True, "event_type": event.event_type}

    async def provision_license(self, event: PaymentEvent) -> Optional[License]:
        """
        Issue a license for a completed subscription checkout.

        At most one license per subscription: an existing license carrying the
        subscription id is returned instead of creating another.
        """
        if not event.customer_id or not event.subscription_id:
            log_event(
                "warning",
                f"Checkout {event.event_id} has no customer or subscription; nothing to provision",
                event_type=event.event_type,
                provider="stripe",
            )
            return None
        if self.licensing is None or not self.policy_id:
            raise InternalError("Keygen licensing is not configured (KEYGEN_POLICY_ID)")

        log_event(
            "info",
            f"Checkout completed for {event.customer_email}",
            event_type=event.event_type,
            provider="stripe",
            account_id=event.customer_id,
            extra={"subscription_id": event.subscription_id},
        )

        existing = await self.licensing.find_licenses_by_metadata({LICENSE_SUBSCRIPTION_ID: event.subscription_id})
        if existing:
            log_event(
                "info",
                f"License {existing[0].id} already issued for subscription {event.subscription_id}",
                event_type=event.event_type,
                provider="keygen",
            )
            return existing[0]

        license_account_id = None
        try:
            customer = await self.payments.retrieve_customer(event.customer_id)
            license_account_id = customer.license_account_id
        except UpstreamError as e:
            log_event(
                "warning",
                f"Could not read customer {event.customer_id}; issuing license without owner: {e}",
                event_type=event.event_type,
                provider="stripe",
                account_id=event.customer_id,
            )

        license = await self.licensing.create_license(
            self.policy_id,
            metadata={
                LICENSE_PAYMENT_CUSTOMER_ID: event.customer_id,
                LICENSE_SUBSCRIPTION_ID: event.subscription_id,
            },
            user_id=license_account_id,
        )
        log_event(
            "info",
            f"License {license.id} issued for subscription {event.subscription_id}",
            event_type=event.event_type,
            provider="keygen",
            account_id=license_account_id,
        )
        return license
