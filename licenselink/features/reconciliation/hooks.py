"""
Subscription lifecycle extension point.

Stripe tells us when a subscription is deleted or an invoice fails or
succeeds. What that should mean for the customer's licenses (revoke, suspend,
reinstate) is a product decision, so the engine hands these events to a hook.
The default hook only logs.
"""
from typing import Protocol

from licenselink.core.logging import log_event
from licenselink.features.billing.provider import PaymentEvent


class SubscriptionLifecycleHook(Protocol):
    async def on_subscription_deleted(self, event: PaymentEvent) -> None:
        ...

    async def on_payment_failed(self, event: PaymentEvent) -> None:
        ...

    async def on_payment_succeeded(self, event: PaymentEvent) -> None:
        ...


class LoggingLifecycleHook:
    """No-op hook: records the transition and leaves licenses untouched."""

    async def on_subscription_deleted(self, event: PaymentEvent) -> None:
        log_event(
            "info",
            f"Subscription deleted for customer {event.customer_id}",
            event_type=event.event_type,
            provider="stripe",
            account_id=event.customer_id,
        )

    async def on_payment_failed(self, event: PaymentEvent) -> None:
        log_event(
            "warning",
            f"Payment failed for customer {event.customer_id}",
            event_type=event.event_type,
            provider="stripe",
            account_id=event.customer_id,
        )

    async def on_payment_succeeded(self, event: PaymentEvent) -> None:
        log_event(
            "info",
            f"Payment succeeded for customer {event.customer_id}",
            event_type=event.event_type,
            provider="stripe",
            account_id=event.customer_id,
        )
