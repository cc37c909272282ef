"""
Payments provider protocol.

Defines the interface the checkout orchestrator and the reconciliation engine
use to talk to the payments provider (Stripe), so tests can swap in a fake.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field

from licenselink.models.accounts import PaymentCustomer


@dataclass
class PaymentEvent:
    """A signature-verified payments webhook event, normalized."""
    event_id: str
    event_type: str
    customer_id: Optional[str]
    customer_email: Optional[str]
    subscription_id: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> "PaymentEvent":
        obj = (event.get("data") or {}).get("object") or {}
        event_type = event.get("type", "")

        customer_email = None
        subscription_id = None
        if event_type.startswith("checkout.session."):
            customer_email = (obj.get("customer_details") or {}).get("email") or obj.get("customer_email")
            subscription_id = obj.get("subscription")
        elif event_type.startswith("customer.subscription."):
            subscription_id = obj.get("id")
        elif event_type.startswith("invoice."):
            customer_email = obj.get("customer_email")
            subscription_id = obj.get("subscription")

        customer = obj.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")

        return cls(
            event_id=event.get("id", ""),
            event_type=event_type,
            customer_id=customer,
            customer_email=customer_email,
            subscription_id=subscription_id,
            data=obj,
        )


class PaymentsProvider(Protocol):
    """
    Protocol for the payments provider.

    Every method raises UpstreamError when the provider rejects the call or
    does not answer within the configured timeout.
    """

    async def create_customer(self, email: Optional[str], metadata: Dict[str, str], description: Optional[str] = None) -> PaymentCustomer:
        ...

    async def retrieve_customer(self, customer_id: str) -> PaymentCustomer:
        """Retrieve a customer; deleted customers come back with deleted=True."""
        ...

    async def find_customer_for_license_account(self, email: Optional[str], license_account_id: str) -> Optional[PaymentCustomer]:
        """Find the live customer whose metadata links it to the license account."""
        ...

    async def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> PaymentCustomer:
        """Set the given metadata keys; keys not named are left alone."""
        ...

    async def delete_customer(self, customer_id: str) -> None:
        ...

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Create a subscription checkout session and return its URL."""
        ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
        ...

    def construct_event(self, body: bytes, signature: Optional[str]) -> PaymentEvent:
        """
        Verify the webhook signature over the raw body and parse the event.

        Raises:
            SignatureError: If the signature is missing or does not verify
        """
        ...
