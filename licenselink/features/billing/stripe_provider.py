"""
Stripe implementation of the PaymentsProvider protocol.

Wraps an explicit StripeClient (no module-level api_key). The SDK is blocking,
so calls run in the Starlette threadpool to keep the interface async.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from licenselink.core.errors import SignatureError, UpstreamError
from licenselink.features.billing.provider import PaymentEvent
from licenselink.models.accounts import PaymentCustomer, PAYMENT_LICENSE_ACCOUNT_ID

logger = logging.getLogger("licenselink")

PROVIDER = "stripe"


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _upstream(e: stripe.StripeError) -> UpstreamError:
    return UpstreamError(
        PROVIDER,
        e.user_message or str(e),
        upstream_status=e.http_status,
        timeout=isinstance(e, stripe.APIConnectionError),
    )


class StripeProvider:
    """Stripe implementation of PaymentsProvider."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[stripe.StripeClient] = None,
    ):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key
            webhook_secret: Signing secret of the webhook endpoint
            timeout: Per-request timeout in seconds
            client: Prebuilt StripeClient (tests)
        """
        self.webhook_secret = webhook_secret
        self._client = client or stripe.StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=0,
        )

    async def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Dict[str, Any]:
        try:
            result = await run_in_threadpool(fn, *args, **kwargs)
        except stripe.StripeError as e:
            raise _upstream(e)
        return _as_dict(result)

    async def create_customer(self, email: Optional[str], metadata: Dict[str, str], description: Optional[str] = None) -> PaymentCustomer:
        params: Dict[str, Any] = {"metadata": metadata}
        if email:
            params["email"] = email
        if description:
            params["description"] = description
        customer = await self._call(self._client.customers.create, params=params)
        return PaymentCustomer.from_stripe(customer)

    async def retrieve_customer(self, customer_id: str) -> PaymentCustomer:
        customer = await self._call(self._client.customers.retrieve, customer_id)
        return PaymentCustomer.from_stripe(customer)

    async def find_customer_for_license_account(self, email: Optional[str], license_account_id: str) -> Optional[PaymentCustomer]:
        # List (not search) so a customer created moments ago is visible.
        params: Dict[str, Any] = {"limit": 100}
        if email:
            params["email"] = email
        page = await self._call(self._client.customers.list, params=params)
        for item in page.get("data") or []:
            customer = PaymentCustomer.from_stripe(_as_dict(item))
            if not customer.deleted and customer.metadata.get(PAYMENT_LICENSE_ACCOUNT_ID) == license_account_id:
                return customer
        return None

    async def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> PaymentCustomer:
        customer = await self._call(self._client.customers.update, customer_id, params={"metadata": metadata})
        return PaymentCustomer.from_stripe(customer)

    async def delete_customer(self, customer_id: str) -> None:
        await self._call(self._client.customers.delete, customer_id)

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        session = await self._call(
            self._client.checkout.sessions.create,
            params={
                "customer": customer_id,
                "payment_method_types": ["card"],
                "line_items": [{"price": price_id, "quantity": 1}],
                "mode": "subscription",
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata or {},
            },
        )
        return session["url"]

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await self._call(
            self._client.billing_portal.sessions.create,
            params={"customer": customer_id, "return_url": return_url},
        )
        return session["url"]

    def construct_event(self, body: bytes, signature: Optional[str]) -> PaymentEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise SignatureError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise SignatureError("Missing stripe-signature header")

        try:
            self._client.construct_event(body, signature, self.webhook_secret)
        except ValueError as e:
            raise SignatureError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            logger.warning("stripe.signature_invalid", extra={"provider": PROVIDER, "error_code": SignatureError.code})
            raise SignatureError(f"Invalid signature: {e}")

        # Signature covers the raw bytes, so the body itself is now trusted.
        return PaymentEvent.from_event(json.loads(body))
