"""
Checkout and billing portal orchestration.

Sessions are always bound to an existing Stripe customer. The customer is
created by the Keygen user.created reconciliation, never here, so an auth
account cannot end up with two customers.
"""
from typing import Optional

from licenselink.core.config import Settings
from licenselink.core.errors import AuthError, ProviderDisabledError, UpstreamError, ValidationError
from licenselink.core.logging import log_event
from licenselink.features.billing.provider import PaymentsProvider
from licenselink.models.accounts import PAYMENT_AUTH_ACCOUNT_ID, PaymentCustomer


async def _live_customer(
    payments: PaymentsProvider,
    customer_id: str,
    auth_account_id: Optional[str],
    *,
    unknown_is_client_error: bool,
) -> PaymentCustomer:
    try:
        customer = await payments.retrieve_customer(customer_id)
    except UpstreamError as e:
        if unknown_is_client_error and e.upstream_status == 404:
            raise ValidationError(f"Unknown payment customer: {customer_id}")
        raise

    if customer.deleted:
        raise ValidationError(f"Payment customer {customer_id} has been deleted")

    owner = customer.metadata.get(PAYMENT_AUTH_ACCOUNT_ID)
    if auth_account_id and owner and owner != auth_account_id:
        raise AuthError("Payment customer belongs to another account", status_code=403)
    return customer


async def create_checkout_session(
    settings: Settings,
    payments: Optional[PaymentsProvider],
    *,
    price_id: Optional[str],
    customer_email: Optional[str],
    payment_customer_id: Optional[str],
    auth_account_id: Optional[str] = None,
) -> str:
    """
    Create a hosted subscription checkout for an existing customer.

    Args:
        settings: Application settings (FRONTEND_URL, STRIPE_PRICE_ID)
        payments: Payments provider, None when Stripe is not configured
        price_id: Stripe price; falls back to STRIPE_PRICE_ID
        customer_email: Recorded in session metadata
        payment_customer_id: Existing Stripe customer, required
        auth_account_id: Caller's auth account, checked against the customer's metadata

    Returns:
        Checkout session URL

    Raises:
        ValidationError: missing customer or price, or customer deleted/unknown
        AuthError 403: customer linked to a different auth account
        UpstreamError: Stripe failure
    """
    if not payment_customer_id:
        raise ValidationError("stripeCustomerId is required; customers are created at sign-up")
    price = price_id or settings.STRIPE_PRICE_ID
    if not price:
        raise ValidationError("priceId is required")
    if payments is None:
        raise ProviderDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY.")

    customer = await _live_customer(payments, payment_customer_id, auth_account_id, unknown_is_client_error=True)

    frontend = settings.FRONTEND_URL.rstrip("/")
    url = await payments.create_checkout_session(
        customer_id=customer.id,
        price_id=price,
        success_url=f"{frontend}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{frontend}/dashboard?canceled=true",
        metadata={"customer_email": customer_email or customer.email or ""},
    )
    log_event("info", f"Checkout session created for {customer.id}", provider="stripe", account_id=auth_account_id)
    return url


async def create_portal_session(
    settings: Settings,
    payments: Optional[PaymentsProvider],
    *,
    payment_customer_id: Optional[str],
    return_url: Optional[str] = None,
    auth_account_id: Optional[str] = None,
) -> str:
    """
    Create a hosted billing-management session.

    Raises:
        ValidationError: missing or deleted customer
        AuthError 403: customer linked to a different auth account
        UpstreamError: Stripe failure, including an unknown customer id
    """
    if not payment_customer_id:
        raise ValidationError("stripeCustomerId is required")
    if payments is None:
        raise ProviderDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY.")

    customer = await _live_customer(payments, payment_customer_id, auth_account_id, unknown_is_client_error=False)

    url = await payments.create_portal_session(
        customer_id=customer.id,
        return_url=return_url or f"{settings.FRONTEND_URL.rstrip('/')}/dashboard",
    )
    log_event("info", f"Portal session created for {customer.id}", provider="stripe", account_id=auth_account_id)
    return url
