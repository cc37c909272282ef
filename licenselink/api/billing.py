"""
Billing API routes.

- POST /create-checkout-session (alias /checkout): hosted subscription checkout
- POST /create-customer-portal-session (alias /customer-portal): billing portal

Both require a session and an existing Stripe customer; customers are created
by the Keygen user.created reconciliation.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from licenselink.api.deps import Services, get_services
from licenselink.core.auth import get_session_claims
from licenselink.features.billing.service import create_checkout_session, create_portal_session
from licenselink.models.accounts import SessionClaims

router = APIRouter(tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    model_config = ConfigDict(populate_by_name=True)

    price_id: Optional[str] = Field(None, alias="priceId")
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    stripe_customer_id: Optional[str] = Field(None, alias="stripeCustomerId")


class PortalRequest(BaseModel):
    """Request to create portal session."""
    model_config = ConfigDict(populate_by_name=True)

    stripe_customer_id: Optional[str] = Field(None, alias="stripeCustomerId")
    return_url: Optional[str] = Field(None, alias="returnUrl")


class UrlResponse(BaseModel):
    url: str


@router.post("/create-checkout-session", response_model=UrlResponse)
@router.post("/checkout", response_model=UrlResponse)
async def create_checkout(
    body: CheckoutRequest,
    claims: SessionClaims = Depends(get_session_claims),
    services: Services = Depends(get_services),
):
    """
    Create Stripe checkout session.

    Errors:
        400: Missing stripeCustomerId, unknown or deleted customer
        401: No session
        403: Customer belongs to another account
        500: Stripe API error
    """
    url = await create_checkout_session(
        services.settings,
        services.payments,
        price_id=body.price_id,
        customer_email=body.customer_email or claims.email,
        payment_customer_id=body.stripe_customer_id,
        auth_account_id=claims.sub,
    )
    return {"url": url}


@router.post("/create-customer-portal-session", response_model=UrlResponse)
@router.post("/customer-portal", response_model=UrlResponse)
async def create_portal(
    body: PortalRequest,
    claims: SessionClaims = Depends(get_session_claims),
    services: Services = Depends(get_services),
):
    url = await create_portal_session(
        services.settings,
        services.payments,
        payment_customer_id=body.stripe_customer_id,
        return_url=body.return_url,
        auth_account_id=claims.sub,
    )
    return {"url": url}
