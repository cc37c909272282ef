"""
Vendor webhook receivers.

- POST /stripe-webhooks: raw body plus stripe-signature header
- POST /keygen-webhooks: JSON:API notification, re-fetched before use
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from licenselink.api.deps import Services, get_services
from licenselink.core.errors import ValidationError
from licenselink.features.reconciliation.keygen_events import KeygenEventHandler
from licenselink.features.reconciliation.stripe_events import StripeEventHandler

router = APIRouter(tags=["webhooks"])


@router.post("/stripe-webhooks")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    services: Services = Depends(get_services),
):
    """
    Handle Stripe webhook events.

    The raw body is needed for signature verification, so it is read before
    any parsing. A bad signature returns 400 and nothing else happens; every
    verified event returns 200.
    """
    body = await request.body()
    handler = StripeEventHandler(
        services.require_payments(),
        services.licensing,
        services.settings.KEYGEN_POLICY_ID,
        hook=services.lifecycle_hook,
    )
    return await handler.handle(body, stripe_signature)


@router.post("/keygen-webhooks")
async def keygen_webhook(request: Request, services: Services = Depends(get_services)):
    """Handle Keygen webhook events. Linking failures return 500 so Keygen redelivers."""
    try:
        body = await request.json()
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError both land here.
        raise ValidationError("Keygen webhook body must be JSON")

    handler = KeygenEventHandler(
        services.require_licensing(),
        services.require_payments(),
        services.users,
    )
    return await handler.handle(body)
