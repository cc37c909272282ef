"""
Request dependencies.

Settings and vendor clients are built once in create_app() and stored on
app.state; handlers reach them through these dependencies instead of
module-level singletons.
"""
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from licenselink.core.config import Settings
from licenselink.core.errors import ProviderDisabledError
from licenselink.features.billing.provider import PaymentsProvider
from licenselink.features.billing.stripe_provider import StripeProvider
from licenselink.features.licensing.keygen_client import KeygenClient
from licenselink.features.reconciliation.hooks import LoggingLifecycleHook, SubscriptionLifecycleHook
from licenselink.features.users.supabase_client import SupabaseAuthClient


@dataclass
class Services:
    """Everything a handler needs, wired once per process."""
    settings: Settings
    payments: Optional[PaymentsProvider] = None
    licensing: Optional[KeygenClient] = None
    users: Optional[SupabaseAuthClient] = None
    lifecycle_hook: SubscriptionLifecycleHook = field(default_factory=LoggingLifecycleHook)

    def require_payments(self) -> PaymentsProvider:
        if self.payments is None:
            raise ProviderDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
        return self.payments

    def require_licensing(self) -> KeygenClient:
        if self.licensing is None:
            raise ProviderDisabledError("Keygen is not configured. Set KEYGEN_ACCOUNT_ID and KEYGEN_PRODUCT_TOKEN.")
        return self.licensing

    def require_users(self) -> SupabaseAuthClient:
        if self.users is None:
            raise ProviderDisabledError("Supabase is not configured. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY.")
        return self.users


def build_services(settings: Settings) -> Services:
    """Construct vendor clients for every provider that is configured."""
    payments = None
    if settings.STRIPE_SECRET_KEY:
        payments = StripeProvider(
            settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout=settings.VENDOR_TIMEOUT_SECONDS,
        )

    licensing = None
    if settings.KEYGEN_ACCOUNT_ID and settings.KEYGEN_PRODUCT_TOKEN:
        licensing = KeygenClient(
            account_id=settings.KEYGEN_ACCOUNT_ID,
            product_token=settings.KEYGEN_PRODUCT_TOKEN,
            base_url=settings.KEYGEN_API_URL,
            timeout=settings.VENDOR_TIMEOUT_SECONDS,
        )

    users = None
    if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_ROLE_KEY:
        users = SupabaseAuthClient(
            url=settings.SUPABASE_URL,
            service_role_key=settings.SUPABASE_SERVICE_ROLE_KEY,
            anon_key=settings.SUPABASE_ANON_KEY,
            timeout=settings.VENDOR_TIMEOUT_SECONDS,
        )

    return Services(settings=settings, payments=payments, licensing=licensing, users=users)


def get_services(request: Request) -> Services:
    return request.app.state.services
