"""
Auth gateway.

Supabase holds the credentials; Keygen holds a mirror account with the same
email and password so the user can obtain a Keygen token for license reads.
Sign-in binds both into one signed session token.
"""
from typing import Any, Dict, Optional

from licenselink.core.auth import issue_session_token
from licenselink.core.config import Settings
from licenselink.core.errors import AuthError, UpstreamError, ValidationError
from licenselink.core.logging import log_event
from licenselink.features.billing.provider import PaymentsProvider
from licenselink.features.licensing.keygen_client import KeygenClient
from licenselink.features.reconciliation.keygen_events import link_identity
from licenselink.features.users.supabase_client import SupabaseAuthClient
from licenselink.models.accounts import (
    AUTH_LICENSE_USER_ID,
    AUTH_PAYMENT_CUSTOMER_ID,
    LICENSE_AUTH_ACCOUNT_ID,
    LicenseAccount,
    SessionClaims,
)

MIN_PASSWORD_LENGTH = 6

# Vendor statuses that mean "the caller sent something the vendor refused".
_CLIENT_ERROR_STATUSES = {400, 404, 409, 422}
_CREDENTIAL_REJECTED_STATUSES = {400, 401, 403, 404, 422}


def _require_credentials(email: Optional[str], password: Optional[str]) -> None:
    if not email or not password:
        raise ValidationError("Email and password are required")


def _as_client_error(e: UpstreamError) -> UpstreamError:
    if e.upstream_status in _CLIENT_ERROR_STATUSES:
        return e.with_status(400)
    return e


async def sign_up(
    users: SupabaseAuthClient,
    licensing: KeygenClient,
    email: Optional[str],
    password: Optional[str],
    payments: Optional[PaymentsProvider] = None,
) -> Dict[str, Any]:
    """
    Create the auth account, then provision its license account.

    The license account is reused when one with this email already exists, so
    a retried sign-up never creates a second one. A reused account takes the
    new password and is linked here, since Keygen sends no user.created for it.

    Raises:
        ValidationError: missing fields or password shorter than 6
        UpstreamError: vendor refusal (400) or failure (500)
    """
    _require_credentials(email, password)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    try:
        account = await users.sign_up(email, password)
    except UpstreamError as e:
        raise _as_client_error(e)

    response = {
        "message": "Sign-up successful. Check your email to confirm your account.",
        "user": account.raw,
    }

    try:
        # Supabase answers a repeated email with an unsaved placeholder user.
        if await users.get_user(account.id) is None:
            log_event("warning", "Sign-up returned an unsaved auth account; skipping license provisioning", provider="supabase")
            return response

        license_account = await licensing.get_user(email)
        if license_account is None:
            license_account = await licensing.create_user(
                email, password, metadata={LICENSE_AUTH_ACCOUNT_ID: account.id}
            )
            log_event("info", f"Provisioned license account {license_account.id}", provider="keygen", account_id=account.id)
        else:
            await _reuse_license_account(users, licensing, payments, account.id, license_account, password)
    except UpstreamError as e:
        raise _as_client_error(e)

    return response


async def _reuse_license_account(
    users: SupabaseAuthClient,
    licensing: KeygenClient,
    payments: Optional[PaymentsProvider],
    auth_account_id: str,
    license_account: LicenseAccount,
    password: str,
) -> None:
    await licensing.set_user_password(license_account.id, password)
    if license_account.auth_account_id != auth_account_id:
        license_account = await licensing.update_user_metadata(
            license_account.id, {LICENSE_AUTH_ACCOUNT_ID: auth_account_id}, current=license_account
        )

    if payments is not None:
        await link_identity(licensing, payments, users, license_account)
    else:
        await users.update_user_metadata(auth_account_id, {AUTH_LICENSE_USER_ID: license_account.id})
    log_event("info", f"Reused license account {license_account.id}", provider="keygen", account_id=auth_account_id)


async def sign_in(
    settings: Settings,
    users: SupabaseAuthClient,
    licensing: KeygenClient,
    email: Optional[str],
    password: Optional[str],
) -> Dict[str, Any]:
    """
    Authenticate against both vendors and issue a session token.

    Raises:
        AuthError 401: either vendor rejected the credentials
    """
    _require_credentials(email, password)

    try:
        account = await users.sign_in_with_password(email, password)
    except UpstreamError as e:
        if e.upstream_status in _CREDENTIAL_REJECTED_STATUSES:
            raise AuthError("Invalid email or password")
        raise

    try:
        license_token, bearer_id = await licensing.authenticate(email, password)
    except UpstreamError as e:
        if e.upstream_status in _CREDENTIAL_REJECTED_STATUSES:
            raise AuthError("License account rejected the credentials")
        raise

    license_account_id = account.license_account_id or bearer_id
    token, expires_at = issue_session_token(
        settings,
        subject=account.id,
        email=account.email,
        license_account_id=license_account_id,
        license_token=license_token,
    )
    log_event("info", "Session issued", account_id=account.id)

    return {
        "user": account.raw,
        "session": {
            "token_type": "bearer",
            "expires_at": expires_at,
            "expires_in": settings.SESSION_TTL_SECONDS,
        },
        "token": token,
    }


def sign_out() -> Dict[str, str]:
    # Tokens are not revocable; the client discards its copy.
    return {"message": "Signed out"}


async def current_user(users: SupabaseAuthClient, claims: SessionClaims) -> Dict[str, Any]:
    """
    Fresh auth account for the session, plus its license account id.

    Raises:
        AuthError 401: account deleted after the token was issued
    """
    account = await users.get_user(claims.sub)
    if account is None:
        raise AuthError("Account no longer exists")
    return {
        "user": account.raw,
        "keygenUserId": account.license_account_id or claims.license_account_id,
    }


async def delete_account(
    users: SupabaseAuthClient,
    licensing: Optional[KeygenClient],
    payments: Optional[PaymentsProvider],
    claims: SessionClaims,
) -> Dict[str, str]:
    """
    Remove the caller from all three vendors.

    Stripe and Keygen deletions are best-effort and only logged on failure;
    failing to delete the auth account raises.
    """
    account = await users.get_user(claims.sub)
    metadata = account.metadata if account else {}
    license_account_id = metadata.get(AUTH_LICENSE_USER_ID) or claims.license_account_id
    customer_id = metadata.get(AUTH_PAYMENT_CUSTOMER_ID)

    if customer_id and payments is not None:
        try:
            await payments.delete_customer(customer_id)
        except UpstreamError as e:
            log_event("warning", f"Could not delete customer {customer_id}: {e}", provider="stripe", account_id=claims.sub)

    if license_account_id and licensing is not None:
        try:
            await licensing.delete_user(license_account_id)
        except UpstreamError as e:
            log_event("warning", f"Could not delete license account {license_account_id}: {e}", provider="keygen", account_id=claims.sub)

    if account is not None:
        await users.delete_user(claims.sub)

    log_event("info", "Account deleted", account_id=claims.sub)
    return {"message": "Account deleted"}
