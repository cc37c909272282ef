"""License read model for the signed-in user."""
from typing import Any, Dict, List, Optional

from licenselink.core.errors import AuthError, UpstreamError
from licenselink.features.licensing.keygen_client import KeygenClient
from licenselink.models.accounts import SessionClaims


async def licenses_for_session(
    licensing: KeygenClient,
    claims: SessionClaims,
    license_account_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    List the caller's licenses using their own Keygen token.

    Always returns a list (empty when the user has none).

    Raises:
        AuthError 403: path names another license account
        AuthError 401: session carries no usable Keygen token
    """
    if license_account_id and claims.license_account_id and license_account_id != claims.license_account_id:
        raise AuthError("Cannot read another account's licenses", status_code=403)
    if not claims.license_token:
        raise AuthError("Session has no license token; sign in again")

    try:
        licenses = await licensing.list_licenses(claims.license_token)
    except UpstreamError as e:
        if e.upstream_status == 401:
            raise AuthError("License token expired; sign in again")
        raise
    return licenses or []
