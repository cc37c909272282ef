from typing import Optional

from fastapi import APIRouter, Depends

from licenselink.api.deps import Services, get_services
from licenselink.core.auth import get_session_claims
from licenselink.features.licensing.service import licenses_for_session
from licenselink.models.accounts import SessionClaims

router = APIRouter(prefix="/api/v1/licenses", tags=["licenses"])


async def _list(claims: SessionClaims, services: Services, user_id: Optional[str] = None):
    return await licenses_for_session(services.require_licensing(), claims, user_id)


@router.get("")
async def list_my_licenses(
    claims: SessionClaims = Depends(get_session_claims),
    services: Services = Depends(get_services),
):
    return await _list(claims, services)


@router.get("/{user_id}")
async def list_user_licenses(
    user_id: str,
    claims: SessionClaims = Depends(get_session_claims),
    services: Services = Depends(get_services),
):
    return await _list(claims, services, user_id)
