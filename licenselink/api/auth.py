"""
Auth API routes.

- POST   /signup
- POST   /signin
- POST   /signout
- GET    /verify, /user
- DELETE /delete-account
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from licenselink.api.deps import Services, get_services
from licenselink.core.auth import get_session_claims
from licenselink.features.auth import service as auth_service
from licenselink.models.accounts import SessionClaims

router = APIRouter(tags=["auth"])


class CredentialsRequest(BaseModel):
    # Optional so that a missing field surfaces as our own ValidationError message.
    email: Optional[str] = None
    password: Optional[str] = None


@router.post("/signup")
async def signup(body: CredentialsRequest, services: Services = Depends(get_services)):
    return await auth_service.sign_up(
        services.require_users(),
        services.require_licensing(),
        body.email,
        body.password,
        payments=services.payments,
    )


@router.post("/signin")
async def signin(body: CredentialsRequest, services: Services = Depends(get_services)):
    return await auth_service.sign_in(
        services.settings,
        services.require_users(),
        services.require_licensing(),
        body.email,
        body.password,
    )


@router.post("/signout")
async def signout():
    return auth_service.sign_out()


@router.get("/verify")
@router.get("/user")
async def verify(
    claims: SessionClaims = Depends(get_session_claims),
    services: Services = Depends(get_services),
):
    """Resolve the bearer session to the current auth account."""
    return await auth_service.current_user(services.require_users(), claims)


@router.delete("/delete-account")
async def delete_account(
    claims: SessionClaims = Depends(get_session_claims),
    services: Services = Depends(get_services),
):
    return await auth_service.delete_account(
        services.require_users(),
        services.licensing,
        services.payments,
        claims,
    )
