"""
Health endpoint for load balancers and uptime checks.

Reports which vendor integrations are configured without exposing secrets
and without calling any vendor.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from licenselink.api.deps import Services, get_services

router = APIRouter(tags=["health"])


class ProvidersHealth(BaseModel):
    stripe: bool
    keygen: bool
    supabase: bool


class HealthResponse(BaseModel):
    status: str
    env: str
    providers: ProvidersHealth
    computed_at: str  # UTC ISO format


@router.get("/healthz", response_model=HealthResponse)
async def healthz(services: Services = Depends(get_services)):
    return HealthResponse(
        status="ok",
        env=services.settings.ENV,
        providers=ProvidersHealth(
            stripe=services.payments is not None,
            keygen=services.licensing is not None,
            supabase=services.users is not None,
        ),
        computed_at=datetime.now(timezone.utc).isoformat(),
    )
