"""
Supabase auth (GoTrue) client.

Public calls (signup, password grant) authenticate with the anon key when one
is configured; admin calls always use the service-role key.
"""
from typing import Any, Dict, Optional

import httpx

from licenselink.core.errors import UpstreamError
from licenselink.core.http import send, json_body
from licenselink.models.accounts import AuthAccount

PROVIDER = "supabase"


def _error_detail(body: Optional[Dict[str, Any]], status: int) -> str:
    if not body:
        return f"HTTP {status}"
    return (
        body.get("msg")
        or body.get("error_description")
        or body.get("message")
        or body.get("error")
        or f"HTTP {status}"
    )


class SupabaseAuthClient:
    def __init__(
        self,
        *,
        url: str,
        service_role_key: str,
        anon_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = f"{url.rstrip('/')}/auth/v1"
        self.service_role_key = service_role_key
        self.anon_key = anon_key or service_role_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self, admin: bool) -> Dict[str, str]:
        key = self.service_role_key if admin else self.anon_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        admin: bool = False,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            response = await send(client, PROVIDER, method, path, headers=self._headers(admin), json=json, params=params)

        if allow_not_found and response.status_code == 404:
            return None

        body = json_body(response)
        if response.status_code >= 400:
            raise UpstreamError(PROVIDER, _error_detail(body, response.status_code), upstream_status=response.status_code)
        return body or {}

    async def sign_up(self, email: str, password: str, data: Optional[Dict[str, Any]] = None) -> AuthAccount:
        """Create an account. With email confirmation on, the user comes back without a session."""
        body = await self._request("POST", "/signup", json={"email": email, "password": password, "data": data or {}})
        user = body.get("user") or body
        if not user.get("id"):
            raise UpstreamError(PROVIDER, "signup response missing user")
        return AuthAccount.from_payload(user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthAccount:
        body = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        user = body.get("user") or {}
        if not user.get("id"):
            raise UpstreamError(PROVIDER, "token response missing user")
        return AuthAccount.from_payload(user)

    async def get_user(self, user_id: str) -> Optional[AuthAccount]:
        body = await self._request("GET", f"/admin/users/{user_id}", admin=True, allow_not_found=True)
        if body is None:
            return None
        return AuthAccount.from_payload(body)

    async def update_user_metadata(self, user_id: str, metadata: Dict[str, Any]) -> AuthAccount:
        """Set user_metadata keys; GoTrue merges them into the existing metadata."""
        body = await self._request(
            "PUT",
            f"/admin/users/{user_id}",
            admin=True,
            json={"user_metadata": metadata},
        )
        return AuthAccount.from_payload(body)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/admin/users/{user_id}", admin=True, allow_not_found=True)
